"""Telegram Bot API channel."""

from __future__ import annotations

import logging

import aiohttp

from pioneer_tracker.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
DEFAULT_TIMEOUT_SECONDS = 10.0


class TelegramChannel:
    """Sends alerts with sendMessage using MarkdownV2."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = TELEGRAM_API_URL.format(token=bot_token)
        self._chat_id = chat_id
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session

    def _payload(self, alert: FormattedAlert) -> dict[str, object]:
        return {
            "chat_id": self._chat_id,
            "text": alert.telegram_markdown,
            "parse_mode": "MarkdownV2",
            "disable_web_page_preview": True,
        }

    async def _post(self, session: aiohttp.ClientSession, alert: FormattedAlert) -> bool:
        async with session.post(self._url, json=self._payload(alert), timeout=self._timeout) as response:
            if response.status != 200:
                body = await response.text()
                logger.warning("Telegram returned HTTP %d: %s", response.status, body[:200])
                return False
            data = await response.json()
            return bool(data.get("ok"))

    async def send(self, alert: FormattedAlert) -> bool:
        if self._session is not None:
            return await self._post(self._session, alert)
        async with aiohttp.ClientSession() as session:
            return await self._post(session, alert)
