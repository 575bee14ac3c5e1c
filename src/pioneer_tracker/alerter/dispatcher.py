"""Notification dispatch to every configured channel.

Channels are sent to concurrently, each under its own timeout. A failing or
slow channel is logged and counted; dispatch() itself never raises.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from pioneer_tracker.alerter.formatter import AlertFormatter
from pioneer_tracker.alerter.models import FormattedAlert, NotificationEvent

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_TIMEOUT_SECONDS = 5.0


class AlertChannel(Protocol):
    """A destination for formatted alerts."""

    name: str

    async def send(self, alert: FormattedAlert) -> bool:
        """Deliver the alert. Returns True on success."""
        ...


@dataclass
class DispatchResult:
    """Per-channel outcome of one dispatch."""

    success_count: int = 0
    failure_count: int = 0
    failed_channels: list[str] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0


class AlertDispatcher:
    """Formats NotificationEvents and fans them out to channels.

    Example:
        ```python
        dispatcher = AlertDispatcher([TelegramChannel(token, chat_id)])
        result = await dispatcher.dispatch(event)
        if not result.all_succeeded:
            ...
        ```
    """

    def __init__(
        self,
        channels: list[AlertChannel],
        *,
        formatter: AlertFormatter | None = None,
        timeout_seconds: float = DEFAULT_CHANNEL_TIMEOUT_SECONDS,
    ) -> None:
        self._channels = list(channels)
        self._formatter = formatter or AlertFormatter()
        self._timeout = timeout_seconds

    @property
    def channels(self) -> list[AlertChannel]:
        return list(self._channels)

    async def _send_one(self, channel: AlertChannel, alert: FormattedAlert) -> bool:
        try:
            ok = await asyncio.wait_for(channel.send(alert), timeout=self._timeout)
        except TimeoutError:
            logger.warning("Channel %s timed out after %.1fs", channel.name, self._timeout)
            return False
        except Exception as e:
            logger.warning("Channel %s failed: %s", channel.name, e)
            return False
        if not ok:
            logger.warning("Channel %s rejected alert: %s", channel.name, alert.title)
        return bool(ok)

    async def dispatch(self, event: NotificationEvent) -> DispatchResult:
        """Send one event to every channel."""
        result = DispatchResult()
        if not self._channels:
            logger.debug("No alert channels configured; dropping %s", event.kind.value)
            return result

        try:
            alert = self._formatter.format(event)
        except Exception as e:
            logger.error("Failed to format %s event: %s", event.kind.value, e)
            result.failure_count = len(self._channels)
            result.failed_channels = [c.name for c in self._channels]
            return result

        outcomes = await asyncio.gather(*(self._send_one(c, alert) for c in self._channels))
        for channel, ok in zip(self._channels, outcomes, strict=True):
            if ok:
                result.success_count += 1
            else:
                result.failure_count += 1
                result.failed_channels.append(channel.name)
        return result
