"""Alert message formatter for multi-channel delivery.

This module transforms NotificationEvents into human-readable alert
messages for Telegram and plain text channels.
"""

from __future__ import annotations

from dataclasses import dataclass

from pioneer_tracker.alerter.models import EventKind, FormattedAlert, NotificationEvent, Severity
from pioneer_tracker.detector.models import PioneerCategory

DEFAULT_EXPLORER_URL = "https://etherscan.io"

TELEGRAM_SPECIAL_CHARS = "_*[]()~`>#+-=|{}.!\\"


@dataclass(frozen=True)
class CategoryTemplate:
    emoji: str
    color: str
    description: str


CATEGORY_TEMPLATES: dict[PioneerCategory, CategoryTemplate] = {
    PioneerCategory.PROTOCOL_SCOUT: CategoryTemplate(
        "🔍", "#4CAF50", "Early protocol adoption detected"
    ),
    PioneerCategory.YIELD_OPPORTUNIST: CategoryTemplate(
        "📈", "#2196F3", "Complex yield strategy deployed"
    ),
    PioneerCategory.CROSS_CHAIN_ARBITRAGE: CategoryTemplate(
        "⚡", "#FF9800", "Cross-chain opportunity seized"
    ),
    PioneerCategory.RWA_INNOVATION: CategoryTemplate(
        "🏢", "#9C27B0", "Real-world asset strategy launched"
    ),
    PioneerCategory.TREASURY_MANAGEMENT: CategoryTemplate(
        "🏦", "#795548", "Treasury operation executed"
    ),
}

SEVERITY_EMOJI = {
    Severity.HIGH: "🚨",
    Severity.MEDIUM: "⚠️",
    Severity.INFO: "ℹ️",
}

PROTOCOL_EVENT_KINDS = frozenset(
    {
        EventKind.PROTOCOL_DISCOVERED,
        EventKind.RAPID_ADOPTION,
        EventKind.HIGH_SUCCESS,
        EventKind.LOW_RISK,
    }
)


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an Ethereum address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def escape_telegram_markdown(text: str) -> str:
    """Escape special Telegram MarkdownV2 characters."""
    return "".join(f"\\{c}" if c in TELEGRAM_SPECIAL_CHARS else c for c in text)


def severity_emoji(severity: Severity) -> str:
    return SEVERITY_EMOJI.get(severity, "ℹ️")


class AlertFormatter:
    """Formats NotificationEvents into multi-channel alert messages.

    Pioneer signal events use the category template (emoji, colour and
    description). Protocol events use the severity emoji and link to the
    protocol address. Anything else falls back to a headline and message.
    """

    def __init__(self, explorer_url: str = DEFAULT_EXPLORER_URL) -> None:
        self.explorer_url = explorer_url.rstrip("/")

    def format(self, event: NotificationEvent) -> FormattedAlert:
        links = self._build_links(event)
        if event.kind is EventKind.PIONEER_SIGNAL and event.category is not None:
            return self._format_pioneer(event, links)
        if event.kind in PROTOCOL_EVENT_KINDS:
            return self._format_protocol(event, links)
        return self._format_generic(event, links)

    def _build_links(self, event: NotificationEvent) -> dict[str, str]:
        links: dict[str, str] = {}
        if event.transaction_ref:
            links["transaction"] = f"{self.explorer_url}/tx/{event.transaction_ref}"
        protocol_address = event.payload.get("protocol_address")
        if protocol_address:
            links["protocol"] = f"{self.explorer_url}/address/{protocol_address}"
        wallet = event.payload.get("wallet_address") or event.payload.get("pioneer_address")
        if wallet:
            links["wallet"] = f"{self.explorer_url}/address/{wallet}"
        return links

    def _format_pioneer(self, event: NotificationEvent, links: dict[str, str]) -> FormattedAlert:
        template = CATEGORY_TEMPLATES[event.category]
        pattern_name = str(event.payload.get("pattern_name", "unknown"))
        confidence = float(event.payload.get("confidence", 0.0))
        pct = f"{confidence * 100:.1f}%"

        body = "\n".join(
            [template.description, f"Pattern: {pattern_name}", f"Confidence: {pct}", event.message]
        )

        md = [
            f"{template.emoji} *{escape_telegram_markdown(event.title)}*",
            escape_telegram_markdown(template.description),
            "",
            f"Pattern: {escape_telegram_markdown(pattern_name)}",
            f"Confidence: {escape_telegram_markdown(pct)}",
            escape_telegram_markdown(event.message),
        ]
        plain = [
            f"{template.emoji} {event.title}",
            template.description,
            "",
            f"Pattern: {pattern_name}",
            f"Confidence: {pct}",
            event.message,
        ]
        if "transaction" in links:
            md += ["", f"🔗 [View Transaction]({links['transaction']})"]
            plain += ["", f"Transaction: {links['transaction']}"]

        return FormattedAlert(
            title=f"{template.emoji} {event.title}",
            body=body,
            telegram_markdown="\n".join(md),
            plain_text="\n".join(plain),
            links=links,
            color=template.color,
        )

    def _format_protocol(self, event: NotificationEvent, links: dict[str, str]) -> FormattedAlert:
        emoji = severity_emoji(event.severity)
        protocol_name = str(event.payload.get("protocol_name", "unknown"))
        pattern = event.kind.value

        md = [
            f"{emoji} *{escape_telegram_markdown(event.title)}*",
            f"Protocol: {escape_telegram_markdown(protocol_name)}",
            f"Pattern: {escape_telegram_markdown(pattern)}",
            escape_telegram_markdown(event.message),
        ]
        plain = [
            f"{emoji} {event.title}",
            f"Protocol: {protocol_name}",
            f"Pattern: {pattern}",
            event.message,
        ]
        if "protocol" in links:
            md += ["", f"🔗 [View Protocol]({links['protocol']})"]
            plain += ["", f"Protocol: {links['protocol']}"]

        return FormattedAlert(
            title=f"{emoji} {event.title}",
            body=f"Protocol: {protocol_name}\nPattern: {pattern}\n{event.message}",
            telegram_markdown="\n".join(md),
            plain_text="\n".join(plain),
            links=links,
        )

    def _format_generic(self, event: NotificationEvent, links: dict[str, str]) -> FormattedAlert:
        return FormattedAlert(
            title=f"🚨 {event.title}",
            body=event.message,
            telegram_markdown=(
                f"🚨 *{escape_telegram_markdown(event.title)}*\n"
                f"{escape_telegram_markdown(event.message)}"
            ),
            plain_text=f"🚨 {event.title}\n{event.message}",
            links=links,
        )
