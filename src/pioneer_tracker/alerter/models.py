"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pioneer_tracker.detector.models import PioneerCategory


class Severity(str, Enum):
    """Notification severity."""

    INFO = "info"
    MEDIUM = "medium"
    HIGH = "high"


class EventKind(str, Enum):
    """Kinds of notification events raised by the pipeline."""

    PIONEER_SIGNAL = "pioneer_signal"
    PROTOCOL_DISCOVERED = "protocol_discovered"
    RAPID_ADOPTION = "rapid_adoption"
    HIGH_SUCCESS = "high_success"
    LOW_RISK = "low_risk"


@dataclass(frozen=True)
class NotificationEvent:
    """A side effect the pipeline wants pushed to operators.

    Produced by the risk engine and the signal emitter as return values and
    dispatched by the caller.

    Attributes:
        kind: What happened.
        title: Short headline.
        message: One line description.
        severity: Urgency.
        category: Pioneer category, if the event refers to one.
        transaction_ref: Transaction hash the event refers to.
        payload: Extra structured context (pattern, protocol address, ...).
        timestamp: When the event was raised.
    """

    kind: EventKind
    title: str
    message: str
    severity: Severity = Severity.INFO
    category: PioneerCategory | None = None
    transaction_ref: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value if self.category else None,
            "transaction_ref": self.transaction_ref,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class FormattedAlert:
    """A notification rendered for every supported channel.

    Attributes:
        title: Alert headline.
        body: Short body without markup.
        telegram_markdown: Telegram MarkdownV2 rendering.
        plain_text: Plain text rendering for logs and generic channels.
        links: Named explorer links.
        color: Hex colour hint for channels that support it.
    """

    title: str
    body: str
    telegram_markdown: str
    plain_text: str
    links: dict[str, str] = field(default_factory=dict)
    color: str | None = None
