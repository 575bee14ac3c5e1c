"""Tests for the alert message formatter."""

import pytest

from pioneer_tracker.alerter.formatter import (
    CATEGORY_TEMPLATES,
    AlertFormatter,
    escape_telegram_markdown,
    truncate_address,
)
from pioneer_tracker.alerter.models import EventKind, NotificationEvent, Severity
from pioneer_tracker.detector.models import PioneerCategory

WALLET = "0x1234567890abcdef1234567890abcdef12345678"
PROTOCOL = "0x9999999999999999999999999999999999999999"
TX_HASH = "0x" + "a" * 64


def create_signal_event(category: PioneerCategory = PioneerCategory.PROTOCOL_SCOUT) -> NotificationEvent:
    return NotificationEvent(
        kind=EventKind.PIONEER_SIGNAL,
        title=f"New {category.value} Signal",
        message="Pioneer 0x1234...5678 detected performing Early Protocol Adoption",
        severity=Severity.HIGH,
        category=category,
        transaction_ref=TX_HASH,
        payload={
            "wallet_address": WALLET,
            "pattern_name": "Early Protocol Adoption",
            "confidence": 0.92,
        },
    )


def create_protocol_event(kind: EventKind = EventKind.RAPID_ADOPTION) -> NotificationEvent:
    return NotificationEvent(
        kind=kind,
        title="Protocol Pattern Detected",
        message="Rapid adoption detected for newdex",
        severity=Severity.HIGH,
        payload={"protocol_address": PROTOCOL, "protocol_name": "newdex"},
    )


@pytest.fixture
def formatter() -> AlertFormatter:
    return AlertFormatter(explorer_url="https://etherscan.io/")


class TestHelpers:
    """Tests for formatting helpers."""

    def test_truncate_address(self):
        assert truncate_address(WALLET) == "0x1234...5678"

    def test_truncate_short_value(self):
        assert truncate_address("0x12") == "0x12"

    def test_escape_markdown(self):
        assert escape_telegram_markdown("92.0% (x_y)") == "92\\.0% \\(x\\_y\\)"


class TestPioneerAlerts:
    """Tests for pioneer signal formatting."""

    def test_uses_category_template(self, formatter):
        alert = formatter.format(create_signal_event())
        template = CATEGORY_TEMPLATES[PioneerCategory.PROTOCOL_SCOUT]

        assert alert.title == f"{template.emoji} New Protocol_Scout Signal"
        assert alert.color == template.color
        assert template.description in alert.plain_text
        assert "Confidence: 92.0%" in alert.body
        assert "Pattern: Early Protocol Adoption" in alert.plain_text

    def test_links(self, formatter):
        alert = formatter.format(create_signal_event())

        assert alert.links["transaction"] == f"https://etherscan.io/tx/{TX_HASH}"
        assert alert.links["wallet"] == f"https://etherscan.io/address/{WALLET}"
        assert "[View Transaction]" in alert.telegram_markdown

    def test_markdown_is_escaped(self, formatter):
        alert = formatter.format(create_signal_event())
        assert "Confidence: 92\\.0%" in alert.telegram_markdown
        assert "New Protocol\\_Scout Signal" in alert.telegram_markdown

    def test_every_category_has_a_template(self, formatter):
        for category in PioneerCategory:
            assert formatter.format(create_signal_event(category)).color is not None


class TestProtocolAlerts:
    """Tests for shared-protocol event formatting."""

    def test_protocol_event(self, formatter):
        alert = formatter.format(create_protocol_event())

        assert alert.title == "🚨 Protocol Pattern Detected"
        assert "Protocol: newdex" in alert.plain_text
        assert "Pattern: rapid_adoption" in alert.body
        assert alert.links["protocol"] == f"https://etherscan.io/address/{PROTOCOL}"

    def test_severity_emoji(self, formatter):
        event = NotificationEvent(
            kind=EventKind.LOW_RISK,
            title="Protocol Pattern Detected",
            message="newdex showing stable, low-risk metrics",
            severity=Severity.INFO,
            payload={"protocol_name": "newdex"},
        )

        alert = formatter.format(event)

        assert alert.title.startswith("ℹ️")
        assert alert.links == {}

    def test_signal_without_category_is_generic(self, formatter):
        event = NotificationEvent(kind=EventKind.PIONEER_SIGNAL, title="Signal", message="generic")

        alert = formatter.format(event)

        assert alert.plain_text == "🚨 Signal\ngeneric"
        assert alert.color is None
