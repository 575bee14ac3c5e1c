"""Tests for the sliding-window pattern matcher."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from pioneer_tracker.detector.catalog import PATTERNS_BY_ID
from pioneer_tracker.detector.matcher import (
    DILUTION_FACTOR,
    SINGLE_MATCH_FACTOR,
    SlidingWindowMatcher,
    evaluate_patterns,
    score_pattern,
)
from pioneer_tracker.detector.models import ClassifiedTransaction, PioneerCategory
from pioneer_tracker.errors import ValidationError

WALLET = "0x1234567890abcdef1234567890abcdef12345678"
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def classified(tx_type: str, *, at: datetime = NOW, tx_hash: str | None = None) -> ClassifiedTransaction:
    """Create a ClassifiedTransaction for testing."""
    return ClassifiedTransaction(
        hash=tx_hash or f"0x{tx_type}-{at.isoformat()}",
        timestamp=at,
        from_address=WALLET,
        to_address="0x" + "9" * 40,
        method_signature=None,
        value_wei=0,
        transaction_type=tx_type,
    )


@pytest.fixture
def matcher() -> SlidingWindowMatcher:
    return SlidingWindowMatcher(window=timedelta(hours=24), lock_timeout_seconds=1.0)


class TestScorePattern:
    """Tests for confidence scoring."""

    def test_full_match(self):
        assert score_pattern(PATTERNS_BY_ID["bridge_exploitation"], 2, 2) == 1.0

    def test_dilution_when_window_is_noisy(self):
        pattern = PATTERNS_BY_ID["bridge_exploitation"]
        assert score_pattern(pattern, 2, 5) == pytest.approx(DILUTION_FACTOR)

    def test_single_match_penalty(self):
        pattern = PATTERNS_BY_ID["bridge_exploitation"]
        assert score_pattern(pattern, 1, 1) == pytest.approx(0.5 * SINGLE_MATCH_FACTOR)

    def test_capped_at_one(self):
        assert score_pattern(PATTERNS_BY_ID["bridge_exploitation"], 4, 4) == 1.0


class TestEvaluatePatterns:
    """Tests for pattern evaluation over a history."""

    def test_early_protocol_adoption(self):
        history = [
            classified("deposit", at=NOW - timedelta(minutes=2)),
            classified("stake", at=NOW - timedelta(minutes=1)),
            classified("approve", at=NOW),
        ]

        matches = evaluate_patterns(history, NOW)

        ids = [m.pattern_id for m in matches]
        assert "early_protocol_adoption" in ids
        match = next(m for m in matches if m.pattern_id == "early_protocol_adoption")
        assert match.confidence >= 0.65
        assert match.category is PioneerCategory.PROTOCOL_SCOUT
        assert len(match.matched_transaction_hashes) == 3

    def test_substring_type_matching_is_case_insensitive(self):
        history = [classified("Bridge_Out", at=NOW), classified("SWAP", at=NOW)]
        assert [m.pattern_id for m in evaluate_patterns(history, NOW)] == ["bridge_exploitation"]

    def test_transaction_outside_pattern_timeframe_is_ignored(self):
        """A bridge 45 minutes ago is inside 24h but outside the 30 minute pattern."""
        history = [
            classified("bridge", at=NOW - timedelta(minutes=45)),
            classified("swap", at=NOW),
        ]
        assert evaluate_patterns(history, NOW) == []

    def test_below_required_count(self):
        assert evaluate_patterns([classified("deposit")], NOW) == []


class TestObserve:
    """Tests for SlidingWindowMatcher.observe."""

    @pytest.mark.asyncio
    async def test_reobservation_is_idempotent(self, matcher):
        tx = classified("deposit", tx_hash="0xaaa")

        first = await matcher.observe(WALLET, tx)
        second = await matcher.observe(WALLET, tx)

        assert first.accepted
        assert second.duplicate
        assert not second.accepted
        assert matcher.history(WALLET) == (tx,)

    @pytest.mark.asyncio
    async def test_history_is_sorted_despite_reordering(self, matcher):
        later = classified("stake", at=NOW, tx_hash="0x2")
        earlier = classified("deposit", at=NOW - timedelta(minutes=5), tx_hash="0x1")

        await matcher.observe(WALLET, later)
        await matcher.observe(WALLET, earlier)

        assert [t.hash for t in matcher.history(WALLET)] == ["0x1", "0x2"]

    @pytest.mark.asyncio
    async def test_stale_transaction_is_dropped(self, matcher):
        await matcher.observe(WALLET, classified("deposit", at=NOW, tx_hash="0x1"))

        observation = await matcher.observe(
            WALLET, classified("stake", at=NOW - timedelta(hours=25), tx_hash="0x0")
        )

        assert observation.stale
        assert len(matcher.history(WALLET)) == 1

    @pytest.mark.asyncio
    async def test_old_entries_pruned_on_write(self, matcher):
        await matcher.observe(WALLET, classified("deposit", at=NOW - timedelta(hours=30), tx_hash="0x1"))
        await matcher.observe(WALLET, classified("stake", at=NOW, tx_hash="0x2"))

        assert [t.hash for t in matcher.history(WALLET)] == ["0x2"]

    @pytest.mark.asyncio
    async def test_observe_returns_matches(self, matcher):
        await matcher.observe(WALLET, classified("bridge", at=NOW - timedelta(minutes=10), tx_hash="0x1"))
        observation = await matcher.observe(WALLET, classified("swap", at=NOW, tx_hash="0x2"))

        assert [m.pattern_id for m in observation.matches] == ["bridge_exploitation"]

    @pytest.mark.asyncio
    async def test_malformed_wallet_rejected(self, matcher):
        with pytest.raises(ValidationError):
            await matcher.observe("0xnope", classified("deposit"))
        assert len(matcher) == 0

    @pytest.mark.asyncio
    async def test_concurrent_observations_keep_every_entry(self, matcher):
        txs = [classified("deposit", at=NOW + timedelta(seconds=i), tx_hash=f"0x{i}") for i in range(20)]

        await asyncio.gather(*(matcher.observe(WALLET, tx) for tx in txs))

        assert len(matcher.history(WALLET)) == 20


class TestLifecycle:
    """Tests for state creation, pruning and untracking."""

    @pytest.mark.asyncio
    async def test_untrack_discards_state(self, matcher):
        await matcher.observe(WALLET, classified("deposit"))

        assert matcher.untrack(WALLET) is True
        assert matcher.history(WALLET) == ()
        assert matcher.untrack(WALLET) is False

    @pytest.mark.asyncio
    async def test_prune_stale(self, matcher):
        other = "0x" + "b" * 40
        await matcher.observe(WALLET, classified("deposit", at=NOW - timedelta(hours=30)))
        await matcher.observe(other, classified("deposit", at=NOW))

        pruned = matcher.prune_stale(NOW)

        assert pruned == [WALLET]
        assert matcher.tracked_wallets() == [other]
