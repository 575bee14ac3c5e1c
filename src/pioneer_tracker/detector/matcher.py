"""Sliding-window pattern matcher.

Keeps a bounded, per-wallet history of classified transactions and
evaluates the pattern catalog against it on every observation.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pioneer_tracker.concurrency import DEFAULT_LOCK_TIMEOUT_SECONDS, KeyedLock
from pioneer_tracker.detector.catalog import PATTERN_CATALOG
from pioneer_tracker.detector.models import (
    ClassifiedTransaction,
    Observation,
    PatternDefinition,
    PatternMatch,
)
from pioneer_tracker.ingestor.models import normalize_address

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)

# Confidence adjustments
DILUTION_FACTOR = 0.9
SINGLE_MATCH_FACTOR = 0.8


def _sort_key(tx: ClassifiedTransaction) -> tuple[datetime, str]:
    return (tx.timestamp, tx.hash)


@dataclass
class _WalletHistory:
    entries: list[ClassifiedTransaction] = field(default_factory=list)
    hashes: set[str] = field(default_factory=set)

    @property
    def latest(self) -> datetime | None:
        return self.entries[-1].timestamp if self.entries else None

    def insert(self, tx: ClassifiedTransaction) -> None:
        keys = [_sort_key(e) for e in self.entries]
        self.entries.insert(bisect.bisect_right(keys, _sort_key(tx)), tx)
        self.hashes.add(tx.hash)

    def prune_before(self, cutoff: datetime) -> int:
        keep = [e for e in self.entries if e.timestamp >= cutoff]
        removed = len(self.entries) - len(keep)
        if removed:
            self.entries = keep
            self.hashes = {e.hash for e in keep}
        return removed


def score_pattern(
    pattern: PatternDefinition,
    matched_count: int,
    window_count: int,
) -> float:
    """Compute pattern confidence from match and window counts."""
    required = pattern.required_count
    if required == 0:
        return 0.0
    confidence = matched_count / required
    if window_count > required * 2:
        confidence *= DILUTION_FACTOR
    if matched_count <= 1:
        confidence *= SINGLE_MATCH_FACTOR
    return min(confidence, 1.0)


def evaluate_patterns(
    entries: Iterable[ClassifiedTransaction],
    reference_time: datetime,
    catalog: Iterable[PatternDefinition] = PATTERN_CATALOG,
) -> list[PatternMatch]:
    """Evaluate every pattern against a wallet history.

    Each pattern only sees entries inside its own timeframe, measured back
    from reference_time. Entry types match a required type by
    case-insensitive substring.

    Returns:
        All qualifying matches, in catalog order.
    """
    history = list(entries)
    matches: list[PatternMatch] = []
    for pattern in catalog:
        cutoff = reference_time - timedelta(seconds=pattern.timeframe_seconds)
        relevant = [e for e in history if e.timestamp >= cutoff]
        required = [t.lower() for t in pattern.required_transaction_types]
        matched = [
            e for e in relevant if any(t in e.transaction_type.lower() for t in required)
        ]
        if len(matched) < pattern.required_count:
            continue

        confidence = score_pattern(pattern, len(matched), len(relevant))
        if confidence < pattern.min_confidence:
            continue

        matches.append(
            PatternMatch(
                pattern_id=pattern.id,
                pattern_name=pattern.name,
                confidence=confidence,
                matched_transaction_hashes=tuple(e.hash for e in matched),
                category=pattern.category,
            )
        )
    return matches


class SlidingWindowMatcher:
    """Per-wallet rolling history with pattern evaluation.

    State is created on first observation, pruned on every write, dropped by
    prune_stale() once a wallet goes quiet and destroyed by untrack().
    Observations for the same wallet are serialized; different wallets run
    in parallel.

    Time is taken from transaction timestamps, not the wall clock, so
    replayed or slightly out-of-order feeds evaluate the same way.
    """

    def __init__(
        self,
        catalog: Iterable[PatternDefinition] = PATTERN_CATALOG,
        *,
        window: timedelta = DEFAULT_WINDOW,
        lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self._catalog = tuple(catalog)
        self._window = window
        self._histories: dict[str, _WalletHistory] = {}
        self._locks = KeyedLock(name="wallet", timeout_seconds=lock_timeout_seconds)

    @property
    def window(self) -> timedelta:
        return self._window

    async def observe(self, address: str, tx: ClassifiedTransaction) -> Observation:
        """Append a transaction to the wallet history and evaluate patterns.

        Re-observing a known hash is a no-op flagged as duplicate. A
        transaction that already falls outside the wallet window is flagged
        stale and not stored.

        Raises:
            ValidationError: If address is malformed.
            ConcurrencyConflictError: If the wallet lock cannot be acquired.
        """
        wallet = normalize_address(address)
        async with self._locks.hold(wallet):
            return self._observe_locked(wallet, tx)

    def _observe_locked(self, wallet: str, tx: ClassifiedTransaction) -> Observation:
        history = self._histories.setdefault(wallet, _WalletHistory())

        if tx.hash in history.hashes:
            logger.debug("Duplicate tx %s for %s", tx.hash[:10] + "...", wallet[:10] + "...")
            return Observation(wallet_address=wallet, transaction=tx, duplicate=True)

        latest = history.latest
        reference = tx.timestamp if latest is None or tx.timestamp > latest else latest
        cutoff = reference - self._window
        if tx.timestamp < cutoff:
            logger.debug(
                "Dropping tx %s for %s: older than window",
                tx.hash[:10] + "...",
                wallet[:10] + "...",
            )
            return Observation(wallet_address=wallet, transaction=tx, stale=True)

        history.insert(tx)
        history.prune_before(cutoff)

        matches = evaluate_patterns(history.entries, reference, self._catalog)
        if matches:
            logger.info(
                "Wallet %s matched %d pattern(s): %s",
                wallet[:10] + "...",
                len(matches),
                ", ".join(m.pattern_id for m in matches),
            )
        return Observation(wallet_address=wallet, transaction=tx, matches=tuple(matches))

    def history(self, address: str) -> tuple[ClassifiedTransaction, ...]:
        """Return the current history for a wallet, oldest first."""
        history = self._histories.get(normalize_address(address))
        return tuple(history.entries) if history else ()

    def untrack(self, address: str) -> bool:
        """Discard all state for a wallet. Returns True if any existed."""
        return self._histories.pop(normalize_address(address), None) is not None

    def prune_stale(self, now: datetime) -> list[str]:
        """Drop wallets with no activity inside the window ending at now.

        Returns:
            The addresses whose state was discarded.
        """
        cutoff = now - self._window
        stale = [
            wallet
            for wallet, history in self._histories.items()
            if (history.latest is None or history.latest < cutoff) and not self._locks.locked(wallet)
        ]
        for wallet in stale:
            del self._histories[wallet]
        if stale:
            logger.debug("Pruned %d stale wallet histories", len(stale))
        return stale

    def tracked_wallets(self) -> list[str]:
        return sorted(self._histories)

    def __len__(self) -> int:
        return len(self._histories)
