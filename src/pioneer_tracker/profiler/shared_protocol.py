"""Shared-protocol risk engine.

Tracks which pioneers interact with each protocol, maintains per-pioneer
running success rates, a protocol-level average and a weighted risk score,
and raises pattern-change events when the aggregate crosses alert
conditions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

from pioneer_tracker.alerter.models import EventKind, NotificationEvent, Severity
from pioneer_tracker.concurrency import DEFAULT_LOCK_TIMEOUT_SECONDS, KeyedLock
from pioneer_tracker.errors import NotFoundError, ValidationError
from pioneer_tracker.ingestor.models import normalize_address
from pioneer_tracker.profiler.models import (
    PioneerRecord,
    ProtocolPioneer,
    SharedProtocolRecord,
    TvlPoint,
)

if TYPE_CHECKING:
    from pioneer_tracker.storage.store import RecordStore, SharedProtocolPage

logger = logging.getLogger(__name__)

# Risk score weights
INTERACTION_WEIGHT = 0.3
SUCCESS_WEIGHT = 0.4
TIME_SPAN_WEIGHT = 0.3
INTERACTION_NORMALIZER = 100
TIME_SPAN_NORMALIZER_DAYS = 30

# Alert conditions
RAPID_ADOPTION_WINDOW = timedelta(hours=24)
RAPID_ADOPTION_MIN_PIONEERS = 3
RAPID_ADOPTION_MIN_SHARE = 0.5
HIGH_SUCCESS_RATE = 0.8
HIGH_SUCCESS_MIN_PIONEERS = 5
LOW_RISK_SCORE = 0.3
LOW_RISK_MIN_PIONEERS = 3

TREND_TIMEFRAMES: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
TREND_LIMIT = 10

Timeframe = Literal["24h", "7d", "30d"]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def compute_risk_score(pioneers: Iterable[ProtocolPioneer]) -> float:
    """Weighted blend of interaction, success and time-span sub-scores.

    Each sub-score is averaged across pioneers before weighting. The result
    always lies in [0, 1].
    """
    entries = list(pioneers)
    if not entries:
        return 0.0
    n = len(entries)
    interaction = sum(min(p.interaction_count / INTERACTION_NORMALIZER, 1.0) for p in entries) / n
    success = sum(_clamp(p.success_rate) for p in entries) / n
    span = (
        sum(
            min(
                max((p.last_interaction - p.first_interaction).total_seconds(), 0.0)
                / 86400
                / TIME_SPAN_NORMALIZER_DAYS,
                1.0,
            )
            for p in entries
        )
        / n
    )
    return _clamp(
        INTERACTION_WEIGHT * interaction + SUCCESS_WEIGHT * success + TIME_SPAN_WEIGHT * span
    )


def evaluate_alerts(record: SharedProtocolRecord, now: datetime) -> list[NotificationEvent]:
    """Return every alert condition the record currently satisfies."""
    events: list[NotificationEvent] = []
    payload = {
        "protocol_address": record.protocol_address,
        "protocol_name": record.protocol_name,
    }

    recent = [p for p in record.pioneers if p.last_interaction > now - RAPID_ADOPTION_WINDOW]
    if (
        record.total_pioneers > 0
        and len(recent) >= RAPID_ADOPTION_MIN_PIONEERS
        and len(recent) / record.total_pioneers >= RAPID_ADOPTION_MIN_SHARE
    ):
        events.append(
            NotificationEvent(
                kind=EventKind.RAPID_ADOPTION,
                title="Protocol Pattern Detected",
                message=f"Rapid adoption detected for {record.protocol_name}",
                severity=Severity.HIGH,
                payload={**payload, "recent_pioneers": len(recent)},
                timestamp=now,
            )
        )

    if (
        record.avg_success_rate >= HIGH_SUCCESS_RATE
        and record.total_pioneers >= HIGH_SUCCESS_MIN_PIONEERS
    ):
        events.append(
            NotificationEvent(
                kind=EventKind.HIGH_SUCCESS,
                title="Protocol Pattern Detected",
                message=f"High success rate maintained for {record.protocol_name}",
                severity=Severity.MEDIUM,
                payload={**payload, "avg_success_rate": record.avg_success_rate},
                timestamp=now,
            )
        )

    if record.risk_score <= LOW_RISK_SCORE and record.total_pioneers >= LOW_RISK_MIN_PIONEERS:
        events.append(
            NotificationEvent(
                kind=EventKind.LOW_RISK,
                title="Protocol Pattern Detected",
                message=f"{record.protocol_name} showing stable, low-risk metrics",
                severity=Severity.INFO,
                payload={**payload, "risk_score": record.risk_score},
                timestamp=now,
            )
        )
    return events


def apply_interaction(
    record: SharedProtocolRecord | None,
    *,
    protocol_address: str,
    protocol_name: str,
    pioneer_address: str,
    success: bool,
    related_tokens: Iterable[str] = (),
    now: datetime,
) -> tuple[SharedProtocolRecord, list[NotificationEvent]]:
    """Fold one pioneer interaction into a protocol record.

    Pure: returns the new record and the events it raises without touching
    any store.
    """
    events: list[NotificationEvent] = []
    if record is None:
        record = SharedProtocolRecord(
            protocol_address=protocol_address,
            protocol_name=protocol_name,
            discovery_timestamp=now,
            last_activity=now,
        )
        events.append(
            NotificationEvent(
                kind=EventKind.PROTOCOL_DISCOVERED,
                title="New Protocol Discovered",
                message=(
                    f"Pioneer {pioneer_address[:6]}...{pioneer_address[-4:]} "
                    f"discovered {protocol_name}"
                ),
                severity=Severity.MEDIUM,
                payload={
                    "protocol_address": protocol_address,
                    "protocol_name": protocol_name,
                    "pioneer_address": pioneer_address,
                },
                timestamp=now,
            )
        )

    hit = 1.0 if success else 0.0
    pioneers: list[ProtocolPioneer] = []
    seen = False
    for entry in record.pioneers:
        if entry.address == pioneer_address:
            n = entry.interaction_count + 1
            entry = replace(
                entry,
                interaction_count=n,
                last_interaction=max(entry.last_interaction, now),
                success_rate=(entry.success_rate * (n - 1) + hit) / n,
            )
            seen = True
        pioneers.append(entry)
    if not seen:
        pioneers.append(
            ProtocolPioneer(
                address=pioneer_address,
                first_interaction=now,
                last_interaction=now,
                interaction_count=1,
                success_rate=hit,
            )
        )

    avg = sum(p.success_rate for p in pioneers) / len(pioneers)
    tokens = dict.fromkeys(record.related_tokens)
    for token in related_tokens:
        tokens.setdefault(token, None)

    updated = replace(
        record,
        pioneers=tuple(pioneers),
        total_pioneers=len(pioneers),
        avg_success_rate=_clamp(avg),
        risk_score=compute_risk_score(pioneers),
        related_tokens=tuple(tokens),
        last_activity=max(record.last_activity, now),
    )
    events.extend(evaluate_alerts(updated, now))
    return updated, events


@dataclass(frozen=True)
class ProtocolUpdate:
    """Outcome of recording one interaction."""

    record: SharedProtocolRecord
    events: tuple[NotificationEvent, ...]
    created: bool


@dataclass(frozen=True)
class RelatedPioneer:
    """A pioneer active on a protocol, with its global metrics if known."""

    address: str
    interactions: ProtocolPioneer
    pioneer: PioneerRecord | None


@dataclass(frozen=True)
class ProtocolTrend:
    protocol_address: str
    protocol_name: str
    pioneer_count: int
    avg_success_rate: float
    risk_score: float
    tvl_trend: tuple[TvlPoint, ...]


class SharedProtocolRiskEngine:
    """Serializes updates per protocol address and persists the result.

    Different protocols update in parallel. Two pioneers hitting the same
    protocol at once are applied one after the other, so no interaction is
    lost from the aggregate counters.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._locks = KeyedLock(name="protocol", timeout_seconds=lock_timeout_seconds)
        self._clock = clock or (lambda: datetime.now(UTC))

    async def get(self, protocol_address: str) -> SharedProtocolRecord | None:
        return await self._store.get_protocol(normalize_address(protocol_address))

    async def record_interaction(
        self,
        protocol_address: str,
        protocol_name: str,
        pioneer_address: str,
        success: bool,
        related_tokens: Iterable[str] = (),
    ) -> ProtocolUpdate:
        """Record a pioneer interaction with a protocol.

        Raises:
            ValidationError: On malformed addresses.
            ConcurrencyConflictError: If the protocol stays busy too long.
            TransientIOError: If persistence keeps failing.
        """
        protocol = normalize_address(protocol_address)
        pioneer = normalize_address(pioneer_address)
        tokens = [t.strip().lower() for t in related_tokens if t and t.strip()]

        async with self._locks.hold(protocol):
            existing = await self._store.get_protocol(protocol)
            record, events = apply_interaction(
                existing,
                protocol_address=protocol,
                protocol_name=existing.protocol_name if existing else protocol_name,
                pioneer_address=pioneer,
                success=success,
                related_tokens=tokens,
                now=self._clock(),
            )
            await self._store.save_protocol(record)

        if existing is None:
            logger.info(
                "New protocol %s (%s) discovered by %s",
                record.protocol_name,
                protocol[:10] + "...",
                pioneer[:10] + "...",
            )
        return ProtocolUpdate(record=record, events=tuple(events), created=existing is None)

    async def record_tvl_point(
        self,
        protocol_address: str,
        value: float,
        *,
        timestamp: datetime | None = None,
    ) -> SharedProtocolRecord:
        """Append a TVL observation to a known protocol.

        Raises:
            NotFoundError: If the protocol has never been seen.
            ValidationError: If value is negative.
        """
        protocol = normalize_address(protocol_address)
        if value < 0:
            raise ValidationError("TVL value must be non-negative")
        async with self._locks.hold(protocol):
            existing = await self._store.get_protocol(protocol)
            if existing is None:
                raise NotFoundError(f"Protocol not found: {protocol}")
            point = TvlPoint(timestamp=timestamp or self._clock(), value=float(value))
            trend = tuple(sorted((*existing.tvl_trend, point), key=lambda p: p.timestamp))
            record = replace(existing, tvl_trend=trend)
            await self._store.save_protocol(record)
            return record

    async def get_shared_protocols(
        self,
        pioneer_address: str,
        *,
        limit: int = 10,
        offset: int = 0,
        sort_by: str = "last_activity",
        descending: bool = True,
    ) -> SharedProtocolPage:
        """Page through the protocols a pioneer has interacted with."""
        return await self._store.list_protocols_for_pioneer(
            normalize_address(pioneer_address),
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            descending=descending,
        )

    async def find_related_pioneers(self, protocol_address: str) -> list[RelatedPioneer]:
        """Pioneers active on a protocol, best per-protocol success rate first."""
        record = await self._store.get_protocol(normalize_address(protocol_address))
        if record is None:
            return []
        related = [
            RelatedPioneer(
                address=p.address,
                interactions=p,
                pioneer=await self._store.get_pioneer(p.address),
            )
            for p in record.pioneers
        ]
        related.sort(key=lambda r: r.interactions.success_rate, reverse=True)
        return related

    async def get_protocol_trends(self, timeframe: str = "7d") -> list[ProtocolTrend]:
        """Most active protocols within the timeframe.

        Raises:
            ValidationError: If timeframe is not one of 24h, 7d or 30d.
        """
        span = TREND_TIMEFRAMES.get(timeframe)
        if span is None:
            raise ValidationError(f"Unknown timeframe: {timeframe!r}")
        since = self._clock() - span
        records = await self._store.list_active_protocols(since=since, limit=TREND_LIMIT)
        return [
            ProtocolTrend(
                protocol_address=r.protocol_address,
                protocol_name=r.protocol_name,
                pioneer_count=r.total_pioneers,
                avg_success_rate=r.avg_success_rate,
                risk_score=r.risk_score,
                tvl_trend=tuple(p for p in r.tvl_trend if p.timestamp >= since),
            )
            for r in records
        ]
