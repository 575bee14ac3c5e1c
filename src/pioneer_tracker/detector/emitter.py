"""Signal emitter.

Turns a classified transaction plus a pattern match into a prioritized
Signal. Notification side effects are returned as events for the caller to
dispatch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from pioneer_tracker.alerter.models import EventKind, NotificationEvent, Severity
from pioneer_tracker.detector.models import (
    ClassifiedTransaction,
    PatternMatch,
    PioneerCategory,
    Signal,
    SignalAnalysis,
    TransactionRef,
)
from pioneer_tracker.profiler.models import PioneerMetrics

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

MAX_PRIORITY = 5
HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7
HISTORICAL_SUCCESS_BONUS_RATE = 0.8

DEFAULT_NOTIFY_MIN_CONFIDENCE = 0.8
DEFAULT_DEDUP_WINDOW_SECONDS = 86400
DEFAULT_REDIS_KEY_PREFIX = "pioneer:signal:dedup:"


@dataclass(frozen=True)
class EmittedSignal:
    """A generated signal and the notifications it raises."""

    signal: Signal
    events: tuple[NotificationEvent, ...] = ()


def calculate_priority(confidence: float, is_pioneer: bool, historical_success_rate: float) -> int:
    """Integer priority in [1, 5]."""
    priority = 1
    if confidence >= HIGH_CONFIDENCE:
        priority += 2
    elif confidence >= MEDIUM_CONFIDENCE:
        priority += 1
    if is_pioneer:
        priority += 1
    if historical_success_rate >= HISTORICAL_SUCCESS_BONUS_RATE:
        priority += 1
    return min(priority, MAX_PRIORITY)


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def category_context(category: PioneerCategory, metrics: PioneerMetrics) -> tuple[str, str]:
    """Return (potential_impact, strategic_context) for a pioneer category."""
    match category:
        case PioneerCategory.PROTOCOL_SCOUT:
            return (
                "Potential early protocol adoption signal",
                f"Pioneer has {_pct(metrics.early_adoption_success)} success rate "
                "in early protocol adoption",
            )
        case PioneerCategory.YIELD_OPPORTUNIST:
            return (
                "Complex yield strategy deployment detected",
                f"Pioneer averages {_pct(metrics.yield_optimization_roi)} ROI on yield strategies",
            )
        case PioneerCategory.CROSS_CHAIN_ARBITRAGE:
            return (
                "Cross-chain arbitrage opportunity identified",
                f"Pioneer has {_pct(metrics.cross_chain_efficiency)} success rate "
                "in cross-chain operations",
            )
        case PioneerCategory.RWA_INNOVATION:
            return (
                "New real-world asset strategy detected",
                f"Pioneer has {_pct(metrics.rwa_innovation_score)} success rate "
                "on real-world asset strategies",
            )
        case PioneerCategory.TREASURY_MANAGEMENT:
            return (
                "Significant treasury management activity",
                f"Pioneer manages treasury with {_pct(metrics.treasury_management_score)} "
                "efficiency rating",
            )


class SignalEmitter:
    """Builds Signals and decides which ones are pushed as notifications.

    When a Redis client is supplied, claim() suppresses re-emission of the
    same wallet/pattern/transaction set within the dedup window.

    Example:
        ```python
        emitter = SignalEmitter()
        emitted = emitter.generate_signal(classified, match, metrics)
        for event in emitted.events:
            await dispatcher.dispatch(event)
        ```
    """

    def __init__(
        self,
        *,
        notify_min_confidence: float = DEFAULT_NOTIFY_MIN_CONFIDENCE,
        redis: Redis | None = None,
        dedup_window_seconds: int = DEFAULT_DEDUP_WINDOW_SECONDS,
        key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._notify_min_confidence = notify_min_confidence
        self._redis = redis
        self._dedup_window = dedup_window_seconds
        self._key_prefix = key_prefix
        self._clock = clock or (lambda: datetime.now(UTC))

    def _dedup_key(self, wallet_address: str, pattern: PatternMatch) -> str:
        hashes = ",".join(sorted(pattern.matched_transaction_hashes))
        return f"{self._key_prefix}{wallet_address}:{pattern.pattern_id}:{hashes}"

    async def claim(self, wallet_address: str, pattern: PatternMatch) -> bool:
        """Return True if this match has not been emitted within the window."""
        if self._redis is None:
            return True
        try:
            was_set = await self._redis.set(
                self._dedup_key(wallet_address, pattern),
                self._clock().isoformat(),
                nx=True,
                ex=self._dedup_window,
            )
        except RedisError as e:
            logger.warning("Dedup check failed, emitting anyway: %s", e)
            return True
        if not was_set:
            logger.debug(
                "Signal deduplicated: wallet=%s, pattern=%s",
                wallet_address[:10] + "...",
                pattern.pattern_id,
            )
        return bool(was_set)

    def generate_signal(
        self,
        classification: ClassifiedTransaction,
        pattern: PatternMatch,
        wallet_metrics: PioneerMetrics | None = None,
        *,
        wallet_address: str | None = None,
    ) -> EmittedSignal:
        """Build a signal for one match.

        Args:
            classification: Transaction that completed the match.
            pattern: The match.
            wallet_metrics: Current pioneer metrics of the wallet, if any.
            wallet_address: Monitored wallet the signal belongs to. Defaults
                to the transaction sender.

        Returns:
            EmittedSignal with a pioneer_signal event when the signal belongs
            to a pioneer category and clears the notification confidence.
        """
        metrics = wallet_metrics or PioneerMetrics()
        category = pattern.category
        is_pioneer = category is not None
        now = self._clock()

        analysis = SignalAnalysis(
            summary=f"Detected {pattern.pattern_name} pattern with {_pct(pattern.confidence)} confidence"
        )
        if category is not None:
            impact, context = category_context(category, metrics)
            analysis = SignalAnalysis(
                summary=analysis.summary,
                potential_impact=impact,
                strategic_context=context,
            )

        signal = Signal(
            wallet_address=(wallet_address or classification.from_address).lower(),
            type=pattern.pattern_id,
            category=category,
            priority=calculate_priority(pattern.confidence, is_pioneer, metrics.success_rate),
            protocol=classification.protocol_name or "unknown",
            chain=str(classification.chain_id),
            transaction=TransactionRef(
                hash=classification.hash,
                value=str(classification.value_wei),
                method=classification.method_signature or "",
            ),
            pattern_name=pattern.pattern_name,
            pattern_confidence=pattern.confidence,
            analysis=analysis,
            metrics={
                **{k: float(v) for k, v in metrics.to_dict().items()},
                "historical_accuracy": metrics.success_rate,
                "pattern_reliability": pattern.confidence,
            },
            related_transactions=tuple(
                h for h in pattern.matched_transaction_hashes if h != classification.hash
            ),
            timestamp=now,
        )

        events: list[NotificationEvent] = []
        if is_pioneer and pattern.confidence >= self._notify_min_confidence:
            wallet = signal.wallet_address
            events.append(
                NotificationEvent(
                    kind=EventKind.PIONEER_SIGNAL,
                    title=f"New {category.value} Signal",
                    message=(
                        f"Pioneer {wallet[:6]}...{wallet[-4:]} detected performing "
                        f"{pattern.pattern_name}"
                    ),
                    severity=Severity.HIGH if pattern.confidence >= HIGH_CONFIDENCE else Severity.MEDIUM,
                    category=category,
                    transaction_ref=classification.hash,
                    payload={
                        "signal_id": signal.id,
                        "wallet_address": wallet,
                        "pattern_id": pattern.pattern_id,
                        "pattern_name": pattern.pattern_name,
                        "confidence": pattern.confidence,
                        "protocol": signal.protocol,
                        "priority": signal.priority,
                    },
                    timestamp=now,
                )
            )
        logger.debug(
            "Generated signal %s for %s (priority %d)",
            pattern.pattern_id,
            signal.wallet_address[:10] + "...",
            signal.priority,
        )
        return EmittedSignal(signal=signal, events=tuple(events))
