"""Pioneer metrics aggregation.

Every mutating event appends to the wallet's pioneer history and then
rebuilds all derived metrics and the category set from scratch. The rebuild
is a pure function of the history, so running it twice with the same input
gives the same record.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from pioneer_tracker.concurrency import DEFAULT_LOCK_TIMEOUT_SECONDS, KeyedLock
from pioneer_tracker.detector.models import PioneerCategory
from pioneer_tracker.errors import NotFoundError, ValidationError
from pioneer_tracker.ingestor.models import normalize_address
from pioneer_tracker.profiler.models import (
    ChainActivity,
    PioneerMetrics,
    PioneerRecord,
    ProtocolDiscovery,
    StrategyDeployment,
    WalletRecord,
)

if TYPE_CHECKING:
    from pioneer_tracker.storage.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_EARLY_ADOPTION_WINDOW = timedelta(days=7)
DEFAULT_MIN_SUCCESS_RATE = 0.65
DEFAULT_YIELD_OUTPERFORM_THRESHOLD = 0.15
DEFAULT_HISTORY_LIMIT = 500

YIELD_STRATEGY_MARKERS = ("yield", "farming")
RWA_STRATEGY_MARKERS = ("RWA", "real_world")
TREASURY_STRATEGY_MARKERS = ("treasury", "governance")


@dataclass(frozen=True)
class CategoryThresholds:
    """Thresholds that govern category membership.

    All categories use min_success_rate except Yield_Opportunist, which is
    ROI based and uses yield_outperform.
    """

    min_success_rate: float = DEFAULT_MIN_SUCCESS_RATE
    yield_outperform: float = DEFAULT_YIELD_OUTPERFORM_THRESHOLD
    early_adoption_window: timedelta = DEFAULT_EARLY_ADOPTION_WINDOW

    def threshold_for(self, category: PioneerCategory) -> float:
        if category is PioneerCategory.YIELD_OPPORTUNIST:
            return self.yield_outperform
        return self.min_success_rate


def _success_ratio(entries: Iterable[StrategyDeployment | ProtocolDiscovery]) -> float:
    items = list(entries)
    if not items:
        return 0.0
    return sum(1 for e in items if e.success) / len(items)


def _type_has(deployment: StrategyDeployment, markers: tuple[str, ...]) -> bool:
    return any(m in deployment.type for m in markers)


def compute_metrics(
    record: PioneerRecord,
    wallet: WalletRecord,
    now: datetime,
    *,
    early_adoption_window: timedelta = DEFAULT_EARLY_ADOPTION_WINDOW,
) -> PioneerMetrics:
    """Derive all pioneer metrics from accumulated history.

    Discoveries newer than the early-adoption window are excluded from
    early_adoption_success since they have not proven early yet.
    """
    cutoff = now - early_adoption_window
    early = [d for d in record.discovered_protocols if d.timestamp <= cutoff]

    yield_deployments = [
        d for d in record.strategy_deployments if _type_has(d, YIELD_STRATEGY_MARKERS)
    ]
    avg_roi = (
        sum(d.roi or 0.0 for d in yield_deployments) / len(yield_deployments)
        if yield_deployments
        else 0.0
    )

    total_ops = sum(a.transaction_count for a in record.chain_activity)
    cross_chain = (
        sum(a.success_rate * a.transaction_count for a in record.chain_activity) / total_ops
        if total_ops > 0
        else 0.0
    )

    return PioneerMetrics(
        early_adoption_success=_success_ratio(early),
        yield_optimization_roi=avg_roi,
        cross_chain_efficiency=cross_chain,
        rwa_innovation_score=_success_ratio(
            d for d in record.strategy_deployments if _type_has(d, RWA_STRATEGY_MARKERS)
        ),
        treasury_management_score=_success_ratio(
            d for d in record.strategy_deployments if _type_has(d, TREASURY_STRATEGY_MARKERS)
        ),
        success_rate=wallet.success_rate,
        total_transactions=wallet.total_transactions,
    )


def derive_categories(
    metrics: PioneerMetrics,
    thresholds: CategoryThresholds | None = None,
) -> frozenset[PioneerCategory]:
    """Return every category whose score reaches its threshold."""
    thresholds = thresholds or CategoryThresholds()
    return frozenset(
        c for c in PioneerCategory if metrics.score_for(c) >= thresholds.threshold_for(c)
    )


def rebuild(
    record: PioneerRecord,
    wallet: WalletRecord,
    now: datetime,
    thresholds: CategoryThresholds | None = None,
) -> PioneerRecord:
    """Return record with metrics and categories replaced wholesale."""
    thresholds = thresholds or CategoryThresholds()
    metrics = compute_metrics(
        record, wallet, now, early_adoption_window=thresholds.early_adoption_window
    )
    return replace(
        record,
        metrics=metrics,
        categories=derive_categories(metrics, thresholds),
        updated_at=now,
    )


def apply_chain_activity(
    activity: tuple[ChainActivity, ...],
    chain: str,
    success: bool,
    timestamp: datetime,
) -> tuple[ChainActivity, ...]:
    """Fold one cross-chain operation into the per-chain running success rate."""
    updated: list[ChainActivity] = []
    found = False
    for entry in activity:
        if entry.chain == chain:
            n = entry.transaction_count + 1
            updated.append(
                ChainActivity(
                    chain=chain,
                    transaction_count=n,
                    success_rate=(entry.success_rate * (n - 1) + (1.0 if success else 0.0)) / n,
                    last_active=max(entry.last_active, timestamp),
                )
            )
            found = True
        else:
            updated.append(entry)
    if not found:
        updated.append(
            ChainActivity(
                chain=chain,
                transaction_count=1,
                success_rate=1.0 if success else 0.0,
                last_active=timestamp,
            )
        )
    return tuple(updated)


class PioneerMetricsAggregator:
    """Maintains PioneerRecords with at most one update in flight per wallet.

    Example:
        ```python
        aggregator = PioneerMetricsAggregator(store)
        record = await aggregator.record_protocol_discovery(wallet, "aave", True)
        print(record.categories)
        ```
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        thresholds: CategoryThresholds | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._thresholds = thresholds or CategoryThresholds()
        self._history_limit = history_limit
        self._locks = KeyedLock(name="pioneer", timeout_seconds=lock_timeout_seconds)
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def thresholds(self) -> CategoryThresholds:
        return self._thresholds

    def _cap(self, entries: tuple) -> tuple:
        return entries[-self._history_limit :]

    async def _load(self, wallet: str) -> tuple[WalletRecord, PioneerRecord]:
        wallet_record = await self._store.get_wallet(wallet)
        if wallet_record is None:
            raise NotFoundError(f"Wallet not found: {wallet}")
        record = await self._store.get_pioneer(wallet)
        return wallet_record, record or PioneerRecord(wallet_address=wallet)

    async def _commit(
        self,
        wallet_record: WalletRecord,
        record: PioneerRecord,
    ) -> PioneerRecord:
        previous = record.categories
        rebuilt = rebuild(record, wallet_record, self._clock(), self._thresholds)
        await self._store.save_pioneer(rebuilt)
        if previous != rebuilt.categories:
            logger.info(
                "Pioneer %s categories changed: %s -> %s",
                record.wallet_address[:10] + "...",
                sorted(c.value for c in previous),
                [c.value for c in rebuilt.sorted_categories()],
            )
        return rebuilt

    async def get(self, address: str) -> PioneerRecord | None:
        """Return the stored pioneer record, if any."""
        return await self._store.get_pioneer(normalize_address(address))

    async def recompute(self, address: str) -> PioneerRecord:
        """Rebuild metrics and categories for a wallet from its history.

        Raises:
            NotFoundError: If the wallet is unknown. Nothing is written.
            ConcurrencyConflictError: If the wallet is busy for too long.
        """
        wallet = normalize_address(address)
        async with self._locks.hold(wallet):
            wallet_record, record = await self._load(wallet)
            return await self._commit(wallet_record, record)

    async def record_protocol_discovery(
        self,
        address: str,
        protocol: str,
        success: bool,
        *,
        timestamp: datetime | None = None,
    ) -> PioneerRecord:
        """Append a protocol discovery and recompute."""
        wallet = normalize_address(address)
        if not protocol:
            raise ValidationError("protocol must be non-empty")
        async with self._locks.hold(wallet):
            wallet_record, record = await self._load(wallet)
            entry = ProtocolDiscovery(
                protocol=protocol, timestamp=timestamp or self._clock(), success=success
            )
            record = replace(
                record, discovered_protocols=self._cap((*record.discovered_protocols, entry))
            )
            logger.debug("Recorded discovery of %s by %s", protocol, wallet[:10] + "...")
            return await self._commit(wallet_record, record)

    async def record_strategy_deployment(
        self,
        address: str,
        strategy_type: str,
        success: bool,
        *,
        roi: float | None = None,
        timestamp: datetime | None = None,
    ) -> PioneerRecord:
        """Append a strategy deployment and recompute."""
        wallet = normalize_address(address)
        if not strategy_type:
            raise ValidationError("strategy_type must be non-empty")
        async with self._locks.hold(wallet):
            wallet_record, record = await self._load(wallet)
            entry = StrategyDeployment(
                type=strategy_type,
                timestamp=timestamp or self._clock(),
                success=success,
                roi=roi,
            )
            record = replace(
                record, strategy_deployments=self._cap((*record.strategy_deployments, entry))
            )
            logger.debug("Recorded %s deployment by %s", strategy_type, wallet[:10] + "...")
            return await self._commit(wallet_record, record)

    async def update_chain_activity(
        self,
        address: str,
        chain: str,
        success: bool,
        *,
        timestamp: datetime | None = None,
    ) -> PioneerRecord:
        """Fold a cross-chain operation into chain activity and recompute."""
        wallet = normalize_address(address)
        if not chain:
            raise ValidationError("chain must be non-empty")
        async with self._locks.hold(wallet):
            wallet_record, record = await self._load(wallet)
            activity = apply_chain_activity(
                record.chain_activity, chain, success, timestamp or self._clock()
            )
            record = replace(record, chain_activity=self._cap(activity))
            return await self._commit(wallet_record, record)

    async def get_pioneers(
        self,
        *,
        categories: Iterable[PioneerCategory | str] | None = None,
        min_success_rate: float | None = None,
        chains: Iterable[str] | None = None,
    ) -> list[PioneerRecord]:
        """List pioneers matching the filters, best success rate first.

        Raises:
            ValidationError: If min_success_rate is outside [0, 1] or a
                category is unknown.
        """
        if min_success_rate is not None and not 0.0 <= min_success_rate <= 1.0:
            raise ValidationError("min_success_rate must be within [0, 1]")
        wanted: set[PioneerCategory] | None = None
        if categories is not None:
            try:
                wanted = {PioneerCategory(c) for c in categories}
            except ValueError as e:
                raise ValidationError(str(e)) from e
        return await self._store.list_pioneers(
            categories=wanted or None,
            min_success_rate=min_success_rate,
            chains=set(chains) if chains else None,
        )
