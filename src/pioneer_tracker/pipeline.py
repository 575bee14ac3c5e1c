"""Main pipeline orchestrator for Pioneer Tracker.

This module provides the Pipeline class that wires together all detection
components and manages the event flow from transaction ingestion to
alerting.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from pioneer_tracker.alerter.channels.telegram import TelegramChannel
from pioneer_tracker.alerter.dispatcher import AlertChannel, AlertDispatcher
from pioneer_tracker.alerter.formatter import AlertFormatter
from pioneer_tracker.config import Settings, get_settings
from pioneer_tracker.detector.catalog import event_topic
from pioneer_tracker.detector.classifier import TransactionClassifier
from pioneer_tracker.detector.emitter import SignalEmitter
from pioneer_tracker.detector.matcher import SlidingWindowMatcher
from pioneer_tracker.detector.models import TRANSFER_TYPE, PioneerCategory
from pioneer_tracker.ingestor.models import is_valid_address, normalize_address
from pioneer_tracker.ingestor.registry import ProtocolRegistry
from pioneer_tracker.ingestor.watcher import ChainWatcher
from pioneer_tracker.profiler.aggregator import (
    RWA_STRATEGY_MARKERS,
    TREASURY_STRATEGY_MARKERS,
    YIELD_STRATEGY_MARKERS,
    CategoryThresholds,
    PioneerMetricsAggregator,
)
from pioneer_tracker.profiler.models import PioneerMetrics, SharedProtocolRecord, WalletRecord
from pioneer_tracker.profiler.shared_protocol import SharedProtocolRiskEngine
from pioneer_tracker.storage.database import DatabaseManager
from pioneer_tracker.storage.store import RecordStore

if TYPE_CHECKING:
    from pioneer_tracker.alerter.models import NotificationEvent
    from pioneer_tracker.detector.models import (
        ClassifiedTransaction,
        Observation,
        PatternMatch,
        Signal,
    )
    from pioneer_tracker.ingestor.models import RawTransaction, TransactionReceipt

logger = logging.getLogger(__name__)

ERC20_TRANSFER_TOPIC = event_topic("Transfer(address,address,uint256)")
MAINTENANCE_INTERVAL_SECONDS = 300.0

STRATEGY_MARKERS: dict[PioneerCategory, tuple[str, ...]] = {
    PioneerCategory.YIELD_OPPORTUNIST: YIELD_STRATEGY_MARKERS,
    PioneerCategory.RWA_INNOVATION: RWA_STRATEGY_MARKERS,
    PioneerCategory.TREASURY_MANAGEMENT: TREASURY_STRATEGY_MARKERS,
}


def strategy_type(category: PioneerCategory, pattern_id: str) -> str:
    """Name a strategy deployment so the aggregator files it under category."""
    markers = STRATEGY_MARKERS[category]
    if any(m in pattern_id for m in markers):
        return pattern_id
    return f"{markers[0]}_{pattern_id}"


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    transactions_processed: int = 0
    duplicates_skipped: int = 0
    signals_generated: int = 0
    alerts_sent: int = 0
    errors: int = 0
    last_transaction_time: datetime | None = None
    last_error: str | None = None


@dataclass
class ProcessingResult:
    """Everything one transaction produced."""

    classification: ClassifiedTransaction
    observation: Observation
    pioneer_match: PatternMatch | None = None
    signals: list[Signal] = field(default_factory=list)
    events: list[NotificationEvent] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return not self.observation.accepted


@dataclass(frozen=True)
class _QueuedTransaction:
    tx: RawTransaction
    receipt: TransactionReceipt | None


class Pipeline:
    """Main pipeline orchestrator for Pioneer Tracker.

    Pipeline flow:
        Chain Watcher → Classifier → Matcher → {Aggregator, Risk Engine}
        → Signal Emitter → Store → Alerter

    Each tracked wallet gets its own ordered queue and worker task, so one
    wallet's transactions are processed in arrival order while different
    wallets proceed in parallel.

    Example:
        ```python
        settings = get_settings()
        async with Pipeline(settings) as pipeline:
            await pipeline.track_wallet("0x...")
            await pipeline.run()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        watch_chain: bool = True,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, skip sending alerts. Overrides settings.dry_run.
            watch_chain: If False, no chain watcher is started and
                transactions must be fed through submit().
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._watch_chain = watch_chain

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._store: RecordStore | None = None
        self._registry: ProtocolRegistry | None = None
        self._classifier: TransactionClassifier | None = None
        self._matcher: SlidingWindowMatcher | None = None
        self._aggregator: PioneerMetricsAggregator | None = None
        self._risk_engine: SharedProtocolRiskEngine | None = None
        self._emitter: SignalEmitter | None = None
        self._alert_dispatcher: AlertDispatcher | None = None
        self._watcher: ChainWatcher | None = None

        # Tracked wallets and their workers
        self._tracked: set[str] = set()
        self._queues: dict[str, asyncio.Queue[_QueuedTransaction]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._watcher_task: asyncio.Task[None] | None = None
        self._maintenance_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def stats(self) -> PipelineStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == PipelineState.RUNNING

    @property
    def tracked_wallets(self) -> frozenset[str]:
        return frozenset(self._tracked)

    @property
    def store(self) -> RecordStore | None:
        return self._store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._restore_tracked_wallets()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Build every component not already supplied."""
        settings = self._settings

        if self._store is None:
            logger.debug("Initializing database connection...")
            self._db_manager = DatabaseManager(settings.database.url)
            await self._db_manager.init_schema_async()
            self._store = RecordStore(
                self._db_manager,
                timeout_seconds=settings.io.timeout_seconds,
                max_retries=settings.io.max_retries,
                retry_delay_seconds=settings.io.retry_delay_seconds,
            )

        if self._redis is None and settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        lock_timeout = settings.io.lock_timeout_seconds
        self._registry = self._registry or ProtocolRegistry.default()
        self._classifier = self._classifier or TransactionClassifier(
            self._registry, chain_id=settings.chain.chain_id
        )
        self._matcher = self._matcher or SlidingWindowMatcher(
            window=timedelta(hours=settings.matcher.window_hours),
            lock_timeout_seconds=lock_timeout,
        )
        self._aggregator = self._aggregator or PioneerMetricsAggregator(
            self._store,
            thresholds=CategoryThresholds(
                min_success_rate=settings.aggregator.min_success_rate,
                yield_outperform=settings.aggregator.yield_outperform_threshold,
                early_adoption_window=timedelta(days=settings.aggregator.early_adoption_days),
            ),
            history_limit=settings.aggregator.history_limit,
            lock_timeout_seconds=lock_timeout,
        )
        self._risk_engine = self._risk_engine or SharedProtocolRiskEngine(
            self._store, lock_timeout_seconds=lock_timeout
        )
        self._emitter = self._emitter or SignalEmitter(
            notify_min_confidence=settings.signal.notify_min_confidence,
            redis=self._redis,
            dedup_window_seconds=settings.signal.dedup_window_seconds,
        )

        if self._alert_dispatcher is None:
            logger.debug("Initializing alerting components...")
            self._alert_dispatcher = AlertDispatcher(
                self._build_alert_channels(),
                formatter=AlertFormatter(settings.chain.explorer_url),
                timeout_seconds=settings.io.timeout_seconds,
            )

        if self._watch_chain and self._watcher is None:
            logger.debug("Initializing chain watcher...")
            self._watcher = ChainWatcher(
                settings.chain.rpc_url,
                on_transaction=self.submit,
                fallback_rpc_url=settings.chain.fallback_rpc_url,
                poll_interval_seconds=settings.chain.poll_interval_seconds,
                max_retries=settings.io.max_retries,
            )

        logger.info("All components initialized")

    def _build_alert_channels(self) -> list[AlertChannel]:
        """Build list of enabled alert channels."""
        channels: list[AlertChannel] = []
        telegram = self._settings.telegram

        if telegram.enabled and telegram.bot_token and telegram.chat_id:
            channels.append(
                TelegramChannel(
                    telegram.bot_token.get_secret_value(),
                    telegram.chat_id,
                    timeout_seconds=self._settings.io.timeout_seconds,
                )
            )
            logger.info("Telegram channel enabled")

        if not channels:
            logger.warning("No alert channels configured")

        return channels

    async def _restore_tracked_wallets(self) -> None:
        if self._store is None:
            return
        for address in await self._store.list_wallet_addresses():
            self._start_tracking(address)
        if self._tracked:
            logger.info("Restored %d tracked wallets", len(self._tracked))

    async def _start_background_services(self) -> None:
        if self._watcher and self._stop_event:
            logger.debug("Starting chain watcher...")
            self._watcher_task = asyncio.create_task(self._watcher.run(self._stop_event))
        self._maintenance_task = asyncio.create_task(self._run_maintenance_loop())

    async def _stop_background_services(self) -> None:
        for task in (self._watcher_task, self._maintenance_task, *self._workers.values()):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._watcher_task = None
        self._maintenance_task = None
        self._workers.clear()
        self._queues.clear()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._watcher:
            await self._watcher.aclose()
            self._watcher = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None
            self._store = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _run_maintenance_loop(self) -> None:
        """Periodically drop matcher state for wallets that went quiet."""
        if not self._stop_event:
            return
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=MAINTENANCE_INTERVAL_SECONDS)
                break
            except TimeoutError:
                pass
            if self._matcher:
                self._matcher.prune_stale(datetime.now(UTC))

    async def run(self) -> None:
        """Start the pipeline if needed and block until stop() is called."""
        if self._state == PipelineState.STOPPED:
            await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Wallet tracking
    # ------------------------------------------------------------------

    def _start_tracking(self, address: str) -> None:
        self._tracked.add(address)
        if self._watcher:
            self._watcher.add_wallet(address)
        if address not in self._workers:
            queue: asyncio.Queue[_QueuedTransaction] = asyncio.Queue()
            self._queues[address] = queue
            self._workers[address] = asyncio.create_task(self._run_wallet_worker(address, queue))

    async def track_wallet(self, address: str, *, label: str | None = None) -> WalletRecord:
        """Start monitoring a wallet, registering it if it is unknown.

        Raises:
            ValidationError: If address is malformed.
        """
        wallet = normalize_address(address)
        if self._store is None:
            raise RuntimeError("Pipeline is not started")
        record = await self._store.get_wallet(wallet)
        if record is None:
            record = await self._store.upsert_wallet(WalletRecord(address=wallet, label=label))
            logger.info("Registered wallet %s", wallet[:10] + "...")
        self._start_tracking(wallet)
        return record

    async def untrack_wallet(self, address: str) -> bool:
        """Stop monitoring a wallet and discard its in-flight state.

        Returns:
            True if the wallet was tracked.
        """
        wallet = normalize_address(address)
        was_tracked = wallet in self._tracked
        self._tracked.discard(wallet)
        if self._watcher:
            self._watcher.remove_wallet(wallet)

        task = self._workers.pop(wallet, None)
        self._queues.pop(wallet, None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._matcher:
            self._matcher.untrack(wallet)
        if was_tracked:
            logger.info("Stopped tracking %s", wallet[:10] + "...")
        return was_tracked

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    async def submit(
        self,
        wallet: str,
        tx: RawTransaction,
        receipt: TransactionReceipt | None = None,
    ) -> None:
        """Queue a transaction for its wallet's worker. Untracked wallets are ignored."""
        address = wallet.lower()
        queue = self._queues.get(address)
        if address not in self._tracked or queue is None:
            logger.debug("Ignoring tx %s for untracked wallet", tx.hash[:10] + "...")
            return
        await queue.put(_QueuedTransaction(tx=tx, receipt=receipt))

    async def _run_wallet_worker(
        self, wallet: str, queue: asyncio.Queue[_QueuedTransaction]
    ) -> None:
        while True:
            item = await queue.get()
            try:
                await self.process_transaction(wallet, item.tx, item.receipt)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.error(
                    "Error processing tx %s for %s: %s",
                    item.tx.hash[:10] + "...",
                    wallet[:10] + "...",
                    e,
                )
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued transaction has been processed."""
        await asyncio.gather(*(q.join() for q in list(self._queues.values())))

    @staticmethod
    def _is_unregistered_contract(classified: ClassifiedTransaction) -> bool:
        return (
            is_valid_address(classified.to_address)
            and classified.protocol is None
            and classified.transaction_type != TRANSFER_TYPE
        )

    def _is_new_protocol(
        self,
        wallet: str,
        classified: ClassifiedTransaction,
        record: SharedProtocolRecord | None,
    ) -> bool:
        """An unregistered contract this wallet has not used yet.

        The protocol must also be unseen by everyone or still inside the
        early adoption window.
        """
        if not self._is_unregistered_contract(classified):
            return False
        if record is None:
            return True
        if record.pioneer(wallet) is not None:
            return False
        window = timedelta(days=self._settings.aggregator.early_adoption_days)
        return classified.timestamp - record.discovery_timestamp <= window

    async def _record_pioneer_activity(
        self,
        wallet: str,
        match: PatternMatch,
        classified: ClassifiedTransaction,
        success: bool,
    ) -> None:
        when = classified.timestamp
        match match.category:
            case PioneerCategory.PROTOCOL_SCOUT:
                protocol = classified.protocol_name or classified.to_address
                if protocol:
                    await self._aggregator.record_protocol_discovery(
                        wallet, protocol, success, timestamp=when
                    )
            case PioneerCategory.CROSS_CHAIN_ARBITRAGE:
                await self._aggregator.update_chain_activity(
                    wallet, str(classified.chain_id), success, timestamp=when
                )
            case category if category in STRATEGY_MARKERS:
                await self._aggregator.record_strategy_deployment(
                    wallet, strategy_type(category, match.pattern_id), success, timestamp=when
                )

    async def _wallet_metrics(self, wallet: str) -> PioneerMetrics:
        record = await self._store.get_pioneer(wallet)
        if record is not None:
            return record.metrics
        wallet_record = await self._store.get_wallet(wallet)
        if wallet_record is None:
            return PioneerMetrics()
        return PioneerMetrics(
            success_rate=wallet_record.success_rate,
            total_transactions=wallet_record.total_transactions,
        )

    async def process_transaction(
        self,
        wallet: str,
        tx: RawTransaction,
        receipt: TransactionReceipt | None = None,
    ) -> ProcessingResult:
        """Run one transaction through the whole pipeline.

        classify → observe → pioneer check → aggregator and risk engine →
        signals → persist → dispatch.

        Raises:
            PioneerTrackerError: If a profiler or store step fails. Nothing
                after the failing step runs for this transaction.
        """
        if None in (self._classifier, self._matcher, self._store, self._emitter):
            raise RuntimeError("Pipeline is not started")

        address = normalize_address(wallet)
        self._stats.transactions_processed += 1
        self._stats.last_transaction_time = datetime.now(UTC)

        if receipt is None:
            logger.warning("No receipt for tx %s; log based checks skipped", tx.hash[:10] + "...")

        classified = self._classifier.classify(tx, receipt)
        observation = await self._matcher.observe(address, classified)
        result = ProcessingResult(classification=classified, observation=observation)
        if not observation.accepted:
            self._stats.duplicates_skipped += 1
            return result

        shared: SharedProtocolRecord | None = None
        if self._is_unregistered_contract(classified):
            shared = await self._risk_engine.get(classified.to_address)
        is_new = self._is_new_protocol(address, classified, shared)
        result.pioneer_match = self._classifier.detect_pioneer_pattern(
            tx, receipt, is_new_protocol=is_new
        )

        success = classified.success
        if success is not None:
            if result.pioneer_match is not None:
                await self._record_pioneer_activity(address, result.pioneer_match, classified, success)
            if is_valid_address(classified.to_address) and (
                is_new or shared is not None or classified.protocol is not None
            ):
                update = await self._risk_engine.record_interaction(
                    classified.to_address,
                    classified.protocol_name or classified.to_address,
                    address,
                    success,
                    related_tokens=self._related_tokens(receipt, classified),
                )
                result.events.extend(update.events)

        matches = list(observation.matches)
        if result.pioneer_match is not None:
            matches.append(result.pioneer_match)
        if matches:
            metrics = await self._wallet_metrics(address)
            for match in matches:
                if not await self._emitter.claim(address, match):
                    continue
                emitted = self._emitter.generate_signal(
                    classified, match, metrics, wallet_address=address
                )
                if address not in self._tracked:
                    logger.info("Dropping signal for untracked wallet %s", address[:10] + "...")
                    return result
                await self._store.save_signal(emitted.signal)
                self._stats.signals_generated += 1
                result.signals.append(emitted.signal)
                result.events.extend(emitted.events)

        await self._dispatch(result.events)
        return result

    @staticmethod
    def _related_tokens(
        receipt: TransactionReceipt | None, classified: ClassifiedTransaction
    ) -> list[str]:
        if receipt is None:
            return []
        return [
            log.address
            for log in receipt.logs
            if log.topic0 == ERC20_TRANSFER_TOPIC and log.address != classified.to_address
        ]

    async def _dispatch(self, events: list[NotificationEvent]) -> None:
        for event in events:
            if self._dry_run:
                logger.info("[DRY RUN] Would send alert: %s - %s", event.title, event.message)
                continue
            if self._alert_dispatcher is None:
                continue
            result = await self._alert_dispatcher.dispatch(event)
            if result.all_succeeded and result.success_count:
                self._stats.alerts_sent += 1
            elif result.failure_count:
                logger.warning(
                    "Alert partially failed: %d/%d channels succeeded",
                    result.success_count,
                    result.success_count + result.failure_count,
                )
