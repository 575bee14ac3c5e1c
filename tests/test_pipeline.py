"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pioneer_tracker.alerter.dispatcher import DispatchResult
from pioneer_tracker.alerter.models import EventKind, NotificationEvent
from pioneer_tracker.config import Settings
from pioneer_tracker.detector.models import PioneerCategory
from pioneer_tracker.ingestor.models import TransactionReceipt
from pioneer_tracker.pipeline import Pipeline, PipelineState, strategy_type
from pioneer_tracker.profiler.models import WalletRecord


@pytest.fixture
def mock_settings():
    """Create mock settings for testing."""
    database = MagicMock()
    database.url = "sqlite+aiosqlite:///:memory:"

    redis = MagicMock()
    redis.url = None

    chain = MagicMock()
    chain.rpc_url = "https://rpc.example"
    chain.fallback_rpc_url = None
    chain.chain_id = 1
    chain.poll_interval_seconds = 4.0
    chain.explorer_url = "https://etherscan.io"

    matcher = MagicMock()
    matcher.window_hours = 24.0

    aggregator = MagicMock()
    aggregator.early_adoption_days = 7
    aggregator.min_success_rate = 0.65
    aggregator.yield_outperform_threshold = 0.15
    aggregator.history_limit = 500

    signal = MagicMock()
    signal.notify_min_confidence = 0.8
    signal.dedup_window_seconds = 3600

    io = MagicMock()
    io.timeout_seconds = 5.0
    io.max_retries = 2
    io.retry_delay_seconds = 0.0
    io.lock_timeout_seconds = 5.0

    telegram = MagicMock()
    telegram.enabled = False
    telegram.bot_token = None
    telegram.chat_id = None

    settings = MagicMock(spec=Settings)
    settings.database = database
    settings.redis = redis
    settings.chain = chain
    settings.matcher = matcher
    settings.aggregator = aggregator
    settings.signal = signal
    settings.io = io
    settings.telegram = telegram
    settings.dry_run = True
    return settings


@pytest.fixture
async def wired_pipeline(mock_settings, store):
    """Pipeline with real components on the test store, without a chain watcher."""
    pipeline = Pipeline(mock_settings, watch_chain=False)
    pipeline._store = store
    await pipeline._initialize_components()
    yield pipeline
    await pipeline._stop_background_services()


def create_event() -> NotificationEvent:
    return NotificationEvent(
        kind=EventKind.PROTOCOL_DISCOVERED,
        title="New Protocol Discovered",
        message="Pioneer 0x1234...5678 discovered newdex",
    )


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, mock_settings):
        """Pipeline should start in stopped state."""
        pipeline = Pipeline(mock_settings)
        assert pipeline.state == PipelineState.STOPPED

    def test_is_running_property(self, mock_settings):
        """is_running property should reflect state."""
        pipeline = Pipeline(mock_settings)
        assert not pipeline.is_running

        pipeline._state = PipelineState.RUNNING
        assert pipeline.is_running


class TestPipelineStats:
    """Tests for pipeline statistics."""

    def test_initial_stats(self, mock_settings):
        """Pipeline should have zero stats initially."""
        stats = Pipeline(mock_settings).stats

        assert stats.started_at is None
        assert stats.transactions_processed == 0
        assert stats.duplicates_skipped == 0
        assert stats.signals_generated == 0
        assert stats.alerts_sent == 0
        assert stats.errors == 0


class TestPipelineInitialization:
    """Tests for pipeline initialization."""

    def test_dry_run_from_settings(self, mock_settings):
        """Pipeline should use dry_run from settings by default."""
        mock_settings.dry_run = True
        assert Pipeline(mock_settings)._dry_run is True

        mock_settings.dry_run = False
        assert Pipeline(mock_settings)._dry_run is False

    def test_dry_run_override(self, mock_settings):
        """Pipeline should allow overriding dry_run."""
        mock_settings.dry_run = False
        pipeline = Pipeline(mock_settings, dry_run=True)
        assert pipeline._dry_run is True

    def test_uses_get_settings_when_none_provided(self):
        """Pipeline should call get_settings if no settings provided."""
        with patch("pioneer_tracker.pipeline.get_settings") as mock_get:
            mock_get.return_value = MagicMock(spec=Settings)
            mock_get.return_value.dry_run = False
            Pipeline()
            mock_get.assert_called_once()

    @pytest.mark.asyncio
    async def test_supplied_components_are_kept(self, wired_pipeline, store):
        """Components set before start should not be rebuilt."""
        assert wired_pipeline.store is store
        assert wired_pipeline._watcher is None
        assert wired_pipeline._redis is None


class TestBuildAlertChannels:
    """Tests for alert channel building."""

    def test_no_channels_when_none_enabled(self, mock_settings):
        """Should return empty list when no channels enabled."""
        pipeline = Pipeline(mock_settings)
        assert pipeline._build_alert_channels() == []

    def test_telegram_channel_when_enabled(self, mock_settings):
        """Should add Telegram channel when enabled."""
        mock_settings.telegram.enabled = True
        mock_settings.telegram.bot_token = MagicMock()
        mock_settings.telegram.bot_token.get_secret_value.return_value = "bot_token"
        mock_settings.telegram.chat_id = "chat_123"

        channels = Pipeline(mock_settings)._build_alert_channels()

        assert len(channels) == 1
        assert channels[0].name == "telegram"


class TestStrategyType:
    """Tests for strategy deployment naming."""

    def test_keeps_id_with_marker(self):
        assert strategy_type(PioneerCategory.TREASURY_MANAGEMENT, "treasury_rebalancing") == (
            "treasury_rebalancing"
        )

    def test_prefixes_first_marker(self):
        assert strategy_type(PioneerCategory.RWA_INNOVATION, "rwa_integration") == (
            "RWA_rwa_integration"
        )
        assert strategy_type(PioneerCategory.YIELD_OPPORTUNIST, "recursive_lending") == (
            "yield_recursive_lending"
        )


class TestProcessTransaction:
    """Tests for single transaction processing."""

    @pytest.mark.asyncio
    async def test_requires_started_pipeline(self, mock_settings, make_tx, wallet_address):
        pipeline = Pipeline(mock_settings)
        with pytest.raises(RuntimeError, match="not started"):
            await pipeline.process_transaction(wallet_address, make_tx())

    @pytest.mark.asyncio
    async def test_increments_stats(self, wired_pipeline, make_tx, wallet_address):
        await wired_pipeline.process_transaction(wallet_address, make_tx())

        assert wired_pipeline.stats.transactions_processed == 1
        assert wired_pipeline.stats.last_transaction_time is not None

    @pytest.mark.asyncio
    async def test_duplicate_is_skipped(self, wired_pipeline, make_tx, wallet_address):
        tx = make_tx("deposit(uint256)")

        await wired_pipeline.process_transaction(wallet_address, tx)
        result = await wired_pipeline.process_transaction(wallet_address, tx)

        assert result.skipped
        assert wired_pipeline.stats.duplicates_skipped == 1

    @pytest.mark.asyncio
    async def test_signal_for_untracked_wallet_is_dropped(
        self, wired_pipeline, store, make_tx, wallet_address
    ):
        await store.upsert_wallet(WalletRecord(address=wallet_address))

        result = await wired_pipeline.process_transaction(
            wallet_address, make_tx("deposit(uint256)"), TransactionReceipt(status=1)
        )

        assert result.pioneer_match is not None
        assert result.signals == []
        assert await store.list_signals(wallet_address) == []
        assert wired_pipeline.stats.signals_generated == 0

    @pytest.mark.asyncio
    async def test_tracked_wallet_signal_is_persisted(
        self, wired_pipeline, store, make_tx, wallet_address
    ):
        await wired_pipeline.track_wallet(wallet_address)

        result = await wired_pipeline.process_transaction(
            wallet_address, make_tx("deposit(uint256)"), TransactionReceipt(status=1)
        )

        assert [s.type for s in result.signals] == ["early_protocol_interaction"]
        stored = await store.list_signals(wallet_address)
        assert stored[0]["id"] == result.signals[0].id
        assert wired_pipeline.stats.signals_generated == 1

    @pytest.mark.asyncio
    async def test_missing_receipt_skips_profiler_updates(
        self, wired_pipeline, store, make_tx, wallet_address, protocol_address
    ):
        await wired_pipeline.track_wallet(wallet_address)

        await wired_pipeline.process_transaction(wallet_address, make_tx("deposit(uint256)"))

        assert await store.get_protocol(protocol_address) is None
        assert await store.get_pioneer(wallet_address) is None

    @pytest.mark.asyncio
    async def test_malformed_recipient_is_processed(
        self, wired_pipeline, store, make_tx, wallet_address
    ):
        await wired_pipeline.track_wallet(wallet_address)
        tx = make_tx("deposit(uint256)", to="0xdeadbeef")

        result = await wired_pipeline.process_transaction(
            wallet_address, tx, TransactionReceipt(status=1)
        )

        assert not result.skipped
        assert result.classification.transaction_type == "contract_interaction"
        assert result.classification.protocol is None
        assert result.pioneer_match is None
        assert await store.get_pioneer(wallet_address) is None
        assert wired_pipeline.stats.errors == 0

    @pytest.mark.asyncio
    async def test_repeat_interaction_is_not_a_new_protocol(
        self, wired_pipeline, store, make_tx, wallet_address, protocol_address
    ):
        await wired_pipeline.track_wallet(wallet_address)
        start = datetime.now(UTC) - timedelta(minutes=10)

        results = [
            await wired_pipeline.process_transaction(
                wallet_address,
                make_tx("deposit(uint256)", timestamp=start + timedelta(minutes=i)),
                TransactionReceipt(status=1),
            )
            for i in range(5)
        ]

        scout = [r for r in results if r.pioneer_match is not None]
        assert [r.pioneer_match.pattern_id for r in scout] == ["early_protocol_interaction"]
        pioneer = await store.get_pioneer(wallet_address)
        assert len(pioneer.discovered_protocols) == 1
        record = await store.get_protocol(protocol_address)
        assert record.pioneer(wallet_address).interaction_count == 5

    @pytest.mark.asyncio
    async def test_second_wallet_is_still_an_early_adopter(
        self, wired_pipeline, make_tx, wallet_address, other_wallet_address
    ):
        await wired_pipeline.track_wallet(wallet_address)
        await wired_pipeline.track_wallet(other_wallet_address)

        await wired_pipeline.process_transaction(
            wallet_address, make_tx("deposit(uint256)"), TransactionReceipt(status=1)
        )
        result = await wired_pipeline.process_transaction(
            other_wallet_address,
            make_tx("deposit(uint256)", sender=other_wallet_address),
            TransactionReceipt(status=1),
        )

        assert result.pioneer_match.pattern_id == "early_protocol_interaction"

    @pytest.mark.asyncio
    async def test_mixed_case_wallet_yields_lowercase_signal(
        self, wired_pipeline, store, make_tx, wallet_address
    ):
        mixed = wallet_address.upper().replace("0X", "0x")
        await wired_pipeline.track_wallet(mixed)

        result = await wired_pipeline.process_transaction(
            mixed, make_tx("deposit(uint256)", sender=mixed), TransactionReceipt(status=1)
        )

        assert {s.wallet_address for s in result.signals} == {wallet_address}
        assert result.classification.from_address == wallet_address
        stored = await store.list_signals(wallet_address)
        assert stored[0]["wallet_address"] == wallet_address


class TestWalletTracking:
    """Tests for tracking and untracking wallets."""

    @pytest.mark.asyncio
    async def test_track_registers_unknown_wallet(self, wired_pipeline, store, wallet_address):
        await wired_pipeline.track_wallet(wallet_address.upper().replace("0X", "0x"), label="fund")

        assert wallet_address in wired_pipeline.tracked_wallets
        assert (await store.get_wallet(wallet_address)).label == "fund"

    @pytest.mark.asyncio
    async def test_untrack(self, wired_pipeline, wallet_address):
        await wired_pipeline.track_wallet(wallet_address)

        assert await wired_pipeline.untrack_wallet(wallet_address) is True
        assert await wired_pipeline.untrack_wallet(wallet_address) is False
        assert wallet_address not in wired_pipeline.tracked_wallets

    @pytest.mark.asyncio
    async def test_submit_ignores_untracked(self, wired_pipeline, make_tx, wallet_address):
        await wired_pipeline.submit(wallet_address, make_tx())
        await wired_pipeline.drain()

        assert wired_pipeline.stats.transactions_processed == 0

    @pytest.mark.asyncio
    async def test_submit_processes_in_worker(self, wired_pipeline, make_tx, wallet_address):
        await wired_pipeline.track_wallet(wallet_address)

        await wired_pipeline.submit(wallet_address, make_tx())
        await wired_pipeline.submit(wallet_address, make_tx())
        await wired_pipeline.drain()

        assert wired_pipeline.stats.transactions_processed == 2


class TestDispatch:
    """Tests for alert dispatch."""

    @pytest.mark.asyncio
    async def test_dry_run_skips_dispatch(self, mock_settings):
        """Dry run should skip actual alert dispatch."""
        pipeline = Pipeline(mock_settings, dry_run=True)
        pipeline._alert_dispatcher = MagicMock()
        pipeline._alert_dispatcher.dispatch = AsyncMock()

        await pipeline._dispatch([create_event()])

        pipeline._alert_dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_dispatch_counts_alert(self, mock_settings):
        pipeline = Pipeline(mock_settings, dry_run=False)
        pipeline._alert_dispatcher = MagicMock()
        pipeline._alert_dispatcher.dispatch = AsyncMock(
            return_value=DispatchResult(success_count=1)
        )

        await pipeline._dispatch([create_event(), create_event()])

        assert pipeline.stats.alerts_sent == 2

    @pytest.mark.asyncio
    async def test_failed_dispatch_not_counted(self, mock_settings):
        pipeline = Pipeline(mock_settings, dry_run=False)
        pipeline._alert_dispatcher = MagicMock()
        pipeline._alert_dispatcher.dispatch = AsyncMock(
            return_value=DispatchResult(failure_count=1, failed_channels=["telegram"])
        )

        await pipeline._dispatch([create_event()])

        assert pipeline.stats.alerts_sent == 0


class TestPipelineLifecycle:
    """Tests for pipeline lifecycle methods."""

    @pytest.mark.asyncio
    async def test_cannot_start_when_not_stopped(self, mock_settings):
        """Should raise error when starting non-stopped pipeline."""
        pipeline = Pipeline(mock_settings)
        pipeline._state = PipelineState.RUNNING

        with pytest.raises(RuntimeError, match="Cannot start pipeline"):
            await pipeline.start()

    @pytest.mark.asyncio
    async def test_stop_when_already_stopped(self, mock_settings):
        """Stop should be no-op when already stopped."""
        pipeline = Pipeline(mock_settings)
        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_start_failure_sets_error_state(self, mock_settings):
        with patch("pioneer_tracker.pipeline.DatabaseManager") as manager_cls:
            manager_cls.return_value.init_schema_async = AsyncMock(
                side_effect=ConnectionError("db down")
            )
            manager_cls.return_value.dispose_async = AsyncMock()
            pipeline = Pipeline(mock_settings, watch_chain=False)

            with pytest.raises(ConnectionError):
                await pipeline.start()

        assert pipeline.state == PipelineState.ERROR
        assert pipeline.stats.last_error == "db down"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_settings, tmp_path):
        mock_settings.database.url = f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}"

        async with Pipeline(mock_settings, watch_chain=False) as pipeline:
            assert pipeline.is_running
            assert pipeline.stats.started_at is not None

        assert pipeline.state == PipelineState.STOPPED
        assert pipeline.store is None
