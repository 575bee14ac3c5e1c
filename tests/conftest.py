"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pioneer_tracker.detector.catalog import selector
from pioneer_tracker.ingestor.models import RawTransaction
from pioneer_tracker.storage.database import DatabaseManager
from pioneer_tracker.storage.store import RecordStore


@pytest.fixture
def wallet_address() -> str:
    """Sample pioneer wallet address."""
    return "0x1234567890abcdef1234567890abcdef12345678"


@pytest.fixture
def other_wallet_address() -> str:
    """A second wallet address."""
    return "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"


@pytest.fixture
def protocol_address() -> str:
    """An address that is not in the default protocol registry."""
    return "0x9999999999999999999999999999999999999999"


@pytest.fixture
async def db_manager(tmp_path):
    """A file-backed SQLite database so concurrent sessions share state."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'pioneer.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def store(db_manager) -> RecordStore:
    """RecordStore with fast retries for tests."""
    return RecordStore(db_manager, timeout_seconds=5.0, max_retries=2, retry_delay_seconds=0.0)


def _call_data(signature: str | None, extra_words: int = 2) -> str:
    if signature is None:
        return "0x"
    return selector(signature) + "00" * 32 * extra_words


@pytest.fixture
def make_tx():
    """Factory for RawTransactions calling a given function signature."""
    counter = iter(range(1, 1_000_000))

    def factory(
        signature: str | None = None,
        *,
        sender: str = "0x1234567890abcdef1234567890abcdef12345678",
        to: str | None = "0x9999999999999999999999999999999999999999",
        timestamp: datetime | None = None,
        value_wei: int = 0,
        input_data: str | None = None,
        tx_hash: str | None = None,
    ) -> RawTransaction:
        return RawTransaction(
            hash=tx_hash or "0x" + f"{next(counter):064x}",
            from_address=sender,
            to_address=to,
            input_data=input_data if input_data is not None else _call_data(signature),
            value_wei=value_wei,
            timestamp=timestamp or datetime.now(UTC),
        )

    return factory
