"""Persistence façade used by the profiler, emitter and pipeline.

Every operation runs in its own session transaction, bounded by a timeout
and retried with exponential backoff on transient database errors. When the
retries are exhausted the operation raises TransientIOError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError

from pioneer_tracker.errors import TransientIOError, ValidationError
from pioneer_tracker.storage.repos import (
    PROTOCOL_SORT_COLUMNS,
    PioneerRepository,
    SharedProtocolRepository,
    SignalRepository,
    WalletRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from pioneer_tracker.detector.models import PioneerCategory, Signal
    from pioneer_tracker.profiler.models import (
        PioneerRecord,
        SharedProtocolRecord,
        WalletRecord,
    )
    from pioneer_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.25

_TRANSIENT_ERRORS = (OperationalError, InterfaceError, TimeoutError, ConnectionError)


@dataclass(frozen=True)
class SharedProtocolPage:
    """One page of protocols shared by a pioneer."""

    protocols: list[SharedProtocolRecord]
    total: int
    has_more: bool


class RecordStore:
    """Timeout- and retry-bounded access to the repositories."""

    def __init__(
        self,
        db: DatabaseManager,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        self._db = db
        self._timeout = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay_seconds

    async def _run(self, name: str, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def attempt() -> T:
            async with self._db.get_async_session() as session:
                return await op(session)

        last_error: BaseException | None = None
        delay = self._retry_delay
        for n in range(self._max_retries):
            try:
                return await asyncio.wait_for(attempt(), timeout=self._timeout)
            except _TRANSIENT_ERRORS as e:
                last_error = e
                logger.warning(
                    "Store %s failed (attempt %d/%d): %s",
                    name,
                    n + 1,
                    self._max_retries,
                    e,
                )
                if n < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2

        logger.error("Store %s failed after %d attempts", name, self._max_retries)
        raise TransientIOError(f"Store operation {name} failed: {last_error}") from last_error

    # Wallets

    async def get_wallet(self, address: str) -> WalletRecord | None:
        return await self._run("get_wallet", lambda s: WalletRepository(s).get(address))

    async def upsert_wallet(self, record: WalletRecord) -> WalletRecord:
        return await self._run("upsert_wallet", lambda s: WalletRepository(s).upsert(record))

    async def list_wallet_addresses(self) -> list[str]:
        return await self._run("list_wallets", lambda s: WalletRepository(s).list_addresses())

    # Pioneers

    async def get_pioneer(self, address: str) -> PioneerRecord | None:
        return await self._run("get_pioneer", lambda s: PioneerRepository(s).get(address))

    async def save_pioneer(self, record: PioneerRecord) -> PioneerRecord:
        return await self._run("save_pioneer", lambda s: PioneerRepository(s).upsert(record))

    async def list_pioneers(
        self,
        *,
        categories: set[PioneerCategory] | None = None,
        min_success_rate: float | None = None,
        chains: set[str] | None = None,
    ) -> list[PioneerRecord]:
        return await self._run(
            "list_pioneers",
            lambda s: PioneerRepository(s).list_matching(
                categories=categories, min_success_rate=min_success_rate, chains=chains
            ),
        )

    # Shared protocols

    async def get_protocol(self, address: str) -> SharedProtocolRecord | None:
        return await self._run("get_protocol", lambda s: SharedProtocolRepository(s).get(address))

    async def save_protocol(self, record: SharedProtocolRecord) -> SharedProtocolRecord:
        return await self._run(
            "save_protocol", lambda s: SharedProtocolRepository(s).upsert(record)
        )

    async def list_protocols_for_pioneer(
        self,
        pioneer_address: str,
        *,
        limit: int = 10,
        offset: int = 0,
        sort_by: str = "last_activity",
        descending: bool = True,
    ) -> SharedProtocolPage:
        """Page through protocols a pioneer interacted with.

        Raises:
            ValidationError: If sort_by is unknown, limit is not positive or
                offset is negative.
        """
        if sort_by not in PROTOCOL_SORT_COLUMNS:
            raise ValidationError(
                f"sort_by must be one of {sorted(PROTOCOL_SORT_COLUMNS)}, got {sort_by!r}"
            )
        if limit <= 0:
            raise ValidationError("limit must be positive")
        if offset < 0:
            raise ValidationError("offset must be non-negative")

        protocols, total = await self._run(
            "list_protocols_for_pioneer",
            lambda s: SharedProtocolRepository(s).list_for_pioneer(
                pioneer_address,
                limit=limit,
                offset=offset,
                sort_by=sort_by,
                descending=descending,
            ),
        )
        return SharedProtocolPage(
            protocols=protocols, total=total, has_more=offset + len(protocols) < total
        )

    async def list_active_protocols(
        self, *, since: datetime, limit: int
    ) -> list[SharedProtocolRecord]:
        return await self._run(
            "list_active_protocols",
            lambda s: SharedProtocolRepository(s).list_active(since=since, limit=limit),
        )

    # Signals

    async def save_signal(self, signal: Signal) -> Signal:
        return await self._run("save_signal", lambda s: SignalRepository(s).insert(signal))

    async def list_signals(self, wallet_address: str, *, limit: int = 50) -> list[dict[str, Any]]:
        if limit <= 0:
            raise ValidationError("limit must be positive")
        return await self._run(
            "list_signals",
            lambda s: SignalRepository(s).list_for_wallet(wallet_address, limit=limit),
        )
