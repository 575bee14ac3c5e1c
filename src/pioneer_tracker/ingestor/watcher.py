"""Block-by-block chain watcher.

Polls the latest block, walks every block since the last one seen and
forwards transactions sent by tracked wallets, together with their receipts,
to a callback. RPC calls retry with exponential backoff and fail over to a
secondary endpoint.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

from pioneer_tracker.errors import TransientIOError
from pioneer_tracker.ingestor.models import RawTransaction, TransactionReceipt, normalize_address

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 4.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_MAX_BLOCKS_PER_POLL = 20
PRIMARY_RECOVERY_INTERVAL_SECONDS = 60.0

TransactionHandler = Callable[[str, RawTransaction, TransactionReceipt | None], Awaitable[None]]


class RPCError(TransientIOError):
    """Raised when an RPC call fails on every endpoint."""


class ChainWatcher:
    """Follows the chain head and forwards transactions of tracked wallets.

    Example:
        ```python
        watcher = ChainWatcher(
            "https://ethereum-rpc.publicnode.com",
            on_transaction=pipeline.submit,
        )
        watcher.add_wallet("0x...")
        await watcher.run(stop_event)
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        on_transaction: TransactionHandler,
        fallback_rpc_url: str | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        max_blocks_per_poll: int = DEFAULT_MAX_BLOCKS_PER_POLL,
        start_block: int | None = None,
    ) -> None:
        self._on_transaction = on_transaction
        self._poll_interval = poll_interval_seconds
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay_seconds
        self._max_blocks_per_poll = max_blocks_per_poll
        self._last_block = start_block - 1 if start_block is not None else None

        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._w3_fallback: AsyncWeb3 | None = None
        if fallback_rpc_url:
            self._w3_fallback = AsyncWeb3(AsyncHTTPProvider(fallback_rpc_url))

        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._tracked: set[str] = set()

    # Tracked wallets

    def add_wallet(self, address: str) -> None:
        self._tracked.add(normalize_address(address))

    def remove_wallet(self, address: str) -> None:
        self._tracked.discard(normalize_address(address))

    @property
    def tracked_wallets(self) -> frozenset[str]:
        return frozenset(self._tracked)

    @property
    def last_block(self) -> int | None:
        return self._last_block

    # RPC

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > PRIMARY_RECOVERY_INTERVAL_SECONDS:
            self._last_primary_check = now
            return True
        return False

    async def _call(self, client: AsyncWeb3, label: str, func_name: str, *args: Any) -> Any:
        delay = self._retry_delay
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                attr = getattr(client.eth, func_name)
                # block_number is an awaitable property, the rest are methods
                return await (attr(*args) if args else attr)
            except Web3Exception as e:
                last_error = e
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    label,
                    func_name,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
        raise RPCError(f"{label} RPC {func_name} failed: {last_error}")

    async def _execute_with_retry(self, func_name: str, *args: Any) -> Any:
        """Run an eth call on the primary endpoint, then on the fallback."""
        last_error: RPCError | None = None
        if self._should_try_primary():
            try:
                result = await self._call(self._w3, "Primary", func_name, *args)
                self._primary_healthy = True
                return result
            except RPCError as e:
                last_error = e
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()

        if self._w3_fallback is not None:
            result = await self._call(self._w3_fallback, "Fallback", func_name, *args)
            logger.info("Fallback RPC succeeded for %s", func_name)
            return result

        raise last_error or RPCError(f"RPC call {func_name} failed: primary unavailable")

    async def _get_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        try:
            receipt = await self._execute_with_retry("get_transaction_receipt", tx_hash)
        except RPCError as e:
            logger.warning("Receipt unavailable for %s: %s", tx_hash[:12] + "...", e)
            return None
        return TransactionReceipt.from_dict(dict(receipt)) if receipt else None

    # Polling

    async def process_block(self, number: int) -> int:
        """Forward tracked transactions of one block. Returns how many were forwarded."""
        block = await self._execute_with_retry("get_block", number, True)
        timestamp = block.get("timestamp")
        forwarded = 0
        for entry in block.get("transactions") or ():
            if not hasattr(entry, "get"):
                continue
            sender = entry.get("from")
            if not sender or str(sender).lower() not in self._tracked:
                continue
            tx = RawTransaction.from_dict(dict(entry), timestamp=timestamp)
            receipt = await self._get_receipt(tx.hash)
            await self._on_transaction(tx.from_address, tx, receipt)
            forwarded += 1
        return forwarded

    async def poll_once(self) -> int:
        """Catch up to the chain head, at most max_blocks_per_poll blocks."""
        latest = int(await self._execute_with_retry("block_number"))
        if self._last_block is None:
            self._last_block = latest - 1
        if latest <= self._last_block:
            return 0

        end = min(latest, self._last_block + self._max_blocks_per_poll)
        forwarded = 0
        for number in range(self._last_block + 1, end + 1):
            forwarded += await self.process_block(number)
            self._last_block = number
        if end < latest:
            logger.info("Watcher behind head by %d blocks", latest - end)
        return forwarded

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until stop_event is set. RPC failures are logged and retried next tick."""
        logger.info("Chain watcher started (%d wallets)", len(self._tracked))
        while not stop_event.is_set():
            if self._tracked:
                try:
                    await self.poll_once()
                except RPCError as e:
                    logger.error("Chain poll failed: %s", e)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass
        logger.info("Chain watcher stopped at block %s", self._last_block)

    async def health_check(self) -> bool:
        try:
            await self._execute_with_retry("block_number")
            return True
        except RPCError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)
        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
