"""Per-key async locking.

Used to serialize work on a single wallet or protocol address while leaving
unrelated keys free to proceed in parallel.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from pioneer_tracker.errors import ConcurrencyConflictError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class KeyedLock:
    """Registry of asyncio locks keyed by string.

    Entries are reference counted and removed once no task holds or waits
    on them, so the registry stays bounded by the number of active keys.

    Example:
        ```python
        locks = KeyedLock(name="wallet", timeout_seconds=5.0)
        async with locks.hold(address):
            ...
        ```
    """

    def __init__(self, *, name: str = "key", timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self._name = name
        self._timeout = timeout_seconds
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def locked(self, key: str) -> bool:
        """Return True if some task currently holds the lock for key."""
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Acquire the lock for key, raising ConcurrencyConflictError on timeout."""
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry()
            self._entries[key] = entry
        entry.refs += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self._timeout)
            except TimeoutError as e:
                logger.warning(
                    "Timed out acquiring %s lock for %s after %.1fs",
                    self._name,
                    key[:10] + "...",
                    self._timeout,
                )
                raise ConcurrencyConflictError(f"{self._name} lock busy: {key}") from e
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]
