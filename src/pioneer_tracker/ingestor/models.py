"""Data models for the ingestor module."""

from __future__ import annotations

import contextlib
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pioneer_tracker.errors import ValidationError

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")

WEI_PER_ETHER = 10**18


def is_valid_address(value: object) -> bool:
    """Return True if value is a 20-byte hex address in any letter case."""
    return isinstance(value, str) and _ADDRESS_RE.match(value.strip().lower()) is not None


def normalize_address(value: object) -> str:
    """Return the canonical lowercase form of an address.

    Raises:
        ValidationError: If value is not a 0x-prefixed 40 hex char string.
    """
    if not is_valid_address(value):
        raise ValidationError(f"Malformed address: {value!r}")
    return str(value).strip().lower()


def _optional_address(value: object) -> str | None:
    if is_valid_address(value):
        return str(value).strip().lower()
    return None


def _to_hex(value: object) -> str:
    """Coerce web3 bytes-like values and plain strings to 0x hex."""
    if value is None:
        return "0x"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    hex_method = getattr(value, "hex", None)
    if not isinstance(value, str) and callable(hex_method):
        text = str(hex_method())
    else:
        text = str(value)
    text = text.strip().lower()
    if not text.startswith("0x"):
        text = "0x" + text
    return text


def _to_int(value: object, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    with contextlib.suppress(TypeError, ValueError):
        text = str(value).strip()
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    return default


def _to_datetime(value: object) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str) and value:
        if value.isdigit() or value.lower().startswith("0x"):
            return datetime.fromtimestamp(_to_int(value), tz=UTC)
        with contextlib.suppress(ValueError):
            return _to_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
    return datetime.now(UTC)


@dataclass(frozen=True)
class RawTransaction:
    """A transaction as delivered by the chain watcher.

    Attributes:
        hash: Transaction hash (0x hex, lowercase).
        from_address: Sender address, stored lowercase.
        to_address: Recipient address (lowercase), None for contract creation.
        input_data: Call data as 0x hex.
        value_wei: Native value transferred.
        timestamp: Block timestamp.
        block_number: Block the transaction was mined in, if known.
    """

    hash: str
    from_address: str
    to_address: str | None
    input_data: str = "0x"
    value_wei: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    block_number: int | None = None

    def __post_init__(self) -> None:
        # Addresses are compared as lowercase everywhere downstream.
        object.__setattr__(self, "from_address", self.from_address.strip().lower())
        if self.to_address is not None:
            object.__setattr__(self, "to_address", self.to_address.strip().lower())

    @property
    def payload_bytes(self) -> int:
        """Number of bytes of call data."""
        return max(0, (len(self.input_data) - 2) // 2)

    @property
    def method_signature(self) -> str | None:
        """Return the 4-byte selector as 0x + 8 hex chars, if present."""
        if self.payload_bytes < 4:
            return None
        return self.input_data[:10]

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, timestamp: object = None) -> RawTransaction:
        """Create a RawTransaction from a JSON-RPC or web3 transaction mapping.

        Missing optional fields degrade to neutral defaults rather than raising.
        """
        raw_to = data.get("to")
        return cls(
            hash=_to_hex(data.get("hash")),
            from_address=_optional_address(data.get("from")) or "",
            to_address=_optional_address(raw_to) if raw_to else None,
            input_data=_to_hex(data.get("input", data.get("data"))),
            value_wei=_to_int(data.get("value")),
            timestamp=_to_datetime(timestamp if timestamp is not None else data.get("timestamp")),
            block_number=_to_int(data.get("blockNumber"), default=-1)
            if data.get("blockNumber") is not None
            else None,
        )


@dataclass(frozen=True)
class ReceiptLog:
    """A single event log emitted during transaction execution."""

    address: str
    topics: tuple[str, ...] = ()
    data: str = "0x"

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", self.address.strip().lower())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReceiptLog:
        """Create a ReceiptLog from a JSON-RPC log mapping."""
        return cls(
            address=_optional_address(data.get("address")) or "",
            topics=tuple(_to_hex(t) for t in (data.get("topics") or ())),
            data=_to_hex(data.get("data")),
        )

    @property
    def topic0(self) -> str | None:
        """Return the event signature topic, if any."""
        return self.topics[0] if self.topics else None


@dataclass(frozen=True)
class TransactionReceipt:
    """Execution receipt for a transaction."""

    status: int | None = None
    gas_used: int | None = None
    logs: tuple[ReceiptLog, ...] = ()

    @property
    def succeeded(self) -> bool | None:
        """Return execution success, or None when the status is unknown."""
        if self.status is None:
            return None
        return self.status == 1

    @property
    def log_addresses(self) -> tuple[str, ...]:
        """Distinct emitter addresses in log order."""
        seen: dict[str, None] = {}
        for log in self.logs:
            if log.address:
                seen.setdefault(log.address, None)
        return tuple(seen)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionReceipt:
        """Create a TransactionReceipt from a JSON-RPC or web3 receipt mapping."""
        status = data.get("status")
        gas_used = data.get("gasUsed")
        logs: list[ReceiptLog] = []
        for entry in data.get("logs") or ():
            with contextlib.suppress(AttributeError, TypeError):
                logs.append(ReceiptLog.from_dict(dict(entry)))
        return cls(
            status=_to_int(status) if status is not None else None,
            gas_used=_to_int(gas_used) if gas_used is not None else None,
            logs=tuple(logs),
        )
