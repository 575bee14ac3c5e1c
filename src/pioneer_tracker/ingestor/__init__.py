"""Data ingestion layer - Chain watching and protocol lookup."""

from pioneer_tracker.ingestor.models import (
    RawTransaction,
    ReceiptLog,
    TransactionReceipt,
    normalize_address,
)
from pioneer_tracker.ingestor.registry import ProtocolCategory, ProtocolDescriptor, ProtocolRegistry
from pioneer_tracker.ingestor.watcher import ChainWatcher, RPCError

__all__ = [
    "ChainWatcher",
    "ProtocolCategory",
    "ProtocolDescriptor",
    "ProtocolRegistry",
    "RPCError",
    "RawTransaction",
    "ReceiptLog",
    "TransactionReceipt",
    "normalize_address",
]
