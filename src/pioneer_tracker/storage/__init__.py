"""Storage layer - Database schemas, repositories and the record store."""

from pioneer_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    init_async_db,
)
from pioneer_tracker.storage.models import (
    Base,
    PioneerModel,
    ProtocolPioneerModel,
    SharedProtocolModel,
    SignalModel,
    WalletModel,
)
from pioneer_tracker.storage.repos import (
    PioneerRepository,
    SharedProtocolRepository,
    SignalRepository,
    WalletRepository,
)
from pioneer_tracker.storage.store import RecordStore, SharedProtocolPage

__all__ = [
    "Base",
    "DatabaseManager",
    "PioneerModel",
    "PioneerRepository",
    "ProtocolPioneerModel",
    "RecordStore",
    "SharedProtocolModel",
    "SharedProtocolPage",
    "SharedProtocolRepository",
    "SignalModel",
    "SignalRepository",
    "WalletModel",
    "WalletRepository",
    "create_async_db_engine",
    "init_async_db",
]
