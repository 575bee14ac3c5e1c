"""Repository pattern implementations for data access.

Repositories convert between SQLAlchemy rows and the frozen domain records
of the profiler and detector modules. Upserts use ON CONFLICT for the
dialect the session is bound to (PostgreSQL or SQLite).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from pioneer_tracker.detector.models import PioneerCategory, Signal
from pioneer_tracker.profiler.models import (
    ChainActivity,
    PioneerMetrics,
    PioneerRecord,
    ProtocolDiscovery,
    ProtocolPioneer,
    SharedProtocolRecord,
    StrategyDeployment,
    TvlPoint,
    WalletRecord,
)
from pioneer_tracker.storage.models import (
    PioneerModel,
    ProtocolPioneerModel,
    SharedProtocolModel,
    SignalModel,
    WalletModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PROTOCOL_SORT_COLUMNS = {
    "last_activity": SharedProtocolModel.last_activity,
    "discovery_timestamp": SharedProtocolModel.discovery_timestamp,
    "total_pioneers": SharedProtocolModel.total_pioneers,
    "avg_success_rate": SharedProtocolModel.avg_success_rate,
    "risk_score": SharedProtocolModel.risk_score,
}


def _utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _insert(session: AsyncSession, model: type) -> Any:
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _upsert(
    session: AsyncSession,
    model: type,
    values: dict[str, Any],
    *,
    index_elements: list[str],
    created_at: datetime | None = None,
) -> Any:
    insert_values = dict(values)
    if created_at is not None:
        insert_values["created_at"] = created_at
    stmt = _insert(session, model).values(**insert_values)
    return stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={k: getattr(stmt.excluded, k) for k in values if k not in index_elements},
    )


def _join(values: Iterable[str]) -> str:
    # Delimited on both ends so a LIKE on ",value," matches whole entries only.
    items = sorted(values)
    return "," + ",".join(items) + "," if items else ""


def _any_like(column: Any, values: Iterable[str]) -> Any:
    return or_(*[column.like(f"%,{v},%") for v in values])


class WalletRepository:
    """Repository for monitored wallets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _to_record(model: WalletModel) -> WalletRecord:
        return WalletRecord(
            address=model.address,
            label=model.label,
            success_rate=model.success_rate,
            total_transactions=model.total_transactions,
            first_seen=_utc(model.first_seen),
            last_active=_utc(model.last_active),
        )

    async def get(self, address: str) -> WalletRecord | None:
        result = await self.session.execute(
            select(WalletModel).where(WalletModel.address == address.lower())
        )
        model = result.scalar_one_or_none()
        return self._to_record(model) if model else None

    async def upsert(self, record: WalletRecord) -> WalletRecord:
        """Upsert wallet by address."""
        values = {
            "address": record.address.lower(),
            "label": record.label,
            "success_rate": record.success_rate,
            "total_transactions": record.total_transactions,
            "first_seen": record.first_seen,
            "last_active": record.last_active,
        }
        stmt = _upsert(
            self.session, WalletModel, values,
            index_elements=["address"], created_at=datetime.now(UTC),
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return record

    async def list_addresses(self) -> list[str]:
        result = await self.session.execute(select(WalletModel.address).order_by(WalletModel.id))
        return list(result.scalars().all())


class PioneerRepository:
    """Repository for pioneer records.

    The full history lives in payload_json; metrics, categories and chains
    are copied into columns so filters run in SQL.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _to_record(model: PioneerModel) -> PioneerRecord:
        payload = json.loads(model.payload_json)
        return PioneerRecord(
            wallet_address=model.wallet_address,
            categories=frozenset(PioneerCategory(c) for c in payload.get("categories", [])),
            metrics=PioneerMetrics.from_dict(payload.get("metrics", {})),
            discovered_protocols=tuple(
                ProtocolDiscovery.from_dict(d) for d in payload.get("discovered_protocols", [])
            ),
            strategy_deployments=tuple(
                StrategyDeployment.from_dict(d) for d in payload.get("strategy_deployments", [])
            ),
            chain_activity=tuple(
                ChainActivity.from_dict(a) for a in payload.get("chain_activity", [])
            ),
            updated_at=_utc(model.updated_at),
        )

    async def get(self, wallet_address: str) -> PioneerRecord | None:
        result = await self.session.execute(
            select(PioneerModel).where(PioneerModel.wallet_address == wallet_address.lower())
        )
        model = result.scalar_one_or_none()
        return self._to_record(model) if model else None

    async def upsert(self, record: PioneerRecord) -> PioneerRecord:
        """Replace the stored record for the wallet in a single statement."""
        metrics = record.metrics
        values = {
            "wallet_address": record.wallet_address.lower(),
            "categories": _join(c.value for c in record.categories),
            "chains": _join(a.chain for a in record.chain_activity),
            "success_rate": metrics.success_rate,
            "early_adoption_success": metrics.early_adoption_success,
            "yield_optimization_roi": metrics.yield_optimization_roi,
            "cross_chain_efficiency": metrics.cross_chain_efficiency,
            "rwa_innovation_score": metrics.rwa_innovation_score,
            "treasury_management_score": metrics.treasury_management_score,
            "payload_json": json.dumps(record.to_dict()),
            "updated_at": record.updated_at,
        }
        stmt = _upsert(
            self.session, PioneerModel, values,
            index_elements=["wallet_address"], created_at=datetime.now(UTC),
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return record

    async def list_matching(
        self,
        *,
        categories: set[PioneerCategory] | None = None,
        min_success_rate: float | None = None,
        chains: set[str] | None = None,
    ) -> list[PioneerRecord]:
        """Pioneers holding any of the categories and active on any of the chains."""
        query = select(PioneerModel)
        if min_success_rate is not None:
            query = query.where(PioneerModel.success_rate >= min_success_rate)
        if categories:
            query = query.where(_any_like(PioneerModel.categories, (c.value for c in categories)))
        if chains:
            query = query.where(_any_like(PioneerModel.chains, chains))
        query = query.order_by(PioneerModel.success_rate.desc(), PioneerModel.wallet_address)
        result = await self.session.execute(query)
        return [self._to_record(m) for m in result.scalars().all()]


class SharedProtocolRepository:
    """Repository for shared-protocol aggregates and their pioneer rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _pioneers_for(self, protocol_address: str) -> tuple[ProtocolPioneer, ...]:
        result = await self.session.execute(
            select(ProtocolPioneerModel)
            .where(ProtocolPioneerModel.protocol_address == protocol_address)
            .order_by(ProtocolPioneerModel.position)
        )
        return tuple(
            ProtocolPioneer(
                address=row.pioneer_address,
                first_interaction=_utc(row.first_interaction),
                last_interaction=_utc(row.last_interaction),
                interaction_count=row.interaction_count,
                success_rate=row.success_rate,
            )
            for row in result.scalars().all()
        )

    async def _to_record(self, model: SharedProtocolModel) -> SharedProtocolRecord:
        return SharedProtocolRecord(
            protocol_address=model.protocol_address,
            protocol_name=model.protocol_name,
            discovery_timestamp=_utc(model.discovery_timestamp),
            last_activity=_utc(model.last_activity),
            pioneers=await self._pioneers_for(model.protocol_address),
            total_pioneers=model.total_pioneers,
            avg_success_rate=model.avg_success_rate,
            risk_score=model.risk_score,
            tvl_trend=tuple(TvlPoint.from_dict(p) for p in json.loads(model.tvl_trend_json)),
            related_tokens=tuple(json.loads(model.related_tokens_json)),
        )

    async def get(self, protocol_address: str) -> SharedProtocolRecord | None:
        result = await self.session.execute(
            select(SharedProtocolModel).where(
                SharedProtocolModel.protocol_address == protocol_address.lower()
            )
        )
        model = result.scalar_one_or_none()
        return await self._to_record(model) if model else None

    async def upsert(self, record: SharedProtocolRecord) -> SharedProtocolRecord:
        """Replace the aggregate and its pioneer rows within the session transaction."""
        address = record.protocol_address.lower()
        values = {
            "protocol_address": address,
            "protocol_name": record.protocol_name,
            "total_pioneers": record.total_pioneers,
            "avg_success_rate": record.avg_success_rate,
            "risk_score": record.risk_score,
            "discovery_timestamp": record.discovery_timestamp,
            "last_activity": record.last_activity,
            "tvl_trend_json": json.dumps([p.to_dict() for p in record.tvl_trend]),
            "related_tokens_json": json.dumps(list(record.related_tokens)),
        }
        stmt = _upsert(
            self.session, SharedProtocolModel, values,
            index_elements=["protocol_address"], created_at=datetime.now(UTC),
        )
        await self.session.execute(stmt)
        await self.session.execute(
            delete(ProtocolPioneerModel).where(ProtocolPioneerModel.protocol_address == address)
        )
        self.session.add_all(
            ProtocolPioneerModel(
                protocol_address=address,
                pioneer_address=p.address,
                first_interaction=p.first_interaction,
                last_interaction=p.last_interaction,
                interaction_count=p.interaction_count,
                success_rate=p.success_rate,
                position=i,
            )
            for i, p in enumerate(record.pioneers)
        )
        await self.session.flush()
        return record

    async def list_for_pioneer(
        self,
        pioneer_address: str,
        *,
        limit: int,
        offset: int,
        sort_by: str,
        descending: bool,
    ) -> tuple[list[SharedProtocolRecord], int]:
        """Return one page of protocols a pioneer touched and the total count."""
        column = PROTOCOL_SORT_COLUMNS[sort_by]
        protocols = select(ProtocolPioneerModel.protocol_address).where(
            ProtocolPioneerModel.pioneer_address == pioneer_address.lower()
        )
        total = await self.session.scalar(
            select(func.count()).select_from(SharedProtocolModel).where(
                SharedProtocolModel.protocol_address.in_(protocols)
            )
        )
        result = await self.session.execute(
            select(SharedProtocolModel)
            .where(SharedProtocolModel.protocol_address.in_(protocols))
            .order_by(
                column.desc() if descending else column.asc(),
                SharedProtocolModel.protocol_address,
            )
            .limit(limit)
            .offset(offset)
        )
        return [await self._to_record(m) for m in result.scalars().all()], int(total or 0)

    async def list_active(self, *, since: datetime, limit: int) -> list[SharedProtocolRecord]:
        result = await self.session.execute(
            select(SharedProtocolModel)
            .where(SharedProtocolModel.last_activity >= since)
            .order_by(
                SharedProtocolModel.total_pioneers.desc(),
                SharedProtocolModel.avg_success_rate.desc(),
            )
            .limit(limit)
        )
        return [await self._to_record(m) for m in result.scalars().all()]


class SignalRepository:
    """Repository for emitted signals."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, signal: Signal) -> Signal:
        """Insert a signal; re-inserting the same id updates its status."""
        values = {
            "id": signal.id,
            "wallet_address": signal.wallet_address.lower(),
            "signal_type": signal.type,
            "category": signal.category.value if signal.category else None,
            "priority": signal.priority,
            "protocol": signal.protocol,
            "chain": signal.chain,
            "tx_hash": signal.transaction.hash,
            "confidence": signal.pattern_confidence,
            "status": signal.status.value,
            "payload_json": json.dumps(signal.to_dict()),
            "timestamp": signal.timestamp,
        }
        stmt = _upsert(
            self.session, SignalModel, values,
            index_elements=["id"], created_at=datetime.now(UTC),
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return signal

    async def list_for_wallet(self, wallet_address: str, *, limit: int) -> list[dict[str, Any]]:
        """Most recent signals for a wallet as stored payloads."""
        result = await self.session.execute(
            select(SignalModel.payload_json)
            .where(SignalModel.wallet_address == wallet_address.lower())
            .order_by(SignalModel.timestamp.desc())
            .limit(limit)
        )
        return [json.loads(p) for p in result.scalars().all()]
