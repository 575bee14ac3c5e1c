"""SQLAlchemy models for persistent storage.

This module defines the database schema for monitored wallets, pioneer
records, shared-protocol aggregates and emitted signals.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class WalletModel(Base):
    """A monitored wallet and its overall trading aggregates."""

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False)
    label: Mapped[str | None] = mapped_column(String(128), nullable=True)
    success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_wallets_success_rate", "success_rate"),)


class PioneerModel(Base):
    """Pioneer history and derived metrics for one wallet.

    Metric columns are denormalized from payload_json for filtering.
    """

    __tablename__ = "pioneers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False)
    categories: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    chains: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    early_adoption_success: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    yield_optimization_roi: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cross_chain_efficiency: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rwa_innovation_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    treasury_management_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_pioneers_success_rate", "success_rate"),)


class SharedProtocolModel(Base):
    """Aggregate pioneer activity on one protocol address."""

    __tablename__ = "shared_protocols"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    protocol_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False)
    protocol_name: Mapped[str] = mapped_column(String(128), nullable=False)
    total_pioneers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    risk_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discovery_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_activity: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    tvl_trend_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    related_tokens_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_shared_protocols_last_activity", "last_activity"),
        Index("idx_shared_protocols_discovery", "discovery_timestamp"),
        Index("idx_shared_protocols_risk", "risk_score"),
    )


class ProtocolPioneerModel(Base):
    """One pioneer's interaction summary within a shared protocol."""

    __tablename__ = "protocol_pioneers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    protocol_address: Mapped[str] = mapped_column(String(42), nullable=False)
    pioneer_address: Mapped[str] = mapped_column(String(42), nullable=False)
    first_interaction: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_interaction: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    interaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("protocol_address", "pioneer_address", name="uq_protocol_pioneers_pair"),
        Index("idx_protocol_pioneers_pioneer", "pioneer_address"),
    )


class SignalModel(Base):
    """A persisted signal."""

    __tablename__ = "signals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    signal_type: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    protocol: Mapped[str] = mapped_column(String(128), nullable=False)
    chain: Mapped[str] = mapped_column(String(16), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_signals_wallet_ts", "wallet_address", "timestamp"),
        Index("idx_signals_type_priority", "signal_type", "priority"),
        Index("idx_signals_protocol_chain", "protocol", "chain"),
    )
