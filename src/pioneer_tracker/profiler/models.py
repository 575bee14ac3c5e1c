"""Data models for the profiler module.

Records are frozen. Every update builds a new record, so a failed update
leaves the previous value untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pioneer_tracker.detector.models import PioneerCategory


def _parse_dt(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class WalletRecord:
    """A monitored wallet as known to the wallet registry.

    success_rate and total_transactions are the wallet's overall trading
    aggregates, maintained outside the pipeline.
    """

    address: str
    label: str | None = None
    success_rate: float = 0.0
    total_transactions: int = 0
    first_seen: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_active: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class PioneerMetrics:
    """Derived per-wallet scores."""

    early_adoption_success: float = 0.0
    yield_optimization_roi: float = 0.0
    cross_chain_efficiency: float = 0.0
    rwa_innovation_score: float = 0.0
    treasury_management_score: float = 0.0
    success_rate: float = 0.0
    total_transactions: int = 0

    def score_for(self, category: PioneerCategory) -> float:
        """Return the metric that governs membership in category."""
        match category:
            case PioneerCategory.PROTOCOL_SCOUT:
                return self.early_adoption_success
            case PioneerCategory.YIELD_OPPORTUNIST:
                return self.yield_optimization_roi
            case PioneerCategory.CROSS_CHAIN_ARBITRAGE:
                return self.cross_chain_efficiency
            case PioneerCategory.RWA_INNOVATION:
                return self.rwa_innovation_score
            case PioneerCategory.TREASURY_MANAGEMENT:
                return self.treasury_management_score

    def to_dict(self) -> dict[str, float]:
        return {
            "early_adoption_success": self.early_adoption_success,
            "yield_optimization_roi": self.yield_optimization_roi,
            "cross_chain_efficiency": self.cross_chain_efficiency,
            "rwa_innovation_score": self.rwa_innovation_score,
            "treasury_management_score": self.treasury_management_score,
            "success_rate": self.success_rate,
            "total_transactions": self.total_transactions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PioneerMetrics:
        return cls(
            early_adoption_success=float(data.get("early_adoption_success", 0.0)),
            yield_optimization_roi=float(data.get("yield_optimization_roi", 0.0)),
            cross_chain_efficiency=float(data.get("cross_chain_efficiency", 0.0)),
            rwa_innovation_score=float(data.get("rwa_innovation_score", 0.0)),
            treasury_management_score=float(data.get("treasury_management_score", 0.0)),
            success_rate=float(data.get("success_rate", 0.0)),
            total_transactions=int(data.get("total_transactions", 0)),
        )


@dataclass(frozen=True)
class ProtocolDiscovery:
    protocol: str
    timestamp: datetime
    success: bool

    def to_dict(self) -> dict[str, object]:
        return {"protocol": self.protocol, "timestamp": self.timestamp.isoformat(), "success": self.success}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProtocolDiscovery:
        return cls(
            protocol=str(data["protocol"]),
            timestamp=_parse_dt(data["timestamp"]),
            success=bool(data["success"]),
        )


@dataclass(frozen=True)
class StrategyDeployment:
    type: str
    timestamp: datetime
    success: bool
    roi: float | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "roi": self.roi,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StrategyDeployment:
        roi = data.get("roi")
        return cls(
            type=str(data["type"]),
            timestamp=_parse_dt(data["timestamp"]),
            success=bool(data["success"]),
            roi=float(roi) if roi is not None else None,
        )


@dataclass(frozen=True)
class ChainActivity:
    chain: str
    transaction_count: int
    success_rate: float
    last_active: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "chain": self.chain,
            "transaction_count": self.transaction_count,
            "success_rate": self.success_rate,
            "last_active": self.last_active.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChainActivity:
        return cls(
            chain=str(data["chain"]),
            transaction_count=int(data["transaction_count"]),
            success_rate=float(data["success_rate"]),
            last_active=_parse_dt(data["last_active"]),
        )


@dataclass(frozen=True)
class PioneerRecord:
    """Accumulated pioneer history and derived state for one wallet."""

    wallet_address: str
    categories: frozenset[PioneerCategory] = frozenset()
    metrics: PioneerMetrics = field(default_factory=PioneerMetrics)
    discovered_protocols: tuple[ProtocolDiscovery, ...] = ()
    strategy_deployments: tuple[StrategyDeployment, ...] = ()
    chain_activity: tuple[ChainActivity, ...] = ()
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def sorted_categories(self) -> list[PioneerCategory]:
        """Categories in declaration order."""
        return [c for c in PioneerCategory if c in self.categories]

    def to_dict(self) -> dict[str, object]:
        return {
            "wallet_address": self.wallet_address,
            "categories": [c.value for c in self.sorted_categories()],
            "metrics": self.metrics.to_dict(),
            "discovered_protocols": [d.to_dict() for d in self.discovered_protocols],
            "strategy_deployments": [d.to_dict() for d in self.strategy_deployments],
            "chain_activity": [a.to_dict() for a in self.chain_activity],
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class ProtocolPioneer:
    """A pioneer's interaction summary within one protocol."""

    address: str
    first_interaction: datetime
    last_interaction: datetime
    interaction_count: int
    success_rate: float

    def to_dict(self) -> dict[str, object]:
        return {
            "address": self.address,
            "first_interaction": self.first_interaction.isoformat(),
            "last_interaction": self.last_interaction.isoformat(),
            "interaction_count": self.interaction_count,
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProtocolPioneer:
        return cls(
            address=str(data["address"]),
            first_interaction=_parse_dt(data["first_interaction"]),
            last_interaction=_parse_dt(data["last_interaction"]),
            interaction_count=int(data["interaction_count"]),
            success_rate=float(data["success_rate"]),
        )


@dataclass(frozen=True)
class TvlPoint:
    timestamp: datetime
    value: float

    def to_dict(self) -> dict[str, object]:
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TvlPoint:
        return cls(timestamp=_parse_dt(data["timestamp"]), value=float(data["value"]))


@dataclass(frozen=True)
class SharedProtocolRecord:
    """Aggregate of every pioneer that interacted with a protocol address."""

    protocol_address: str
    protocol_name: str
    discovery_timestamp: datetime
    last_activity: datetime
    pioneers: tuple[ProtocolPioneer, ...] = ()
    total_pioneers: int = 0
    avg_success_rate: float = 0.0
    risk_score: float = 0.0
    tvl_trend: tuple[TvlPoint, ...] = ()
    related_tokens: tuple[str, ...] = ()

    def pioneer(self, address: str) -> ProtocolPioneer | None:
        for entry in self.pioneers:
            if entry.address == address:
                return entry
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "protocol_address": self.protocol_address,
            "protocol_name": self.protocol_name,
            "discovery_timestamp": self.discovery_timestamp.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "pioneers": [p.to_dict() for p in self.pioneers],
            "total_pioneers": self.total_pioneers,
            "avg_success_rate": self.avg_success_rate,
            "risk_score": self.risk_score,
            "tvl_trend": [p.to_dict() for p in self.tvl_trend],
            "related_tokens": list(self.related_tokens),
        }
