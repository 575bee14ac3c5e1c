"""Data models for the detector module."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pioneer_tracker.ingestor.registry import ProtocolDescriptor


class PioneerCategory(str, Enum):
    """Behavioural archetypes a wallet can be tagged with."""

    PROTOCOL_SCOUT = "Protocol_Scout"
    YIELD_OPPORTUNIST = "Yield_Opportunist"
    CROSS_CHAIN_ARBITRAGE = "Cross_Chain_Arbitrage"
    RWA_INNOVATION = "RWA_Innovation"
    TREASURY_MANAGEMENT = "Treasury_Management"


class SignalStatus(str, Enum):
    """Signal review lifecycle. Only NEW is ever assigned here."""

    NEW = "New"
    PROCESSING = "Processing"
    VERIFIED = "Verified"
    INVALID = "Invalid"


TRANSFER_TYPE = "transfer"
CONTRACT_INTERACTION_TYPE = "contract_interaction"


@dataclass(frozen=True)
class ClassifiedTransaction:
    """Normalized view of one observed transaction.

    Attributes:
        hash: Transaction hash.
        timestamp: Block timestamp.
        from_address: Sender.
        to_address: Recipient, None for contract creation. May be malformed, in which
            case the transaction is typed contract_interaction with no protocol.
        method_signature: Leading 4-byte selector, if any.
        value_wei: Native value transferred.
        transaction_type: Classified type (signature type, transfer or
            contract_interaction).
        protocol: Protocol resolved from the recipient address.
        pattern_type: Signature type matched in the call data, if any.
        significance: Additive 0-5 score.
        base_confidence: Additive 0-1 score.
        touched_protocols: Distinct protocols touched directly or via logs.
        success: Receipt status, None when no receipt was available.
        chain_id: Chain the transaction was observed on.
    """

    hash: str
    timestamp: datetime
    from_address: str
    to_address: str | None
    method_signature: str | None
    value_wei: int
    transaction_type: str
    protocol: ProtocolDescriptor | None = None
    pattern_type: str | None = None
    significance: int = 0
    base_confidence: float = 0.5
    touched_protocols: tuple[ProtocolDescriptor, ...] = ()
    success: bool | None = None
    chain_id: int = 1

    @property
    def protocol_name(self) -> str | None:
        return self.protocol.name if self.protocol else None

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "hash": self.hash,
            "timestamp": self.timestamp.isoformat(),
            "from_address": self.from_address,
            "to_address": self.to_address,
            "method_signature": self.method_signature,
            "value_wei": str(self.value_wei),
            "transaction_type": self.transaction_type,
            "protocol": self.protocol_name,
            "pattern_type": self.pattern_type,
            "significance": self.significance,
            "base_confidence": self.base_confidence,
            "touched_protocols": [p.name for p in self.touched_protocols],
            "success": self.success,
            "chain_id": self.chain_id,
        }


@dataclass(frozen=True)
class PatternDefinition:
    """A multi-transaction behavioural pattern evaluated over a time window."""

    id: str
    name: str
    required_transaction_types: tuple[str, ...]
    timeframe_seconds: int
    min_confidence: float
    category: PioneerCategory
    description: str = ""

    @property
    def required_count(self) -> int:
        """Number of distinct required transaction types."""
        return len(dict.fromkeys(t.lower() for t in self.required_transaction_types))


@dataclass(frozen=True)
class PioneerPatternDefinition:
    """A single-transaction pioneer pattern with a fixed confidence."""

    id: str
    name: str
    confidence: float
    category: PioneerCategory


@dataclass(frozen=True)
class PatternMatch:
    """A pattern that fired for a wallet.

    Ephemeral: persisted only through the Signal it produces.
    """

    pattern_id: str
    pattern_name: str
    confidence: float
    matched_transaction_hashes: tuple[str, ...]
    category: PioneerCategory | None = None

    @property
    def is_high_confidence(self) -> bool:
        """Return True if confidence reaches the push-notification threshold."""
        return self.confidence >= 0.8

    def to_dict(self) -> dict[str, object]:
        return {
            "pattern_id": self.pattern_id,
            "pattern_name": self.pattern_name,
            "confidence": self.confidence,
            "matched_transaction_hashes": list(self.matched_transaction_hashes),
            "category": self.category.value if self.category else None,
        }


@dataclass(frozen=True)
class Observation:
    """Result of feeding one classified transaction to the matcher."""

    wallet_address: str
    transaction: ClassifiedTransaction
    matches: tuple[PatternMatch, ...] = ()
    duplicate: bool = False
    stale: bool = False

    @property
    def accepted(self) -> bool:
        """Return True if the transaction entered the wallet history."""
        return not (self.duplicate or self.stale)


@dataclass(frozen=True)
class TransactionRef:
    """Reference to the transaction a signal was raised for."""

    hash: str
    value: str
    method: str

    def to_dict(self) -> dict[str, str]:
        return {"hash": self.hash, "value": self.value, "method": self.method}


@dataclass(frozen=True)
class SignalAnalysis:
    """Human readable context attached to a signal."""

    summary: str
    potential_impact: str | None = None
    strategic_context: str | None = None
    related_tokens: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "summary": self.summary,
            "potential_impact": self.potential_impact,
            "strategic_context": self.strategic_context,
            "related_tokens": list(self.related_tokens),
        }


@dataclass(frozen=True)
class Signal:
    """A prioritized detection event for a wallet.

    Attributes:
        wallet_address: Wallet the signal refers to.
        type: Pattern id that produced the signal.
        category: Pioneer category, None for generic signals.
        priority: 1 (lowest) to 5.
        protocol: Protocol name, "unknown" if unresolved.
        chain: Chain id as a string.
        transaction: Originating transaction reference.
        pattern_name: Display name of the pattern.
        pattern_confidence: Pattern confidence in [0, 1].
        analysis: Summary and category context.
        metrics: Snapshot of wallet metrics at generation time.
        related_transactions: Other hashes that completed the pattern.
        status: Always NEW at creation.
        id: Unique signal identifier.
        timestamp: Generation time.
    """

    wallet_address: str
    type: str
    category: PioneerCategory | None
    priority: int
    protocol: str
    chain: str
    transaction: TransactionRef
    pattern_name: str
    pattern_confidence: float
    analysis: SignalAnalysis
    metrics: dict[str, float] = field(default_factory=dict)
    related_transactions: tuple[str, ...] = ()
    status: SignalStatus = SignalStatus.NEW
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_pioneer_signal(self) -> bool:
        return self.category is not None

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "type": self.type,
            "category": self.category.value if self.category else None,
            "priority": self.priority,
            "timestamp": self.timestamp.isoformat(),
            "protocol": self.protocol,
            "chain": self.chain,
            "transaction": self.transaction.to_dict(),
            "pattern": {"name": self.pattern_name, "confidence": self.pattern_confidence},
            "analysis": self.analysis.to_dict(),
            "metrics": dict(self.metrics),
            "related_transactions": list(self.related_transactions),
            "status": self.status.value,
        }
