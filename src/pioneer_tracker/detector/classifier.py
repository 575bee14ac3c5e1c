"""Single-transaction classification and pioneer pattern detection.

The classifier turns a raw transaction (and optional receipt) into a
ClassifiedTransaction with a type, protocol, significance and base
confidence. It also runs the coarse single-transaction pioneer check used
for immediate categorization, independent of any sliding window.

Neither operation performs I/O. Missing receipts or logs lower the signal
quality but never raise.
"""

from __future__ import annotations

import logging

from pioneer_tracker.detector.catalog import (
    DISTRIBUTION_KEYWORDS,
    PIONEER_PATTERNS,
    RWA_YIELD_KEYWORDS,
    SELECTOR_TABLE,
    SWAP_EVENT_TOPICS,
    TREASURY_SELECTORS,
    YIELD_KEYWORDS,
)
from pioneer_tracker.detector.models import (
    CONTRACT_INTERACTION_TYPE,
    TRANSFER_TYPE,
    ClassifiedTransaction,
    PatternMatch,
    PioneerPatternDefinition,
)
from pioneer_tracker.ingestor.models import (
    WEI_PER_ETHER,
    RawTransaction,
    TransactionReceipt,
    is_valid_address,
)
from pioneer_tracker.ingestor.registry import ProtocolRegistry

logger = logging.getLogger(__name__)

# Significance thresholds
HIGH_VALUE_WEI = 10 * WEI_PER_ETHER
MEDIUM_VALUE_WEI = 1 * WEI_PER_ETHER
MANY_LOGS_THRESHOLD = 5
LARGE_PAYLOAD_BYTES = 1000
HIGH_GAS_USED = 500_000
MAX_SIGNIFICANCE = 5

# Confidence contributions
BASE_CONFIDENCE = 0.5
PROTOCOL_BONUS = 0.2
SIGNATURE_BONUS = 0.2
PAYLOAD_BONUS = 0.1
PAYLOAD_BONUS_BYTES = 100

COMPLEX_STRATEGY_MIN_CONTRACTS = 3


def _call_data_body(tx: RawTransaction) -> str:
    data = tx.input_data
    return data[2:] if data.startswith("0x") else data


def find_selectors(tx: RawTransaction) -> list[str]:
    """Return known selectors in the call data, leading selector first.

    Besides the leading selector, byte-aligned occurrences further in the
    payload are reported too, so nested calls (multicall, routers) count.
    """
    body = _call_data_body(tx)
    found: dict[str, None] = {}
    leading = tx.method_signature
    if leading is not None and (leading in SELECTOR_TABLE or leading in TREASURY_SELECTORS):
        found[leading] = None
    for i in range(8, len(body) - 7, 2):
        candidate = "0x" + body[i : i + 8]
        if candidate in SELECTOR_TABLE:
            found.setdefault(candidate, None)
    return list(found)


def contains_keyword(tx: RawTransaction, keywords: tuple[str, ...]) -> bool:
    """Check whether the call data refers to any of the keywords.

    A keyword matches when it appears in the name of a recognised function
    selector in the call data, or literally in the decoded payload bytes.
    """
    names = [
        SELECTOR_TABLE[s][1] if s in SELECTOR_TABLE else TREASURY_SELECTORS[s]
        for s in find_selectors(tx)
    ]
    lowered = [n.lower() for n in names]
    if any(k in n for k in keywords for n in lowered):
        return True

    body = _call_data_body(tx)
    try:
        decoded = bytes.fromhex(body[: len(body) - len(body) % 2]).decode("latin-1").lower()
    except ValueError:
        return False
    return any(k in decoded for k in keywords)


class TransactionClassifier:
    """Classify transactions against the protocol registry and selector table.

    Example:
        ```python
        classifier = TransactionClassifier(ProtocolRegistry.default(), chain_id=1)
        classified = classifier.classify(tx, receipt)
        pattern = classifier.detect_pioneer_pattern(tx, receipt, is_new_protocol=False)
        ```
    """

    def __init__(self, registry: ProtocolRegistry, *, chain_id: int = 1) -> None:
        self._registry = registry
        self._chain_id = chain_id

    @property
    def registry(self) -> ProtocolRegistry:
        return self._registry

    def signature_type(self, tx: RawTransaction) -> str | None:
        """Return the transaction type of the first recognised selector."""
        for found in find_selectors(tx):
            if found in SELECTOR_TABLE:
                return SELECTOR_TABLE[found][0]
        return None

    def classify(
        self,
        tx: RawTransaction,
        receipt: TransactionReceipt | None = None,
    ) -> ClassifiedTransaction:
        """Classify a single transaction.

        Args:
            tx: The raw transaction.
            receipt: Optional execution receipt.

        Returns:
            The immutable classification.
        """
        payload = tx.payload_bytes
        significance = self._significance(tx, receipt)
        success = receipt.succeeded if receipt is not None else None

        # Contract creation or a malformed recipient: nothing to resolve against.
        if not is_valid_address(tx.to_address):
            if tx.to_address is not None:
                logger.debug("Malformed recipient on tx %s", tx.hash[:10] + "...")
            confidence = BASE_CONFIDENCE + (PAYLOAD_BONUS if payload > PAYLOAD_BONUS_BYTES else 0.0)
            return ClassifiedTransaction(
                hash=tx.hash,
                timestamp=tx.timestamp,
                from_address=tx.from_address,
                to_address=tx.to_address,
                method_signature=tx.method_signature,
                value_wei=tx.value_wei,
                transaction_type=CONTRACT_INTERACTION_TYPE,
                significance=significance,
                base_confidence=min(confidence, 1.0),
                success=success,
                chain_id=self._chain_id,
            )

        protocol = self._registry.resolve(tx.to_address)
        log_addresses = receipt.log_addresses if receipt is not None else ()
        touched = self._registry.resolve_many((tx.to_address, *log_addresses))

        pattern_type = self.signature_type(tx) if payload > 1 else None
        if payload <= 1:
            tx_type = TRANSFER_TYPE
        elif pattern_type is not None:
            tx_type = pattern_type
        else:
            tx_type = CONTRACT_INTERACTION_TYPE

        confidence = BASE_CONFIDENCE
        if protocol is not None:
            confidence += PROTOCOL_BONUS
        if pattern_type is not None:
            confidence += SIGNATURE_BONUS
        if payload > PAYLOAD_BONUS_BYTES:
            confidence += PAYLOAD_BONUS

        return ClassifiedTransaction(
            hash=tx.hash,
            timestamp=tx.timestamp,
            from_address=tx.from_address,
            to_address=tx.to_address,
            method_signature=tx.method_signature,
            value_wei=tx.value_wei,
            transaction_type=tx_type,
            protocol=protocol,
            pattern_type=pattern_type,
            significance=significance,
            base_confidence=min(round(confidence, 10), 1.0),
            touched_protocols=touched,
            success=success,
            chain_id=self._chain_id,
        )

    def _significance(self, tx: RawTransaction, receipt: TransactionReceipt | None) -> int:
        score = 0
        if tx.value_wei > HIGH_VALUE_WEI:
            score += 2
        elif tx.value_wei > MEDIUM_VALUE_WEI:
            score += 1
        if receipt is not None and len(receipt.logs) > MANY_LOGS_THRESHOLD:
            score += 1
        if tx.payload_bytes > LARGE_PAYLOAD_BYTES:
            score += 1
        if receipt is not None and receipt.gas_used is not None and receipt.gas_used > HIGH_GAS_USED:
            score += 1
        return min(score, MAX_SIGNIFICANCE)

    def detect_pioneer_pattern(
        self,
        tx: RawTransaction,
        receipt: TransactionReceipt | None = None,
        *,
        is_new_protocol: bool,
    ) -> PatternMatch | None:
        """Run the single-transaction pioneer check.

        Checks are evaluated in fixed priority order and the first hit wins:
        new protocol, complex yield, bridge followed by a swap, RWA protocol,
        treasury selector.

        Args:
            tx: The raw transaction.
            receipt: Optional receipt; log based checks are skipped without it.
            is_new_protocol: Whether the recipient is an unseen protocol.

        Returns:
            The matched pioneer pattern, or None.
        """
        definition = self._first_pioneer_pattern(tx, receipt, is_new_protocol=is_new_protocol)
        if definition is None:
            return None

        logger.debug(
            "Pioneer pattern %s for tx %s from %s",
            definition.id,
            tx.hash[:10] + "...",
            tx.from_address[:10] + "...",
        )
        return PatternMatch(
            pattern_id=definition.id,
            pattern_name=definition.name,
            confidence=definition.confidence,
            matched_transaction_hashes=(tx.hash,),
            category=definition.category,
        )

    def _first_pioneer_pattern(
        self,
        tx: RawTransaction,
        receipt: TransactionReceipt | None,
        *,
        is_new_protocol: bool,
    ) -> PioneerPatternDefinition | None:
        to_address = tx.to_address
        logs = receipt.logs if receipt is not None else ()

        if is_new_protocol and is_valid_address(to_address):
            if self.signature_type(tx) == "provide_liquidity":
                return PIONEER_PATTERNS["first_liquidity_provision"]
            return PIONEER_PATTERNS["early_protocol_interaction"]

        distinct_contracts = {log.address for log in logs if log.address}
        if len(distinct_contracts) >= COMPLEX_STRATEGY_MIN_CONTRACTS and contains_keyword(
            tx, YIELD_KEYWORDS
        ):
            return PIONEER_PATTERNS["complex_yield_strategy"]

        if self._registry.is_bridge(to_address) and any(
            log.topic0 in SWAP_EVENT_TOPICS and log.address != to_address for log in logs
        ):
            return PIONEER_PATTERNS["cross_chain_arb"]

        if self._registry.is_rwa(to_address):
            if contains_keyword(tx, RWA_YIELD_KEYWORDS):
                return PIONEER_PATTERNS["rwa_yield_strategy"]
            return PIONEER_PATTERNS["rwa_integration"]

        if tx.method_signature in TREASURY_SELECTORS:
            if contains_keyword(tx, DISTRIBUTION_KEYWORDS):
                return PIONEER_PATTERNS["revenue_distribution"]
            return PIONEER_PATTERNS["treasury_rebalancing"]

        return None
