"""Tests for the transaction classifier."""

import pytest

from pioneer_tracker.detector.catalog import event_topic
from pioneer_tracker.detector.classifier import (
    BASE_CONFIDENCE,
    PAYLOAD_BONUS,
    PROTOCOL_BONUS,
    SIGNATURE_BONUS,
    TransactionClassifier,
    contains_keyword,
    find_selectors,
)
from pioneer_tracker.detector.models import PioneerCategory
from pioneer_tracker.ingestor.models import WEI_PER_ETHER, ReceiptLog, TransactionReceipt
from pioneer_tracker.ingestor.registry import ProtocolRegistry

AAVE_POOL = "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2"
UNISWAP_ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
ARBITRUM_GATEWAY = "0x8315177ab297ba92a06054ce80a67ed4dbd7ed3a"
GOLDFINCH_POOL = "0x8481a6ebaf5c7dabc3f7e09e44a89531fd31f822"
UNKNOWN = "0x9999999999999999999999999999999999999999"

SWAP_TOPIC = event_topic("Swap(address,uint256,uint256,uint256,uint256,address)")


@pytest.fixture
def classifier() -> TransactionClassifier:
    return TransactionClassifier(ProtocolRegistry.default(), chain_id=1)


def receipt_with_logs(*addresses: str, topic: str | None = None, status: int = 1, gas_used=None):
    return TransactionReceipt(
        status=status,
        gas_used=gas_used,
        logs=tuple(ReceiptLog(address=a, topics=(topic,) if topic else ()) for a in addresses),
    )


class TestClassify:
    """Tests for single transaction classification."""

    def test_plain_transfer(self, classifier, make_tx):
        classified = classifier.classify(make_tx(to=UNKNOWN, value_wei=WEI_PER_ETHER // 2))

        assert classified.transaction_type == "transfer"
        assert classified.protocol is None
        assert classified.base_confidence == BASE_CONFIDENCE
        assert classified.significance == 0
        assert classified.success is None

    def test_known_protocol_with_signature(self, classifier, make_tx):
        classified = classifier.classify(
            make_tx("supply(address,uint256,address,uint16)", to=AAVE_POOL),
            TransactionReceipt(status=1),
        )

        assert classified.transaction_type == "deposit"
        assert classified.protocol_name == "aave"
        assert classified.pattern_type == "deposit"
        assert classified.base_confidence == pytest.approx(
            BASE_CONFIDENCE + PROTOCOL_BONUS + SIGNATURE_BONUS
        )
        assert classified.success is True

    def test_unknown_selector_is_contract_interaction(self, classifier, make_tx):
        classified = classifier.classify(make_tx(input_data="0xdeadbeef" + "00" * 32))

        assert classified.transaction_type == "contract_interaction"
        assert classified.pattern_type is None
        assert classified.base_confidence == BASE_CONFIDENCE

    def test_large_payload_bonus(self, classifier, make_tx):
        classified = classifier.classify(make_tx(input_data="0xdeadbeef" + "00" * 200))
        assert classified.base_confidence == pytest.approx(BASE_CONFIDENCE + PAYLOAD_BONUS)

    def test_contract_creation(self, classifier, make_tx):
        classified = classifier.classify(make_tx(to=None, input_data="0x6080" + "00" * 50))

        assert classified.to_address is None
        assert classified.transaction_type == "contract_interaction"
        assert classified.protocol is None

    def test_malformed_recipient_is_contract_interaction(self, classifier, make_tx):
        tx = make_tx("deposit(uint256)", to="0xDEADBEEF")

        classified = classifier.classify(tx, TransactionReceipt(status=1))

        assert classified.to_address == "0xdeadbeef"
        assert classified.transaction_type == "contract_interaction"
        assert classified.pattern_type is None
        assert classified.protocol is None
        assert classified.touched_protocols == ()
        assert classifier.detect_pioneer_pattern(tx, None, is_new_protocol=True) is None

    def test_mixed_case_addresses_are_lowercased(self, classifier, make_tx):
        classified = classifier.classify(
            make_tx(
                "supply(address,uint256,address,uint16)",
                sender="0x1234567890ABCDEF1234567890ABCDEF12345678",
                to=AAVE_POOL.upper().replace("0X", "0x"),
            )
        )

        assert classified.from_address == "0x1234567890abcdef1234567890abcdef12345678"
        assert classified.to_address == AAVE_POOL
        assert classified.protocol_name == "aave"

    def test_significance_is_additive_and_capped(self, classifier, make_tx):
        tx = make_tx(
            input_data="0xdeadbeef" + "00" * 1200,
            value_wei=11 * WEI_PER_ETHER,
        )
        receipt = receipt_with_logs(*["0x" + f"{i:040x}" for i in range(1, 7)], gas_used=600_000)

        classified = classifier.classify(tx, receipt)

        assert classified.significance == 5

    def test_medium_value_significance(self, classifier, make_tx):
        classified = classifier.classify(make_tx(value_wei=2 * WEI_PER_ETHER))
        assert classified.significance == 1

    def test_touched_protocols_from_logs(self, classifier, make_tx):
        receipt = receipt_with_logs(UNISWAP_ROUTER, AAVE_POOL, UNKNOWN)

        classified = classifier.classify(make_tx("deposit(uint256)", to=UNKNOWN), receipt)

        assert [p.name for p in classified.touched_protocols] == ["uniswap", "aave"]

    def test_failed_receipt(self, classifier, make_tx):
        classified = classifier.classify(make_tx("deposit(uint256)"), TransactionReceipt(status=0))
        assert classified.success is False

    def test_chain_id_recorded(self, make_tx):
        classifier = TransactionClassifier(ProtocolRegistry.default(), chain_id=42161)
        assert classifier.classify(make_tx()).chain_id == 42161


class TestSelectors:
    """Tests for selector scanning helpers."""

    def test_nested_selector_found(self, make_tx):
        stake = make_tx("stake(uint256)").input_data[:10]
        tx = make_tx(input_data="0xdeadbeef" + "00" * 4 + stake[2:] + "00" * 32)
        assert stake in find_selectors(tx)

    def test_contains_keyword_via_selector_name(self, make_tx):
        assert contains_keyword(make_tx("harvest()"), ("harvest",))
        assert not contains_keyword(make_tx("deposit(uint256)"), ("harvest",))


class TestDetectPioneerPattern:
    """Tests for the single transaction pioneer check."""

    def test_new_protocol_interaction(self, classifier, make_tx):
        match = classifier.detect_pioneer_pattern(
            make_tx("deposit(uint256)", to=UNKNOWN), None, is_new_protocol=True
        )

        assert match is not None
        assert match.pattern_id == "early_protocol_interaction"
        assert match.category is PioneerCategory.PROTOCOL_SCOUT
        assert match.confidence == 0.80

    def test_first_liquidity_provision(self, classifier, make_tx):
        tx = make_tx(
            "addLiquidityETH(address,uint256,uint256,uint256,address,uint256)", to=UNKNOWN
        )
        match = classifier.detect_pioneer_pattern(tx, None, is_new_protocol=True)
        assert match.pattern_id == "first_liquidity_provision"
        assert match.confidence == 0.85

    def test_complex_yield_strategy(self, classifier, make_tx):
        receipt = receipt_with_logs("0x" + "1" * 40, "0x" + "2" * 40, "0x" + "3" * 40)
        match = classifier.detect_pioneer_pattern(
            make_tx("stake(uint256)", to=UNKNOWN), receipt, is_new_protocol=False
        )
        assert match.pattern_id == "complex_yield_strategy"
        assert match.category is PioneerCategory.YIELD_OPPORTUNIST

    def test_complex_yield_needs_three_contracts(self, classifier, make_tx):
        receipt = receipt_with_logs("0x" + "1" * 40, "0x" + "2" * 40)
        match = classifier.detect_pioneer_pattern(
            make_tx("stake(uint256)", to=UNKNOWN), receipt, is_new_protocol=False
        )
        assert match is None

    def test_bridge_with_foreign_swap_log(self, classifier, make_tx):
        receipt = receipt_with_logs(UNISWAP_ROUTER, topic=SWAP_TOPIC)
        tx = make_tx("depositETH(uint32,bytes)", to=ARBITRUM_GATEWAY)

        match = classifier.detect_pioneer_pattern(tx, receipt, is_new_protocol=False)

        assert match.pattern_id == "cross_chain_arb"
        assert match.category is PioneerCategory.CROSS_CHAIN_ARBITRAGE
        assert match.confidence == 0.90

    def test_bridge_swap_log_from_bridge_itself_ignored(self, classifier, make_tx):
        receipt = receipt_with_logs(ARBITRUM_GATEWAY, topic=SWAP_TOPIC)
        tx = make_tx("depositETH(uint32,bytes)", to=ARBITRUM_GATEWAY)
        assert classifier.detect_pioneer_pattern(tx, receipt, is_new_protocol=False) is None

    def test_bridge_own_swap_log_ignored_with_mixed_case_recipient(self, classifier, make_tx):
        receipt = receipt_with_logs(ARBITRUM_GATEWAY.upper().replace("0X", "0x"), topic=SWAP_TOPIC)
        tx = make_tx("depositETH(uint32,bytes)", to=ARBITRUM_GATEWAY.upper().replace("0X", "0x"))
        assert classifier.detect_pioneer_pattern(tx, receipt, is_new_protocol=False) is None

    def test_bridge_without_receipt(self, classifier, make_tx):
        tx = make_tx("depositETH(uint32,bytes)", to=ARBITRUM_GATEWAY)
        assert classifier.detect_pioneer_pattern(tx, None, is_new_protocol=False) is None

    def test_rwa_integration(self, classifier, make_tx):
        match = classifier.detect_pioneer_pattern(
            make_tx("deposit(uint256)", to=GOLDFINCH_POOL), None, is_new_protocol=False
        )
        assert match.pattern_id == "rwa_integration"
        assert match.category is PioneerCategory.RWA_INNOVATION

    def test_rwa_yield_strategy(self, classifier, make_tx):
        match = classifier.detect_pioneer_pattern(
            make_tx("borrow(uint256)", to=GOLDFINCH_POOL), None, is_new_protocol=False
        )
        assert match.pattern_id == "rwa_yield_strategy"

    def test_treasury_selectors(self, classifier, make_tx):
        rebalance = make_tx(input_data="0x6e553f65" + "00" * 64)
        allocate = make_tx(input_data="0x7ca3c7c2" + "00" * 64)

        assert (
            classifier.detect_pioneer_pattern(rebalance, None, is_new_protocol=False).pattern_id
            == "treasury_rebalancing"
        )
        assert (
            classifier.detect_pioneer_pattern(allocate, None, is_new_protocol=False).pattern_id
            == "revenue_distribution"
        )

    def test_new_protocol_takes_priority(self, classifier, make_tx):
        tx = make_tx(input_data="0x7ca3c7c2" + "00" * 64, to=UNKNOWN)
        match = classifier.detect_pioneer_pattern(tx, None, is_new_protocol=True)
        assert match.pattern_id == "early_protocol_interaction"

    def test_no_match(self, classifier, make_tx):
        assert (
            classifier.detect_pioneer_pattern(make_tx(to=UNISWAP_ROUTER), None, is_new_protocol=False)
            is None
        )

    def test_match_references_transaction(self, classifier, make_tx):
        tx = make_tx("deposit(uint256)")
        match = classifier.detect_pioneer_pattern(tx, None, is_new_protocol=True)
        assert match.matched_transaction_hashes == (tx.hash,)
