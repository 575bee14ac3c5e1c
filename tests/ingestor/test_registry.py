"""Tests for the protocol registry."""

import pytest

from pioneer_tracker.errors import ValidationError
from pioneer_tracker.ingestor.registry import ProtocolCategory, ProtocolRegistry

UNISWAP_V2_ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
ARBITRUM_GATEWAY = "0x8315177ab297ba92a06054ce80a67ed4dbd7ed3a"
GOLDFINCH_POOL = "0x8481a6ebaf5c7dabc3f7e09e44a89531fd31f822"


@pytest.fixture
def registry() -> ProtocolRegistry:
    return ProtocolRegistry.default()


class TestResolve:
    """Tests for address resolution."""

    def test_resolve_is_case_insensitive(self, registry):
        descriptor = registry.resolve(UNISWAP_V2_ROUTER.upper().replace("0X", "0x"))
        assert descriptor is not None
        assert descriptor.name == "uniswap"
        assert descriptor.category is ProtocolCategory.DEX

    def test_unknown_address_is_none(self, registry):
        assert registry.resolve("0x" + "9" * 40) is None

    def test_malformed_address_is_none(self, registry):
        assert registry.resolve("not-an-address") is None
        assert registry.resolve(None) is None

    def test_contains(self, registry):
        assert UNISWAP_V2_ROUTER in registry
        assert "0x" + "9" * 40 not in registry

    def test_resolve_many_dedupes_by_protocol(self, registry):
        aave = registry.addresses_for("aave")
        resolved = registry.resolve_many([*aave, UNISWAP_V2_ROUTER, "0x" + "9" * 40])
        assert [d.name for d in resolved] == ["aave", "uniswap"]

    def test_bridge_and_rwa(self, registry):
        assert registry.is_bridge(ARBITRUM_GATEWAY)
        assert not registry.is_bridge(UNISWAP_V2_ROUTER)
        assert registry.is_rwa(GOLDFINCH_POOL)
        assert not registry.is_rwa(None)


class TestRegister:
    """Tests for registration."""

    def test_register_new_address(self):
        registry = ProtocolRegistry()
        descriptor = registry.register("0x" + "A" * 40, "newdex", "dex")
        assert descriptor.address == "0x" + "a" * 40
        assert len(registry) == 1

    def test_reregister_same_is_noop(self):
        registry = ProtocolRegistry()
        first = registry.register("0x" + "a" * 40, "newdex", ProtocolCategory.DEX)
        second = registry.register("0x" + "a" * 40, "newdex", ProtocolCategory.DEX)
        assert first == second
        assert len(registry) == 1

    def test_conflicting_registration_rejected(self):
        registry = ProtocolRegistry()
        registry.register("0x" + "a" * 40, "newdex", ProtocolCategory.DEX)
        with pytest.raises(ValidationError):
            registry.register("0x" + "a" * 40, "other", ProtocolCategory.DEX)

    def test_unknown_category_rejected(self):
        with pytest.raises(ValidationError):
            ProtocolRegistry().register("0x" + "a" * 40, "x", "casino")

    def test_malformed_address_rejected(self):
        with pytest.raises(ValidationError):
            ProtocolRegistry().register("0x12", "x", ProtocolCategory.DEX)
