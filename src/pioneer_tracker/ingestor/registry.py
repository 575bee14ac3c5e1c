"""Known protocol contract registry.

Maps on-chain contract addresses to named protocols. Several addresses may
belong to the same protocol (router versions, pools, gateways).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from pioneer_tracker.errors import ValidationError
from pioneer_tracker.ingestor.models import is_valid_address, normalize_address

logger = logging.getLogger(__name__)


class ProtocolCategory(str, Enum):
    """Protocol classes the classifier reasons about."""

    DEX = "dex"
    LENDING = "lending"
    RWA = "rwa"
    BRIDGE = "bridge"


@dataclass(frozen=True)
class ProtocolDescriptor:
    """A named protocol contract."""

    address: str
    name: str
    category: ProtocolCategory

    def to_dict(self) -> dict[str, str]:
        return {"address": self.address, "name": self.name, "category": self.category.value}


# Mainnet contracts, grouped by protocol.
KNOWN_PROTOCOLS: dict[str, tuple[ProtocolCategory, tuple[str, ...]]] = {
    "uniswap": (
        ProtocolCategory.DEX,
        (
            "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45",  # V3 router
            "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",  # V2 router
        ),
    ),
    "curve": (
        ProtocolCategory.DEX,
        (
            "0x99a58482bd75cbab83b27ec03ca68ff489b5788f",  # router
            "0xbabe61887f1de2713c6f97e567623453d3c79f67",  # factory
        ),
    ),
    "aave": (
        ProtocolCategory.LENDING,
        (
            "0x7d2768de32b0b80b7a3454c06bdac94a69ddc7a9",  # V2 pool
            "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2",  # V3 pool
        ),
    ),
    "compound": (
        ProtocolCategory.LENDING,
        (
            "0x3d9819210a31b4961b30ef54be2aed79b9c9cd3b",  # comptroller
            "0x4ddc2d193948926d02f9b1fe9e1daa0718270ed5",  # cETH
        ),
    ),
    "goldfinch": (
        ProtocolCategory.RWA,
        ("0x8481a6ebaf5c7dabc3f7e09e44a89531fd31f822",),  # senior pool
    ),
    "centrifuge": (
        ProtocolCategory.RWA,
        (
            "0x4abbf7f193460d611eb431373ee84ac9abbd4d96",
            "0x3c1580ce9e792f4eb04cf1d5e3c93d35445fb8c7",  # tinlake
        ),
    ),
    "maple": (
        ProtocolCategory.RWA,
        (
            "0x6f6c8013f639979c84b756c7fc1500eb5af18dc4",
            "0x0a0b06530768a644f9e8fe23d20dd45ddb415e3e",
        ),
    ),
    "arbitrum_bridge": (
        ProtocolCategory.BRIDGE,
        (
            "0x8315177ab297ba92a06054ce80a67ed4dbd7ed3a",  # gateway
            "0x4c6f947ae67f572afa4ae0730947de7c874f95ef",
        ),
    ),
    "optimism_bridge": (
        ProtocolCategory.BRIDGE,
        (
            "0x99c9fc46f92e8a1c0dec1b1747d010903e884be1",  # gateway
            "0x3e7ac3dab3e366f96b35a5dba99ea6763be1e917",
        ),
    ),
}


class ProtocolRegistry:
    """Exact, case-insensitive address to protocol lookup.

    Unknown addresses resolve to None. That is the common case, not an error.
    """

    def __init__(self, descriptors: Iterable[ProtocolDescriptor] | None = None) -> None:
        self._by_address: dict[str, ProtocolDescriptor] = {}
        for descriptor in descriptors or ():
            self.register(descriptor.address, descriptor.name, descriptor.category)

    @classmethod
    def default(cls) -> ProtocolRegistry:
        """Build a registry populated with the well-known mainnet contracts."""
        registry = cls()
        for name, (category, addresses) in KNOWN_PROTOCOLS.items():
            for address in addresses:
                registry.register(address, name, category)
        return registry

    def __len__(self) -> int:
        return len(self._by_address)

    def __contains__(self, address: object) -> bool:
        return self.resolve(address) is not None

    def register(
        self,
        address: str,
        name: str,
        category: ProtocolCategory | str,
    ) -> ProtocolDescriptor:
        """Register a contract address.

        Registration is immutable: re-registering the same descriptor is a
        no-op, registering a different one for a known address is rejected.

        Raises:
            ValidationError: On a malformed address, unknown category, or a
                conflicting registration.
        """
        canonical = normalize_address(address)
        try:
            category = ProtocolCategory(category)
        except ValueError as e:
            raise ValidationError(f"Unknown protocol category: {category!r}") from e

        descriptor = ProtocolDescriptor(address=canonical, name=name, category=category)
        existing = self._by_address.get(canonical)
        if existing is not None:
            if existing != descriptor:
                raise ValidationError(
                    f"Address {canonical} already registered as {existing.name}"
                )
            return existing

        self._by_address[canonical] = descriptor
        logger.debug("Registered %s contract %s", name, canonical[:10] + "...")
        return descriptor

    def resolve(self, address: object) -> ProtocolDescriptor | None:
        """Return the protocol at address, or None if unknown or malformed."""
        if not is_valid_address(address):
            return None
        return self._by_address.get(str(address).strip().lower())

    def resolve_many(self, addresses: Iterable[object]) -> tuple[ProtocolDescriptor, ...]:
        """Resolve several addresses, returning distinct protocols in first-seen order."""
        seen: dict[str, ProtocolDescriptor] = {}
        for address in addresses:
            descriptor = self.resolve(address)
            if descriptor is not None:
                seen.setdefault(descriptor.name, descriptor)
        return tuple(seen.values())

    def is_bridge(self, address: object) -> bool:
        descriptor = self.resolve(address)
        return descriptor is not None and descriptor.category is ProtocolCategory.BRIDGE

    def is_rwa(self, address: object) -> bool:
        descriptor = self.resolve(address)
        return descriptor is not None and descriptor.category is ProtocolCategory.RWA

    def addresses_for(self, name: str) -> tuple[str, ...]:
        """Return every registered address belonging to the named protocol."""
        return tuple(a for a, d in self._by_address.items() if d.name == name)
