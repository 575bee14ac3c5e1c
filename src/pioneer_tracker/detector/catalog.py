"""Static pattern catalog and selector tables.

Everything here is read-only at runtime. Changing a pattern means a redeploy.
"""

from __future__ import annotations

from types import MappingProxyType

from web3 import Web3

from pioneer_tracker.detector.models import (
    PatternDefinition,
    PioneerCategory,
    PioneerPatternDefinition,
)

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def selector(signature: str) -> str:
    """Return the 4-byte function selector for a canonical signature as 0x hex."""
    return "0x" + bytes(Web3.keccak(text=signature)[:4]).hex()


def event_topic(signature: str) -> str:
    """Return the topic0 hash for a canonical event signature as 0x hex."""
    return "0x" + bytes(Web3.keccak(text=signature)).hex()


# ============================================================================
# Multi-transaction patterns
# ============================================================================

PATTERN_CATALOG: tuple[PatternDefinition, ...] = (
    PatternDefinition(
        id="early_protocol_adoption",
        name="Early Protocol Adoption",
        required_transaction_types=("deposit", "stake", "approve"),
        timeframe_seconds=7 * DAY,
        min_confidence=0.65,
        category=PioneerCategory.PROTOCOL_SCOUT,
        description="Early interaction with new protocols within first 7 days of launch",
    ),
    PatternDefinition(
        id="protocol_tvl_growth",
        name="Protocol TVL Growth Pioneer",
        required_transaction_types=("deposit", "provide_liquidity"),
        timeframe_seconds=DAY,
        min_confidence=0.70,
        category=PioneerCategory.PROTOCOL_SCOUT,
        description="Early participation in protocols that achieve significant TVL growth",
    ),
    PatternDefinition(
        id="complex_yield_strategy",
        name="Complex Yield Strategy",
        required_transaction_types=("borrow", "deposit", "stake", "leverage"),
        timeframe_seconds=30 * MINUTE,
        min_confidence=0.80,
        category=PioneerCategory.YIELD_OPPORTUNIST,
        description="Multi-step yield optimization strategy deployment",
    ),
    PatternDefinition(
        id="recursive_lending",
        name="Recursive Lending Strategy",
        required_transaction_types=("borrow", "deposit", "leverage"),
        timeframe_seconds=HOUR,
        min_confidence=0.75,
        category=PioneerCategory.YIELD_OPPORTUNIST,
        description="Complex lending strategy using multiple protocols",
    ),
    PatternDefinition(
        id="cross_chain_arb",
        name="Cross-Chain Arbitrage",
        required_transaction_types=("bridge", "swap", "transfer"),
        timeframe_seconds=15 * MINUTE,
        min_confidence=0.85,
        category=PioneerCategory.CROSS_CHAIN_ARBITRAGE,
        description="Rapid capital movement across chains for arbitrage",
    ),
    PatternDefinition(
        id="bridge_exploitation",
        name="Bridge Opportunity Exploitation",
        required_transaction_types=("bridge", "swap"),
        timeframe_seconds=30 * MINUTE,
        min_confidence=0.80,
        category=PioneerCategory.CROSS_CHAIN_ARBITRAGE,
        description="Strategic use of cross-chain bridges for value capture",
    ),
    PatternDefinition(
        id="rwa_integration",
        name="RWA Integration Pioneer",
        required_transaction_types=("mint", "deposit", "collateralize"),
        timeframe_seconds=DAY,
        min_confidence=0.75,
        category=PioneerCategory.RWA_INNOVATION,
        description="Early adoption of real-world asset protocols",
    ),
    PatternDefinition(
        id="rwa_yield_strategy",
        name="RWA Yield Strategy",
        required_transaction_types=("deposit", "borrow", "stake"),
        timeframe_seconds=2 * HOUR,
        min_confidence=0.70,
        category=PioneerCategory.RWA_INNOVATION,
        description="Complex yield strategies involving real-world assets",
    ),
    PatternDefinition(
        id="treasury_management",
        name="Treasury Management Strategy",
        required_transaction_types=("transfer", "swap", "stake"),
        timeframe_seconds=DAY,
        min_confidence=0.90,
        category=PioneerCategory.TREASURY_MANAGEMENT,
        description="Sophisticated protocol treasury management activities",
    ),
    PatternDefinition(
        id="protocol_owned_liquidity",
        name="Protocol-Owned Liquidity Management",
        required_transaction_types=("provide_liquidity", "remove_liquidity", "stake"),
        timeframe_seconds=12 * HOUR,
        min_confidence=0.85,
        category=PioneerCategory.TREASURY_MANAGEMENT,
        description="Strategic management of protocol-owned liquidity",
    ),
)

PATTERNS_BY_ID: MappingProxyType[str, PatternDefinition] = MappingProxyType(
    {p.id: p for p in PATTERN_CATALOG}
)


# ============================================================================
# Single-transaction pioneer patterns
# ============================================================================

PIONEER_PATTERNS: MappingProxyType[str, PioneerPatternDefinition] = MappingProxyType(
    {
        p.id: p
        for p in (
            PioneerPatternDefinition(
                "early_protocol_interaction",
                "Early Protocol Interaction",
                0.80,
                PioneerCategory.PROTOCOL_SCOUT,
            ),
            PioneerPatternDefinition(
                "first_liquidity_provision",
                "First Liquidity Provision",
                0.85,
                PioneerCategory.PROTOCOL_SCOUT,
            ),
            PioneerPatternDefinition(
                "complex_yield_strategy",
                "Complex Yield Strategy",
                0.75,
                PioneerCategory.YIELD_OPPORTUNIST,
            ),
            PioneerPatternDefinition(
                "recursive_lending",
                "Recursive Lending Strategy",
                0.80,
                PioneerCategory.YIELD_OPPORTUNIST,
            ),
            PioneerPatternDefinition(
                "cross_chain_arb",
                "Cross-Chain Arbitrage",
                0.90,
                PioneerCategory.CROSS_CHAIN_ARBITRAGE,
            ),
            PioneerPatternDefinition(
                "bridge_exploitation",
                "Bridge Opportunity Exploitation",
                0.85,
                PioneerCategory.CROSS_CHAIN_ARBITRAGE,
            ),
            PioneerPatternDefinition(
                "rwa_integration",
                "RWA Integration",
                0.70,
                PioneerCategory.RWA_INNOVATION,
            ),
            PioneerPatternDefinition(
                "rwa_yield_strategy",
                "RWA Yield Strategy",
                0.75,
                PioneerCategory.RWA_INNOVATION,
            ),
            PioneerPatternDefinition(
                "treasury_rebalancing",
                "Treasury Rebalancing",
                0.90,
                PioneerCategory.TREASURY_MANAGEMENT,
            ),
            PioneerPatternDefinition(
                "revenue_distribution",
                "Revenue Distribution",
                0.95,
                PioneerCategory.TREASURY_MANAGEMENT,
            ),
        )
    }
)


# ============================================================================
# Function signatures used to type transactions
# ============================================================================

# Order matters: the first type whose selector leads the call data wins.
TRANSACTION_SIGNATURES: dict[str, tuple[str, ...]] = {
    "bridge": (
        "outboundTransfer(address,address,uint256,uint256,uint256,bytes)",
        "depositETH(uint32,bytes)",
        "depositERC20(address,address,uint256,uint32,bytes)",
        "depositETHTo(address,uint32,bytes)",
    ),
    "provide_liquidity": (
        "addLiquidity(address,address,uint256,uint256,uint256,uint256,address,uint256)",
        "addLiquidityETH(address,uint256,uint256,uint256,address,uint256)",
        "add_liquidity(uint256[2],uint256)",
        "mint((address,address,uint24,int24,int24,uint256,uint256,uint256,uint256,address,uint256))",
    ),
    "remove_liquidity": (
        "removeLiquidity(address,address,uint256,uint256,uint256,address,uint256)",
        "removeLiquidityETH(address,uint256,uint256,uint256,address,uint256)",
        "remove_liquidity(uint256,uint256[2])",
    ),
    "leverage": (
        "flashLoan(address,address[],uint256[],uint256[],address,bytes,uint16)",
        "flashLoanSimple(address,address,uint256,bytes,uint16)",
    ),
    "borrow": (
        "borrow(address,uint256,uint256,uint16,address)",
        "borrow(uint256)",
    ),
    "collateralize": (
        "setUserUseReserveAsCollateral(address,bool)",
        "enterMarkets(address[])",
    ),
    "deposit": (
        "deposit(address,uint256,address,uint16)",
        "supply(address,uint256,address,uint16)",
        "deposit(uint256)",
        "deposit(uint256,address)",
    ),
    "stake": (
        "stake(uint256)",
        "stake(address,uint256)",
    ),
    "harvest": (
        "harvest()",
        "getReward()",
        "claimRewards(address[],uint256,address)",
    ),
    "swap": (
        "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)",
        "swapExactETHForTokens(uint256,address[],address,uint256)",
        "exactInputSingle((address,address,uint24,address,uint256,uint256,uint256,uint160))",
        "exchange(int128,int128,uint256,uint256)",
    ),
    "mint": (
        "mint(uint256)",
        "mint(address,uint256)",
    ),
    "approve": ("approve(address,uint256)",),
    "transfer": (
        "transfer(address,uint256)",
        "transferFrom(address,address,uint256)",
    ),
    "withdraw": (
        "withdraw(uint256)",
        "withdraw(address,uint256,address)",
    ),
    "repay": ("repay(address,uint256,uint256,address)",),
    "distribute": (
        "distribute()",
        "distributeRewards(address,uint256)",
    ),
}

# selector -> (transaction type, function name)
SELECTOR_TABLE: MappingProxyType[str, tuple[str, str]] = MappingProxyType(
    {
        selector(sig): (tx_type, sig.split("(", 1)[0])
        for tx_type, sigs in TRANSACTION_SIGNATURES.items()
        for sig in sigs
    }
)

# Treasury operations recognised by their raw selector.
TREASURY_SELECTORS: MappingProxyType[str, str] = MappingProxyType(
    {
        "0x6e553f65": "rebalance",
        "0x7ca3c7c2": "allocate",
    }
)

SWAP_EVENT_TOPICS: frozenset[str] = frozenset(
    {
        event_topic("Swap(address,uint256,uint256,uint256,uint256,address)"),
        event_topic("TokenExchange(address,uint256,uint256,uint256,uint256)"),
    }
)

YIELD_KEYWORDS: tuple[str, ...] = ("harvest", "stake", "farm")
RWA_YIELD_KEYWORDS: tuple[str, ...] = ("yield", "interest", "borrow")
DISTRIBUTION_KEYWORDS: tuple[str, ...] = ("distribute", "allocate")
