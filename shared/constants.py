"""
Shared constants for the YieldBasis Pool Cap Monitor.

Pool addresses, lookup tables, event signatures and default values used
across all modules.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

WAD = Decimal("1_000_000_000_000_000_000")  # 1e18 (stablecoin base units)
UINT256_DIGITS = 78  # decimal digits in 2**256 - 1

# ---------------------------------------------------------------------------
# Event Definitions
# ---------------------------------------------------------------------------

ALLOCATE_STABLECOINS_EVENT = "AllocateStablecoins"
ALLOCATE_STABLECOINS_SIGNATURE = "AllocateStablecoins(address,uint256,uint256)"
ALLOCATION_FIELD = "stablecoin_allocation"  # prior allocation (data word 0)
ALLOCATED_FIELD = "stablecoin_allocated"  # new allocated amount (data word 1)

# ---------------------------------------------------------------------------
# YieldBasis Pools (Ethereum mainnet)
# ---------------------------------------------------------------------------

POOL_WBTC = "0x6095a220C5567360d459462A25b1AD5aEAD45204"
POOL_TBTC = "0x2B513eBe7070Cff91cf699a0BFe5075020C732FF"
POOL_CBBTC = "0xD6a1147666f6E4d7161caf436d9923D44d901112"

DEFAULT_POOL_ADDRESSES = (POOL_WBTC, POOL_TBTC, POOL_CBBTC)

UNKNOWN_TOKEN_LABEL = "UNKNOWN"
ZERO_ADDRESS = "0x" + "00" * 20
DEFAULT_INFO_URL = "https://yieldbasis.com"

# Keys are lowercase; lookups lower() the candidate first.
POOL_TOKEN_LABELS: dict[str, str] = {
    "0x6095a220c5567360d459462a25b1ad5aead45204": "WBTC",
    "0x2b513ebe7070cff91cf699a0bfe5075020c732ff": "TBTC",
    "0xd6a1147666f6e4d7161caf436d9923d44d901112": "CBBTC",
}

# Keyed independently of POOL_TOKEN_LABELS. The first key is not the WBTC
# pool, so WBTC resolves to DEFAULT_INFO_URL (see DESIGN.md, known limitations).
POOL_INFO_URLS: dict[str, str] = {
    "0xa5bfb61af14afe7b81cac7fa4f7c4483dedc36df": (
        "https://yieldbasis.com/market/0x6095a220C5567360d459462A25b1AD5aEAD45204"
    ),
    "0x2b513ebe7070cff91cf699a0bfe5075020c732ff": (
        "https://yieldbasis.com/market/0x2B513eBe7070Cff91cf699a0BFe5075020C732FF"
    ),
    "0xd6a1147666f6e4d7161caf436d9923d44d901112": (
        "https://yieldbasis.com/market/0xD6a1147666f6E4d7161caf436d9923D44d901112"
    ),
}

# ---------------------------------------------------------------------------
# External Endpoints
# ---------------------------------------------------------------------------

ETHERSCAN_TX_URL = "https://etherscan.io/tx/"
TELEGRAM_API_BASE_URL = "https://api.telegram.org"

# ---------------------------------------------------------------------------
# Supervisor Defaults
# ---------------------------------------------------------------------------

DEFAULT_RETRY_DELAY_SECONDS = 10.0
DEFAULT_MAX_ATTEMPTS = None  # no ceiling: restart forever
