"""
Telegram message formatting for AllocateStablecoins notifications.

Pure functions: no I/O, no logging. Amount arithmetic is done on Python
ints (uint256 safe); conversion to a two-decimal string is the last step.
"""

from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Context, Decimal

from shared.constants import (
    ALLOCATE_STABLECOINS_EVENT,
    ETHERSCAN_TX_URL,
    UINT256_DIGITS,
    WAD,
)
from shared.types import DecodedAllocationEvent

_TWO_PLACES = Decimal("0.01")
# Wide enough that no uint256 / 1e18 quotient is rounded before quantize().
_CTX = Context(prec=UINT256_DIGITS + 4, rounding=ROUND_HALF_EVEN)


def scale_wad(amount: int) -> str:
    """Render a 1e18 base-unit integer with exactly two decimals."""
    scaled = _CTX.divide(Decimal(amount), WAD)
    return str(scaled.quantize(_TWO_PLACES, context=_CTX))


def format_change(prior_allocation: int, new_allocated: int) -> str:
    """``+X increase`` / ``-X decrease`` / ``No change`` for new - prior."""
    delta = new_allocated - prior_allocation
    if delta > 0:
        return f"+{scale_wad(delta)} increase"
    if delta < 0:
        return f"-{scale_wad(-delta)} decrease"
    return "No change"


def explorer_tx_link(tx_hash: str, explorer_tx_url: str = ETHERSCAN_TX_URL) -> str:
    return f"{explorer_tx_url}{tx_hash}"


def truncate_address(address: str) -> str:
    """First 10 characters of the hex form, then an ellipsis."""
    return address[:10] + "..."


def format_allocation_notice(
    event: DecodedAllocationEvent,
    tx_hash: str,
    explorer_tx_url: str = ETHERSCAN_TX_URL,
) -> str:
    """Markdown notice for a successfully decoded AllocateStablecoins log."""
    label = event.token_label
    return (
        f"🚀 *YieldBasis {label} Pool Cap Update*\n"
        f"\n"
        f"*YieldBasis Interface*: [View {label} Pool]({event.info_url})\n"
        f"\n"
        f"*Pool*: {label} Pool\n"
        f"*Event*: {ALLOCATE_STABLECOINS_EVENT}\n"
        f"\n"
        f"*Allocation*: {scale_wad(event.prior_allocation)} stablecoins\n"
        f"*Allocated*: {scale_wad(event.new_allocated)} stablecoins\n"
        f"*Change*: {format_change(event.prior_allocation, event.new_allocated)}\n"
        f"\n"
        f"*Transaction*: [View on Etherscan]({explorer_tx_link(tx_hash, explorer_tx_url)})\n"
        f"\n"
        f"*New {label} deposit capacity available!*"
    )


def format_undecoded_notice(
    token_label: str,
    event_type: str,
    pool_address: str,
    tx_hash: str,
    raw_data: bytes,
    explorer_tx_url: str = ETHERSCAN_TX_URL,
) -> str:
    """Markdown notice for a log whose payload could not be decoded."""
    return (
        f"🚀 *YieldBasis {token_label} Pool Event Detected*\n"
        f"\n"
        f"*Pool*: {token_label} Pool\n"
        f"*Event*: {event_type} (parsing failed)\n"
        f"*Address*: {truncate_address(pool_address)}\n"
        f"\n"
        f"*Raw Event Data*: 0x{bytes(raw_data).hex()}\n"
        f"\n"
        f"*Transaction*: [View on Etherscan]({explorer_tx_link(tx_hash, explorer_tx_url)})\n"
        f"\n"
        f"*Event detected but could not be parsed - please check transaction for details*"
    )
