"""
Shared data types for the YieldBasis Pool Cap Monitor.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class WatcherState(Enum):
    CONNECTING = "connecting"  # socket, schema and notifier being set up
    SUBSCRIBED = "subscribed"  # eth_subscribe acknowledged, receiving logs
    TERMINATED = "terminated"  # run_once is about to raise


# ---------------------------------------------------------------------------
# Configuration Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PoolDescriptor:
    address: str  # EIP-55 checksum address
    token_label: str  # e.g. "WBTC", or "UNKNOWN"
    info_url: str  # YieldBasis interface link


@dataclass(frozen=True)
class WatcherConfig:
    node_ws_url: str
    telegram_token: str
    telegram_destination: str  # numeric chat id or "@handle"
    pools: tuple[PoolDescriptor, ...]

    @property
    def pool_addresses(self) -> list[str]:
        return [pool.address for pool in self.pools]

    def find_pool(self, address: str) -> PoolDescriptor | None:
        """Return the first pool whose address equals ``address`` (case-insensitive)."""
        wanted = address.lower()
        for pool in self.pools:
            if pool.address.lower() == wanted:
                return pool
        return None


# ---------------------------------------------------------------------------
# Event Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawLogEntry:
    """One log notification as delivered by eth_subscribe."""

    source_address: str  # checksum address of the emitting contract
    topics: tuple[bytes, ...]  # 32-byte topic hashes
    data: bytes  # ABI-encoded non-indexed parameters
    transaction_hash: str  # 0x-prefixed hex


@dataclass(frozen=True)
class DecodedAllocationEvent:
    allocator: str
    prior_allocation: int  # base units (1e18)
    new_allocated: int  # base units (1e18)
    pool_address: str
    token_label: str
    info_url: str
