"""
Shared pytest configuration and fixtures for the YieldBasis Pool Cap Monitor tests.

Provides common fixtures used across both unit and integration test suites.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode as abi_encode
from eth_utils import keccak

from shared.constants import (
    ALLOCATE_STABLECOINS_SIGNATURE,
    DEFAULT_INFO_URL,
    POOL_CBBTC,
    POOL_INFO_URLS,
    POOL_TBTC,
    POOL_WBTC,
)
from shared.types import PoolDescriptor, WatcherConfig

# ---------------------------------------------------------------------------
# Sample on-chain data
# ---------------------------------------------------------------------------

# Real-world AllocateStablecoins example (WBTC pool)
SAMPLE_ALLOCATOR = "0x370a449fe8b9411c95bf897021377fe007D100c0"
SAMPLE_PRIOR_ALLOCATION = 200_000_000 * 10**18
SAMPLE_NEW_ALLOCATED = 0
SAMPLE_TX_HASH = "0x" + "ab" * 32
SAMPLE_SUBSCRIPTION_ID = "0x9cef478923ff08bf67fde6c64013158d"


@pytest.fixture
def allocate_topic() -> bytes:
    """topic0 of AllocateStablecoins logs."""
    return keccak(text=ALLOCATE_STABLECOINS_SIGNATURE)


@pytest.fixture
def encode_allocation():
    """Factory: ABI-encode the two uint256 data words of AllocateStablecoins."""

    def _encode(prior: int, new: int) -> bytes:
        return abi_encode(["uint256", "uint256"], [prior, new])

    return _encode


@pytest.fixture
def address_topic():
    """Factory: left-pad a 20-byte address into a 32-byte hex topic."""

    def _topic(address: str) -> str:
        return "0x" + "00" * 12 + address[2:].lower()

    return _topic


@pytest.fixture
def make_rpc_log(allocate_topic, encode_allocation, address_topic):
    """Factory: a log object as it appears in ``params.result`` of eth_subscription.

    Defaults describe the sample WBTC allocation (200,000,000 -> 0).
    """

    def _make(
        address: str = POOL_WBTC,
        topics: list[str] | None = None,
        data: bytes | str | None = None,
        tx_hash: str = SAMPLE_TX_HASH,
    ) -> dict:
        if topics is None:
            topics = ["0x" + allocate_topic.hex(), address_topic(SAMPLE_ALLOCATOR)]
        if data is None:
            data = encode_allocation(SAMPLE_PRIOR_ALLOCATION, SAMPLE_NEW_ALLOCATED)
        if isinstance(data, bytes):
            data = "0x" + data.hex()
        return {
            "address": address.lower(),
            "topics": topics,
            "data": data,
            "blockNumber": "0x1409a2b",
            "transactionHash": tx_hash,
            "logIndex": "0x5",
            "removed": False,
        }

    return _make


@pytest.fixture
def subscription_message():
    """Factory: wrap a log object in an eth_subscription notification frame."""

    def _wrap(log: dict, subscription: str = SAMPLE_SUBSCRIPTION_ID) -> str:
        return json.dumps(
            {
                "jsonrpc": "2.0",
                "method": "eth_subscription",
                "params": {"subscription": subscription, "result": log},
            }
        )

    return _wrap


@pytest.fixture
def subscribe_ack() -> str:
    return json.dumps({"jsonrpc": "2.0", "id": 1, "result": SAMPLE_SUBSCRIPTION_ID})


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def standard_pools() -> tuple[PoolDescriptor, ...]:
    return (
        PoolDescriptor(
            POOL_WBTC, "WBTC", POOL_INFO_URLS.get(POOL_WBTC.lower(), DEFAULT_INFO_URL)
        ),
        PoolDescriptor(POOL_TBTC, "TBTC", POOL_INFO_URLS[POOL_TBTC.lower()]),
        PoolDescriptor(POOL_CBBTC, "CBBTC", POOL_INFO_URLS[POOL_CBBTC.lower()]),
    )


@pytest.fixture
def watcher_config(standard_pools) -> WatcherConfig:
    return WatcherConfig(
        node_ws_url="wss://mainnet.example/ws/v3/KEY",
        telegram_token="123456:TEST_TOKEN",
        telegram_destination="@yb_caps",
        pools=standard_pools,
    )


@pytest.fixture
def mock_notifier():
    """TelegramNotifier stand-in: start/send/close are AsyncMocks."""
    notifier = MagicMock()
    notifier.start = AsyncMock(return_value=None)
    notifier.send = AsyncMock(return_value={"message_id": 1})
    notifier.close = AsyncMock(return_value=None)
    return notifier
