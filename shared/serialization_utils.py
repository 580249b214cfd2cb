"""
Serialization utilities for the YieldBasis Pool Cap Monitor.

Provides JSON encoding for Decimal, HexBytes and uint256 integers, plus the
hex/bytes normalisation used when turning JSON-RPC log payloads into
``RawLogEntry`` values.

Usage:
    from shared.serialization_utils import DecimalEncoder, raw_log_from_rpc
    json.dumps(data, cls=DecimalEncoder)
    entry = raw_log_from_rpc(params["result"])
"""

import json
from decimal import Decimal
from json import JSONEncoder
from typing import Any

from web3 import Web3
from hexbytes import HexBytes

from shared.types import RawLogEntry


class DecimalEncoder(JSONEncoder):
    """
    Custom JSON encoder handling Decimal, HexBytes, bytes and large integers.

    Sources:
    - RFC 7159 section 6 (JSON number limits)
    - IEEE 754-2008 (double precision safe integer limit: 2^53 - 1)
    """

    # IEEE 754 double precision safe integer limit
    _MAX_SAFE_INTEGER = 2**53 - 1

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (HexBytes, bytes)):
            return to_hex(obj)
        return super().default(obj)

    def encode(self, obj: Any) -> str:
        """Override encode to convert large integers to strings before JSON serialization."""
        return super().encode(self._convert_large_ints(obj))

    def _convert_large_ints(self, obj: Any) -> Any:
        """Recursively convert uint256 values above the safe integer limit to strings."""
        if isinstance(obj, dict):
            return {k: self._convert_large_ints(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self._convert_large_ints(item) for item in obj]
        elif isinstance(obj, int) and not isinstance(obj, bool) and (
            obj > self._MAX_SAFE_INTEGER or obj < -self._MAX_SAFE_INTEGER
        ):
            return str(obj)
        return obj


def to_hex(value: bytes) -> str:
    """Lowercase 0x-prefixed hex of a byte string."""
    return "0x" + bytes(value).hex()


def to_bytes(value: Any) -> bytes:
    """Accept hex strings (with or without 0x), bytes or HexBytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes(HexBytes(value)) if value not in ("", "0x") else b""
    raise TypeError(f"Cannot convert {type(value).__name__} to bytes")


def raw_log_from_rpc(log_data: dict[str, Any]) -> RawLogEntry:
    """
    Build a ``RawLogEntry`` from the ``result`` of an eth_subscription message.

    Raises ``ValueError`` (or ``TypeError``) when the payload is malformed.
    """
    address = log_data.get("address")
    if not address:
        raise ValueError("log entry has no address")
    if isinstance(address, (bytes, bytearray)):
        address = to_hex(address)

    tx_hash = log_data.get("transactionHash")
    if isinstance(tx_hash, (bytes, bytearray)):
        tx_hash = to_hex(tx_hash)
    if not isinstance(tx_hash, str) or not tx_hash:
        raise ValueError(f"log entry has no transactionHash: {tx_hash!r}")

    return RawLogEntry(
        source_address=Web3.to_checksum_address(address),
        topics=tuple(to_bytes(t) for t in log_data.get("topics", [])),
        data=to_bytes(log_data.get("data", "0x")),
        transaction_hash=tx_hash,
    )
