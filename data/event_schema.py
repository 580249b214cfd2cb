"""
Contract event schema for the YieldBasis Pool Cap Monitor.

Wraps the bundled YieldBasis LT contract ABI (config/abis/yieldbasis_lt.json)
and decodes raw log payloads into named fields with eth_abi.

Usage:
    schema = EventSchema.load(get_config().get_abi_path("yieldbasis_lt"))
    topic0 = schema.topic("AllocateStablecoins")
    fields = schema.decode("AllocateStablecoins", entry.data)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from eth_abi.abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from shared.constants import ALLOCATE_STABLECOINS_EVENT, ALLOCATE_STABLECOINS_SIGNATURE

DEFAULT_ABI_NAME = "yieldbasis_lt"

# topic0 of every AllocateStablecoins log
ALLOCATE_STABLECOINS_TOPIC = bytes(Web3.keccak(text=ALLOCATE_STABLECOINS_SIGNATURE))


class SchemaLoadError(Exception):
    """Raised when the ABI resource is missing, malformed, or lacks a required event."""


class DecodeError(Exception):
    """Raised when a log payload does not match the event's non-indexed inputs."""


def _canonical_type(param: dict[str, Any]) -> str:
    """ABI type string, expanding tuples to (t1,t2,...)."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


class EventSchema:
    """Read-only view of the event entries of one contract ABI."""

    def __init__(self, abi: list[dict[str, Any]], required_events: tuple[str, ...] = ()) -> None:
        self._events: dict[str, dict[str, Any]] = {
            item["name"]: item
            for item in abi
            if isinstance(item, dict) and item.get("type") == "event" and "name" in item
        }
        missing = [name for name in required_events if name not in self._events]
        if missing:
            raise SchemaLoadError(f"ABI has no event definition for: {', '.join(missing)}")

    @classmethod
    def load(
        cls,
        path: str | Path,
        required_events: tuple[str, ...] = (ALLOCATE_STABLECOINS_EVENT,),
    ) -> EventSchema:
        """
        Read an ABI JSON file (raw array or {"abi": [...]}).

        Raises ``SchemaLoadError`` if the file is missing, is not valid JSON,
        or does not define every event in ``required_events``.
        """
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError as exc:
            raise SchemaLoadError(f"failed to read ABI file {path}: {exc}") from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise SchemaLoadError(f"failed to parse ABI {path}: {exc}") from exc

        if isinstance(data, dict):
            data = data.get("abi")
        if not isinstance(data, list):
            raise SchemaLoadError(f"ABI {path} is not a list of entries")
        return cls(data, required_events)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def has_event(self, event_name: str) -> bool:
        return event_name in self._events

    def signature(self, event_name: str) -> str:
        """Canonical signature, e.g. ``AllocateStablecoins(address,uint256,uint256)``."""
        event = self._get_event(event_name)
        types = ",".join(_canonical_type(p) for p in event.get("inputs", []))
        return f"{event_name}({types})"

    def topic(self, event_name: str) -> bytes:
        """keccak256 of the canonical signature (topic 0 of every matching log)."""
        return bytes(Web3.keccak(text=self.signature(event_name)))

    def require_signature(self, event_name: str, expected: str) -> None:
        """Raise ``SchemaLoadError`` unless ``event_name`` has signature ``expected``."""
        actual = self.signature(event_name)
        if actual != expected:
            raise SchemaLoadError(f"ABI declares {actual}, expected {expected}")

    def indexed_inputs(self, event_name: str) -> list[dict[str, Any]]:
        return [p for p in self._get_event(event_name).get("inputs", []) if p.get("indexed")]

    def data_inputs(self, event_name: str) -> list[dict[str, Any]]:
        return [p for p in self._get_event(event_name).get("inputs", []) if not p.get("indexed")]

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, event_name: str, raw_data: bytes) -> dict[str, Any]:
        """
        Decode the non-indexed inputs of ``event_name`` from ``raw_data``.

        Returns a mapping of ABI input name to decoded value (uint -> int).
        Raises ``DecodeError`` when the byte layout does not match.
        """
        inputs = self.data_inputs(event_name)
        types = [_canonical_type(p) for p in inputs]
        try:
            values = abi_decode(types, bytes(raw_data))
        except (DecodingError, ValueError, TypeError) as exc:
            raise DecodeError(
                f"cannot decode {event_name} from {len(raw_data)} bytes: {exc}"
            ) from exc
        return {p.get("name", f"arg{i}"): v for i, (p, v) in enumerate(zip(inputs, values))}

    def _get_event(self, event_name: str) -> dict[str, Any]:
        try:
            return self._events[event_name]
        except KeyError:
            raise SchemaLoadError(f"ABI has no event definition for {event_name}") from None


def decode_indexed_address(topic: bytes) -> str:
    """Checksum address held in the low 20 bytes of a 32-byte topic."""
    if len(topic) != 32:
        raise DecodeError(f"indexed topic must be 32 bytes, got {len(topic)}")
    return Web3.to_checksum_address("0x" + topic[-20:].hex())
