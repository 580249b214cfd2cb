"""
Configuration loader for the YieldBasis Pool Cap Monitor.

Two sources feed the process:
    * JSON files in config/ (logging, timing, Telegram settings, the bundled
      contract ABI), served through the cached ``ConfigLoader`` singleton.
    * Environment variables (optionally from a ``.env`` file) holding the
      node URL, the bot secrets and the pool list, resolved once into an
      immutable ``WatcherConfig`` by ``load_watcher_config``.

Usage:
    from config.loader import get_config, load_watcher_config

    watcher_config = load_watcher_config()
    timing = get_config().get_timing_config()
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from eth_utils import is_hex_address
from web3 import Web3

from shared.constants import (
    DEFAULT_INFO_URL,
    DEFAULT_POOL_ADDRESSES,
    POOL_INFO_URLS,
    POOL_TOKEN_LABELS,
    UNKNOWN_TOKEN_LABEL,
)
from shared.types import PoolDescriptor, WatcherConfig

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent

ENV_NODE_WS_URL = "INFURA_WS_URL"
ENV_TELEGRAM_TOKEN = "TELEGRAM_BOT_TOKEN"
ENV_TELEGRAM_DESTINATION = "TELEGRAM_CHAT_ID"
ENV_POOL_ADDRESSES = "POOL_ADDRESSES"


class ConfigError(ValueError):
    """Raised when the environment cannot produce a valid WatcherConfig."""


class MissingConfig(ConfigError):
    """A required environment value is empty, or no pools were resolved."""


class InvalidAddress(ConfigError):
    """A POOL_ADDRESSES entry is not a 20-byte hex address."""

    def __init__(self, value: str) -> None:
        super().__init__(f"invalid pool address: {value!r}")
        self.value = value


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central JSON configuration manager.

    Loads configuration from JSON files in the config/ directory.
    All accessor methods are cached via @lru_cache.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings (logging)."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load retry delay, WebSocket and HTTP timeouts."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_telegram_config(self) -> Dict[str, Any]:
        """Load Telegram Bot API settings."""
        return _load_json(self._config_dir / "telegram.json")

    # ------------------------------------------------------------------
    # ABI location
    # ------------------------------------------------------------------

    def get_abi_path(self, abi_name: str) -> Path:
        """Path of config/abis/<abi_name>.json (existence is checked by the reader)."""
        return self._config_dir / "abis" / f"{abi_name}.json"

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()


# ---------------------------------------------------------------------------
# Environment -> WatcherConfig
# ---------------------------------------------------------------------------

def resolve_token_label(address: str) -> str:
    """Case-insensitive lookup in the label table, ``UNKNOWN`` when absent."""
    return POOL_TOKEN_LABELS.get(address.lower(), UNKNOWN_TOKEN_LABEL)


def resolve_info_url(address: str) -> str:
    """Case-insensitive lookup in the URL table, generic site when absent."""
    return POOL_INFO_URLS.get(address.lower(), DEFAULT_INFO_URL)


def parse_pool_addresses(raw: str) -> tuple[PoolDescriptor, ...]:
    """
    Expand a comma-separated address list into pool descriptors, order preserved.

    Raises ``InvalidAddress`` on the first malformed entry.
    """
    pools = []
    for item in raw.split(","):
        addr = item.strip()
        if not is_hex_address(addr):
            raise InvalidAddress(addr)
        address = Web3.to_checksum_address(addr)
        pools.append(
            PoolDescriptor(
                address=address,
                token_label=resolve_token_label(address),
                info_url=resolve_info_url(address),
            )
        )
    return tuple(pools)


def load_watcher_config(environ: Optional[Mapping[str, str]] = None) -> WatcherConfig:
    """
    Resolve and validate the watcher configuration from the environment.

    ``.env`` values are already in os.environ (load_dotenv runs on import).
    Tests pass ``environ`` explicitly.

    Raises:
        MissingConfig: node URL, bot token or destination is empty, or no
            pools were resolved.
        InvalidAddress: a POOL_ADDRESSES entry is malformed.
    """
    env = os.environ if environ is None else environ

    node_ws_url = env.get(ENV_NODE_WS_URL, "")
    telegram_token = env.get(ENV_TELEGRAM_TOKEN, "")
    telegram_destination = env.get(ENV_TELEGRAM_DESTINATION, "")

    for var_name, value in (
        (ENV_NODE_WS_URL, node_ws_url),
        (ENV_TELEGRAM_TOKEN, telegram_token),
        (ENV_TELEGRAM_DESTINATION, telegram_destination),
    ):
        if not value:
            raise MissingConfig(f"{var_name} is required")

    raw_pools = env.get(ENV_POOL_ADDRESSES, "")
    if not raw_pools:
        raw_pools = ",".join(DEFAULT_POOL_ADDRESSES)

    pools = parse_pool_addresses(raw_pools)
    if not pools:
        raise MissingConfig("no valid pool addresses found")

    return WatcherConfig(
        node_ws_url=node_ws_url,
        telegram_token=telegram_token,
        telegram_destination=telegram_destination,
        pools=pools,
    )
