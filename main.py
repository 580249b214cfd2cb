"""
YieldBasis Pool Cap Monitor - Main Entrypoint.

Single-process asyncio runner:
    1. Load .env, validate JSON config, resolve the watcher configuration
       (any error here is fatal: exit code 1).
    2. Run the AllocationWatcher under the Supervisor, which restarts the
       whole subscription 10 seconds after every failure, forever.

Environment:
    INFURA_WS_URL        Ethereum node WebSocket URL (required)
    TELEGRAM_BOT_TOKEN   Telegram bot token (required)
    TELEGRAM_CHAT_ID     numeric chat id or @channel (required)
    POOL_ADDRESSES       comma-separated pool addresses (optional)

Usage:
    python main.py
"""

from __future__ import annotations

import asyncio
import signal
import sys

from dotenv import load_dotenv

from bot_logging.logger_manager import create_module_log_directories, setup_module_logger
from config.loader import ConfigError, load_watcher_config
from config.validate import ConfigValidationError, validate_all_configs
from shared.types import WatcherConfig

# ---------------------------------------------------------------------------
# Module logger (logged to logs/ root, no sub-folder)
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(config: WatcherConfig) -> None:
    """Log a concise startup summary (secrets are never logged)."""
    url = config.node_ws_url
    _logger.info("=" * 60)
    _logger.info("YieldBasis Pool Cap Monitor starting")
    _logger.info("=" * 60)
    _logger.info("  node        : %s...%s", url[:25], url[-6:] if len(url) > 31 else "")
    _logger.info("  destination : %s", config.telegram_destination)
    _logger.info("  pools       : %d", len(config.pools))
    for pool in config.pools:
        _logger.info("    %-7s %s", pool.token_label, pool.address)
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def load_configuration() -> WatcherConfig:
    """Load .env and validate everything; exits the process on failure."""
    if not load_dotenv():
        _logger.info("No .env file found, using environment variables")

    try:
        validate_all_configs()
        return load_watcher_config()
    except (ConfigValidationError, ConfigError) as exc:
        _logger.critical("Failed to load configuration: %s", exc)
        sys.exit(1)


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run(config: WatcherConfig) -> None:
    """Wire the watcher under the supervisor and run until a shutdown signal."""
    from core.supervisor import Supervisor
    from data.allocation_watcher import AllocationWatcher
    from execution.telegram_notifier import TelegramNotifier

    notifier = TelegramNotifier(config.telegram_token)
    watcher = AllocationWatcher(config, notifier)
    supervisor = Supervisor(watcher.run_once)

    task = asyncio.create_task(supervisor.run_forever(), name="supervisor")

    # ------------------------------------------------------------------
    # Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        await task
    except asyncio.CancelledError:
        _logger.info("Shutdown complete")
    finally:
        await notifier.close()


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    create_module_log_directories()
    _logger.info("Starting YieldBasis Pool Cap Monitor...")
    config = load_configuration()
    _log_banner(config)
    try:
        asyncio.run(_run(config))
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
