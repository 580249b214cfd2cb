"""
Process supervisor for the YieldBasis Pool Cap Monitor.

Calls the watcher's ``run_once`` forever. Every failure is logged, followed by
one fixed pause and one fresh attempt. There is no backoff growth and, by
default, no attempt ceiling.

Usage:
    supervisor = Supervisor(watcher.run_once, retry_delay=10.0)
    await supervisor.run_forever()
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config, get_env_var
from shared.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY_SECONDS


def default_retry_delay() -> float:
    """timing.json ``supervisor.retry_delay_seconds``, overridable by RETRY_DELAY_SECONDS."""
    timing = get_config().get_timing_config().get("supervisor", {})
    configured = float(timing.get("retry_delay_seconds", DEFAULT_RETRY_DELAY_SECONDS))
    return get_env_var("RETRY_DELAY_SECONDS", configured, float)


class Supervisor:
    """Fixed-delay restart loop around a coroutine function that only ends by raising."""

    def __init__(
        self,
        run_once: Callable[[], Awaitable[Any]],
        retry_delay: float | None = None,
        max_attempts: int | None = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._run_once = run_once
        self.retry_delay: float = default_retry_delay() if retry_delay is None else retry_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.attempts: int = 0
        self.last_error: BaseException | None = None

        self._logger = setup_module_logger(
            "supervisor", "supervisor.log", module_folder="Supervisor_Logs"
        )

    async def run_forever(self) -> None:
        """
        Invoke ``run_once`` until cancelled.

        Returns only when ``max_attempts`` is set and exhausted (tests).
        ``asyncio.CancelledError`` propagates for shutdown.
        """
        while self.max_attempts is None or self.attempts < self.max_attempts:
            self.attempts += 1
            try:
                await self._run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.last_error = exc
                self._logger.error("Monitoring stopped: %s", exc, exc_info=exc)
            else:
                self.last_error = None
                self._logger.warning("Monitoring stopped without an error")

            if self.max_attempts is not None and self.attempts >= self.max_attempts:
                break
            self._logger.info("Retrying in %g seconds...", self.retry_delay)
            await self._sleep(self.retry_delay)
