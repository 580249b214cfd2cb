"""
Telegram Bot API client for the YieldBasis Pool Cap Monitor.

Posts Markdown notifications via ``sendMessage`` with link previews
disabled. Transport failures surface as ``TransportError``; retry policy
belongs to the caller.

Usage:
    notifier = TelegramNotifier(token)
    await notifier.start()          # getMe, raises SenderInitError
    await notifier.send("@mychannel", message)
    await notifier.close()
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, cast

import aiohttp

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import TELEGRAM_API_BASE_URL

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_CHAT_ID_RE = re.compile(r"[+-]?[0-9]+")


class TelegramNotifierError(Exception):
    """Base error for Telegram notifier failures."""


class SenderInitError(TelegramNotifierError):
    """Raised when the bot cannot be initialised (bad token, API unreachable)."""


class TransportError(TelegramNotifierError):
    """Raised when a single sendMessage call fails."""


def resolve_destination(destination: str) -> int | str:
    """
    Map a configured destination to a Bot API ``chat_id``.

    ``@handle`` is sent as-is; a base-10 int64 becomes a numeric chat id;
    anything else is sent as ``"@" + destination``.
    """
    if destination.startswith("@"):
        return destination
    if not _CHAT_ID_RE.fullmatch(destination):
        return "@" + destination
    chat_id = int(destination, 10)
    if not _INT64_MIN <= chat_id <= _INT64_MAX:
        return "@" + destination
    return chat_id


class TelegramNotifier:
    """Async Telegram Bot API sender backed by a lazily created aiohttp session."""

    def __init__(self, token: str, session: aiohttp.ClientSession | None = None) -> None:
        self._token = token

        cfg = get_config()
        tg_cfg = cfg.get_telegram_config()
        timing_cfg = cfg.get_timing_config().get("telegram", {})

        self._base_url: str = tg_cfg.get("api_base_url", TELEGRAM_API_BASE_URL).rstrip("/")
        self._parse_mode: str = tg_cfg.get("parse_mode", "Markdown")
        self._disable_preview: bool = tg_cfg.get("disable_web_page_preview", True)
        self._timeout: float = timing_cfg.get("request_timeout_seconds", 15)

        self._session = session
        self._owns_session = session is None
        self.bot_username: str | None = None

        self._logger = setup_module_logger(
            "telegram_notifier", "telegram.log", module_folder="Telegram_Logs"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Verify the token with ``getMe``. Raises ``SenderInitError``."""
        try:
            me = await self._call("getMe")
        except TransportError as exc:
            raise SenderInitError(f"failed to create Telegram bot: {exc}") from exc
        self.bot_username = me.get("username")
        self._logger.info("Telegram bot initialized: %s", self.bot_username)

    async def close(self) -> None:
        """Close the underlying aiohttp session (only if we created it)."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, destination: str, message: str) -> dict[str, Any]:
        """
        Send ``message`` to ``destination``. Returns the API ``result`` object.

        Raises ``TransportError`` on any failure; never retries.
        """
        payload = {
            "chat_id": resolve_destination(destination),
            "text": message,
            "parse_mode": self._parse_mode,
            "disable_web_page_preview": self._disable_preview,
        }
        result = await self._call("sendMessage", payload)
        self._logger.debug("Message %s delivered to %s", result.get("message_id"), destination)
        return result

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _call(self, method: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}/bot{self._token}/{method}"
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        session = self._get_session()
        try:
            async with session.post(url, json=payload or {}, timeout=timeout) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
                if not isinstance(body, dict):
                    resp.raise_for_status()
                    raise TransportError(f"{method}: unexpected response (HTTP {resp.status})")
        except aiohttp.ClientError as exc:
            raise TransportError(f"{method}: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{method}: timed out after {self._timeout}s") from exc

        if not body.get("ok", False):
            description = body.get("description", "unknown error")
            error_code = body.get("error_code", resp.status)
            raise TransportError(f"{method}: {error_code} {description}")
        return cast(dict[str, Any], body.get("result", {}))
