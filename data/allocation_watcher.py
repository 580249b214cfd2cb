"""
AllocateStablecoins Watcher - Real-Time YieldBasis Pool Listener

Purpose:
    Connect to an Ethereum node via WebSocket, subscribe to AllocateStablecoins
    logs emitted by the configured YieldBasis pools, decode each log with the
    bundled ABI, and push a Telegram notification per event.

Lifecycle of one ``run_once()`` call:
    CONNECTING  open socket -> load ABI -> start Telegram bot
    SUBSCRIBED  eth_subscribe("logs", {address: pools, topics: [[topic0]]}),
                then handle notifications one at a time, in arrival order
    TERMINATED  raise; the supervisor decides when to call run_once() again

Per-log failures (undecodable payload, Telegram send failure) are logged and
never end the subscription.

Usage:
    watcher = AllocationWatcher(watcher_config, TelegramNotifier(token))
    await watcher.run_once()   # only returns by raising
"""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from bot_logging.logger_manager import (
    create_module_log_directories,
    log_data_entry,
    log_data_output,
    setup_module_logger,
)
from config.loader import get_config
from core.notification_formatter import format_allocation_notice, format_undecoded_notice
from data.event_schema import (
    ALLOCATE_STABLECOINS_TOPIC,
    DEFAULT_ABI_NAME,
    DecodeError,
    EventSchema,
    decode_indexed_address,
)
from execution.telegram_notifier import TelegramNotifier, TransportError
from shared.constants import (
    ALLOCATE_STABLECOINS_EVENT,
    ALLOCATE_STABLECOINS_SIGNATURE,
    ALLOCATED_FIELD,
    ALLOCATION_FIELD,
    DEFAULT_INFO_URL,
    ETHERSCAN_TX_URL,
    UNKNOWN_TOKEN_LABEL,
    ZERO_ADDRESS,
)
from shared.serialization_utils import raw_log_from_rpc, to_hex
from shared.types import DecodedAllocationEvent, RawLogEntry, WatcherConfig, WatcherState

_SUBSCRIBE_REQUEST_ID = 1
_UNSUBSCRIBE_REQUEST_ID = 2


class WatcherError(Exception):
    """Base error for a terminated watcher run."""


class NodeConnectionError(WatcherError):
    """Raised when the WebSocket connection to the node cannot be opened."""


class SubscriptionError(WatcherError):
    """Raised when eth_subscribe fails or the live subscription drops."""


# Trace ID counter (monotonic, used as simple trace_id for low overhead)
_trace_counter: int = 0


def _generate_trace_id() -> str:
    """Generate a lightweight trace ID: timestamp_ms-YBW-counter."""
    global _trace_counter
    _trace_counter += 1
    return f"{int(time.time() * 1000)}-YBW-{_trace_counter:08d}"


def build_subscription_request(addresses: list[str], topic0: bytes) -> dict[str, Any]:
    """eth_subscribe JSON-RPC payload for logs from ``addresses`` with ``topic0``."""
    return {
        "jsonrpc": "2.0",
        "id": _SUBSCRIBE_REQUEST_ID,
        "method": "eth_subscribe",
        "params": [
            "logs",
            {
                "address": addresses,
                "topics": [[to_hex(topic0)]],
            },
        ],
    }


class AllocationWatcher:
    """
    One subscription attempt per ``run_once()`` call.

    The socket factory, ABI path and notifier are injected so tests can drive
    the loop with fakes.
    """

    def __init__(
        self,
        config: WatcherConfig,
        notifier: TelegramNotifier,
        abi_path: str | Path | None = None,
        connect: Callable[..., Awaitable[Any]] = websockets.connect,
    ) -> None:
        self._config = config
        self._notifier = notifier
        self._connect = connect

        cfg = get_config()
        self._abi_path = Path(abi_path) if abi_path is not None else cfg.get_abi_path(DEFAULT_ABI_NAME)

        ws_cfg = cfg.get_timing_config().get("websocket", {})
        self._ping_interval: float = ws_cfg.get("ping_interval_seconds", 20)
        self._ping_timeout: float = ws_cfg.get("ping_timeout_seconds", 30)
        self._close_timeout: float = ws_cfg.get("close_timeout_seconds", 10)
        self._subscription_timeout: float = ws_cfg.get(
            "subscription_response_timeout_seconds", 15
        )
        self._message_timeout: float = ws_cfg.get("message_receive_timeout_seconds", 120)

        self._explorer_tx_url: str = cfg.get_telegram_config().get(
            "explorer_tx_url", ETHERSCAN_TX_URL
        )

        self.state: WatcherState = WatcherState.TERMINATED
        self.subscription_id: str | None = None

        create_module_log_directories()
        self._logger = setup_module_logger(
            "allocation_watcher", "watcher.log", module_folder="Watcher_Logs"
        )

    # ------------------------------------------------------------------
    # Main entry
    # ------------------------------------------------------------------

    async def run_once(self) -> NoReturn:
        """
        Connect, subscribe and process logs until the connection fails.

        Raises ``NodeConnectionError``, ``SchemaLoadError``, ``SenderInitError``
        or ``SubscriptionError``. Socket, subscription and HTTP session are
        released on every exit path.
        """
        self._set_state(WatcherState.CONNECTING)
        self.subscription_id = None
        try:
            ws = await self._open_socket()
            try:
                schema = EventSchema.load(self._abi_path)
                schema.require_signature(ALLOCATE_STABLECOINS_EVENT, ALLOCATE_STABLECOINS_SIGNATURE)
                await self._notifier.start()

                for pool in self._config.pools:
                    self._logger.info("Monitoring %s pool: %s", pool.token_label, pool.address)
                self._logger.info(
                    "Telegram notifications will be sent to: %s",
                    self._config.telegram_destination,
                )

                self.subscription_id = await self._subscribe(ws, ALLOCATE_STABLECOINS_TOPIC)
                self._set_state(WatcherState.SUBSCRIBED)
                self._logger.info(
                    "Monitoring %d pools for %s events...",
                    len(self._config.pools),
                    ALLOCATE_STABLECOINS_EVENT,
                )

                await self._receive_loop(ws, schema)
            finally:
                await self._unsubscribe(ws)
                await ws.close()
        finally:
            await self._notifier.close()
            self._set_state(WatcherState.TERMINATED)

    # ------------------------------------------------------------------
    # Connection / subscription
    # ------------------------------------------------------------------

    async def _open_socket(self) -> Any:
        self._logger.info("[WEBSOCKET] Connecting to Ethereum node...")
        try:
            ws = await self._connect(
                self._config.node_ws_url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_timeout,
                close_timeout=self._close_timeout,
                max_size=10 * 1024 * 1024,  # 10MB max message
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise NodeConnectionError(f"failed to connect to Ethereum client: {exc}") from exc
        self._logger.info("[WEBSOCKET] Connected.")
        return ws

    async def _subscribe(self, ws: Any, topic0: bytes) -> str:
        request = build_subscription_request(self._config.pool_addresses, topic0)
        try:
            await ws.send(json.dumps(request))
            raw = await asyncio.wait_for(ws.recv(), timeout=self._subscription_timeout)
        except asyncio.TimeoutError as exc:
            raise SubscriptionError("subscription response timed out") from exc
        except ConnectionClosed as exc:
            raise SubscriptionError(f"connection closed while subscribing: {exc}") from exc

        try:
            response = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SubscriptionError(f"invalid subscription response: {exc}") from exc

        if not isinstance(response, dict):
            raise SubscriptionError(f"invalid subscription response: {raw!r}")
        if "error" in response:
            raise SubscriptionError(f"failed to subscribe to logs: {response['error']}")
        sub_id = response.get("result")
        if not sub_id:
            raise SubscriptionError(f"subscription response has no id: {response!r}")

        self._logger.info("[WEBSOCKET] Subscribed. Subscription ID: %s", sub_id)
        return sub_id

    async def _unsubscribe(self, ws: Any) -> None:
        """Best-effort eth_unsubscribe; the reply is not awaited."""
        if self.subscription_id is None:
            return
        request = {
            "jsonrpc": "2.0",
            "id": _UNSUBSCRIBE_REQUEST_ID,
            "method": "eth_unsubscribe",
            "params": [self.subscription_id],
        }
        try:
            await ws.send(json.dumps(request))
        except (ConnectionClosed, OSError) as exc:
            self._logger.debug("[WEBSOCKET] eth_unsubscribe not sent: %s", exc)
        self.subscription_id = None

    # ------------------------------------------------------------------
    # Receive loop
    # ------------------------------------------------------------------

    async def _receive_loop(self, ws: Any, schema: EventSchema) -> NoReturn:
        while True:
            try:
                raw_message = await asyncio.wait_for(ws.recv(), timeout=self._message_timeout)
            except asyncio.TimeoutError:
                await self._check_alive(ws)
                continue
            except ConnectionClosed as exc:
                raise SubscriptionError(f"subscription error: {exc}") from exc

            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError as e:
                self._logger.warning("[WEBSOCKET] Invalid JSON message: %s", e)
                continue
            if not isinstance(message, dict):
                self._logger.warning("[WEBSOCKET] Ignoring non-object message: %r", message)
                continue

            if "error" in message:
                raise SubscriptionError(f"subscription error: {message['error']}")

            # eth_subscribe notifications have method "eth_subscription"
            if message.get("method") != "eth_subscription":
                continue
            params = message.get("params")
            if not isinstance(params, dict):
                self._logger.warning("[WEBSOCKET] Malformed notification params: %r", params)
                continue
            if params.get("subscription") != self.subscription_id:
                continue
            log_data = params.get("result")
            if not isinstance(log_data, dict) or not log_data:
                self._logger.warning("[WEBSOCKET] Notification without log payload: %r", log_data)
                continue

            try:
                entry = raw_log_from_rpc(log_data)
            except (ValueError, TypeError) as e:
                self._logger.warning("[WEBSOCKET] Malformed log payload %r: %s", log_data, e)
                continue

            await self.handle_log(entry, schema)

    async def _check_alive(self, ws: Any) -> None:
        """Ping after a quiet period; a missing pong ends the subscription."""
        self._logger.debug("[WEBSOCKET] No message received, checking connection...")
        try:
            pong_waiter = await ws.ping()
            await asyncio.wait_for(pong_waiter, timeout=self._ping_timeout)
        except (asyncio.TimeoutError, ConnectionClosed) as exc:
            raise SubscriptionError(f"keep-alive ping failed: {exc!r}") from exc

    # ------------------------------------------------------------------
    # Per-log handling
    # ------------------------------------------------------------------

    async def handle_log(self, entry: RawLogEntry, schema: EventSchema) -> bool:
        """
        Decode one log and send its notification.

        Returns True when a notification was delivered, False when the log
        was ignored or the send failed.
        """
        trace_id = _generate_trace_id()
        pool = self._config.find_pool(entry.source_address)
        if pool is None:
            self._logger.warning(
                "Log from unconfigured address %s (tx %s)",
                entry.source_address,
                entry.transaction_hash,
            )
            token_label, info_url = UNKNOWN_TOKEN_LABEL, DEFAULT_INFO_URL
        else:
            token_label, info_url = pool.token_label, pool.info_url

        log_data_entry(
            trace_id,
            "allocation_watcher",
            "raw log received",
            "RawLogEntry",
            {
                "address": entry.source_address,
                "topics": [to_hex(t) for t in entry.topics],
                "data": to_hex(entry.data),
                "tx_hash": entry.transaction_hash,
            },
        )

        if not entry.topics or entry.topics[0] != ALLOCATE_STABLECOINS_TOPIC:
            self._logger.info(
                "Ignoring log with unexpected topic0 from %s pool (tx %s)",
                token_label,
                entry.transaction_hash,
            )
            return False

        self._logger.info(
            "New %s event detected from %s pool! TxHash: %s",
            ALLOCATE_STABLECOINS_EVENT,
            token_label,
            entry.transaction_hash,
        )

        try:
            fields = schema.decode(ALLOCATE_STABLECOINS_EVENT, entry.data)
            allocator = (
                decode_indexed_address(entry.topics[1]) if len(entry.topics) > 1 else ZERO_ADDRESS
            )
        except DecodeError as exc:
            self._logger.error("Failed to unpack %s event: %s", ALLOCATE_STABLECOINS_EVENT, exc)
            message = format_undecoded_notice(
                token_label,
                ALLOCATE_STABLECOINS_EVENT,
                entry.source_address,
                entry.transaction_hash,
                entry.data,
                self._explorer_tx_url,
            )
            payload: dict[str, Any] = {"decoded": False}
        else:
            event = DecodedAllocationEvent(
                allocator=allocator,
                prior_allocation=fields[ALLOCATION_FIELD],
                new_allocated=fields[ALLOCATED_FIELD],
                pool_address=entry.source_address,
                token_label=token_label,
                info_url=info_url,
            )
            message = format_allocation_notice(event, entry.transaction_hash, self._explorer_tx_url)
            payload = {
                "decoded": True,
                "allocator": event.allocator,
                "prior_allocation": event.prior_allocation,
                "new_allocated": event.new_allocated,
            }

        return await self._dispatch(message, token_label, trace_id, payload)

    async def _dispatch(
        self, message: str, token_label: str, trace_id: str, payload: dict[str, Any]
    ) -> bool:
        try:
            await self._notifier.send(self._config.telegram_destination, message)
        except TransportError as exc:
            self._logger.error("Failed to send Telegram notification: %s", exc)
            return False

        self._logger.info(
            "%s notification sent successfully for %s pool",
            ALLOCATE_STABLECOINS_EVENT,
            token_label,
        )
        log_data_output(
            trace_id,
            "allocation_watcher",
            "notification sent",
            "TelegramMessage",
            {**payload, "token_label": token_label},
            next_stage="telegram",
        )
        return True

    def _set_state(self, state: WatcherState) -> None:
        if state != self.state:
            self._logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
