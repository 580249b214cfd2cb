"""
Unit tests for data/allocation_watcher.py.

The node connection is replaced by an in-memory FakeWebSocket fed with
JSON-RPC frames; the Telegram notifier is an AsyncMock. Tests cover:
- eth_subscribe request shape and connect options
- Decoded / undecoded notifications end to end
- Per-log failures (bad payload, send failure) not ending the subscription
- Every terminal error path and the cleanup performed on each
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError

from config.loader import get_config
from data.allocation_watcher import (
    AllocationWatcher,
    NodeConnectionError,
    SubscriptionError,
    build_subscription_request,
)
from data.event_schema import DEFAULT_ABI_NAME, EventSchema, SchemaLoadError
from execution.telegram_notifier import SenderInitError, TransportError
from shared.constants import POOL_CBBTC, POOL_TBTC, POOL_WBTC, ZERO_ADDRESS
from shared.types import RawLogEntry, WatcherState

SUB_ID = "0x9cef478923ff08bf67fde6c64013158d"
TX_HASH = "0x" + "ab" * 32


# ---------------------------------------------------------------------------
# Fake WebSocket
# ---------------------------------------------------------------------------


class FakeWebSocket:
    """Scripted stand-in for a websockets client connection.

    ``incoming`` items are returned by recv() in order; exceptions are raised.
    Once exhausted, recv() raises ConnectionClosedError unless ``block`` is set.
    """

    def __init__(self, incoming=(), block: bool = False):
        self._incoming = list(incoming)
        self._block = block
        self.sent: list[dict] = []
        self.closed = False
        self.pings = 0

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        if not self._incoming:
            if self._block:
                await asyncio.Event().wait()
            raise ConnectionClosedError(None, None)
        item = self._incoming.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def ping(self):
        self.pings += 1
        return asyncio.get_running_loop().create_future()  # pong never arrives

    async def close(self) -> None:
        self.closed = True

    def methods(self) -> list[str]:
        return [m.get("method") for m in self.sent]


def _connector(ws: FakeWebSocket):
    calls = []

    async def _connect(url, **kwargs):
        calls.append((url, kwargs))
        return ws

    _connect.calls = calls
    return _connect


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def patched_logging():
    with (
        patch("data.allocation_watcher.setup_module_logger") as mock_logger,
        patch("data.allocation_watcher.create_module_log_directories"),
        patch("data.allocation_watcher.log_data_entry") as mock_entry,
        patch("data.allocation_watcher.log_data_output") as mock_output,
    ):
        mock_logger.return_value = MagicMock()
        yield {"entry": mock_entry, "output": mock_output, "logger": mock_logger.return_value}


@pytest.fixture
def make_watcher(watcher_config, mock_notifier, patched_logging):
    def _make(ws: FakeWebSocket, **kwargs) -> AllocationWatcher:
        return AllocationWatcher(watcher_config, mock_notifier, connect=_connector(ws), **kwargs)

    return _make


@pytest.fixture
def wbtc_frame(make_rpc_log, subscription_message):
    return subscription_message(make_rpc_log(tx_hash=TX_HASH))


def _sent_messages(mock_notifier) -> list[str]:
    return [call.args[1] for call in mock_notifier.send.await_args_list]


# ===========================================================================
# Subscription request
# ===========================================================================


class TestSubscriptionRequest:
    def test_shape(self, allocate_topic):
        request = build_subscription_request([POOL_WBTC, POOL_TBTC], allocate_topic)
        assert request == {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_subscribe",
            "params": [
                "logs",
                {
                    "address": [POOL_WBTC, POOL_TBTC],
                    "topics": [["0x" + allocate_topic.hex()]],
                },
            ],
        }

    async def test_filter_covers_all_configured_pools(
        self, make_watcher, subscribe_ack, allocate_topic
    ):
        ws = FakeWebSocket([subscribe_ack])
        watcher = make_watcher(ws)
        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        request = ws.sent[0]
        assert request["method"] == "eth_subscribe"
        assert request["params"][1]["address"] == [POOL_WBTC, POOL_TBTC, POOL_CBBTC]
        assert request["params"][1]["topics"] == [["0x" + allocate_topic.hex()]]

    async def test_connect_options(self, make_watcher, watcher_config, subscribe_ack):
        ws = FakeWebSocket([subscribe_ack])
        watcher = make_watcher(ws)
        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        url, kwargs = watcher._connect.calls[0]
        assert url == watcher_config.node_ws_url
        assert kwargs["ping_interval"] == 20
        assert kwargs["ping_timeout"] == 30


# ===========================================================================
# Notifications
# ===========================================================================


class TestNotifications:
    async def test_wbtc_allocation_end_to_end(
        self, make_watcher, mock_notifier, subscribe_ack, wbtc_frame, patched_logging
    ):
        ws = FakeWebSocket([subscribe_ack, wbtc_frame])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        mock_notifier.start.assert_awaited_once()
        mock_notifier.send.assert_awaited_once()
        destination, message = mock_notifier.send.await_args.args
        assert destination == "@yb_caps"
        assert message.startswith("🚀 *YieldBasis WBTC Pool Cap Update*")
        assert "[View WBTC Pool](https://yieldbasis.com)" in message
        assert "*Allocation*: 200000000.00 stablecoins" in message
        assert "*Allocated*: 0.00 stablecoins" in message
        assert "*Change*: -200000000.00 decrease" in message
        assert f"[View on Etherscan](https://etherscan.io/tx/{TX_HASH})" in message

        patched_logging["entry"].assert_called_once()
        output_data = patched_logging["output"].call_args.args[4]
        assert output_data["allocator"].lower() == "0x370a449fe8b9411c95bf897021377fe007d100c0"
        assert output_data["prior_allocation"] == 200_000_000 * 10**18

    async def test_undecodable_payload_sends_raw_notice(
        self, make_watcher, mock_notifier, subscribe_ack, make_rpc_log, subscription_message
    ):
        frame = subscription_message(make_rpc_log(address=POOL_TBTC, data="0x1234"))
        ws = FakeWebSocket([subscribe_ack, frame])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        (message,) = _sent_messages(mock_notifier)
        assert "*YieldBasis TBTC Pool Event Detected*" in message
        assert "AllocateStablecoins (parsing failed)" in message
        assert "*Address*: 0x2B513eBe..." in message
        assert "*Raw Event Data*: 0x1234" in message

    async def test_send_failure_does_not_end_subscription(
        self, make_watcher, mock_notifier, subscribe_ack, wbtc_frame
    ):
        mock_notifier.send.side_effect = [TransportError("sendMessage: 429"), {"message_id": 2}]
        ws = FakeWebSocket([subscribe_ack, wbtc_frame, wbtc_frame])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        assert mock_notifier.send.await_count == 2

    async def test_unexpected_topic_ignored(
        self, make_watcher, mock_notifier, subscribe_ack, make_rpc_log, subscription_message
    ):
        frame = subscription_message(make_rpc_log(topics=["0x" + "11" * 32]))
        ws = FakeWebSocket([subscribe_ack, frame])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        mock_notifier.send.assert_not_awaited()

    async def test_foreign_and_malformed_frames_skipped(
        self,
        make_watcher,
        mock_notifier,
        subscribe_ack,
        make_rpc_log,
        subscription_message,
        wbtc_frame,
    ):
        no_address = make_rpc_log()
        del no_address["address"]
        ws = FakeWebSocket(
            [
                subscribe_ack,
                "not json",
                json.dumps([1, 2, 3]),
                json.dumps({"jsonrpc": "2.0", "id": 7, "result": True}),
                subscription_message(make_rpc_log(), subscription="0xother"),
                subscription_message(no_address),
                wbtc_frame,
            ]
        )
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        assert mock_notifier.send.await_count == 1
        assert watcher.state == WatcherState.TERMINATED

    async def test_notification_with_list_params_skipped(
        self, make_watcher, mock_notifier, patched_logging, subscribe_ack, wbtc_frame
    ):
        ws = FakeWebSocket(
            [
                subscribe_ack,
                json.dumps({"jsonrpc": "2.0", "method": "eth_subscription", "params": ["x"]}),
                json.dumps(
                    {
                        "jsonrpc": "2.0",
                        "method": "eth_subscription",
                        "params": {"subscription": SUB_ID, "result": "0xdead"},
                    }
                ),
                json.dumps({"jsonrpc": "2.0", "method": "eth_subscription", "params": None}),
                wbtc_frame,
            ]
        )
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        assert mock_notifier.send.await_count == 1
        warnings = [c.args[0] for c in patched_logging["logger"].warning.call_args_list]
        assert warnings.count("[WEBSOCKET] Malformed notification params: %r") == 2
        assert "[WEBSOCKET] Notification without log payload: %r" in warnings

    async def test_non_object_message_logged(
        self, make_watcher, mock_notifier, patched_logging, subscribe_ack, wbtc_frame
    ):
        ws = FakeWebSocket([subscribe_ack, json.dumps([1, 2, 3]), wbtc_frame])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        assert mock_notifier.send.await_count == 1
        patched_logging["logger"].warning.assert_any_call(
            "[WEBSOCKET] Ignoring non-object message: %r", [1, 2, 3]
        )

    async def test_null_transaction_hash_skipped(
        self, make_watcher, mock_notifier, subscribe_ack, make_rpc_log, subscription_message
    ):
        no_hash = make_rpc_log()
        no_hash["transactionHash"] = None
        ws = FakeWebSocket(
            [
                subscribe_ack,
                subscription_message(no_hash),
                subscription_message(make_rpc_log(tx_hash=TX_HASH)),
            ]
        )
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        messages = _sent_messages(mock_notifier)
        assert len(messages) == 1
        assert "/tx/None" not in messages[0]
        assert TX_HASH in messages[0]

    async def test_log_order_preserved(
        self, make_watcher, mock_notifier, subscribe_ack, make_rpc_log, subscription_message
    ):
        frames = [
            subscription_message(make_rpc_log(address=pool))
            for pool in (POOL_CBBTC, POOL_WBTC, POOL_TBTC)
        ]
        ws = FakeWebSocket([subscribe_ack, *frames])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        labels = [m.split("\n")[0] for m in _sent_messages(mock_notifier)]
        assert labels == [
            "🚀 *YieldBasis CBBTC Pool Cap Update*",
            "🚀 *YieldBasis WBTC Pool Cap Update*",
            "🚀 *YieldBasis TBTC Pool Cap Update*",
        ]

    async def test_state_is_subscribed_while_sending(
        self, make_watcher, mock_notifier, subscribe_ack, wbtc_frame
    ):
        ws = FakeWebSocket([subscribe_ack, wbtc_frame])
        watcher = make_watcher(ws)
        seen = []

        async def _record(destination, message):
            seen.append(watcher.state)
            return {"message_id": 1}

        mock_notifier.send.side_effect = _record

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        assert seen == [WatcherState.SUBSCRIBED]
        assert watcher.state == WatcherState.TERMINATED


class TestHandleLog:
    async def test_missing_allocator_topic_uses_zero_address(
        self, make_watcher, mock_notifier, allocate_topic, encode_allocation, patched_logging
    ):
        watcher = make_watcher(FakeWebSocket())
        schema = EventSchema.load(get_config().get_abi_path(DEFAULT_ABI_NAME))
        entry = RawLogEntry(
            source_address=POOL_CBBTC,
            topics=(allocate_topic,),
            data=encode_allocation(0, 10**18),
            transaction_hash=TX_HASH,
        )

        assert await watcher.handle_log(entry, schema) is True
        assert patched_logging["output"].call_args.args[4]["allocator"] == ZERO_ADDRESS

    async def test_unknown_pool_uses_fallback_label(
        self, make_watcher, mock_notifier, allocate_topic, encode_allocation
    ):
        watcher = make_watcher(FakeWebSocket())
        schema = EventSchema.load(get_config().get_abi_path(DEFAULT_ABI_NAME))
        entry = RawLogEntry(
            source_address="0x1234567890123456789012345678901234567890",
            topics=(allocate_topic,),
            data=encode_allocation(0, 0),
            transaction_hash=TX_HASH,
        )

        assert await watcher.handle_log(entry, schema) is True
        message = mock_notifier.send.await_args.args[1]
        assert "*YieldBasis UNKNOWN Pool Cap Update*" in message
        assert "*Change*: No change" in message


# ===========================================================================
# Terminal errors and cleanup
# ===========================================================================


class TestTermination:
    async def test_connect_failure(self, watcher_config, mock_notifier, patched_logging):
        async def _refuse(url, **kwargs):
            raise OSError("connection refused")

        watcher = AllocationWatcher(watcher_config, mock_notifier, connect=_refuse)

        with pytest.raises(NodeConnectionError, match="failed to connect to Ethereum client"):
            await watcher.run_once()

        mock_notifier.start.assert_not_awaited()
        mock_notifier.close.assert_awaited_once()
        assert watcher.state == WatcherState.TERMINATED

    async def test_schema_missing(self, make_watcher, mock_notifier, tmp_path):
        ws = FakeWebSocket()
        watcher = make_watcher(ws, abi_path=tmp_path / "missing.json")

        with pytest.raises(SchemaLoadError):
            await watcher.run_once()

        assert ws.closed
        assert ws.sent == []
        mock_notifier.start.assert_not_awaited()
        mock_notifier.close.assert_awaited_once()

    async def test_abi_signature_mismatch(self, make_watcher, mock_notifier, tmp_path):
        abi = json.loads(get_config().get_abi_path(DEFAULT_ABI_NAME).read_text())
        abi[0]["inputs"][1]["type"] = "uint128"
        path = tmp_path / "drifted.json"
        path.write_text(json.dumps(abi))
        ws = FakeWebSocket()
        watcher = make_watcher(ws, abi_path=path)

        with pytest.raises(SchemaLoadError, match=r"\(address,uint128,uint256\)"):
            await watcher.run_once()

        assert ws.sent == []
        mock_notifier.start.assert_not_awaited()
        mock_notifier.close.assert_awaited_once()

    async def test_sender_init_failure(self, make_watcher, mock_notifier):
        mock_notifier.start.side_effect = SenderInitError("failed to create Telegram bot: 401")
        ws = FakeWebSocket()
        watcher = make_watcher(ws)

        with pytest.raises(SenderInitError):
            await watcher.run_once()

        assert ws.closed
        assert "eth_subscribe" not in ws.methods()

    async def test_subscribe_rejected(self, make_watcher, mock_notifier):
        error = json.dumps(
            {"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "invalid params"}}
        )
        ws = FakeWebSocket([error])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError, match="failed to subscribe to logs"):
            await watcher.run_once()

        assert ws.closed
        assert "eth_unsubscribe" not in ws.methods()
        mock_notifier.close.assert_awaited_once()

    async def test_connection_dropped_after_subscribe(
        self, make_watcher, mock_notifier, subscribe_ack
    ):
        ws = FakeWebSocket([subscribe_ack])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        assert ws.methods() == ["eth_subscribe", "eth_unsubscribe"]
        assert ws.sent[-1]["params"] == [SUB_ID]
        assert ws.closed
        mock_notifier.close.assert_awaited_once()
        assert watcher.subscription_id is None

    async def test_error_frame_ends_subscription(self, make_watcher, subscribe_ack):
        error = json.dumps({"jsonrpc": "2.0", "error": {"code": -32000, "message": "filter gone"}})
        ws = FakeWebSocket([subscribe_ack, error])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError, match="filter gone"):
            await watcher.run_once()

    async def test_keepalive_ping_timeout(self, make_watcher, subscribe_ack):
        ws = FakeWebSocket([subscribe_ack], block=True)
        watcher = make_watcher(ws)
        watcher._message_timeout = 0.01
        watcher._ping_timeout = 0.01

        with pytest.raises(SubscriptionError, match="keep-alive"):
            await watcher.run_once()

        assert ws.pings == 1
        assert ws.closed

    async def test_fresh_state_on_each_run(self, make_watcher, mock_notifier, subscribe_ack):
        ws = FakeWebSocket([subscribe_ack])
        watcher = make_watcher(ws)

        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        ws._incoming = [subscribe_ack]
        with pytest.raises(SubscriptionError):
            await watcher.run_once()

        assert mock_notifier.start.await_count == 2
        assert mock_notifier.close.await_count == 2
        assert ws.methods().count("eth_subscribe") == 2
