"""Tests for the log stream ingester."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import websockets
from conftest import SIGNATURE

from pumpfun_indexer.errors import IngesterFatalError, TransportError
from pumpfun_indexer.ingestor.log_stream import ConnectionState, LogStreamIngester
from pumpfun_indexer.parser.constants import PUMP_FUN_PROGRAM_ID

WS_URL = "wss://ws.example.com/?api-key=secret"
CONNECT = "pumpfun_indexer.ingestor.log_stream.websockets.connect"

SUBSCRIBED = json.dumps({"jsonrpc": "2.0", "result": 4242, "id": 1})


def _notification(signature: str, err=None) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "logsNotification",
            "params": {
                "result": {
                    "context": {"slot": 1},
                    "value": {"signature": signature, "err": err, "logs": []},
                },
                "subscription": 4242,
            },
        }
    )


def _closed() -> websockets.ConnectionClosed:
    return websockets.ConnectionClosed(None, None)


@pytest.fixture
def mock_bus() -> MagicMock:
    bus = MagicMock()
    bus.publish = AsyncMock()
    return bus


def _make_ingester(bus, **kwargs) -> LogStreamIngester:
    kwargs.setdefault("initial_reconnect_delay", 0)
    kwargs.setdefault("max_reconnect_delay", 0)
    return LogStreamIngester(url=WS_URL, program_id=PUMP_FUN_PROGRAM_ID, bus=bus, **kwargs)


def _fake_ws(ingester: LogStreamIngester, messages: list[str]) -> AsyncMock:
    """WebSocket that replays ``messages`` and then stops the ingester."""
    pending = list(messages)
    ws = AsyncMock()

    async def recv():
        if pending:
            return pending.pop(0)
        await ingester.stop()
        raise _closed()

    ws.recv = AsyncMock(side_effect=recv)
    return ws


class TestLogStreamIngester:
    """Tests for LogStreamIngester."""

    def test_subscription_request(self, mock_bus: MagicMock) -> None:
        """Test the logsSubscribe request scoped to the program."""
        request = _make_ingester(mock_bus).subscription_request()

        assert request["method"] == "logsSubscribe"
        assert request["id"] == 1
        assert request["params"][0] == {"mentions": [PUMP_FUN_PROGRAM_ID]}

    def test_reconnect_delay(self, mock_bus: MagicMock) -> None:
        """Test exponential backoff with a cap."""
        ingester = _make_ingester(mock_bus, initial_reconnect_delay=1, max_reconnect_delay=30)

        assert [ingester.reconnect_delay(a) for a in range(1, 7)] == [1, 2, 4, 8, 16, 30]

    @pytest.mark.asyncio
    async def test_streams_successful_signatures(self, mock_bus: MagicMock) -> None:
        """Test that only successful transactions reach the bus."""
        states: list[ConnectionState] = []

        async def on_state(state: ConnectionState) -> None:
            states.append(state)

        ingester = _make_ingester(mock_bus, on_state_change=on_state)
        ws = _fake_ws(
            ingester,
            [
                SUBSCRIBED,
                _notification(SIGNATURE),
                _notification("failed-sig", err={"InstructionError": [0, "Custom"]}),
                "not json",
            ],
        )

        with patch(CONNECT, AsyncMock(return_value=ws)) as connect:
            await asyncio.wait_for(ingester.start(), timeout=2.0)

        connect.assert_awaited_once_with(WS_URL, ping_interval=None)
        sent = json.loads(ws.send.await_args.args[0])
        assert sent["method"] == "logsSubscribe"

        mock_bus.publish.assert_awaited_once()
        assert mock_bus.publish.await_args.args[0].signature == SIGNATURE

        assert ingester.stats.notifications_received == 2
        assert ingester.stats.envelopes_published == 1
        assert ingester.stats.failed_transactions_skipped == 1
        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.SUBSCRIPTION_PENDING,
            ConnectionState.STREAMING,
            ConnectionState.DISCONNECTED,
        ]
        assert ingester.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_fatal_after_max_reconnects(self, mock_bus: MagicMock) -> None:
        """Test that the reconnect bound raises IngesterFatalError."""
        ingester = _make_ingester(mock_bus, max_reconnect_attempts=2)

        with patch(CONNECT, AsyncMock(side_effect=OSError("refused"))) as connect:
            with pytest.raises(IngesterFatalError):
                await asyncio.wait_for(ingester.start(), timeout=2.0)

        assert connect.await_count == 3
        assert ingester.stats.reconnect_count == 2
        assert ingester.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_subscription_error_is_a_failure(self, mock_bus: MagicMock) -> None:
        """Test that a rejected subscription counts against the reconnect bound."""
        ingester = _make_ingester(mock_bus, max_reconnect_attempts=0)
        rejected = json.dumps(
            {"jsonrpc": "2.0", "error": {"code": -32602, "message": "Invalid"}, "id": 1}
        )
        ws = _fake_ws(ingester, [rejected])

        with patch(CONNECT, AsyncMock(return_value=ws)):
            with pytest.raises(IngesterFatalError):
                await asyncio.wait_for(ingester.start(), timeout=2.0)

        mock_bus.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirmed_subscription_resets_attempts(self, mock_bus: MagicMock) -> None:
        """Test that a confirmed subscription resets the attempt counter."""
        ingester = _make_ingester(mock_bus, max_reconnect_attempts=1)
        ws = AsyncMock()
        ws.recv = AsyncMock(side_effect=[SUBSCRIBED, _closed()])

        connect = AsyncMock(side_effect=[OSError("refused"), ws, OSError("refused")])
        with patch(CONNECT, connect):
            with pytest.raises(IngesterFatalError):
                await asyncio.wait_for(ingester.start(), timeout=2.0)

        # fail, connect + drop, fail: the drop did not exhaust the budget
        assert connect.await_count == 3
        assert ingester.stats.reconnect_count == 2

    @pytest.mark.asyncio
    async def test_stop_ends_backoff_wait(self, mock_bus: MagicMock) -> None:
        """Test that stop() interrupts the reconnect wait."""
        ingester = _make_ingester(
            mock_bus, initial_reconnect_delay=60, max_reconnect_delay=60
        )

        with patch(CONNECT, AsyncMock(side_effect=OSError("refused"))):
            task = asyncio.create_task(ingester.start())
            for _ in range(10):
                await asyncio.sleep(0)
            assert ingester.state == ConnectionState.RECONNECTING
            await ingester.stop()
            await asyncio.wait_for(task, timeout=2.0)

        assert ingester.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_unanswered_ping_forces_reconnect(self, mock_bus: MagicMock) -> None:
        """Test that a missed pong closes the socket and the loop reconnects."""
        ingester = _make_ingester(mock_bus, keepalive_interval=0.01)
        closed = asyncio.Event()

        async def recv_until_closed():
            await closed.wait()
            raise _closed()

        async def close() -> None:
            closed.set()

        loop = asyncio.get_running_loop()
        stale = AsyncMock()
        stale.recv = AsyncMock(side_effect=recv_until_closed)
        stale.close = AsyncMock(side_effect=close)
        # The pong never arrives.
        stale.ping = AsyncMock(return_value=loop.create_future())

        fresh = _fake_ws(ingester, [SUBSCRIBED])
        answered = loop.create_future()
        answered.set_result(None)
        fresh.ping = AsyncMock(return_value=answered)

        connect = AsyncMock(side_effect=[stale, fresh])
        with patch(CONNECT, connect):
            await asyncio.wait_for(ingester.start(), timeout=2.0)

        stale.ping.assert_awaited()
        stale.close.assert_awaited()
        assert connect.await_count == 2
        assert ingester.stats.reconnect_count == 1
        assert ingester.stats.last_error is not None
        assert ingester.state == ConnectionState.DISCONNECTED


class TestPublish:
    """Tests for bounded publishing."""

    @pytest.mark.asyncio
    async def test_publish_timeout_drops_envelope(self, mock_bus: MagicMock) -> None:
        """Test that a stalled bus cannot block the read loop."""

        async def stall(envelope) -> None:
            await asyncio.sleep(10)

        mock_bus.publish = AsyncMock(side_effect=stall)
        ingester = _make_ingester(mock_bus, publish_timeout=0.01)

        await ingester._handle_message(_notification(SIGNATURE))

        assert ingester.stats.publish_failures == 1
        assert ingester.stats.envelopes_published == 0

    @pytest.mark.asyncio
    async def test_publish_error_drops_envelope(self, mock_bus: MagicMock) -> None:
        """Test that bus errors are counted, not raised."""
        mock_bus.publish = AsyncMock(side_effect=TransportError("redis down"))
        ingester = _make_ingester(mock_bus)

        await ingester._handle_message(_notification(SIGNATURE))

        assert ingester.stats.publish_failures == 1
