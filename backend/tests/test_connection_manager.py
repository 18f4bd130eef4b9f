"""
Tests for the connection registry and per-connection context.
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from shared.infrastructure.events import Message
from shared.utils.exceptions import TransportError
from ws_gateway.components.core.constants import WSCloseCode
from ws_gateway.components.core.context import ConnectionContext, sanitize_log_data
from ws_gateway.connection_manager import ConnectionManager
from ws_gateway.redis_subscriber import BridgeState


def make_websocket():
    websocket = MagicMock()
    websocket.headers = {"origin": "http://example.test"}
    websocket.application_state = WebSocketState.CONNECTED
    websocket.client_state = WebSocketState.CONNECTED
    websocket.send_text = AsyncMock()
    websocket.close = AsyncMock()
    return websocket


class TestConnectionContext:
    def test_from_websocket_reads_origin(self):
        ctx = ConnectionContext.from_websocket(make_websocket())

        assert ctx.origin == "http://example.test"
        assert len(ctx.connection_id) == 32

    @pytest.mark.asyncio
    async def test_send_writes_json(self):
        ws = make_websocket()
        ctx = ConnectionContext.from_websocket(ws)

        await ctx.send(Message(kind="chat", text="hi", user="a", timestamp=1))

        ws.send_text.assert_awaited_once_with('{"type":"chat","text":"hi","user":"a","date":1}')

    @pytest.mark.asyncio
    async def test_send_failure_raises_transport_error(self):
        ws = make_websocket()
        ws.send_text.side_effect = RuntimeError("Cannot call send once a close message has been sent")
        ctx = ConnectionContext.from_websocket(ws)

        with pytest.raises(TransportError):
            await ctx.send(Message(text="x"))

    @pytest.mark.asyncio
    async def test_send_after_shutdown_is_rejected(self):
        ws = make_websocket()
        ctx = ConnectionContext.from_websocket(ws)
        await ctx.shutdown()

        with pytest.raises(TransportError):
            await ctx.send(Message(text="late"))
        ws.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_sends_do_not_interleave(self):
        ws = make_websocket()
        in_flight = 0
        max_in_flight = 0

        async def slow_send(data):
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        ws.send_text.side_effect = slow_send
        ctx = ConnectionContext.from_websocket(ws)

        await asyncio.gather(*(ctx.send(Message(text=str(i))) for i in range(5)))

        assert max_in_flight == 1
        assert ws.send_text.await_count == 5

    @pytest.mark.asyncio
    async def test_shutdown_cancels_bridge_task(self):
        ctx = ConnectionContext.from_websocket(make_websocket())
        task = asyncio.create_task(asyncio.Event().wait())
        ctx.attach_bridge(MagicMock(), task)

        await ctx.shutdown(timeout=1.0)

        assert task.cancelled()
        assert ctx.is_closed

    @pytest.mark.asyncio
    async def test_cancelling_caller_during_shutdown_propagates(self):
        async def slow_to_stop():
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                await asyncio.sleep(0.2)
                raise

        bridge_task = asyncio.create_task(slow_to_stop())
        await asyncio.sleep(0)
        ctx = ConnectionContext.from_websocket(make_websocket())
        ctx.attach_bridge(MagicMock(), bridge_task)

        shutdown = asyncio.create_task(ctx.shutdown(timeout=5.0))
        await asyncio.sleep(0.01)
        shutdown.cancel()

        with pytest.raises(asyncio.CancelledError):
            await shutdown
        await asyncio.wait({bridge_task}, timeout=1.0)
        assert bridge_task.cancelled()

    @pytest.mark.asyncio
    async def test_failed_bridge_is_logged_not_raised(self, caplog):
        async def failing_bridge():
            raise RuntimeError("bridge blew up")

        bridge_task = asyncio.create_task(failing_bridge())
        await asyncio.sleep(0)
        ctx = ConnectionContext.from_websocket(make_websocket())
        ctx.attach_bridge(MagicMock(), bridge_task)

        with caplog.at_level(logging.ERROR):
            await ctx.shutdown(timeout=1.0)

        assert bridge_task.done()
        assert any(record.getMessage() == "Bridge task failed" for record in caplog.records)

    @pytest.mark.asyncio
    async def test_close_skips_already_closed_socket(self):
        ws = make_websocket()
        ws.client_state = WebSocketState.DISCONNECTED
        ctx = ConnectionContext.from_websocket(ws)

        await ctx.close(code=WSCloseCode.SERVER_ERROR)

        ws.close.assert_not_awaited()


class TestConnectionManager:
    def test_register_and_unregister(self):
        manager = ConnectionManager()
        ctx = ConnectionContext.from_websocket(make_websocket())

        manager.register(ctx)
        assert len(manager) == 1

        manager.unregister(ctx)
        manager.unregister(ctx)
        assert len(manager) == 0
        assert manager.get_stats()["total_accepted"] == 1

    def test_stats_count_relaying_bridges(self):
        manager = ConnectionManager()
        relaying, subscribing = (ConnectionContext.from_websocket(make_websocket()) for _ in range(2))
        relaying.bridge = MagicMock(state=BridgeState.RELAYING)
        subscribing.bridge = MagicMock(state=BridgeState.SUBSCRIBING)
        manager.register(relaying)
        manager.register(subscribing)

        assert manager.get_stats() == {"connections": 2, "relaying": 1, "total_accepted": 2}

    @pytest.mark.asyncio
    async def test_close_all_sends_going_away(self):
        manager = ConnectionManager()
        sockets = [make_websocket() for _ in range(3)]
        for ws in sockets:
            manager.register(ConnectionContext.from_websocket(ws))

        assert await manager.close_all() == 3

        for ws in sockets:
            ws.close.assert_awaited_once_with(code=WSCloseCode.GOING_AWAY, reason="Server shutting down")
        assert len(manager) == 0


class TestSanitizeLogData:
    def test_strips_control_and_bidi_characters(self):
        assert sanitize_log_data("a\x00b\u202ec\ufeff") == "abc"

    def test_escapes_quotes_and_backslashes(self):
        assert sanitize_log_data('say "hi" \\o/') == 'say \\"hi\\" \\\\o/'

    def test_truncates_long_input(self):
        assert sanitize_log_data("x" * 20, max_length=5) == "xxxxx..."

    def test_accepts_bytes(self):
        assert sanitize_log_data(b"caf\xc3\xa9") == "café"
