"""Unit tests for promptbridge.bridge: executor-side relay transport."""

import asyncio
import sys
import unittest
from pathlib import Path

_repo = Path(__file__).resolve().parent.parent
if str(_repo) not in sys.path:
    sys.path.insert(0, str(_repo))

from fakes import FakeClock, FakeWebSocket
from promptbridge import protocol
from promptbridge.bridge import BridgeTransport
from promptbridge.config import RelayConfig
from promptbridge.errors import TransportRejected
from promptbridge.models import ConnectionState


class _Engine:
    def __init__(self, error=None):
        self.handled = []
        self.error = error

    async def handle(self, message):
        self.handled.append(message)
        if self.error is not None:
            raise self.error
        return protocol.prompt_result(message["messageId"], {"success": True, "method": "button"})


class _Connector:
    """Returns prepared sockets in order; ``before[i]`` runs before the i-th connect returns."""

    def __init__(self, sockets, before=None):
        self.sockets = list(sockets)
        self.before = dict(before or {})
        self.calls = []

    async def __call__(self, url, origin):
        self.calls.append((url, origin))
        hook = self.before.get(len(self.calls))
        if hook is not None:
            await hook()
        item = self.sockets.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def _config(**kwargs):
    kwargs.setdefault("token", "secret-token")
    return RelayConfig(**kwargs)


def _transport(sockets=(), engine=None, before=None, **cfg):
    clock = FakeClock()
    connector = _Connector(sockets, before)
    transport = BridgeTransport(engine or _Engine(), _config(**cfg),
                                connector=connector, sleep=clock.sleep)
    return transport, connector, clock


# ---------------------------------------------------------------------------
# Reconnect policy
# ---------------------------------------------------------------------------

class TestHandleClose(unittest.TestCase):

    def test_rejected_token_raises(self):
        transport, _, _ = _transport()
        with self.assertRaises(TransportRejected) as ctx:
            transport.handle_close(4002)
        self.assertEqual(ctx.exception.code, 4002)
        self.assertEqual(transport.conn.reconnect_attempts, 0)

    def test_other_codes_schedule_reconnect(self):
        transport, _, _ = _transport()
        for code in (1006, 1011, 4001, 4003, None):
            self.assertEqual(transport.handle_close(code), 3.0)
        self.assertEqual(transport.conn.reconnect_attempts, 5)
        self.assertEqual(transport.state, ConnectionState.CLOSED)

    def test_gives_up_after_max_attempts(self):
        transport, _, _ = _transport(max_reconnect_attempts=10)
        delays = [transport.handle_close(1006) for _ in range(11)]
        self.assertEqual(delays[:10], [3.0] * 10)
        self.assertIsNone(delays[10])

    def test_self_initiated_close_not_retried(self):
        transport, _, _ = _transport()
        transport._stopping = True
        self.assertIsNone(transport.handle_close(1000))
        self.assertEqual(transport.conn.reconnect_attempts, 0)


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------

class TestRun(unittest.IsolatedAsyncioTestCase):

    async def test_missing_token_rejected(self):
        transport, connector, _ = _transport(token="")
        with self.assertRaises(TransportRejected):
            await transport.run()
        self.assertEqual(connector.calls, [])

    async def test_rejected_token_never_reconnects(self):
        ws = FakeWebSocket()
        ws.end(4002)
        transport, connector, clock = _transport([ws])
        with self.assertRaises(TransportRejected):
            await transport.run()
        self.assertEqual(len(connector.calls), 1)
        self.assertEqual(clock.sleeps, [])
        self.assertEqual(ws.sent[0], {"type": "auth", "token": "secret-token",
                                      "clientType": "extension"})

    async def test_abnormal_close_reconnects_once(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        first.end(1006)
        second.end(1000)
        transport = None

        async def stop_before_second():
            await transport.stop()

        transport, connector, clock = _transport([first, second], before={2: stop_before_second})
        await transport.run()

        self.assertEqual(len(connector.calls), 2)
        self.assertEqual(clock.sleeps, [3.0])
        self.assertEqual(transport.last_close_code, 1000)

    async def test_successful_open_resets_attempts(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        first.end(1006)
        second.end(1000)
        transport = None

        async def stop_before_second():
            await transport.stop()

        transport, _, _ = _transport([first, second], before={2: stop_before_second})
        transport.conn.reconnect_attempts = 7
        await transport.run()
        # each open reset the count; the stop-close never increments it
        self.assertEqual(transport.conn.reconnect_attempts, 0)

    async def test_connect_failures_count_toward_give_up(self):
        errors = [OSError("refused") for _ in range(3)]
        transport, connector, clock = _transport(errors, max_reconnect_attempts=2)
        await transport.run()
        self.assertEqual(len(connector.calls), 3)
        self.assertEqual(clock.sleeps, [3.0, 3.0])

    async def test_connect_url_and_origin(self):
        ws = FakeWebSocket()
        ws.end(4002)
        transport, connector, _ = _transport([ws], port=4555, origin="http://localhost:5000")
        with self.assertRaises(TransportRejected):
            await transport.run()
        self.assertEqual(connector.calls, [("ws://127.0.0.1:4555/", "http://localhost:5000")])


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class TestMessages(unittest.IsolatedAsyncioTestCase):

    async def _serve(self, ws, engine=None, **cfg):
        transport, _, _ = _transport([ws], engine=engine, **cfg)
        self.transport = transport
        await asyncio.wait_for(transport.run(), timeout=5)
        return transport

    async def test_ping_answered_with_pong(self):
        async def peer(ws, message):
            if message["type"] == "pong":
                await self.transport.stop()

        ws = FakeWebSocket(on_send=peer)
        ws.push({"type": "auth_success", "clientType": "extension"})
        ws.push({"type": "ping"})
        await self._serve(ws)
        self.assertEqual(ws.sent_types(), ["auth", "pong"])

    async def test_repeated_auth_success_ignored(self):
        async def peer(ws, message):
            if message["type"] == "pong":
                await self.transport.stop()

        ws = FakeWebSocket(on_send=peer)
        ws.push({"type": "auth_success", "clientType": "extension"})
        ws.push({"type": "auth_success", "clientType": "extension"})
        ws.push({"type": "ping"})
        await self._serve(ws)
        self.assertEqual(ws.sent_types(), ["auth", "pong"])

    async def test_submit_executed_and_answered(self):
        async def peer(ws, message):
            if message["type"] == "prompt_result":
                await self.transport.stop()

        engine = _Engine()
        ws = FakeWebSocket(on_send=peer)
        ws.push({"type": "auth_success", "clientType": "extension"})
        ws.push(protocol.submit_prompt("ideogram", "a cat", message_id="m1"))
        await self._serve(ws, engine=engine)

        self.assertEqual(engine.handled[0]["prompt"], "a cat")
        self.assertEqual(ws.sent[-1], {"type": "prompt_result", "messageId": "m1",
                                       "success": True, "method": "button"})

    async def test_requests_before_auth_ignored(self):
        engine = _Engine()
        ws = FakeWebSocket()
        ws.push(protocol.submit_prompt("ideogram", "early", message_id="m0"))
        ws.push_raw("{garbage")
        transport, _, _ = _transport([ws], engine=engine)

        async def finish():
            await asyncio.sleep(0.05)
            await transport.stop()

        await asyncio.gather(transport.run(), finish())
        self.assertEqual(engine.handled, [])
        self.assertEqual(ws.sent_types(), ["auth"])

    async def test_engine_crash_becomes_failed_result(self):
        async def peer(ws, message):
            if message["type"] == "batch_result":
                await self.transport.stop()

        ws = FakeWebSocket(on_send=peer)
        ws.push({"type": "auth_success"})
        ws.push(protocol.submit_batch("ideogram", ["a"], 0, message_id="b1"))
        await self._serve(ws, engine=_Engine(error=RuntimeError("kaput")))
        self.assertEqual(ws.sent[-1], {"type": "batch_result", "messageId": "b1",
                                       "success": False, "error": "kaput"})

    async def test_heartbeat_pings_while_authenticated(self):
        async def peer(ws, message):
            if message["type"] == "ping":
                await self.transport.stop()

        ws = FakeWebSocket(on_send=peer)
        ws.push({"type": "auth_success", "clientType": "extension"})
        await self._serve(ws, heartbeat_interval_sec=0.05, auth_timeout_sec=0.01)
        self.assertEqual(ws.sent_types(), ["auth", "ping"])
        self.assertEqual(self.transport.state, ConnectionState.CLOSED)


if __name__ == "__main__":
    unittest.main()
