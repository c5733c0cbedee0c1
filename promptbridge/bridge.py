"""Bridge transport: executor side of the local relay.

Holds one outbound websocket to the relay, authenticates as ``extension``,
executes incoming submit_prompt / submit_batch through the command boundary
and answers with prompt_result / batch_result.

Connection states:  Connecting -> Open -> Authenticated -> Closed

Reconnect policy on Closed:
- close code 4002 (token rejected): raise TransportRejected, never retry
- a close we initiated (stop()): return, never retry
- anything else: one reconnect after ``reconnect_delay_sec`` while
  attempts < ``max_reconnect_attempts``; a successful open resets the count

While Authenticated a heartbeat sends {type: ping} every
``heartbeat_interval_sec``, below the relay's idle cut-off.

Usage:
    transport = BridgeTransport(engine, relay_cfg)
    await transport.run()          # until stop(), give-up, or TransportRejected
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from promptbridge import protocol
from promptbridge.commands import PromptEngine
from promptbridge.config import CLOSE_AUTH_REJECTED, CLOSE_NORMAL, RelayConfig
from promptbridge.errors import ProtocolError, TransportRejected
from promptbridge.log import mask_secret
from promptbridge.models import BridgeConnection, ConnectionState
from promptbridge.poll import Sleep

log = logging.getLogger("promptbridge.bridge")

# (url, origin) -> websocket with send_str / close / close_code / async iteration
Connector = Callable[[str, str], Awaitable[Any]]

_SEND_ERRORS = (aiohttp.ClientError, ConnectionError, RuntimeError)


class BridgeTransport:
    def __init__(
        self,
        engine: PromptEngine,
        config: RelayConfig,
        *,
        connector: Optional[Connector] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.engine = engine
        self.config = config
        self.conn = BridgeConnection()
        self._connector = connector
        self._sleep = sleep
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Any = None
        self._stopping = False
        self._heartbeat_stop: Optional[asyncio.Event] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._jobs: set[asyncio.Task] = set()
        self.last_close_code: Optional[int] = None

    @property
    def state(self) -> ConnectionState:
        return self.conn.state

    # -- lifecycle ---------------------------------------------------------

    async def run(self) -> None:
        """Serve until stopped or out of reconnect attempts.

        Raises TransportRejected when the relay refuses our token.
        """
        if not self.config.token:
            raise TransportRejected(CLOSE_AUTH_REJECTED, "no bridge token configured")
        self._stopping = False
        log.info("Bridge connecting to %s (token %s)",
                 self.config.url, mask_secret(self.config.token))
        try:
            while True:
                code = await self._connect_and_serve()
                delay = self.handle_close(code)
                if delay is None:
                    return
                await self._sleep(delay)
                if self._stopping:
                    return
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Close the connection on purpose; run() returns without reconnecting."""
        self._stopping = True
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close(code=CLOSE_NORMAL, message=b"Bridge stopping")

    def handle_close(self, code: Optional[int]) -> Optional[float]:
        """Apply the reconnect policy to a close; returns the delay or None to give up."""
        if self.conn.state != ConnectionState.CLOSED:
            self.conn.transition(ConnectionState.CLOSED)
        self.last_close_code = code

        if code == CLOSE_AUTH_REJECTED:
            log.error("Bridge token rejected by relay (4002); not reconnecting")
            raise TransportRejected(code, "invalid token")
        if self._stopping:
            log.info("Bridge stopped")
            return None
        if self.conn.reconnect_attempts >= self.config.max_reconnect_attempts:
            log.error("Bridge gave up after %d reconnect attempts", self.conn.reconnect_attempts)
            return None

        self.conn.reconnect_attempts += 1
        log.info("Bridge closed (code %s); reconnecting in %.0fs (%d/%d)",
                 code, self.config.reconnect_delay_sec,
                 self.conn.reconnect_attempts, self.config.max_reconnect_attempts)
        return self.config.reconnect_delay_sec

    # -- connection --------------------------------------------------------

    async def _default_connect(self, url: str, origin: str) -> Any:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(url, origin=origin, autoping=True)

    async def _connect_and_serve(self) -> Optional[int]:
        self.conn.transition(ConnectionState.CONNECTING)
        connect = self._connector or self._default_connect
        try:
            ws = await connect(self.config.url, self.config.origin)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            log.warning("Bridge connect failed: %s", exc)
            return None

        self._ws = ws
        self.conn.transition(ConnectionState.OPEN)
        self.conn.reconnect_attempts = 0
        log.info("Bridge connected, authenticating as %s", self.config.client_type)

        try:
            await self._send(protocol.auth(self.config.token, self.config.client_type))
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._on_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    log.warning("Bridge websocket error: %s", ws.exception())
                    break
        finally:
            await self._stop_heartbeat()
            self._ws = None
        return ws.close_code

    async def _send(self, message: dict) -> bool:
        ws = self._ws
        if ws is None or ws.closed:
            log.warning("Bridge not connected; dropped %s", message.get("type"))
            return False
        try:
            await ws.send_str(protocol.encode(message))
            return True
        except _SEND_ERRORS as exc:
            log.warning("Bridge send failed (%s): %s", message.get("type"), exc)
            return False

    # -- messages ----------------------------------------------------------

    async def _on_text(self, raw: str) -> None:
        try:
            message = protocol.decode(raw)
        except ProtocolError as exc:
            log.warning("Bridge ignored frame: %s", exc)
            return

        msg_type = message["type"]
        if msg_type == "auth_success":
            if self.conn.state == ConnectionState.AUTHENTICATED:
                log.debug("Bridge ignored repeated auth_success")
                return
            self.conn.transition(ConnectionState.AUTHENTICATED)
            log.info("Bridge authenticated as %s", message.get("clientType", "?"))
            self._start_heartbeat()
        elif msg_type == "ping":
            await self._send(protocol.make_message("pong"))
        elif msg_type == "pong":
            log.debug("pong")
        elif msg_type in protocol.REQUEST_TYPES:
            if self.conn.state != ConnectionState.AUTHENTICATED:
                log.warning("Bridge ignored %s before authentication", msg_type)
                return
            task = asyncio.create_task(self._execute(message))
            self._jobs.add(task)
            task.add_done_callback(self._jobs.discard)
        elif msg_type == "error":
            log.warning("Relay error: %s", message.get("message", ""))
        else:
            log.debug("Bridge ignored message type %s", msg_type)

    async def _execute(self, message: dict) -> None:
        log.info("Executing %s for %s", message["type"], message.get("service", "?"))
        try:
            reply = await self.engine.handle(message)
        except Exception as exc:
            log.exception("Command %s crashed", message["type"])
            reply_type = "prompt_result" if message["type"] == "submit_prompt" else "batch_result"
            reply = protocol.make_message(
                reply_type, messageId=message.get("messageId", ""),
                success=False, error=str(exc),
            )
        if reply is not None:
            await self._send(reply)

    # -- heartbeat ---------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._heartbeat_stop = asyncio.Event()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(self._heartbeat_stop))

    async def _heartbeat_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.config.heartbeat_interval_sec)
                break
            except asyncio.TimeoutError:
                pass
            if self.conn.state != ConnectionState.AUTHENTICATED:
                break
            if not await self._send(protocol.make_message("ping")):
                break

    async def _stop_heartbeat(self) -> None:
        if self._heartbeat_stop is not None:
            self._heartbeat_stop.set()
        if self._heartbeat_task is not None:
            try:
                await asyncio.wait_for(self._heartbeat_task, timeout=2.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                pass
        self._heartbeat_stop = None
        self._heartbeat_task = None

    async def _shutdown(self) -> None:
        for task in list(self._jobs):
            task.cancel()
        if self._jobs:
            await asyncio.gather(*self._jobs, return_exceptions=True)
        if self._session is not None:
            await self._session.close()
            self._session = None
