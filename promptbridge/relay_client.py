"""Requester side of the relay: send prompts, await the matching result.

Connects as ``webapp``, tracks executor availability from extension_status,
and pairs every submit_prompt / submit_batch with its result by messageId.
Requests fail fast (no round trip) when no executor is connected, and time
out after ``prompt_timeout_sec`` / ``batch_timeout_sec``.

Usage:
    async with RelayClient(relay_cfg) as client:
        result = await client.batch("ideogram", ["a", "b"], delay_ms=5000)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp
import httpx

from promptbridge import protocol
from promptbridge.bridge import Connector
from promptbridge.config import CLOSE_AUTH_REJECTED, CLOSE_NORMAL, RelayConfig
from promptbridge.errors import ProtocolError, TransportRejected

log = logging.getLogger("promptbridge.relay_client")

# Grace period for the relay's extension_status broadcast after auth
STATUS_WAIT_SEC = 1.0


def _http_base(config: RelayConfig) -> str:
    return f"http://{config.host}:{config.port}"


async def fetch_token(config: RelayConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """Ask a running relay for its per-start token (GET /token)."""
    async with httpx.AsyncClient(timeout=3.0, transport=transport) as client:
        resp = await client.get(f"{_http_base(config)}/token")
        resp.raise_for_status()
        token = str(resp.json().get("token", "")).strip()
    if not token:
        raise ConnectionError("Relay returned an empty token")
    return token


async def fetch_health(config: RelayConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    """GET /health of a running relay."""
    async with httpx.AsyncClient(timeout=3.0, transport=transport) as client:
        resp = await client.get(f"{_http_base(config)}/health")
        resp.raise_for_status()
        return resp.json()


class RelayClient:
    def __init__(self, config: RelayConfig, *, connector: Optional[Connector] = None):
        self.config = config
        self._connector = connector
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._status_seen = asyncio.Event()
        self.extension_available = False

    async def __aenter__(self) -> "RelayClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -- connection --------------------------------------------------------

    async def _default_connect(self, url: str, origin: str) -> Any:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(url, origin=origin, autoping=True)

    async def connect(self) -> None:
        connect = self._connector or self._default_connect
        self._ws = await connect(self.config.url, self.config.origin)
        await self._ws.send_str(protocol.encode(protocol.auth(self.config.token, "webapp")))

        try:
            await asyncio.wait_for(self._await_auth(), timeout=self.config.auth_timeout_sec)
        except asyncio.TimeoutError as exc:
            await self.close()
            raise ConnectionError("Relay did not confirm authentication") from exc

        self._reader = asyncio.create_task(self._read_loop())
        log.info("Connected to relay %s as webapp", self.config.url)

    async def _await_auth(self) -> None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    message = protocol.decode(msg.data)
                except ProtocolError:
                    continue
                if message["type"] == "auth_success":
                    return
                self._dispatch(message)
                continue
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED,
                            aiohttp.WSMsgType.CLOSING):
                code = self._ws.close_code
                if code == CLOSE_AUTH_REJECTED:
                    raise TransportRejected(code, "invalid token")
                raise ConnectionError(f"Relay closed during authentication (code {code})")
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"Relay websocket error: {self._ws.exception()}")

    async def _read_loop(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue
                try:
                    self._dispatch(protocol.decode(msg.data))
                except ProtocolError as exc:
                    log.warning("Ignored relay frame: %s", exc)
        finally:
            self.extension_available = False
            for fut in self._pending.values():
                if not fut.done():
                    fut.set_exception(ConnectionError("Relay connection closed"))
            self._pending.clear()

    def _dispatch(self, message: Dict[str, Any]) -> None:
        msg_type = message["type"]
        if msg_type == "extension_status":
            self.extension_available = bool(message.get("available"))
            self._status_seen.set()
            log.info("Extension available: %s", self.extension_available)
        elif msg_type in protocol.RESULT_TYPES:
            fut = self._pending.pop(str(message.get("messageId", "")), None)
            if fut is not None and not fut.done():
                fut.set_result(message)
        elif msg_type == "error":
            log.warning("Relay error: %s", message.get("message", ""))

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=CLOSE_NORMAL, message=b"User disconnected")
        if self._reader is not None:
            try:
                await asyncio.wait_for(self._reader, timeout=2.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                pass
            self._reader = None
        if self._session is not None:
            await self._session.close()
            self._session = None

    # -- requests ----------------------------------------------------------

    async def _request(self, message: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        if not self._status_seen.is_set():
            try:
                await asyncio.wait_for(self._status_seen.wait(), timeout=STATUS_WAIT_SEC)
            except asyncio.TimeoutError:
                pass
        if not self.extension_available:
            return {"success": False, "error": "Prompt bridge extension not connected"}

        message_id = message["messageId"]
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = fut
        await self._ws.send_str(protocol.encode(message))
        try:
            reply = await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError:
            self._pending.pop(message_id, None)
            return {"success": False, "error": f"Timed out after {timeout:.0f}s waiting for {message['type']}"}
        except ConnectionError as exc:
            return {"success": False, "error": str(exc)}

        result = dict(reply)
        result.pop("type", None)
        result.pop("messageId", None)
        return result

    async def submit(self, service: str, prompt: str) -> Dict[str, Any]:
        return await self._request(
            protocol.submit_prompt(service, prompt), self.config.prompt_timeout_sec,
        )

    async def batch(
        self,
        service: str,
        prompts: List[str],
        delay_ms: int = protocol.DEFAULT_BATCH_DELAY_MS,
    ) -> Dict[str, Any]:
        return await self._request(
            protocol.submit_batch(service, prompts, delay_ms), self.config.batch_timeout_sec,
        )
