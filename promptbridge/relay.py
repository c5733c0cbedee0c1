"""Local relay server between requesters (web app) and executors (bridge).

FastAPI service bound to 127.0.0.1 only.

Endpoints:
- WS   /         relay socket (origin allowlist, token auth, routing)
- GET  /health   connection counts
- GET  /token    the per-start auth token

Security:
- loopback binding
- Origin header must start with an allowed origin (else 403)
- at most ``max_connections`` sockets (else 403)
- random per-start token, required within ``auth_timeout_sec`` (close 4001);
  wrong token closes 4002; any other message before auth closes 4003

Routing after auth:
- submit_prompt / submit_batch   requester -> every executor
- prompt_result / batch_result   executor  -> every requester
- ping                           answered with pong
- executor availability          broadcast to requesters as extension_status
"""

from __future__ import annotations

import argparse
import asyncio
import hmac
import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from promptbridge import __version__, protocol
from promptbridge.config import (
    CLOSE_AUTH_REJECTED,
    CLOSE_AUTH_TIMEOUT,
    CLOSE_NOT_AUTHENTICATED,
    RelayConfig,
    load_config,
)
from promptbridge.errors import ProtocolError
from promptbridge.log import mask_secret, setup_logging

log = logging.getLogger("promptbridge.relay")

NO_EXECUTOR_ERROR = "Prompt bridge extension not connected"


class RelayState:
    """Connected sockets and their authenticated roles."""

    def __init__(self, config: RelayConfig, token: str):
        self.config = config
        self.token = token
        self.connections: set[WebSocket] = set()
        self.roles: Dict[WebSocket, str] = {}

    def _with_role(self, role: str) -> list[WebSocket]:
        return [ws for ws, r in self.roles.items() if r == role]

    @property
    def extensions(self) -> list[WebSocket]:
        return self._with_role("extension")

    @property
    def webapps(self) -> list[WebSocket]:
        return self._with_role("webapp")

    def origin_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        return any(origin.startswith(allowed) for allowed in self.config.allowed_origins)

    def token_valid(self, candidate: Any) -> bool:
        return hmac.compare_digest(str(candidate or ""), self.token)

    async def send(self, ws: WebSocket, message: Dict[str, Any]) -> bool:
        try:
            await ws.send_text(protocol.encode(message))
            return True
        except (RuntimeError, WebSocketDisconnect) as exc:
            log.debug("send to closed socket dropped: %s", exc)
            return False

    async def broadcast(self, targets: list[WebSocket], message: Dict[str, Any]) -> int:
        sent = 0
        for ws in targets:
            if await self.send(ws, message):
                sent += 1
        return sent

    async def announce_executors(self) -> None:
        await self.broadcast(self.webapps, protocol.extension_status(bool(self.extensions)))

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "connections": len(self.connections),
            "authenticated": len(self.roles),
            "extensions": len(self.extensions),
            "webapps": len(self.webapps),
        }


async def _authenticate(state: RelayState, ws: WebSocket) -> Optional[str]:
    """Wait for a valid auth frame; returns the client type or None after closing."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + state.config.auth_timeout_sec

    while True:
        remaining = deadline - loop.time()
        try:
            if remaining <= 0:
                raise asyncio.TimeoutError
            raw = await asyncio.wait_for(ws.receive_text(), timeout=remaining)
        except asyncio.TimeoutError:
            log.info("Connection timeout: no authentication")
            await ws.close(code=CLOSE_AUTH_TIMEOUT, reason="Authentication timeout")
            return None

        try:
            message = protocol.decode(raw)
        except ProtocolError as exc:
            await state.send(ws, protocol.error(str(exc)))
            continue

        if message["type"] != "auth":
            log.info("Message rejected: not authenticated")
            await ws.close(code=CLOSE_NOT_AUTHENTICATED, reason="Not authenticated")
            return None
        if not state.token_valid(message.get("token")):
            log.warning("Authentication failed: invalid token")
            await ws.close(code=CLOSE_AUTH_REJECTED, reason="Invalid token")
            return None
        return str(message.get("clientType") or "unknown")


async def _route(state: RelayState, ws: WebSocket, message: Dict[str, Any]) -> None:
    msg_type = message["type"]
    if msg_type in protocol.REQUEST_TYPES:
        executors = state.extensions
        if not executors:
            reply_type = "prompt_result" if msg_type == "submit_prompt" else "batch_result"
            await state.send(ws, protocol.make_message(
                reply_type, messageId=message.get("messageId", ""),
                success=False, error=NO_EXECUTOR_ERROR,
            ))
            return
        log.info("Forwarding %s to %d extension(s)", msg_type, len(executors))
        await state.broadcast(executors, message)
    elif msg_type in protocol.RESULT_TYPES:
        log.info("Forwarding %s to %d web app(s)", msg_type, len(state.webapps))
        await state.broadcast(state.webapps, message)
    elif msg_type == "ping":
        await state.send(ws, protocol.make_message("pong"))
    else:
        log.debug("Unknown message type: %s", msg_type)


def create_app(config: RelayConfig, *, token: Optional[str] = None) -> FastAPI:
    state = RelayState(config, token or config.token or secrets.token_hex(32))
    app = FastAPI(title="promptbridge relay", version=__version__)
    app.state.relay = state

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return state.health()

    @app.get("/token")
    def get_token() -> Dict[str, str]:
        return {"token": state.token}

    @app.websocket("/")
    async def relay_socket(ws: WebSocket) -> None:
        origin = ws.headers.get("origin")
        if not state.origin_allowed(origin):
            log.warning("Connection rejected: invalid origin %r", origin)
            await ws.close(code=1008)
            return
        if len(state.connections) >= config.max_connections:
            log.warning("Connection rejected: max connections (%d) reached", config.max_connections)
            await ws.close(code=1013)
            return

        await ws.accept()
        state.connections.add(ws)
        client_type: Optional[str] = None
        try:
            client_type = await _authenticate(state, ws)
            if client_type is None:
                return
            state.roles[ws] = client_type
            await state.send(ws, protocol.make_message("auth_success", clientType=client_type))
            log.info("Client authenticated as %s (%d extension(s), %d web app(s))",
                     client_type, len(state.extensions), len(state.webapps))
            await state.announce_executors()

            while True:
                raw = await ws.receive_text()
                try:
                    message = protocol.decode(raw)
                except ProtocolError as exc:
                    await state.send(ws, protocol.error(str(exc)))
                    continue
                await _route(state, ws, message)
        except WebSocketDisconnect:
            pass
        finally:
            state.connections.discard(ws)
            state.roles.pop(ws, None)
            log.info("Client disconnected (%s)", client_type or "unauthenticated")
            if client_type == "extension":
                await state.announce_executors()

    return app


def main(argv: Optional[list[str]] = None) -> int:
    _, relay_cfg = load_config()
    parser = argparse.ArgumentParser(description="Run the promptbridge local relay")
    parser.add_argument("--host", default=relay_cfg.host)
    parser.add_argument("--port", type=int, default=relay_cfg.port)
    parser.add_argument("--token", default=relay_cfg.token,
                        help="Fixed auth token (default: random per start)")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)
    if args.host not in ("127.0.0.1", "localhost", "::1"):
        log.warning("Relay bound to %s: it is reachable beyond this machine", args.host)

    relay_cfg.host = args.host
    relay_cfg.port = args.port
    token = str(args.token or "").strip() or secrets.token_hex(32)
    app = create_app(relay_cfg, token=token)

    log.info("Relay on ws://%s:%d/  token %s  (full token: GET /token)",
             args.host, args.port, mask_secret(token))

    import uvicorn

    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
