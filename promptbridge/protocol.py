"""Bridge wire protocol (relay <-> executor <-> requester).

JSON text frames, one object per frame, discriminated by ``type``:

    auth              {token, clientType}           client -> relay
    auth_success      {clientType}                  relay -> client
    submit_prompt     {messageId, service, prompt}  requester -> executor
    submit_batch      {messageId, service, prompts, delayMs}
    prompt_result     {messageId, success, error?, note?, method?}
    batch_result      {messageId, success, results, successCount, failCount, error?}
    extension_status  {available}                   relay -> requesters
    ping / pong
    error             {message}

Close codes: 4001 auth timeout, 4002 invalid token, 4003 not authenticated.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from promptbridge.common import new_message_id
from promptbridge.errors import ProtocolError

MESSAGE_TYPES = {
    "auth",
    "auth_success",
    "submit_prompt",
    "submit_batch",
    "prompt_result",
    "batch_result",
    "extension_status",
    "ping",
    "pong",
    "error",
}

CLIENT_TYPES = {"extension", "webapp"}

# Routed requester -> executors
REQUEST_TYPES = {"submit_prompt", "submit_batch"}
# Routed executor -> requesters
RESULT_TYPES = {"prompt_result", "batch_result"}

DEFAULT_BATCH_DELAY_MS = 5000


@dataclass(frozen=True)
class SubmitPrompt:
    message_id: str
    service: str
    prompt: str


@dataclass(frozen=True)
class SubmitBatch:
    message_id: str
    service: str
    prompts: List[str]
    delay_ms: int


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

def encode(message: Dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False, separators=(",", ":"))


def decode(raw: str | bytes) -> Dict[str, Any]:
    """Parse one frame. Unknown types are returned as-is for the caller to ignore."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError("Invalid message format") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")
    msg_type = data.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise ProtocolError("Message type is required")
    return data


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_message(msg_type: str, **fields: Any) -> Dict[str, Any]:
    if msg_type not in MESSAGE_TYPES:
        raise ProtocolError(f"Unsupported message type: {msg_type}")
    out: Dict[str, Any] = {"type": msg_type}
    out.update(fields)
    return out


def auth(token: str, client_type: str) -> Dict[str, Any]:
    if client_type not in CLIENT_TYPES:
        raise ProtocolError(
            f"Unsupported clientType={client_type!r}. Supported: {', '.join(sorted(CLIENT_TYPES))}"
        )
    return make_message("auth", token=token, clientType=client_type)


def submit_prompt(service: str, prompt: str, message_id: Optional[str] = None) -> Dict[str, Any]:
    return make_message(
        "submit_prompt",
        messageId=message_id or new_message_id(),
        service=service,
        prompt=prompt,
    )


def submit_batch(
    service: str,
    prompts: List[str],
    delay_ms: int = DEFAULT_BATCH_DELAY_MS,
    message_id: Optional[str] = None,
) -> Dict[str, Any]:
    return make_message(
        "submit_batch",
        messageId=message_id or new_message_id(),
        service=service,
        prompts=list(prompts),
        delayMs=int(delay_ms),
    )


def prompt_result(message_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
    return make_message("prompt_result", messageId=message_id, **result)


def batch_result(message_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
    return make_message("batch_result", messageId=message_id, **result)


def extension_status(available: bool) -> Dict[str, Any]:
    return make_message("extension_status", available=bool(available))


def error(message: str) -> Dict[str, Any]:
    return make_message("error", message=message)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ProtocolError(f"{data.get('type', 'message')}: {key} is required")
    return value


def parse_submit_prompt(data: Dict[str, Any]) -> SubmitPrompt:
    return SubmitPrompt(
        message_id=_require_str(data, "messageId"),
        service=_require_str(data, "service").strip().lower(),
        prompt=_require_str(data, "prompt"),
    )


def parse_submit_batch(data: Dict[str, Any]) -> SubmitBatch:
    prompts = data.get("prompts")
    if not isinstance(prompts, list) or not prompts:
        raise ProtocolError("submit_batch: prompts must be a non-empty list")
    if not all(isinstance(p, str) for p in prompts):
        raise ProtocolError("submit_batch: every prompt must be a string")

    raw_delay = data.get("delayMs", DEFAULT_BATCH_DELAY_MS)
    try:
        delay_ms = int(raw_delay)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"submit_batch: invalid delayMs {raw_delay!r}") from exc
    if delay_ms < 0:
        raise ProtocolError("submit_batch: delayMs must be >= 0")

    return SubmitBatch(
        message_id=_require_str(data, "messageId"),
        service=_require_str(data, "service").strip().lower(),
        prompts=list(prompts),
        delay_ms=delay_ms,
    )
