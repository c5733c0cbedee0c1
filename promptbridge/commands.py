"""Command boundary: submit / batch with plain-dict results.

Both the CLI and the bridge transport go through PromptEngine, so the wire
result shape and the CLI JSON output are the same thing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from promptbridge import protocol
from promptbridge.adapters import REGISTRY
from promptbridge.errors import ProtocolError
from promptbridge.models import BatchRequest
from promptbridge.orchestrator import BatchOrchestrator

log = logging.getLogger("promptbridge.commands")


def _unknown_service(service: str) -> Optional[str]:
    if (service or "").strip().lower() in REGISTRY:
        return None
    return f"Unknown service {service!r}. Known: {', '.join(sorted(REGISTRY))}"


def _failed_batch(error: str) -> Dict[str, Any]:
    return {"success": False, "results": [], "successCount": 0, "failCount": 0, "error": error}


class PromptEngine:
    def __init__(self, orchestrator: BatchOrchestrator):
        self.orchestrator = orchestrator

    async def submit(self, service: str, prompt: str) -> Dict[str, Any]:
        """-> {success, error?, note?, method?}"""
        problem = _unknown_service(service)
        if problem:
            return {"success": False, "error": problem}
        if not str(prompt or "").strip():
            return {"success": False, "error": "Prompt is empty"}
        return await self.orchestrator.submit(service.strip().lower(), prompt)

    async def batch(
        self,
        service: str,
        prompts: List[str],
        delay_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        """-> {success, results[], successCount, failCount, error?}"""
        problem = _unknown_service(service)
        if problem:
            return _failed_batch(problem)
        if delay_ms is None:
            delay_ms = self.orchestrator.config.default_delay_ms
        if delay_ms < 0:
            return _failed_batch(f"delay_ms must be >= 0, got {delay_ms}")
        request = BatchRequest.from_prompts(service.strip().lower(), list(prompts), delay_ms)
        result = await self.orchestrator.run(request)
        return result.to_dict()

    def status(self, service: str) -> Dict[str, Any]:
        return self.orchestrator.status(service)

    async def handle(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Execute one wire request; returns the reply frame (or None)."""
        msg_type = message.get("type")
        message_id = message.get("messageId")

        try:
            if msg_type == "submit_prompt":
                req = protocol.parse_submit_prompt(message)
                result = await self.submit(req.service, req.prompt)
                return protocol.prompt_result(req.message_id, result)
            if msg_type == "submit_batch":
                req_b = protocol.parse_submit_batch(message)
                result = await self.batch(req_b.service, req_b.prompts, req_b.delay_ms)
                return protocol.batch_result(req_b.message_id, result)
        except ProtocolError as exc:
            log.warning("Rejected %s: %s", msg_type, exc)
            if isinstance(message_id, str) and message_id:
                reply = protocol.prompt_result if msg_type == "submit_prompt" else protocol.batch_result
                return reply(message_id, {"success": False, "error": str(exc)})
            return protocol.error(str(exc))
        return None
