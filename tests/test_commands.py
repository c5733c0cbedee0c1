"""Unit tests for promptbridge.commands: the submit/batch command boundary."""

import sys
import tempfile
import unittest
from pathlib import Path

_repo = Path(__file__).resolve().parent.parent
if str(_repo) not in sys.path:
    sys.path.insert(0, str(_repo))

from fakes import FakeClock, FakeProvider, ScriptedAdapter
from promptbridge import protocol
from promptbridge.commands import PromptEngine
from promptbridge.config import EngineConfig
from promptbridge.errors import ElementNotFound
from promptbridge.orchestrator import BatchOrchestrator


def _engine(script=(), **cfg):
    clock = FakeClock()
    adapter = ScriptedAdapter(script, sleep=clock.sleep)
    orch = BatchOrchestrator(
        FakeProvider(), config=EngineConfig(state_dir=tempfile.mkdtemp(), **cfg),
        sleep=clock.sleep, clock=clock, adapters={"midjourney": adapter},
        diagnostics=_no_dump,
    )
    return PromptEngine(orch), adapter, clock


async def _no_dump(page, service, exc):
    return None


# ---------------------------------------------------------------------------
# submit / batch
# ---------------------------------------------------------------------------

class TestPromptEngine(unittest.IsolatedAsyncioTestCase):

    async def test_submit(self):
        engine, adapter, _ = _engine()
        result = await engine.submit(" Midjourney ", "a fox")
        self.assertEqual(result, {"success": True, "method": "button"})
        self.assertEqual(adapter.submitted, ["a fox"])

    async def test_submit_unknown_service(self):
        engine, adapter, _ = _engine()
        result = await engine.submit("dalle", "a fox")
        self.assertFalse(result["success"])
        self.assertIn("Unknown service 'dalle'", result["error"])
        self.assertEqual(adapter.submitted, [])

    async def test_submit_empty_prompt(self):
        engine, adapter, _ = _engine()
        result = await engine.submit("midjourney", "   ")
        self.assertEqual(result, {"success": False, "error": "Prompt is empty"})
        self.assertEqual(adapter.submitted, [])

    async def test_batch_partial_failure(self):
        engine, _, _ = _engine([ElementNotFound("textarea")])
        result = await engine.batch("midjourney", ["a", "b"], delay_ms=0)
        self.assertTrue(result["success"])
        self.assertEqual(result["successCount"], 1)
        self.assertEqual(result["failCount"], 1)

    async def test_batch_uses_default_delay(self):
        engine, _, clock = _engine(default_delay_ms=1200)
        await engine.batch("midjourney", ["a", "b"])
        self.assertEqual(clock.sleeps, [1.2])

    async def test_batch_unknown_service(self):
        engine, _, _ = _engine()
        result = await engine.batch("dalle", ["a"])
        self.assertEqual(result["results"], [])
        self.assertEqual(result["failCount"], 0)
        self.assertFalse(result["success"])

    async def test_batch_negative_delay_is_a_failed_result(self):
        engine, adapter, _ = _engine()
        result = await engine.batch("midjourney", ["a"], delay_ms=-1)
        self.assertEqual(result, {
            "success": False, "results": [], "successCount": 0, "failCount": 0,
            "error": "delay_ms must be >= 0, got -1",
        })
        self.assertEqual(adapter.submitted, [])

    def test_status_idle(self):
        engine, _, _ = _engine()
        self.assertEqual(engine.status("midjourney")["state"], "idle")


# ---------------------------------------------------------------------------
# Wire requests
# ---------------------------------------------------------------------------

class TestHandle(unittest.IsolatedAsyncioTestCase):

    async def test_submit_prompt_reply(self):
        engine, _, _ = _engine()
        reply = await engine.handle(protocol.submit_prompt("midjourney", "a fox", message_id="m1"))
        self.assertEqual(reply, {"type": "prompt_result", "messageId": "m1",
                                 "success": True, "method": "button"})

    async def test_submit_batch_reply(self):
        engine, adapter, _ = _engine()
        reply = await engine.handle(
            protocol.submit_batch("midjourney", ["a", "b"], 0, message_id="m2")
        )
        self.assertEqual(reply["type"], "batch_result")
        self.assertEqual(reply["messageId"], "m2")
        self.assertEqual(reply["successCount"], 2)
        self.assertEqual(adapter.submitted, ["a", "b"])

    async def test_invalid_request_with_id_gets_failed_result(self):
        engine, _, _ = _engine()
        reply = await engine.handle({"type": "submit_batch", "messageId": "m3",
                                     "service": "midjourney", "prompts": []})
        self.assertEqual(reply["type"], "batch_result")
        self.assertEqual(reply["messageId"], "m3")
        self.assertFalse(reply["success"])

    async def test_invalid_request_without_id_gets_error_frame(self):
        engine, _, _ = _engine()
        reply = await engine.handle({"type": "submit_prompt", "service": "midjourney"})
        self.assertEqual(reply["type"], "error")

    async def test_other_types_ignored(self):
        engine, _, _ = _engine()
        self.assertIsNone(await engine.handle({"type": "ping"}))


if __name__ == "__main__":
    unittest.main()
