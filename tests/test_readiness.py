"""Unit tests for promptbridge.readiness: idle predicates and polling."""

import sys
import unittest
from pathlib import Path

_repo = Path(__file__).resolve().parent.parent
if str(_repo) not in sys.path:
    sys.path.insert(0, str(_repo))

from fakes import FakeClock, FakePage
from promptbridge.locator import ShadowPath
from promptbridge.readiness import (
    GENERIC_MAX_CHECKS,
    SLOW_MAX_CHECKS,
    InputEmpty,
    InputEmptyAndSubmitEnabled,
    SubmitControl,
    wait_until_ready,
)

INPUT = ShadowPath.of("firefly-prompt-bar", terminal="textarea")
SUBMIT = SubmitControl(ShadowPath.of("firefly-prompt-bar", terminal="sp-button"), ("generate",))


class _RecordingPage(FakePage):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.args = []

    async def evaluate(self, script, arg=None):
        self.args.append(arg)
        return await super().evaluate(script, arg)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

class TestRules(unittest.IsolatedAsyncioTestCase):

    async def test_input_empty_args_have_no_submit(self):
        page = _RecordingPage(ready=(True,))
        self.assertTrue(await InputEmpty(INPUT).is_ready(page))
        self.assertEqual(page.args[0]["input"], INPUT.to_js())
        self.assertIsNone(page.args[0]["submit"])

    async def test_strict_rule_sends_submit_control(self):
        page = _RecordingPage(ready=(False,))
        rule = InputEmptyAndSubmitEnabled(INPUT, SUBMIT)
        self.assertFalse(await rule.is_ready(page))
        self.assertEqual(page.args[0]["submit"], {
            "path": SUBMIT.path.to_js(), "texts": ["generate"],
        })

    async def test_evaluation_error_means_not_ready(self):
        page = FakePage(ready=(True,))
        page.evaluate_error = RuntimeError("Execution context was destroyed")
        self.assertFalse(await InputEmpty(INPUT).is_ready(page))

    def test_caps(self):
        self.assertEqual(GENERIC_MAX_CHECKS, 30)
        self.assertEqual(SLOW_MAX_CHECKS, 150)


# ---------------------------------------------------------------------------
# wait_until_ready
# ---------------------------------------------------------------------------

class TestWaitUntilReady(unittest.IsolatedAsyncioTestCase):

    async def test_ready_after_a_few_checks(self):
        page = FakePage(ready=(False, False, True))
        clock = FakeClock()
        ok = await wait_until_ready(InputEmpty(INPUT), page, interval_s=0.5,
                                    max_checks=30, sleep=clock.sleep)
        self.assertTrue(ok)
        self.assertEqual(page.ready_checks, 3)
        self.assertEqual(clock.sleeps, [0.5, 0.5])

    async def test_exhaustion_warns_and_returns_false(self):
        page = FakePage(ready=(False,))
        clock = FakeClock()
        with self.assertLogs("promptbridge.readiness", level="WARNING") as logs:
            ok = await wait_until_ready(InputEmpty(INPUT), page, interval_s=0.5,
                                        max_checks=4, label="Ideogram", sleep=clock.sleep)
        self.assertFalse(ok)
        self.assertEqual(page.ready_checks, 4)
        self.assertEqual(len(clock.sleeps), 3)
        self.assertIn("Ideogram not ready after 4 checks", logs.output[0])


if __name__ == "__main__":
    unittest.main()
