"""Unit tests for promptbridge.diagnostics: debug artifact capture."""

import json
import sys
import tempfile
import unittest
from pathlib import Path

_repo = Path(__file__).resolve().parent.parent
if str(_repo) not in sys.path:
    sys.path.insert(0, str(_repo))

from fakes import FakePage
from promptbridge.diagnostics import capture_debug_artifacts


class _ShadowPage(FakePage):
    async def evaluate(self, script, arg=None):
        return [{"tag": "firefly-prompt-bar", "id": "", "depth": 1}]


class _GonePage(FakePage):
    async def screenshot(self, path, full_page=False):
        raise RuntimeError("Target closed")

    async def title(self):
        raise RuntimeError("Target closed")


class TestCaptureDebugArtifacts(unittest.IsolatedAsyncioTestCase):

    async def test_screenshot_and_summary(self):
        out = Path(tempfile.mkdtemp()) / "debug"
        page = _ShadowPage(url="https://firefly.adobe.com/generate/images", title="Firefly")

        artifacts = await capture_debug_artifacts(
            page, debug_dir=out, service="firefly", tag="locator", error="hop 2",
        )

        self.assertTrue(Path(artifacts["screenshot"]).exists())
        self.assertTrue(artifacts["screenshot"].endswith("_firefly_locator_screenshot.png"))
        summary = json.loads(Path(artifacts["summary"]).read_text())
        self.assertEqual(summary["url"], "https://firefly.adobe.com/generate/images")
        self.assertEqual(summary["title"], "Firefly")
        self.assertEqual(summary["error"], "hop 2")
        self.assertEqual(summary["shadow_hosts"][0]["tag"], "firefly-prompt-bar")

    async def test_gone_page_still_writes_summary(self):
        out = Path(tempfile.mkdtemp())
        artifacts = await capture_debug_artifacts(_GonePage(url="about:blank"),
                                                  debug_dir=out, service="ideogram")
        self.assertNotIn("screenshot", artifacts)
        summary = json.loads(Path(artifacts["summary"]).read_text())
        self.assertEqual(summary["tag"], "error")
        self.assertEqual(summary["url"], "about:blank")
        self.assertEqual(summary["shadow_hosts"], [])


if __name__ == "__main__":
    unittest.main()
