"""Ideogram.

The Generate button stays disabled until the app's own validation runs on a
keystroke, so a Space + Backspace follows the injected value. Clicking
Generate often navigates the document; the orchestrator treats the resulting
frame-destroyed error as an implicit success.
"""

from __future__ import annotations

from typing import Any

from promptbridge.adapters.base import ServiceAdapter


class IdeogramAdapter(ServiceAdapter):
    name = "ideogram"
    slow = True

    async def after_set_value(self, page: Any, element: Any) -> None:
        await element.focus()
        await page.keyboard.press("End")
        await page.keyboard.press("Space")
        await page.keyboard.press("Backspace")
