"""Midjourney web app (/imagine). Light DOM, React textarea."""

from __future__ import annotations

from typing import Any

from promptbridge.adapters.base import ServiceAdapter
from promptbridge.selectors import MIDJOURNEY


class MidjourneyAdapter(ServiceAdapter):
    name = "midjourney"

    async def is_logged_in(self, page: Any) -> bool:
        # Logged-out sessions are redirected away from /imagine
        if MIDJOURNEY["logged_in_path"] not in (page.url or ""):
            return False
        return await super().is_logged_in(page)
