"""Leonardo image generation. Light DOM React textarea, Generate button matched by text."""

from __future__ import annotations

from promptbridge.adapters.base import ServiceAdapter


class LeonardoAdapter(ServiceAdapter):
    name = "leonardo"
