"""Service adapters: one per creative platform.

Usage:
    from promptbridge.adapters import get_adapter

    adapter = get_adapter("firefly")
    outcome = await adapter.submit_prompt(page, "a lighthouse at dusk")
"""

from __future__ import annotations

from typing import Any

from promptbridge.adapters.base import ServiceAdapter
from promptbridge.adapters.firefly import FireflyAdapter
from promptbridge.adapters.ideogram import IdeogramAdapter
from promptbridge.adapters.leonardo import LeonardoAdapter
from promptbridge.adapters.midjourney import MidjourneyAdapter

REGISTRY: dict[str, type[ServiceAdapter]] = {
    cls.name: cls
    for cls in (MidjourneyAdapter, IdeogramAdapter, FireflyAdapter, LeonardoAdapter)
}


def get_adapter(name: str, **kwargs: Any) -> ServiceAdapter:
    """Instantiate the adapter registered under ``name``.

    Raises KeyError listing the known services for an unknown name.
    """
    key = (name or "").strip().lower()
    cls = REGISTRY.get(key)
    if cls is None:
        raise KeyError(f"Unknown service {name!r}. Known: {', '.join(sorted(REGISTRY))}")
    return cls(**kwargs)


__all__ = [
    "REGISTRY",
    "ServiceAdapter",
    "get_adapter",
    "MidjourneyAdapter",
    "IdeogramAdapter",
    "FireflyAdapter",
    "LeonardoAdapter",
]
