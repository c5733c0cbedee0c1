"""Adobe Firefly: Spectrum web components, prompt four shadow roots deep."""

from __future__ import annotations

from promptbridge.adapters.base import ServiceAdapter


class FireflyAdapter(ServiceAdapter):
    name = "firefly"
    slow = True
    strict_readiness = True
    # sp-textfield keeps its own ``value``; the inner textarea alone is not enough
    host_property = True
    settle_s = 0.5
