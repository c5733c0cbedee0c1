"""Shadow traversal locator.

Creative platforms build their prompt bars from nested web components; the
textarea we need can sit three or four shadow roots deep and each root is
attached asynchronously after the host element renders. Ordinary CSS
descendant queries stop at every boundary, so a path is walked one hop at a
time:

    firefly-app >>> firefly-prompt-bar >>> sp-textfield >>> textarea

Each hop is retried on its own (200ms x 100 by default) so a late-attaching
root never forces re-resolution of the ancestors already found, and a
failure names the exact hop that never showed up.

Usage:
    from promptbridge.locator import ShadowLocator, ShadowPath

    path = ShadowPath.of("firefly-app", "sp-textfield", terminal="textarea")
    element = await ShadowLocator().locate(page, path)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from promptbridge.errors import ElementNotFound, LocatorTimeout
from promptbridge.poll import Sleep, poll_until

log = logging.getLogger("promptbridge.locator")

DEFAULT_INTERVAL_S = 0.2
DEFAULT_MAX_RETRIES = 100


# ---------------------------------------------------------------------------
# Path model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Hop:
    """One step of a path: a component whose shadow root hides the next level.

    ``shadow=False`` scopes into the element's light DOM instead (no boundary).
    """
    selector: str
    shadow: bool = True


@dataclass(frozen=True)
class ShadowPath:
    hops: tuple[Hop, ...]
    terminal: str

    @classmethod
    def of(cls, *hops: str | Hop, terminal: str) -> "ShadowPath":
        return cls(
            hops=tuple(h if isinstance(h, Hop) else Hop(h) for h in hops),
            terminal=terminal,
        )

    def describe(self) -> str:
        parts = [h.selector if h.shadow else f"{h.selector} >" for h in self.hops]
        return " >>> ".join(parts + [self.terminal])

    def to_js(self) -> dict[str, Any]:
        """Serializable form consumed by RESOLVE_SCOPE_JS."""
        return {
            "hops": [{"selector": h.selector, "shadow": h.shadow} for h in self.hops],
            "terminal": self.terminal,
        }


# ---------------------------------------------------------------------------
# In-page scripts
# ---------------------------------------------------------------------------

_JS_DOCUMENT = "() => document"

_JS_QUERY_HOP = """(root, hop) => {
    const el = root.querySelector(hop.selector);
    if (!el) return null;
    if (!hop.shadow) return el;
    return el.shadowRoot || null;
}"""

_JS_QUERY_TERMINAL = "(root, selector) => root.querySelector(selector)"

_JS_IS_MISSING = "(h) => h === null || h === undefined"

# Synchronous, non-waiting resolution used by one-shot checks (readiness,
# submit). Returns the scope that should contain path.terminal, or null.
RESOLVE_SCOPE_JS = """
function resolveScope(path) {
    let root = document;
    for (const hop of path.hops) {
        const el = root.querySelector(hop.selector);
        if (!el) return null;
        if (hop.shadow) {
            if (!el.shadowRoot) return null;
            root = el.shadowRoot;
        } else {
            root = el;
        }
    }
    return root;
}
function resolveTerminal(path) {
    const scope = resolveScope(path);
    return scope ? scope.querySelector(path.terminal) : null;
}
"""


# ---------------------------------------------------------------------------
# Locator
# ---------------------------------------------------------------------------


class ShadowLocator:
    """Walks a ShadowPath hop by hop with bounded per-hop retry."""

    def __init__(
        self,
        *,
        interval_s: float = DEFAULT_INTERVAL_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep: Sleep = asyncio.sleep,
    ):
        self.interval_s = interval_s
        self.max_retries = max_retries
        self._sleep = sleep

    async def _query(self, root: Any, script: str, arg: Any) -> Any:
        """Evaluate a query against ``root``; None when nothing matched."""
        handle = await root.evaluate_handle(script, arg)
        if await handle.evaluate(_JS_IS_MISSING):
            return None
        return handle

    async def _walk(self, root: Any, hops: tuple[Hop, ...], *, described: str) -> Any:
        """Resolve ``hops`` from ``root``, retrying each hop on its own."""
        for index, hop in enumerate(hops):
            hop_arg = {"selector": hop.selector, "shadow": hop.shadow}
            outcome = await poll_until(
                lambda r=root, a=hop_arg: self._query(r, _JS_QUERY_HOP, a),
                interval_s=self.interval_s,
                max_attempts=self.max_retries,
                sleep=self._sleep,
            )
            if not outcome.ok:
                raise LocatorTimeout(
                    hop.selector, index=index, attempts=outcome.attempts, path=described,
                )
            if outcome.attempts > 1:
                log.debug("hop %d (%s) resolved after %d attempts",
                          index, hop.selector, outcome.attempts)
            root = outcome.value
        return root

    @staticmethod
    def _element(handle: Any) -> Any:
        element = handle.as_element()
        return element if element is not None else handle

    async def locate(self, page: Any, path: ShadowPath, *, service: str = "") -> Any:
        """Return the terminal element handle of ``path``.

        Raises LocatorTimeout naming the hop that never resolved, or
        ElementNotFound when the terminal selector is absent after the full
        path resolved.
        """
        described = path.describe()
        document = await page.evaluate_handle(_JS_DOCUMENT)
        root = await self._walk(document, path.hops, described=described)

        outcome = await poll_until(
            lambda: self._query(root, _JS_QUERY_TERMINAL, path.terminal),
            interval_s=self.interval_s,
            max_attempts=self.max_retries,
            sleep=self._sleep,
        )
        if not outcome.ok:
            raise ElementNotFound(path.terminal, service=service, path=described)
        return self._element(outcome.value)

    async def locate_first(self, page: Any, paths: tuple[ShadowPath, ...], *,
                           service: str = "") -> tuple[Any, ShadowPath]:
        """Try alternative paths; return (element, matched_path).

        The hops every alternative shares are resolved once, with per-hop
        retry. After that each attempt checks the alternatives in order
        inside the resolved scope, so a variant that renders late still wins
        over a later fallback.
        """
        if not paths:
            raise ValueError("at least one path is required")
        if len(paths) == 1:
            return await self.locate(page, paths[0], service=service), paths[0]

        shared = _shared_hops(paths)
        document = await page.evaluate_handle(_JS_DOCUMENT)
        scope = await self._walk(document, shared, described=paths[0].describe())

        # (path, index of the hop that was missing, or None for the terminal)
        last_miss: tuple[ShadowPath, int | None] = (paths[-1], None)

        async def check() -> tuple[Any, ShadowPath] | None:
            nonlocal last_miss
            for candidate in paths:
                root = scope
                missing = None
                for index in range(len(shared), len(candidate.hops)):
                    hop = candidate.hops[index]
                    root = await self._query(
                        root, _JS_QUERY_HOP, {"selector": hop.selector, "shadow": hop.shadow},
                    )
                    if root is None:
                        missing = index
                        break
                if missing is None:
                    handle = await self._query(root, _JS_QUERY_TERMINAL, candidate.terminal)
                    if handle is not None:
                        return self._element(handle), candidate
                last_miss = (candidate, missing)
            return None

        outcome = await poll_until(
            check,
            interval_s=self.interval_s,
            max_attempts=self.max_retries,
            sleep=self._sleep,
        )
        if outcome.ok:
            return outcome.value

        path, missing = last_miss
        if missing is None:
            raise ElementNotFound(path.terminal, service=service, path=path.describe())
        raise LocatorTimeout(path.hops[missing].selector, index=missing,
                             attempts=outcome.attempts, path=path.describe())


def _shared_hops(paths: tuple[ShadowPath, ...]) -> tuple[Hop, ...]:
    shared: list[Hop] = []
    for hops in zip(*(p.hops for p in paths)):
        if any(h != hops[0] for h in hops[1:]):
            break
        shared.append(hops[0])
    return tuple(shared)
