"""Readiness predicates: has the driven UI gone idle again?

After a submit the prompt bar is busy for a while (the host app clears the
input, disables the Generate button, re-renders the panel). Submitting the
next prompt too early overlaps the two. A predicate answers "safe for the
next item?" with one read-only evaluation of the page:

- InputEmpty                   default rule: the prompt input is empty
- InputEmptyAndSubmitEnabled   platforms with a distinct Generate control:
                               input empty AND the control is enabled, with
                               "disabled" resolved through the control's own
                               shadow root when it has one

``wait_until_ready`` polls a predicate up to the platform's cap and gives up
with a warning; it never raises and never blocks a batch forever.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from promptbridge.locator import RESOLVE_SCOPE_JS, ShadowPath
from promptbridge.poll import Sleep, poll_until

log = logging.getLogger("promptbridge.readiness")

GENERIC_MAX_CHECKS = 30
SLOW_MAX_CHECKS = 150


# ---------------------------------------------------------------------------
# Submit control description
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubmitControl:
    """Where the Generate/Submit control lives.

    ``path.terminal`` is a CSS selector for candidates inside the resolved
    scope; ``texts`` (lowercase substrings of text or aria-label) narrows
    them further when non-empty.
    """
    path: ShadowPath
    texts: tuple[str, ...] = ()

    def to_js(self) -> dict[str, Any]:
        return {"path": self.path.to_js(), "texts": list(self.texts)}


# Shared in-page helpers for control lookup; prepended to readiness and
# submit scripts.
CONTROL_JS = RESOLVE_SCOPE_JS + """
function readValue(el) {
    if (typeof el.value === 'string') return el.value;
    return el.textContent || '';
}
function isDisabled(el) {
    if (el.disabled === true) return true;
    if (el.hasAttribute && el.hasAttribute('disabled')) return true;
    if (el.getAttribute && el.getAttribute('aria-disabled') === 'true') return true;
    if (el.shadowRoot) {
        const inner = el.shadowRoot.querySelector('button, [role="button"]');
        if (inner && inner !== el) return isDisabled(inner);
    }
    return false;
}
function isVisible(el) {
    const r = el.getBoundingClientRect();
    if (r.width === 0 && r.height === 0) return false;
    const cs = window.getComputedStyle(el);
    return cs.display !== 'none' && cs.visibility !== 'hidden';
}
function findControls(ctrl) {
    const scope = resolveScope(ctrl.path);
    if (!scope) return [];
    let found = Array.from(scope.querySelectorAll(ctrl.path.terminal));
    if (ctrl.texts.length) {
        found = found.filter(el => {
            const label = ((el.textContent || '') + ' ' + (el.getAttribute('aria-label') || '')).toLowerCase();
            return ctrl.texts.some(t => label.includes(t));
        });
    }
    return found;
}
"""

_JS_READY = "(args) => {" + CONTROL_JS + """
    const input = resolveTerminal(args.input);
    if (!input) return false;
    if (readValue(input).trim() !== '') return false;
    if (!args.submit) return true;
    const controls = findControls(args.submit);
    if (!controls.length) return false;
    return controls.some(el => !isDisabled(el));
}"""


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


class ReadinessRule:
    """Side-effect-free idle check for one platform's prompt bar."""

    def __init__(self, input_path: ShadowPath):
        self.input_path = input_path

    def _args(self) -> dict[str, Any]:
        return {"input": self.input_path.to_js(), "submit": None}

    async def is_ready(self, page: Any) -> bool:
        try:
            return bool(await page.evaluate(_JS_READY, self._args()))
        except Exception as exc:
            # A page mid-navigation cannot be evaluated; that is "not ready yet"
            log.debug("readiness evaluation failed: %s", exc)
            return False


class InputEmpty(ReadinessRule):
    """Default rule: the prompt input has been cleared."""


class InputEmptyAndSubmitEnabled(ReadinessRule):
    """Stricter rule for platforms with a distinct submit control."""

    def __init__(self, input_path: ShadowPath, submit: SubmitControl):
        super().__init__(input_path)
        self.submit = submit

    def _args(self) -> dict[str, Any]:
        return {"input": self.input_path.to_js(), "submit": self.submit.to_js()}


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


async def wait_until_ready(
    rule: ReadinessRule,
    page: Any,
    *,
    interval_s: float,
    max_checks: int,
    label: str = "",
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """Poll ``rule`` until ready or ``max_checks`` evaluations have run.

    Returns False on exhaustion after logging a non-fatal timeout: blocking
    a batch forever is worse than risking one overlapped submission.
    """
    outcome = await poll_until(
        lambda: rule.is_ready(page),
        interval_s=interval_s,
        max_attempts=max_checks,
        sleep=sleep,
    )
    if outcome.ok:
        log.debug("%s ready after %d check(s)", label or "page", outcome.attempts)
        return True
    log.warning(
        "%s not ready after %d checks (%.1fs); proceeding anyway",
        label or "page", max_checks, max_checks * interval_s,
    )
    return False
