"""Shared adapter behaviour: locate, set value, submit, readiness.

A platform adapter is mostly data (selectors.py). This base class turns that
data into the four capabilities the orchestrator drives:

    locate_input   shadow-aware lookup of the prompt input
    set_value      reactive-setter injection + composed input/change events,
                   read back, keyboard typing when the value did not stick
    submit         click the one visible enabled submit control, else a
                   composed Enter keydown on the input
    is_ready       the platform's readiness predicate (side-effect free)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from promptbridge.common import strip_imagine_prefix, truncate
from promptbridge.errors import SubmitAmbiguous
from promptbridge.locator import ShadowLocator, ShadowPath
from promptbridge.models import SubmitOutcome
from promptbridge.poll import Sleep
from promptbridge.readiness import (
    CONTROL_JS,
    GENERIC_MAX_CHECKS,
    SLOW_MAX_CHECKS,
    InputEmpty,
    InputEmptyAndSubmitEnabled,
    ReadinessRule,
    SubmitControl,
)
from promptbridge.selectors import PLATFORMS

log = logging.getLogger("promptbridge.adapters")


# ---------------------------------------------------------------------------
# In-page scripts
# ---------------------------------------------------------------------------

# Runs against the located element. The native prototype setter is what
# React's value tracker observes; a plain ``el.value = x`` is invisible to it.
_JS_SET_VALUE = """(el, args) => {
    const text = args.text;
    el.focus();
    const fire = (data) => {
        el.dispatchEvent(new InputEvent('input', {
            bubbles: true, composed: true, inputType: 'insertText', data: data,
        }));
    };
    if (el.isContentEditable) {
        el.textContent = '';
        fire(null);
        el.textContent = text;
    } else {
        let proto = Object.getPrototypeOf(el);
        if (el instanceof HTMLTextAreaElement) proto = HTMLTextAreaElement.prototype;
        else if (el instanceof HTMLInputElement) proto = HTMLInputElement.prototype;
        const desc = Object.getOwnPropertyDescriptor(proto, 'value');
        const setter = desc && desc.set;
        if (setter) {
            setter.call(el, '');
            fire(null);
            setter.call(el, text);
        } else {
            el.value = text;
        }
    }
    if (args.hostProperty) {
        const root = el.getRootNode();
        const host = root && root.host;
        if (host && 'value' in host) host.value = text;
    }
    fire(text);
    el.dispatchEvent(new Event('change', {bubbles: true, composed: true}));
    return typeof el.value === 'string' ? el.value : (el.textContent || '');
}"""

_JS_CLICK_SUBMIT = "(ctrl) => {" + CONTROL_JS + """
    const usable = findControls(ctrl).filter(el => isVisible(el) && !isDisabled(el));
    if (usable.length !== 1) return {clicked: false, count: usable.length};
    usable[0].scrollIntoView({block: 'center'});
    usable[0].click();
    return {clicked: true, count: 1};
}"""

_JS_PRESS_ENTER = """(el) => {
    const opts = {
        key: 'Enter', code: 'Enter', keyCode: 13, which: 13,
        bubbles: true, composed: true, cancelable: true,
    };
    el.focus();
    el.dispatchEvent(new KeyboardEvent('keydown', opts));
    el.dispatchEvent(new KeyboardEvent('keypress', opts));
    el.dispatchEvent(new KeyboardEvent('keyup', opts));
    return true;
}"""

# True when a login affordance (link, button, sign-in text) is visible.
_JS_LOGIN_VISIBLE = """(args) => {
    const visible = (el) => {
        const r = el.getBoundingClientRect();
        return r.width > 0 && r.height > 0;
    };
    for (const sel of args.selectors) {
        const el = document.querySelector(sel);
        if (el && visible(el)) return true;
    }
    const clickable = document.querySelectorAll('button, a, [role="button"]');
    for (const el of clickable) {
        const t = (el.textContent || '').trim().toLowerCase();
        if (t.length < 30 && args.texts.some(x => t === x || t.startsWith(x)) && visible(el)) {
            return true;
        }
    }
    return false;
}"""


def _normalize(text: str) -> str:
    return " ".join(str(text or "").split())


# ---------------------------------------------------------------------------
# Base adapter
# ---------------------------------------------------------------------------


class ServiceAdapter:
    """Base for one platform. Subclasses set ``name`` and a few switches."""

    name: str = ""
    # Slow-rendering platforms get the long readiness cap
    slow: bool = False
    # Readiness also requires the submit control to be enabled again
    strict_readiness: bool = False
    # Also assign ``value`` on the web-component host of the input
    host_property: bool = False
    # Pause between value injection and submit so the host app re-renders
    settle_s: float = 0.3
    type_delay_ms: int = 10

    def __init__(self, *, locator: ShadowLocator | None = None,
                 sleep: Sleep = asyncio.sleep):
        if self.name not in PLATFORMS:
            raise TypeError(f"{type(self).__name__} has no platform selectors (name={self.name!r})")
        sel = PLATFORMS[self.name]
        self.label: str = sel["label"]
        self.home_url: str = sel["home_url"]
        self.login_url: str = sel["login_url"]
        self.url_patterns: tuple[str, ...] = tuple(sel["url_patterns"])
        self.login_selectors: tuple[str, ...] = tuple(sel["login"])
        self.login_texts: tuple[str, ...] = tuple(sel["login_texts"])
        self.input_paths: tuple[ShadowPath, ...] = tuple(
            ShadowPath.of(*sel["input_hops"], terminal=t) for t in sel["input"]
        )
        self.submit_control = SubmitControl(
            path=ShadowPath.of(*sel["submit_hops"], terminal=sel["submit"]),
            texts=tuple(sel["submit_texts"]),
        )
        self.locator = locator or ShadowLocator(sleep=sleep)
        self._sleep = sleep
        self._input_path = self.input_paths[0]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    # -- metadata ----------------------------------------------------------

    @property
    def ready_max_checks(self) -> int:
        return SLOW_MAX_CHECKS if self.slow else GENERIC_MAX_CHECKS

    @property
    def readiness(self) -> ReadinessRule:
        """Rule bound to the input path that last matched."""
        if self.strict_readiness:
            return InputEmptyAndSubmitEnabled(self._input_path, self.submit_control)
        return InputEmpty(self._input_path)

    def matches_url(self, url: str) -> bool:
        return any(pattern in (url or "") for pattern in self.url_patterns)

    def clean_prompt(self, text: str) -> str:
        return strip_imagine_prefix(text)

    # -- capabilities ------------------------------------------------------

    async def locate_input(self, page: Any) -> Any:
        element, path = await self.locator.locate_first(
            page, self.input_paths, service=self.name,
        )
        self._input_path = path
        return element

    async def set_value(self, page: Any, element: Any, text: str) -> None:
        value = await element.evaluate(
            _JS_SET_VALUE, {"text": text, "hostProperty": self.host_property},
        )
        if _normalize(value) != _normalize(text):
            log.info("%s: injected value did not stick, typing instead", self.label)
            await self._type_value(page, element, text)
        await self.after_set_value(page, element)

    async def _type_value(self, page: Any, element: Any, text: str) -> None:
        await element.focus()
        await element.fill("")
        await page.keyboard.type(text, delay=self.type_delay_ms)

    async def after_set_value(self, page: Any, element: Any) -> None:
        """Hook for platforms that need an extra nudge to validate input."""

    async def submit(self, page: Any, element: Any) -> SubmitOutcome:
        try:
            await self._click_submit(page)
            return SubmitOutcome(success=True, method="button")
        except SubmitAmbiguous as exc:
            log.info("%s: %s, pressing Enter on the input", self.label, exc)
        await element.evaluate(_JS_PRESS_ENTER)
        return SubmitOutcome(success=True, method="keyboard")

    async def _click_submit(self, page: Any) -> None:
        result = await page.evaluate(_JS_CLICK_SUBMIT, self.submit_control.to_js())
        result = result or {}
        if not result.get("clicked"):
            raise SubmitAmbiguous(int(result.get("count", 0)))

    async def is_ready(self, page: Any) -> bool:
        return await self.readiness.is_ready(page)

    async def is_logged_in(self, page: Any) -> bool:
        """Advisory: False when a login affordance is visible or the check fails."""
        try:
            login_visible = await page.evaluate(_JS_LOGIN_VISIBLE, {
                "selectors": list(self.login_selectors),
                "texts": list(self.login_texts),
            })
        except Exception as exc:
            log.debug("%s login check failed: %s", self.label, exc)
            return False
        return not login_visible

    async def submit_prompt(self, page: Any, text: str) -> SubmitOutcome:
        """Locate, inject and submit one prompt.

        Locator failures propagate (ElementNotFound / LocatorTimeout); so do
        frame-destroyed errors, which the orchestrator classifies.
        """
        prompt = self.clean_prompt(text)
        if not prompt:
            return SubmitOutcome(success=False, error="Empty prompt")
        log.info("%s: submitting %r", self.label, truncate(prompt))
        element = await self.locate_input(page)
        await self.set_value(page, element, prompt)
        await self._sleep(self.settle_s)
        return await self.submit(page, element)
