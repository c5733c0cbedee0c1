"""Error taxonomy for the submission engine.

LocatorTimeout          a shadow hop never appeared          per-item, non-fatal
ElementNotFound         terminal selector absent             per-item, non-fatal
SubmitAmbiguous         no single submit control             recovered via keyboard
NavigationInterrupted   frame destroyed mid-automation       recovered as implicit success
AuthenticationRequired  session check shows logged-out       fatal to the whole batch
TransportRejected       relay refused our token              terminal, no retry

Only AuthenticationRequired and TransportRejected reach callers.
"""

from __future__ import annotations


class PromptBridgeError(Exception):
    """Base class for engine errors."""


class LocatorTimeout(PromptBridgeError):
    """A hop of a shadow path never resolved within its retry budget."""

    def __init__(self, hop: str, *, index: int = 0, attempts: int = 0, path: str = ""):
        self.hop = hop
        self.index = index
        self.attempts = attempts
        self.path = path
        msg = f"Locator timed out at hop {index} ({hop!r}) after {attempts} attempts"
        if path:
            msg += f" [path: {path}]"
        super().__init__(msg)


class ElementNotFound(PromptBridgeError):
    """The terminal element was absent after the full path resolved."""

    def __init__(self, selector: str, *, service: str = "", path: str = ""):
        self.selector = selector
        self.service = service
        self.path = path
        where = f" on {service}" if service else ""
        super().__init__(f"Element not found{where}: {path or selector}")


class SubmitAmbiguous(PromptBridgeError):
    """Zero or several submit controls resolved; caller falls back to Enter."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(f"Submit control ambiguous ({count} candidates)")


class NavigationInterrupted(PromptBridgeError):
    """The document being driven was destroyed (usually by a navigation)."""


class AuthenticationRequired(PromptBridgeError):
    """The platform session is logged out; no local recovery is possible."""

    def __init__(self, service: str, detail: str = ""):
        self.service = service
        msg = f"Not logged in to {service}. Run the login setup for this platform first."
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class TransportRejected(PromptBridgeError):
    """The relay rejected our authentication; reconnecting cannot help."""

    def __init__(self, code: int, reason: str = ""):
        self.code = code
        self.reason = reason
        super().__init__(f"Bridge authentication rejected (close code {code}): {reason or 'invalid token'}")


class ProfileInUse(PromptBridgeError):
    """Another live process owns the browser profile directory."""

    def __init__(self, path: str, pid: int):
        self.path = path
        self.pid = pid
        super().__init__(f"Profile directory {path} is locked by running process {pid}")


class BrowserUnavailable(PromptBridgeError):
    """No user browser with remote debugging could be reached."""


class ProtocolError(ValueError):
    """Raised on malformed bridge protocol payloads."""


# ---------------------------------------------------------------------------
# Frame-destroyed signature
# ---------------------------------------------------------------------------

# Keyword patterns (lowercased) that mean the driven document no longer exists
_FRAME_DESTROYED_PATTERNS = [
    "execution context was destroyed",
    "target page, context or browser has been closed",
    "target closed",
    "frame was detached",
    "navigation interrupted",
    "navigationinterrupted",
    "cannot find context with specified id",
]


def is_frame_destroyed(error: BaseException | str) -> bool:
    """True when an error carries the frame-destroyed signature."""
    if isinstance(error, NavigationInterrupted):
        return True
    text = str(error).lower()
    return any(pat in text for pat in _FRAME_DESTROYED_PATTERNS)
