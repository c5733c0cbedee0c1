"""Per-platform URLs, selectors and shadow paths.

Creative platforms ship unstable, undocumented DOM. Everything that is
likely to break when a platform redeploys lives here so adapters stay
declarative. Selector lists are tried in order (most specific first).

Shadow hops are written outermost first; the last element of each hop
list hosts the shadow root that contains the terminal selector.

Usage:
    from promptbridge.selectors import PLATFORMS
    PLATFORMS["firefly"]["input_hops"]
"""

from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# Midjourney (React, light DOM)
# ---------------------------------------------------------------------------

MIDJOURNEY: dict[str, Any] = {
    "label": "Midjourney",
    "home_url": "https://www.midjourney.com/imagine",
    "login_url": "https://www.midjourney.com/auth/signin?callbackUrl=%2Fimagine",
    "url_patterns": ("midjourney.com",),
    "logged_in_path": "/imagine",
    "input_hops": (),
    "input": (
        "textarea#desktop_input_bar",
        'textarea[placeholder*="imagine" i]',
        "textarea",
    ),
    "submit_hops": (),
    "submit": "button",
    "submit_texts": ("imagine", "generate", "submit", "send"),
    "login": ('a[href*="/auth/signin"]', 'a[href*="login"]'),
    "login_texts": ("log in", "sign in"),
}

# ---------------------------------------------------------------------------
# Ideogram (React, light DOM; navigates its own document after Generate)
# ---------------------------------------------------------------------------

IDEOGRAM: dict[str, Any] = {
    "label": "Ideogram",
    "home_url": "https://ideogram.ai/t/create",
    "login_url": "https://ideogram.ai/login",
    "url_patterns": ("ideogram.ai",),
    "input_hops": (),
    "input": (
        'textarea[placeholder*="Describe"]',
        'textarea[placeholder*="prompt" i]',
        ".prompt-input textarea",
        "textarea",
    ),
    "submit_hops": (),
    "submit": "button",
    "submit_texts": ("generate", "create"),
    "login": ('a[href*="login"]',),
    "login_texts": ("log in", "sign in"),
}

# ---------------------------------------------------------------------------
# Adobe Firefly (Spectrum web components, nested shadow roots)
# ---------------------------------------------------------------------------

FIREFLY: dict[str, Any] = {
    "label": "Adobe Firefly",
    "home_url": "https://firefly.adobe.com/generate/images",
    "login_url": "https://firefly.adobe.com/?signIn=true",
    "url_patterns": ("firefly.adobe.com",),
    "input_hops": (
        "firefly-image-generation",
        "firefly-prompt-bar",
        "firefly-textfield",
        "sp-textfield",
    ),
    "input": ("textarea", "input"),
    "submit_hops": (
        "firefly-image-generation",
        "firefly-prompt-bar",
    ),
    "submit": 'sp-button[data-testid="generate-button"], sp-button[variant="accent"]',
    "submit_texts": ("generate",),
    "login": ('sp-button[data-testid="sign-in-button"]', 'a[href*="signin"]'),
    "login_texts": ("sign in",),
}

# ---------------------------------------------------------------------------
# Leonardo (React, light DOM)
# ---------------------------------------------------------------------------

LEONARDO: dict[str, Any] = {
    "label": "Leonardo",
    "home_url": "https://app.leonardo.ai/image-generation",
    "login_url": "https://app.leonardo.ai/auth/login",
    "url_patterns": ("app.leonardo.ai",),
    "input_hops": (),
    "input": (
        "textarea#prompt-textarea",
        'textarea[placeholder*="prompt" i]',
        "textarea",
    ),
    "submit_hops": (),
    "submit": "button",
    "submit_texts": ("generate",),
    "login": ('a[href*="/auth/login"]',),
    "login_texts": ("log in", "sign in", "sign up"),
}


PLATFORMS: dict[str, dict[str, Any]] = {
    "midjourney": MIDJOURNEY,
    "ideogram": IDEOGRAM,
    "firefly": FIREFLY,
    "leonardo": LEONARDO,
}
