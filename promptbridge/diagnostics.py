"""Debug artifacts for failed lookups.

When a selector or shadow hop stops resolving (platform redeploy), the
fastest fix is to see what the page looked like. Each dump writes to
``<state_dir>/browser/debug/``:

    {stamp}_{service}_{tag}_screenshot.png   full-page screenshot
    {stamp}_{service}_{tag}.json             url, title, error, shadow hosts

The shadow-host inventory lists custom elements that carry an open shadow
root (tag + id + depth), which is what a new ShadowPath is written from.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from promptbridge.common import now_iso

log = logging.getLogger("promptbridge.diagnostics")

_JS_SHADOW_HOSTS = """(limit) => {
    const out = [];
    const walk = (root, depth) => {
        for (const el of root.querySelectorAll('*')) {
            if (out.length >= limit) return;
            if (el.shadowRoot) {
                out.push({tag: el.tagName.toLowerCase(), id: el.id || '', depth: depth});
                walk(el.shadowRoot, depth + 1);
            }
        }
    };
    walk(document, 0);
    return out;
}"""

MAX_SHADOW_HOSTS = 200


async def capture_debug_artifacts(
    page: Any,
    *,
    debug_dir: str | Path,
    service: str,
    tag: str = "error",
    error: str = "",
) -> dict[str, str]:
    """Save screenshot + page summary. Returns {"screenshot": ..., "summary": ...}.

    Best effort: a page that is gone yields whatever could still be captured.
    """
    out_dir = Path(debug_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    prefix = f"{stamp}_{service}_{tag}"
    artifacts: dict[str, str] = {}

    try:
        ss_path = out_dir / f"{prefix}_screenshot.png"
        await page.screenshot(path=str(ss_path), full_page=True)
        artifacts["screenshot"] = str(ss_path)
    except Exception as exc:
        log.debug("screenshot failed: %s", exc)

    summary: dict[str, Any] = {
        "service": service,
        "tag": tag,
        "error": error,
        "captured_at": now_iso(),
        "url": "",
        "title": "",
        "shadow_hosts": [],
    }
    try:
        summary["url"] = page.url
        summary["title"] = await page.title()
        summary["shadow_hosts"] = await page.evaluate(_JS_SHADOW_HOSTS, MAX_SHADOW_HOSTS)
    except Exception as exc:
        log.debug("page summary incomplete: %s", exc)

    summary_path = out_dir / f"{prefix}.json"
    summary_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    artifacts["summary"] = str(summary_path)

    log.info("Debug artifacts for %s saved to %s", service, out_dir)
    return artifacts
