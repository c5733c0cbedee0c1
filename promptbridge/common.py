"""Shared utilities for promptbridge modules."""

from __future__ import annotations

import datetime as dt
import os
import re
import uuid
from pathlib import Path


def project_root() -> Path:
    """Resolve the project root directory."""
    return Path(os.environ.get("PROJECT_ROOT", Path(__file__).resolve().parent.parent))


def now_iso() -> str:
    """UTC timestamp in ISO 8601 format with Z suffix."""
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def load_env_file(path: str | Path | None = None) -> None:
    """Load KEY=VALUE pairs from a file into os.environ (does not overwrite existing)."""
    target = Path(path) if path else project_root() / ".env"
    try:
        with open(target, "r", encoding="utf-8") as f:
            for line in f:
                raw = line.strip()
                if not raw or raw.startswith("#") or "=" not in raw:
                    continue
                key, value = raw.split("=", 1)
                key = key.strip()
                if key and key not in os.environ:
                    v = value.strip()
                    if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
                        v = v[1:-1]
                    os.environ[key] = v
    except OSError:
        return


def truncate(text: str, max_len: int = 50) -> str:
    """Shorten text for log lines, appending an ellipsis when cut."""
    text = str(text or "")
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def new_message_id() -> str:
    """Opaque id for wire messages and jobs."""
    return uuid.uuid4().hex


_IMAGINE_PREFIX = re.compile(r"^/imagine\s+prompt:\s*", re.IGNORECASE)


def strip_imagine_prefix(prompt: str) -> str:
    """Drop the Discord-style ``/imagine prompt:`` prefix (web forms don't want it)."""
    return _IMAGINE_PREFIX.sub("", str(prompt or "")).strip()
