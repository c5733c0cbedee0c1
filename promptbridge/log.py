"""Logging setup and non-sensitive logging helpers.

Every module logs through ``logging.getLogger("promptbridge.<area>")``;
``setup_logging`` wires handlers once for CLI entrypoints. Tokens, cookies
and page HTML are never logged; use ``mask_secret`` for anything token-like.
"""

from __future__ import annotations

import logging
from pathlib import Path

ROOT_LOGGER = "promptbridge"


def setup_logging(
    *,
    verbose: bool = False,
    log_file: str | Path | None = None,
) -> logging.Logger:
    """Install a console handler (and optionally a DEBUG file handler)."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    if not logger.handlers:
        sh = logging.StreamHandler()
        sh.setLevel(logging.DEBUG if verbose else logging.INFO)
        sh.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        logger.addHandler(sh)

        if log_file:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(path, encoding="utf-8")
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
            logger.addHandler(fh)
    return logger


def mask_secret(value: str, keep: int = 6) -> str:
    """Show only the first few characters of a secret."""
    value = str(value or "")
    if not value:
        return "<unset>"
    if len(value) <= keep:
        return "*" * len(value)
    return value[:keep] + "..."
