"""Central configuration contract for promptbridge.

Single source of truth for:
- Locator / readiness polling parameters
- Persistent browser profile, debug and state paths
- Relay + bridge connection parameters (reconnect, heartbeat, auth timeout)
- Environment variable loading
- CLI exit codes

Usage:
    from promptbridge.config import load_config

    engine, relay = load_config()
    print(engine.locator_interval_ms, relay.url)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from promptbridge.common import load_env_file, project_root


# ---------------------------------------------------------------------------
# Exit codes (SRE-friendly, automatable via cron/menubar)
# ---------------------------------------------------------------------------

class ExitCode(IntEnum):
    OK = 0
    WARN = 1
    CRITICAL = 2
    ERROR = 3


# ---------------------------------------------------------------------------
# Wire constants
# ---------------------------------------------------------------------------

# Close codes sent by the relay
CLOSE_AUTH_TIMEOUT = 4001
CLOSE_AUTH_REJECTED = 4002  # invalid token: never retry
CLOSE_NOT_AUTHENTICATED = 4003
CLOSE_NORMAL = 1000

DEFAULT_ALLOWED_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5000",
    "http://127.0.0.1:3000",
)

DEFAULT_CDP_PORTS = (9222, 9223, 9224, 9225)


# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

@dataclass
class EngineConfig:
    """Tunables for the submission engine and the persistent browser backend."""

    # Shadow traversal: per-hop retry (200ms x 100 = ~20s ceiling)
    locator_interval_ms: int = 200
    locator_max_retries: int = 100

    # Readiness polling; per-platform caps live on the adapters
    ready_interval_ms: int = 500

    # Fixed floor between batch items when the caller sends none
    default_delay_ms: int = 3000

    # Persistent browser backend
    headless: bool = False
    check_login: bool = True
    diagnostics: bool = True
    launch_timeout_sec: int = 60
    navigation_timeout_sec: int = 30

    # Bridge backend (user's running browser)
    cdp_ports: tuple[int, ...] = DEFAULT_CDP_PORTS

    # Paths (relative to repo root)
    state_dir: str = ""
    profile_root: str = ""
    debug_dir: str = ""

    def __post_init__(self):
        root = str(project_root())
        if not self.state_dir:
            self.state_dir = os.path.join(root, "state")
        if not self.profile_root:
            self.profile_root = os.path.join(self.state_dir, "browser-profiles")
        if not self.debug_dir:
            self.debug_dir = os.path.join(self.state_dir, "browser", "debug")

        if self.locator_interval_ms <= 0 or self.ready_interval_ms <= 0:
            raise ValueError("polling intervals must be positive")
        if self.locator_max_retries < 1:
            raise ValueError(
                f"locator_max_retries ({self.locator_max_retries}) must be >= 1"
            )
        if self.default_delay_ms < 0:
            raise ValueError(f"default_delay_ms ({self.default_delay_ms}) must be >= 0")
        if not self.cdp_ports:
            raise ValueError("cdp_ports must list at least one port")

    @property
    def locator_interval_s(self) -> float:
        return self.locator_interval_ms / 1000.0

    @property
    def ready_interval_s(self) -> float:
        return self.ready_interval_ms / 1000.0

    def profile_dir(self, service: str) -> Path:
        """On-disk authentication profile for one platform."""
        return Path(self.profile_root) / service


# ---------------------------------------------------------------------------
# Relay / bridge configuration
# ---------------------------------------------------------------------------

@dataclass
class RelayConfig:
    """Local relay server + bridge client parameters.

    The token is a secret: never serialized, never logged in clear.
    """

    host: str = "127.0.0.1"
    port: int = 3001
    token: str = ""
    client_type: str = "extension"
    origin: str = "http://localhost:3000"
    allowed_origins: tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS

    # Bridge client
    reconnect_delay_sec: float = 3.0
    max_reconnect_attempts: int = 10
    heartbeat_interval_sec: float = 20.0

    # Relay server
    auth_timeout_sec: float = 5.0
    max_connections: int = 5

    # Relay client (web app side)
    prompt_timeout_sec: float = 30.0
    batch_timeout_sec: float = 300.0

    def __post_init__(self):
        if self.reconnect_delay_sec <= 0:
            raise ValueError(f"reconnect_delay_sec ({self.reconnect_delay_sec}) must be > 0")
        if self.max_reconnect_attempts < 0:
            raise ValueError(
                f"max_reconnect_attempts ({self.max_reconnect_attempts}) must be >= 0"
            )
        if self.heartbeat_interval_sec <= 0:
            raise ValueError(
                f"heartbeat_interval_sec ({self.heartbeat_interval_sec}) must be > 0"
            )
        if self.auth_timeout_sec >= self.heartbeat_interval_sec:
            raise ValueError(
                f"auth_timeout_sec ({self.auth_timeout_sec}s) must be "
                f"< heartbeat_interval_sec ({self.heartbeat_interval_sec}s)."
            )
        if self.max_connections < 1:
            raise ValueError(f"max_connections ({self.max_connections}) must be >= 1")

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def _env(prefixed: str, fallback: str, default: str = "") -> str:
    """Read env var: try PROMPTBRIDGE_* prefix first, then unprefixed fallback."""
    return os.environ.get(prefixed, os.environ.get(fallback, default))


def _env_int(prefixed: str, fallback: str, default: str) -> int:
    return int(_env(prefixed, fallback, default))


def _env_float(prefixed: str, fallback: str, default: str) -> float:
    return float(_env(prefixed, fallback, default))


def _env_bool(prefixed: str, fallback: str, default: str) -> bool:
    return _env(prefixed, fallback, default).strip().lower() not in ("false", "0", "no", "")


def _env_tuple(prefixed: str, fallback: str, default: tuple) -> tuple[str, ...]:
    raw = _env(prefixed, fallback, "")
    if not raw.strip():
        return tuple(default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def load_config(
    *,
    env_file: str | Path | None = None,
) -> tuple[EngineConfig, RelayConfig]:
    """Load config from environment variables.

    Reads .env file if present (does not override existing env vars).
    Supports PROMPTBRIDGE_* prefix with unprefixed fallback.
    Returns (EngineConfig, RelayConfig).
    """
    load_env_file(env_file)

    engine = EngineConfig(
        locator_interval_ms=_env_int("PROMPTBRIDGE_LOCATOR_INTERVAL_MS", "LOCATOR_INTERVAL_MS", "200"),
        locator_max_retries=_env_int("PROMPTBRIDGE_LOCATOR_MAX_RETRIES", "LOCATOR_MAX_RETRIES", "100"),
        ready_interval_ms=_env_int("PROMPTBRIDGE_READY_INTERVAL_MS", "READY_INTERVAL_MS", "500"),
        default_delay_ms=_env_int("PROMPTBRIDGE_DEFAULT_DELAY_MS", "DEFAULT_DELAY_MS", "3000"),
        headless=_env_bool("PROMPTBRIDGE_HEADLESS", "BROWSER_HEADLESS", "false"),
        check_login=_env_bool("PROMPTBRIDGE_CHECK_LOGIN", "CHECK_LOGIN", "true"),
        diagnostics=_env_bool("PROMPTBRIDGE_DIAGNOSTICS", "DIAGNOSTICS", "true"),
        cdp_ports=tuple(int(p) for p in _env_tuple(
            "PROMPTBRIDGE_CDP_PORTS", "CDP_PORTS", tuple(str(p) for p in DEFAULT_CDP_PORTS),
        )),
        state_dir=_env("PROMPTBRIDGE_STATE_DIR", "STATE_DIR"),
        profile_root=_env("PROMPTBRIDGE_PROFILE_ROOT", "PROFILE_ROOT"),
        debug_dir=_env("PROMPTBRIDGE_DEBUG_DIR", "DEBUG_DIR"),
    )

    relay = RelayConfig(
        host=_env("PROMPTBRIDGE_RELAY_HOST", "RELAY_HOST", "127.0.0.1"),
        port=_env_int("PROMPTBRIDGE_RELAY_PORT", "RELAY_PORT", "3001"),
        token=_env("PROMPTBRIDGE_BRIDGE_TOKEN", "BRIDGE_TOKEN").strip(),
        client_type=_env("PROMPTBRIDGE_CLIENT_TYPE", "CLIENT_TYPE", "extension"),
        origin=_env("PROMPTBRIDGE_ORIGIN", "BRIDGE_ORIGIN", "http://localhost:3000"),
        allowed_origins=_env_tuple(
            "PROMPTBRIDGE_ALLOWED_ORIGINS", "ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS,
        ),
        reconnect_delay_sec=_env_float("PROMPTBRIDGE_RECONNECT_DELAY_SEC", "RECONNECT_DELAY_SEC", "3"),
        max_reconnect_attempts=_env_int(
            "PROMPTBRIDGE_MAX_RECONNECT_ATTEMPTS", "MAX_RECONNECT_ATTEMPTS", "10",
        ),
        heartbeat_interval_sec=_env_float(
            "PROMPTBRIDGE_HEARTBEAT_INTERVAL_SEC", "HEARTBEAT_INTERVAL_SEC", "20",
        ),
        auth_timeout_sec=_env_float("PROMPTBRIDGE_AUTH_TIMEOUT_SEC", "AUTH_TIMEOUT_SEC", "5"),
        max_connections=_env_int("PROMPTBRIDGE_MAX_CONNECTIONS", "MAX_CONNECTIONS", "5"),
    )

    return engine, relay
