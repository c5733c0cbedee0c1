"""Unit tests for promptbridge.config: dataclass configuration and env loading."""

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

_repo = Path(__file__).resolve().parent.parent
if str(_repo) not in sys.path:
    sys.path.insert(0, str(_repo))

from promptbridge.config import (
    CLOSE_AUTH_REJECTED,
    CLOSE_AUTH_TIMEOUT,
    CLOSE_NOT_AUTHENTICATED,
    DEFAULT_ALLOWED_ORIGINS,
    EngineConfig,
    ExitCode,
    RelayConfig,
    load_config,
)


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------

class TestEngineConfig(unittest.TestCase):

    def test_defaults(self):
        cfg = EngineConfig(state_dir="/tmp/pb-state")
        self.assertEqual(cfg.locator_interval_s, 0.2)
        self.assertEqual(cfg.locator_max_retries, 100)
        self.assertEqual(cfg.ready_interval_s, 0.5)
        self.assertEqual(cfg.default_delay_ms, 3000)
        self.assertEqual(cfg.profile_root, os.path.join("/tmp/pb-state", "browser-profiles"))
        self.assertEqual(cfg.debug_dir, os.path.join("/tmp/pb-state", "browser", "debug"))

    def test_profile_dir_per_service(self):
        cfg = EngineConfig(profile_root="/profiles")
        self.assertEqual(cfg.profile_dir("firefly"), Path("/profiles/firefly"))

    def test_validation(self):
        for bad in ({"locator_interval_ms": 0}, {"ready_interval_ms": -5},
                    {"locator_max_retries": 0}, {"default_delay_ms": -1}, {"cdp_ports": ()}):
            with self.assertRaises(ValueError, msg=str(bad)):
                EngineConfig(**bad)


# ---------------------------------------------------------------------------
# RelayConfig
# ---------------------------------------------------------------------------

class TestRelayConfig(unittest.TestCase):

    def test_defaults(self):
        cfg = RelayConfig()
        self.assertEqual(cfg.url, "ws://127.0.0.1:3001/")
        self.assertEqual(cfg.reconnect_delay_sec, 3.0)
        self.assertEqual(cfg.max_reconnect_attempts, 10)
        self.assertEqual(cfg.heartbeat_interval_sec, 20.0)
        self.assertEqual(cfg.auth_timeout_sec, 5.0)
        self.assertEqual(cfg.max_connections, 5)
        self.assertEqual(cfg.allowed_origins, DEFAULT_ALLOWED_ORIGINS)

    def test_auth_timeout_below_heartbeat(self):
        with self.assertRaises(ValueError) as ctx:
            RelayConfig(auth_timeout_sec=30.0, heartbeat_interval_sec=20.0)
        self.assertIn("auth_timeout_sec", str(ctx.exception))

    def test_validation(self):
        for bad in ({"reconnect_delay_sec": 0}, {"max_reconnect_attempts": -1},
                    {"max_connections": 0}):
            with self.assertRaises(ValueError, msg=str(bad)):
                RelayConfig(**bad)

    def test_close_codes(self):
        self.assertEqual((CLOSE_AUTH_TIMEOUT, CLOSE_AUTH_REJECTED, CLOSE_NOT_AUTHENTICATED),
                         (4001, 4002, 4003))

    def test_exit_codes(self):
        self.assertEqual([int(c) for c in ExitCode], [0, 1, 2, 3])


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------

class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.missing_env = os.path.join(tempfile.mkdtemp(), "none.env")

    def test_prefixed_wins_over_fallback(self):
        env = {"PROMPTBRIDGE_RELAY_PORT": "4000", "RELAY_PORT": "5000",
               "BRIDGE_TOKEN": "abc", "CDP_PORTS": "9333, 9444"}
        with patch.dict(os.environ, env, clear=True):
            engine, relay = load_config(env_file=self.missing_env)
        self.assertEqual(relay.port, 4000)
        self.assertEqual(relay.token, "abc")
        self.assertEqual(engine.cdp_ports, (9333, 9444))

    def test_booleans(self):
        env = {"PROMPTBRIDGE_HEADLESS": "true", "PROMPTBRIDGE_CHECK_LOGIN": "0"}
        with patch.dict(os.environ, env, clear=True):
            engine, _ = load_config(env_file=self.missing_env)
        self.assertTrue(engine.headless)
        self.assertFalse(engine.check_login)

    def test_allowed_origins_list(self):
        env = {"ALLOWED_ORIGINS": "http://localhost:8080,http://app.local"}
        with patch.dict(os.environ, env, clear=True):
            _, relay = load_config(env_file=self.missing_env)
        self.assertEqual(relay.allowed_origins, ("http://localhost:8080", "http://app.local"))

    def test_env_file_does_not_override(self):
        env_file = os.path.join(tempfile.mkdtemp(), ".env")
        Path(env_file).write_text(
            "# comment\nPROMPTBRIDGE_RELAY_PORT=4100\nBRIDGE_TOKEN='from-file'\n",
            encoding="utf-8",
        )
        with patch.dict(os.environ, {"BRIDGE_TOKEN": "from-env"}, clear=True):
            _, relay = load_config(env_file=env_file)
        self.assertEqual(relay.port, 4100)
        self.assertEqual(relay.token, "from-env")


if __name__ == "__main__":
    unittest.main()
