"""Unit tests for promptbridge_cli: parser, helpers, exit codes."""

import argparse
import io
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

_repo = Path(__file__).resolve().parent.parent
if str(_repo) not in sys.path:
    sys.path.insert(0, str(_repo))

import promptbridge_cli as cli
from promptbridge.config import ExitCode


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class TestParser(unittest.TestCase):

    def setUp(self):
        self.parser = cli.build_parser()

    def test_batch_args(self):
        args = self.parser.parse_args([
            "batch", "--service", "ideogram", "--prompt", "a", "--prompt", "b",
            "--delay-ms", "5000", "--backend", "bridge",
        ])
        self.assertEqual(args.cmd, "batch")
        self.assertEqual(args.prompt, ["a", "b"])
        self.assertEqual(args.delay_ms, 5000)
        self.assertEqual(args.backend, "bridge")

    def test_batch_defaults(self):
        args = self.parser.parse_args(["batch", "--service", "firefly", "--prompt", "a"])
        self.assertIsNone(args.delay_ms)
        self.assertEqual(args.backend, "browser")
        self.assertFalse(args.no_login_check)

    def test_unknown_service_rejected(self):
        with self.assertRaises(SystemExit):
            with redirect_stdout(io.StringIO()), patch("sys.stderr", io.StringIO()):
                self.parser.parse_args(["submit", "--service", "dalle", "--prompt", "x"])

    def test_global_flags(self):
        args = self.parser.parse_args(["-v", "--log-file", "x.log", "status"])
        self.assertTrue(args.verbose)
        self.assertEqual(args.log_file, "x.log")

    def test_relay_defaults(self):
        args = self.parser.parse_args(["relay"])
        self.assertEqual((args.host, args.port, args.token), ("127.0.0.1", 3001, ""))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers(unittest.TestCase):

    def test_read_prompts_from_file_and_flags(self):
        with tempfile.NamedTemporaryFile("w", suffix=".txt", delete=False) as f:
            f.write("first\n\n  second  \n")
        args = argparse.Namespace(prompt=["flag"], file=f.name)
        self.assertEqual(cli._read_prompts(args), ["flag", "first", "second"])
        os.unlink(f.name)

    def test_exit_for_batch(self):
        self.assertEqual(cli._exit_for_batch({"success": True, "failCount": 0}), ExitCode.OK)
        self.assertEqual(cli._exit_for_batch({"success": True, "failCount": 1}), ExitCode.WARN)
        self.assertEqual(
            cli._exit_for_batch({"success": False, "failCount": 2, "error": "Not logged in"}),
            ExitCode.CRITICAL,
        )


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------

class TestMain(unittest.TestCase):

    def test_no_command(self):
        with redirect_stdout(io.StringIO()):
            self.assertEqual(cli.main([]), ExitCode.ERROR)

    def test_batch_without_prompts(self):
        with patch("sys.stderr", io.StringIO()) as err:
            code = cli.main(["batch", "--service", "ideogram"])
        self.assertEqual(code, ExitCode.ERROR)
        self.assertIn("no prompts", err.getvalue())

    def test_status_with_relay_down(self):
        import httpx

        async def down(cfg):
            raise httpx.ConnectError("refused")

        tmp = tempfile.mkdtemp()
        (Path(tmp) / "ideogram").mkdir()
        env = {"PROMPTBRIDGE_PROFILE_ROOT": tmp}
        with patch.dict(os.environ, env), \
                patch("promptbridge.relay_client.fetch_health", down), \
                redirect_stdout(io.StringIO()) as out:
            code = cli.main(["status"])
        self.assertEqual(code, ExitCode.WARN)
        text = out.getvalue()
        self.assertIn("[RELAY] DOWN", text)
        self.assertIn(f"[PROFILE] ideogram: {Path(tmp) / 'ideogram'}", text)
        self.assertIn("[PROFILE] firefly: none", text)


if __name__ == "__main__":
    unittest.main()
