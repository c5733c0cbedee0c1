#!/usr/bin/env python3
"""promptbridge CLI: single entrypoint for all operations.

Subcommands:
    relay       Run the local relay server (127.0.0.1:3001)
    bridge      Connect to the relay and execute prompts in your running browser
    submit      Submit one prompt
    batch       Submit a batch of prompts (file or repeated --prompt)
    login       Open a platform's login page in its persistent profile
    status      Relay health + persistent profile overview

Backends (explicit, never chosen automatically):
    browser     dedicated persistent browser per platform (profile on disk)
    bridge      through the relay to a running `bridge` process

Exit codes (automatable):
    0 = OK
    1 = WARN (partial batch, relay down)
    2 = CRITICAL (login required, token rejected)
    3 = ERROR (config/runtime error)

Usage:
    python3 promptbridge_cli.py relay
    python3 promptbridge_cli.py bridge
    python3 promptbridge_cli.py login --service firefly
    python3 promptbridge_cli.py submit --service midjourney --prompt "a red fox"
    python3 promptbridge_cli.py batch --service ideogram --file prompts.txt --delay-ms 5000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any

import aiohttp
import httpx

# Ensure repo root is in path
_repo = Path(__file__).resolve().parent
if str(_repo) not in sys.path:
    sys.path.insert(0, str(_repo))

from promptbridge.adapters import REGISTRY, get_adapter
from promptbridge.config import ExitCode, load_config
from promptbridge.errors import (
    BrowserUnavailable,
    ProfileInUse,
    TransportRejected,
)
from promptbridge.log import setup_logging

# Relay unreachable, refused, or dropped
_TRANSPORT_ERRORS = (OSError, httpx.HTTPError, aiohttp.ClientError)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _read_prompts(args: argparse.Namespace) -> list[str]:
    prompts: list[str] = list(args.prompt or [])
    if args.file:
        text = Path(args.file).read_text(encoding="utf-8")
        prompts.extend(line.strip() for line in text.splitlines() if line.strip())
    return prompts


def _exit_for_batch(result: dict) -> int:
    if result.get("error"):
        return ExitCode.CRITICAL
    if result.get("failCount"):
        return ExitCode.WARN
    return ExitCode.OK


async def _resolve_token(relay_cfg) -> None:
    if relay_cfg.token:
        return
    from promptbridge.relay_client import fetch_token

    relay_cfg.token = await fetch_token(relay_cfg)


def _build_browser_engine(engine_cfg):
    from promptbridge.browser_manager import BrowserManagerPool
    from promptbridge.commands import PromptEngine
    from promptbridge.orchestrator import BatchOrchestrator

    pool = BrowserManagerPool(engine_cfg)
    return PromptEngine(BatchOrchestrator(pool, config=engine_cfg)), pool


# ---------------------------------------------------------------------------
# Subcommand: relay
# ---------------------------------------------------------------------------

def cmd_relay(args: argparse.Namespace) -> int:
    from promptbridge import relay

    argv = ["--host", args.host, "--port", str(args.port)]
    if args.token:
        argv += ["--token", args.token]
    if args.verbose:
        argv.append("--verbose")
    return relay.main(argv)


# ---------------------------------------------------------------------------
# Subcommand: bridge
# ---------------------------------------------------------------------------

async def _run_bridge(engine_cfg, relay_cfg) -> int:
    from promptbridge.bridge import BridgeTransport
    from promptbridge.commands import PromptEngine
    from promptbridge.orchestrator import BatchOrchestrator
    from promptbridge.tabs import CdpTabProvider

    await _resolve_token(relay_cfg)
    tabs = CdpTabProvider(engine_cfg)
    transport = BridgeTransport(
        PromptEngine(BatchOrchestrator(tabs, config=engine_cfg)), relay_cfg,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(transport.stop()))
        except NotImplementedError:
            pass

    try:
        await transport.run()
    finally:
        await tabs.close()
    return ExitCode.OK


def cmd_bridge(args: argparse.Namespace) -> int:
    engine_cfg, relay_cfg = load_config()
    if args.token:
        relay_cfg.token = args.token
    if args.no_login_check:
        engine_cfg.check_login = False
    try:
        return asyncio.run(_run_bridge(engine_cfg, relay_cfg))
    except TransportRejected as exc:
        print(f"[cli] {exc}. Update PROMPTBRIDGE_BRIDGE_TOKEN.", file=sys.stderr)
        return ExitCode.CRITICAL
    except _TRANSPORT_ERRORS as exc:
        print(f"[cli] Relay unreachable: {exc}", file=sys.stderr)
        return ExitCode.ERROR


# ---------------------------------------------------------------------------
# Subcommands: submit / batch
# ---------------------------------------------------------------------------

async def _dispatch(args: argparse.Namespace, prompts: list[str]) -> dict:
    engine_cfg, relay_cfg = load_config()
    if args.no_login_check:
        engine_cfg.check_login = False
    single = args.cmd == "submit"

    if args.backend == "bridge":
        from promptbridge.relay_client import RelayClient

        await _resolve_token(relay_cfg)
        async with RelayClient(relay_cfg) as client:
            if single:
                return await client.submit(args.service, prompts[0])
            delay = engine_cfg.default_delay_ms if args.delay_ms is None else args.delay_ms
            return await client.batch(args.service, prompts, delay)

    engine, pool = _build_browser_engine(engine_cfg)
    try:
        if single:
            return await engine.submit(args.service, prompts[0])
        return await engine.batch(args.service, prompts, args.delay_ms)
    finally:
        await pool.close()


def cmd_submit(args: argparse.Namespace) -> int:
    args.prompt = [args.prompt]
    args.file = None
    try:
        result = asyncio.run(_dispatch(args, _read_prompts(args)))
    except (ProfileInUse, BrowserUnavailable) + _TRANSPORT_ERRORS as exc:
        print(f"[cli] ERROR: {exc}", file=sys.stderr)
        return ExitCode.ERROR
    except TransportRejected as exc:
        print(f"[cli] {exc}", file=sys.stderr)
        return ExitCode.CRITICAL
    _print_json(result)
    return ExitCode.OK if result.get("success") else ExitCode.WARN


def cmd_batch(args: argparse.Namespace) -> int:
    prompts = _read_prompts(args)
    if not prompts:
        print("[cli] ERROR: no prompts (use --prompt or --file)", file=sys.stderr)
        return ExitCode.ERROR
    try:
        result = asyncio.run(_dispatch(args, prompts))
    except (ProfileInUse, BrowserUnavailable) + _TRANSPORT_ERRORS as exc:
        print(f"[cli] ERROR: {exc}", file=sys.stderr)
        return ExitCode.ERROR
    except TransportRejected as exc:
        print(f"[cli] {exc}", file=sys.stderr)
        return ExitCode.CRITICAL
    _print_json(result)
    return _exit_for_batch(result)


# ---------------------------------------------------------------------------
# Subcommand: login
# ---------------------------------------------------------------------------

async def _login(service: str) -> int:
    from promptbridge.browser_manager import BrowserManagerPool

    engine_cfg, _ = load_config()
    adapter = get_adapter(service)
    pool = BrowserManagerPool(engine_cfg)
    try:
        await pool.setup_authentication(adapter)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, input, f"[login] Sign in to {adapter.label}, then press Enter here... ",
        )
        logged_in = await pool.is_logged_in(adapter)
    finally:
        await pool.close()

    if logged_in:
        print(f"[login] {adapter.label}: session saved in {engine_cfg.profile_dir(service)}")
        return ExitCode.OK
    print(f"[login] {adapter.label}: still logged out", file=sys.stderr)
    return ExitCode.CRITICAL


def cmd_login(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_login(args.service))
    except ProfileInUse as exc:
        print(f"[cli] ERROR: {exc}", file=sys.stderr)
        return ExitCode.ERROR


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------

def cmd_status(args: argparse.Namespace) -> int:
    from promptbridge.browser_manager import ProfileLock
    from promptbridge.relay_client import fetch_health

    engine_cfg, relay_cfg = load_config()
    worst = ExitCode.OK

    try:
        health = asyncio.run(fetch_health(relay_cfg))
        print(f"[RELAY] UP {relay_cfg.url} connections={health.get('connections', 0)} "
              f"extensions={health.get('extensions', 0)} webapps={health.get('webapps', 0)}")
    except (httpx.HTTPError, ValueError) as exc:
        print(f"[RELAY] DOWN {relay_cfg.url} ({exc.__class__.__name__})")
        worst = max(worst, ExitCode.WARN)

    for service in sorted(REGISTRY):
        profile = engine_cfg.profile_dir(service)
        if not profile.is_dir():
            print(f"[PROFILE] {service}: none (run: login --service {service})")
            continue
        owner = ProfileLock(profile).owner()
        lock = f" locked by pid {owner}" if owner else ""
        print(f"[PROFILE] {service}: {profile}{lock}")

    return int(worst)


# ---------------------------------------------------------------------------
# CLI parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="promptbridge",
        description="Prompt submission engine: relay, bridge, submit, batch, login, status",
    )
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    p.add_argument("--log-file", default="", help="Also write DEBUG logs to this file")
    sub = p.add_subparsers(dest="cmd")
    services = sorted(REGISTRY)

    # relay
    r = sub.add_parser("relay", help="Run the local relay server")
    r.add_argument("--host", default="127.0.0.1")
    r.add_argument("--port", type=int, default=3001)
    r.add_argument("--token", default="", help="Fixed token (default: random per start)")

    # bridge
    b = sub.add_parser("bridge", help="Execute relay jobs in your running browser (CDP)")
    b.add_argument("--token", default="", help="Relay token (default: env or GET /token)")
    b.add_argument("--no-login-check", action="store_true",
                    help="Skip the advisory login probe before each batch")

    def _common(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--service", required=True, choices=services)
        sp.add_argument("--backend", choices=("browser", "bridge"), default="browser",
                        help="browser = persistent profile, bridge = via relay")
        sp.add_argument("--no-login-check", action="store_true",
                        help="Skip the advisory login probe")

    # submit
    s = sub.add_parser("submit", help="Submit one prompt")
    _common(s)
    s.add_argument("--prompt", required=True)

    # batch
    bt = sub.add_parser("batch", help="Submit prompts in order")
    _common(bt)
    bt.add_argument("--prompt", action="append", help="Prompt (repeatable)")
    bt.add_argument("--file", default="", help="Text file, one prompt per line")
    bt.add_argument("--delay-ms", type=int, default=None,
                    help="Minimum delay between prompts (default: config)")

    # login
    lg = sub.add_parser("login", help="Sign in once; the profile keeps the session")
    lg.add_argument("--service", required=True, choices=services)

    # status
    sub.add_parser("status", help="Relay health + profiles")

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return ExitCode.ERROR

    setup_logging(verbose=args.verbose, log_file=args.log_file or None)

    if args.cmd == "relay":
        return cmd_relay(args)
    if args.cmd == "bridge":
        return cmd_bridge(args)
    if args.cmd == "submit":
        return cmd_submit(args)
    if args.cmd == "batch":
        return cmd_batch(args)
    if args.cmd == "login":
        return cmd_login(args)
    if args.cmd == "status":
        return cmd_status(args)

    parser.print_help()
    return ExitCode.ERROR


if __name__ == "__main__":
    raise SystemExit(main())
