"""Persistent browser backend: one long-lived profile-backed browser per platform.

Each platform gets its own Playwright persistent context whose user-data
directory lives at ``<profile_root>/<service>/``. Cookies survive restarts,
so a login done once (``setup_authentication``) keeps working until the
directory is deleted.

Lifecycle per manager (explicitly owned, no module-level singleton):

    not launched --acquire()--> running --context "close" event--> disconnected
         ^                                                              |
         +------------------------ acquire() relaunches ----------------+

Launch hygiene:
- exclusive ``.promptbridge.lock`` file with the owner pid; a live foreign
  owner raises ProfileInUse
- stale Chromium ``Singleton*`` files left by a crashed browser are removed
- automation fingerprints reduced (launch flag, ignored default arg,
  navigator.webdriver init script)

Usage:
    pool = BrowserManagerPool(engine_cfg)
    page = await pool.acquire(get_adapter("midjourney"))
    ...
    await pool.close()
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import psutil

from promptbridge.adapters import ServiceAdapter
from promptbridge.config import EngineConfig
from promptbridge.errors import ProfileInUse
from promptbridge.models import AuthState, ServiceSession

log = logging.getLogger("promptbridge.browser")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VIEWPORT = {"width": 1440, "height": 900}

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-sync",
]
IGNORE_DEFAULT_ARGS = ["--enable-automation"]

WEBDRIVER_INIT_SCRIPT = (
    "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"
)

LOCK_FILENAME = ".promptbridge.lock"
SINGLETON_FILES = ("SingletonLock", "SingletonCookie", "SingletonSocket")

# (user_data_dir, launch options) -> persistent BrowserContext
Launcher = Callable[[str, dict], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Profile hygiene
# ---------------------------------------------------------------------------

class ProfileLock:
    """Pid lock file marking which process owns a profile directory."""

    def __init__(self, profile_dir: Path):
        self.path = Path(profile_dir) / LOCK_FILENAME

    def owner(self) -> Optional[int]:
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def acquire(self) -> None:
        pid = self.owner()
        if pid is not None and pid != os.getpid() and psutil.pid_exists(pid):
            raise ProfileInUse(str(self.path.parent), pid)
        if pid is not None and pid != os.getpid():
            log.info("Removing stale profile lock from dead process %d", pid)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()), encoding="utf-8")

    def release(self) -> None:
        if self.owner() == os.getpid():
            self.path.unlink(missing_ok=True)


def clean_stale_singleton(profile_dir: Path) -> list[str]:
    """Remove Chromium Singleton* files left by a browser that did not exit.

    Only called while holding the ProfileLock, so no live browser of ours
    can be using the directory.
    """
    removed: list[str] = []
    for name in SINGLETON_FILES:
        path = Path(profile_dir) / name
        if path.is_symlink() or path.exists():
            try:
                path.unlink()
                removed.append(name)
            except OSError as exc:
                log.warning("Could not remove %s: %s", path, exc)
    if removed:
        log.info("Cleaned stale %s in %s", ", ".join(removed), profile_dir)
    return removed


async def _close_quietly(obj: Any, timeout: float, what: str) -> None:
    try:
        await asyncio.wait_for(asyncio.shield(obj.close()), timeout=timeout)
    except Exception as exc:
        log.debug("closing %s: %s", what, exc)


# ---------------------------------------------------------------------------
# Per-platform manager
# ---------------------------------------------------------------------------

class PersistentBrowserManager:
    """Owns one platform's persistent context and its working page."""

    def __init__(
        self,
        service: str,
        config: EngineConfig,
        *,
        launcher: Optional[Launcher] = None,
    ):
        self.service = service
        self.config = config
        self.profile_dir = config.profile_dir(service)
        self._launcher = launcher
        self._profile_lock = ProfileLock(self.profile_dir)
        self._launch_lock = asyncio.Lock()
        self._playwright: Any = None
        self._context: Any = None
        self._page: Any = None
        self._headless: bool = config.headless
        self._disconnected = False
        self.launch_count = 0
        self.session = ServiceSession(service)

    @property
    def is_running(self) -> bool:
        return self._context is not None and not self._disconnected

    @property
    def _nav_timeout_ms(self) -> int:
        return self.config.navigation_timeout_sec * 1000

    def _launch_options(self, headless: bool) -> dict[str, Any]:
        return {
            "headless": headless,
            "viewport": VIEWPORT,
            "args": list(LAUNCH_ARGS),
            "ignore_default_args": list(IGNORE_DEFAULT_ARGS),
        }

    async def _playwright_launch(self, user_data_dir: str, options: dict) -> Any:
        from playwright.async_api import async_playwright

        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch_persistent_context(
            user_data_dir, **options,
        )

    def _on_context_close(self, *_args: Any) -> None:
        if not self._disconnected:
            log.warning("%s browser disconnected; next acquire relaunches", self.service)
        self._disconnected = True

    async def _ensure_context(self, *, headless: Optional[bool] = None) -> Any:
        want_headless = self.config.headless if headless is None else headless
        async with self._launch_lock:
            if self.is_running and self._headless == want_headless:
                return self._context

            if self.is_running:
                log.info("%s: relaunching %s", self.service,
                         "headless" if want_headless else "headed")
                await self._teardown()
            elif self._context is not None:
                log.info("%s: relaunching after disconnect", self.service)
                self._context = None
                self._page = None

            self.profile_dir.mkdir(parents=True, exist_ok=True)
            self._profile_lock.acquire()
            clean_stale_singleton(self.profile_dir)

            launch = self._launcher or self._playwright_launch
            context = await asyncio.wait_for(
                launch(str(self.profile_dir), self._launch_options(want_headless)),
                timeout=self.config.launch_timeout_sec,
            )
            await context.add_init_script(WEBDRIVER_INIT_SCRIPT)
            context.on("close", self._on_context_close)

            self._context = context
            self._page = None
            self._headless = want_headless
            self._disconnected = False
            self.launch_count += 1
            log.info("%s browser launched (profile %s)", self.service, self.profile_dir)
            return context

    async def _working_page(self, context: Any) -> Any:
        page = self._page
        if page is None or page.is_closed():
            open_pages = [p for p in context.pages if not p.is_closed()]
            page = open_pages[0] if open_pages else await context.new_page()
            self._page = page
        return page

    async def acquire(self, adapter: ServiceAdapter) -> Any:
        """Live page on the platform, launching or relaunching as needed."""
        context = await self._ensure_context()
        page = await self._working_page(context)
        if not adapter.matches_url(page.url):
            await page.goto(adapter.home_url, wait_until="domcontentloaded",
                            timeout=self._nav_timeout_ms)
        self.session.page = page
        self.session.touch()
        return page

    async def is_logged_in(self, adapter: ServiceAdapter) -> bool:
        """Advisory login check; check errors count as logged out."""
        try:
            page = await self.acquire(adapter)
            logged_in = await adapter.is_logged_in(page)
        except ProfileInUse:
            raise
        except Exception as exc:
            log.warning("%s login check failed: %s", self.service, exc)
            return False
        self.session.auth = AuthState.LOGGED_IN if logged_in else AuthState.LOGGED_OUT
        return logged_in

    async def setup_authentication(self, adapter: ServiceAdapter) -> Any:
        """Open the login page in a headed window for a manual sign-in."""
        context = await self._ensure_context(headless=False)
        page = await self._working_page(context)
        await page.goto(adapter.login_url, wait_until="domcontentloaded",
                        timeout=self._nav_timeout_ms)
        await page.bring_to_front()
        log.info("%s login page open; sign in, then close the window", adapter.label)
        return page

    def status(self) -> dict[str, Any]:
        url = ""
        if self._page is not None and not self._page.is_closed():
            url = self._page.url
        return {
            "service": self.service,
            "running": self.is_running,
            "launches": self.launch_count,
            "profile": str(self.profile_dir),
            "url": url,
            "auth": self.session.auth.value,
        }

    async def _teardown(self) -> None:
        # LIFO: page -> context -> playwright
        self.session.page = None
        if self._page is not None:
            await _close_quietly(self._page, 3.0, f"{self.service} page")
            self._page = None
        if self._context is not None:
            await _close_quietly(self._context, 5.0, f"{self.service} context")
            self._context = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                log.debug("stopping playwright: %s", exc)
            self._playwright = None

    async def close(self) -> None:
        async with self._launch_lock:
            await self._teardown()
            self._disconnected = False
            self._profile_lock.release()


# ---------------------------------------------------------------------------
# Pool (SessionProvider for the persistent backend)
# ---------------------------------------------------------------------------

class BrowserManagerPool:
    """One PersistentBrowserManager per platform, created on first use."""

    def __init__(self, config: EngineConfig, *, launcher: Optional[Launcher] = None):
        self.config = config
        self._launcher = launcher
        self._managers: dict[str, PersistentBrowserManager] = {}

    def manager(self, service: str) -> PersistentBrowserManager:
        if service not in self._managers:
            self._managers[service] = PersistentBrowserManager(
                service, self.config, launcher=self._launcher,
            )
        return self._managers[service]

    async def acquire(self, adapter: ServiceAdapter) -> Any:
        return await self.manager(adapter.name).acquire(adapter)

    async def is_logged_in(self, adapter: ServiceAdapter) -> bool:
        return await self.manager(adapter.name).is_logged_in(adapter)

    async def setup_authentication(self, adapter: ServiceAdapter) -> Any:
        return await self.manager(adapter.name).setup_authentication(adapter)

    def session(self, adapter: ServiceAdapter) -> ServiceSession:
        return self.manager(adapter.name).session

    def status(self) -> list[dict[str, Any]]:
        return [m.status() for m in self._managers.values()]

    async def close_service(self, service: str) -> None:
        manager = self._managers.pop(service, None)
        if manager is not None:
            await manager.close()

    async def close(self) -> None:
        for service in reversed(list(self._managers)):
            await self.close_service(service)
