"""Tab provider for the bridge backend: drive the user's own running browser.

The user's browser must be started with remote debugging enabled
(``--remote-debugging-port=9222``). Its DevTools endpoint is discovered by
probing ``/json/version`` on the configured ports, then attached with
Playwright ``connect_over_cdp``. Tabs already open on a platform are reused
and focused; otherwise a new tab is opened and loaded.

The user's browser is never closed by us; ``close()`` only detaches.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from promptbridge.adapters import ServiceAdapter
from promptbridge.config import EngineConfig
from promptbridge.errors import BrowserUnavailable
from promptbridge.models import AuthState, ServiceSession

log = logging.getLogger("promptbridge.tabs")

# endpoint url -> connected Browser
Connector = Callable[[str], Awaitable[Any]]


class CdpTabProvider:
    """SessionProvider backed by tabs of an already-running browser."""

    def __init__(
        self,
        config: EngineConfig,
        *,
        connector: Optional[Connector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._connector = connector
        self._transport = transport
        self._playwright: Any = None
        self._browser: Any = None
        self.endpoint: str = ""
        self._sessions: dict[str, ServiceSession] = {}

    def session(self, adapter: ServiceAdapter) -> ServiceSession:
        if adapter.name not in self._sessions:
            self._sessions[adapter.name] = ServiceSession(adapter.name)
        return self._sessions[adapter.name]

    async def discover_endpoint(self) -> Optional[str]:
        """First ``http://127.0.0.1:<port>`` answering /json/version, or None."""
        async with httpx.AsyncClient(timeout=1.0, transport=self._transport) as client:
            for port in self.config.cdp_ports:
                base = f"http://127.0.0.1:{port}"
                try:
                    resp = await client.get(f"{base}/json/version")
                except httpx.HTTPError:
                    continue
                if resp.status_code != 200:
                    continue
                try:
                    info = resp.json()
                except ValueError:
                    continue
                if info.get("webSocketDebuggerUrl") or info.get("Browser"):
                    log.info("DevTools endpoint on port %d (%s)", port, info.get("Browser", "?"))
                    return base
        return None

    async def _playwright_connect(self, endpoint: str) -> Any:
        from playwright.async_api import async_playwright

        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.connect_over_cdp(endpoint)

    async def _connect(self) -> Any:
        if self._browser is not None and self._browser.is_connected():
            return self._browser
        endpoint = await self.discover_endpoint()
        if endpoint is None:
            ports = ", ".join(str(p) for p in self.config.cdp_ports)
            raise BrowserUnavailable(
                f"No browser with remote debugging on ports {ports}. "
                "Start it with --remote-debugging-port=9222."
            )
        connect = self._connector or self._playwright_connect
        self._browser = await connect(endpoint)
        self.endpoint = endpoint
        return self._browser

    async def acquire(self, adapter: ServiceAdapter) -> Any:
        page = await self._find_or_open(adapter)
        session = self.session(adapter)
        session.page = page
        session.touch()
        return page

    async def _find_or_open(self, adapter: ServiceAdapter) -> Any:
        browser = await self._connect()
        contexts = browser.contexts
        if not contexts:
            # An ephemeral context would not carry the user's login
            raise BrowserUnavailable("Connected over CDP but the browser exposes no contexts")

        for context in contexts:
            for page in context.pages:
                if adapter.matches_url(page.url):
                    await page.bring_to_front()
                    return page

        log.info("No open %s tab, opening %s", adapter.label, adapter.home_url)
        page = await contexts[0].new_page()
        await page.goto(adapter.home_url, wait_until="load",
                        timeout=self.config.navigation_timeout_sec * 1000)
        await page.bring_to_front()
        return page

    async def is_logged_in(self, adapter: ServiceAdapter) -> bool:
        try:
            page = await self.acquire(adapter)
            logged_in = await adapter.is_logged_in(page)
        except BrowserUnavailable:
            raise
        except Exception as exc:
            log.warning("%s login check failed: %s", adapter.label, exc)
            return False
        self.session(adapter).auth = AuthState.LOGGED_IN if logged_in else AuthState.LOGGED_OUT
        return logged_in

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as exc:
                log.debug("detaching from browser: %s", exc)
            self._browser = None
        for session in self._sessions.values():
            session.page = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
