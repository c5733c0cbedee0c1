"""Batch orchestrator: ordered, partial-failure-tolerant prompt submission.

Per job:  Pending -> Submitting -> AwaitingReady -> Succeeded | Failed

    1. claim the platform's ServiceSession and acquire its page from the
       SessionProvider (it re-resolves a page that was closed or navigated
       away); an acquire error fails the job, nothing was submitted
    2. adapter.submit_prompt()
    3. classify: frame-destroyed errors are an implicit success (one platform
       signals success only by destroying its own document); any other
       exception fails the job with its message
    4. between items: readiness polling plus the caller's fixed delay floor,
       measured from the end of the submit

Per-item failures never raise. AuthenticationRequired is fatal to the batch:
the current and remaining jobs fail with the error, and the returned
BatchResult carries success=False.

Usage:
    orchestrator = BatchOrchestrator(BrowserManagerPool(cfg), config=cfg)
    result = await orchestrator.run(BatchRequest.from_prompts("ideogram", prompts, 5000))
    print(result.to_dict())
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from promptbridge.adapters import ServiceAdapter, get_adapter
from promptbridge.common import truncate
from promptbridge.config import EngineConfig
from promptbridge.diagnostics import capture_debug_artifacts
from promptbridge.errors import (
    AuthenticationRequired,
    ElementNotFound,
    LocatorTimeout,
    PromptBridgeError,
    is_frame_destroyed,
)
from promptbridge.locator import ShadowLocator
from promptbridge.models import (
    AuthState,
    BatchRequest,
    BatchResult,
    JobStatus,
    PromptJob,
    ServiceSession,
)
from promptbridge.poll import Sleep
from promptbridge.readiness import wait_until_ready

log = logging.getLogger("promptbridge.orchestrator")

IMPLICIT_SUCCESS_NOTE = "page reloaded (likely successful)"


# ---------------------------------------------------------------------------
# Session provider interface (both backends implement it)
# ---------------------------------------------------------------------------

class SessionProvider(Protocol):
    """Hands out a live page per platform."""
    async def acquire(self, adapter: ServiceAdapter) -> Any: ...
    async def is_logged_in(self, adapter: ServiceAdapter) -> bool: ...
    def session(self, adapter: ServiceAdapter) -> ServiceSession: ...
    async def close(self) -> None: ...


DiagnosticsHook = Callable[[Any, str, Exception], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class BatchOrchestrator:
    """Runs BatchRequests against one SessionProvider.

    Batches for the same platform are serialized by a per-service lock;
    different platforms run independently.
    """

    def __init__(
        self,
        provider: SessionProvider,
        *,
        config: EngineConfig | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        diagnostics: Optional[DiagnosticsHook] = None,
        adapters: Optional[dict[str, ServiceAdapter]] = None,
    ):
        self.provider = provider
        self.config = config or EngineConfig()
        self._sleep = sleep
        self._clock = clock
        self._diagnostics = diagnostics
        self._adapters: dict[str, ServiceAdapter] = dict(adapters or {})
        self._locks: dict[str, asyncio.Lock] = {}
        self._progress: dict[str, dict[str, Any]] = {}

    # -- registry ----------------------------------------------------------

    def adapter(self, service: str) -> ServiceAdapter:
        """Adapter for ``service``, created once with the configured locator."""
        key = (service or "").strip().lower()
        if key not in self._adapters:
            locator = ShadowLocator(
                interval_s=self.config.locator_interval_s,
                max_retries=self.config.locator_max_retries,
                sleep=self._sleep,
            )
            self._adapters[key] = get_adapter(key, locator=locator, sleep=self._sleep)
        return self._adapters[key]

    def _lock(self, service: str) -> asyncio.Lock:
        if service not in self._locks:
            self._locks[service] = asyncio.Lock()
        return self._locks[service]

    # -- status ------------------------------------------------------------

    def status(self, service: str) -> dict[str, Any]:
        """{state: idle|batch|submitting, current, total, currentPrompt}."""
        progress = self._progress.get(service)
        if not progress:
            return {"state": "idle", "current": 0, "total": 0, "currentPrompt": ""}
        return dict(progress)

    # -- entrypoints -------------------------------------------------------

    async def submit(self, service: str, prompt: str) -> dict[str, Any]:
        """Submit a single prompt; returns {success, error?, note?, method?}."""
        request = BatchRequest.from_prompts(service, [prompt])
        result = await self.run(request)
        row = dict(result.results[0])
        row.pop("index", None)
        row.pop("prompt", None)
        if result.error and "error" not in row:
            row["error"] = result.error
        return row

    async def run(self, request: BatchRequest) -> BatchResult:
        """Execute every job of ``request`` in order. Never raises per item."""
        request.consume()
        adapter = self.adapter(request.service)
        async with self._lock(adapter.name):
            try:
                return await self._run_locked(request, adapter)
            finally:
                self._progress.pop(adapter.name, None)

    # -- internals ---------------------------------------------------------

    async def _run_locked(self, request: BatchRequest, adapter: ServiceAdapter) -> BatchResult:
        jobs = request.jobs
        total = len(jobs)
        delay_s = request.delay_ms / 1000.0
        progress = {
            "state": "batch" if total > 1 else "submitting",
            "current": 0,
            "total": total,
            "currentPrompt": "",
        }
        self._progress[adapter.name] = progress
        log.info("%s: batch of %d prompt(s), delay floor %.1fs", adapter.label, total, delay_s)

        session = self.provider.session(adapter)
        fatal: AuthenticationRequired | None = None
        if jobs and self.config.check_login:
            fatal = await self._check_login(adapter)

        for index, job in enumerate(jobs):
            if fatal is not None:
                self._fail(job, str(fatal))
                continue

            progress["current"] = index + 1
            progress["currentPrompt"] = truncate(job.text, 100)
            is_last = index == total - 1

            session.claim(job.id)
            try:
                await self._run_job(job, adapter, index=index, total=total,
                                    is_last=is_last, delay_s=delay_s)
            except AuthenticationRequired as exc:
                log.error("%s: %s", adapter.label, exc)
                fatal = exc
                self._fail(job, str(exc))
            finally:
                session.release(job.id)

        if fatal is not None:
            session.auth = AuthState.LOGGED_OUT

        result = BatchResult(results=[job.to_result(i) for i, job in enumerate(jobs)])
        if fatal is not None:
            result.success = False
            result.error = str(fatal)
        log.info("%s: batch done, %d succeeded, %d failed",
                 adapter.label, result.success_count, result.fail_count)
        return result

    async def _check_login(self, adapter: ServiceAdapter) -> AuthenticationRequired | None:
        try:
            logged_in = await self.provider.is_logged_in(adapter)
        except AuthenticationRequired as exc:
            return exc
        except PromptBridgeError as exc:
            # Check is advisory; the jobs themselves will surface the error
            log.warning("%s: login check skipped: %s", adapter.label, exc)
            return None
        if logged_in:
            return None
        return AuthenticationRequired(adapter.name, "login check shows a logged-out session")

    async def _run_job(
        self,
        job: PromptJob,
        adapter: ServiceAdapter,
        *,
        index: int,
        total: int,
        is_last: bool,
        delay_s: float,
    ) -> None:
        started = self._clock()
        job.advance(JobStatus.SUBMITTING)
        page = None
        tag = f"[{index + 1}/{total}]"

        try:
            page = await self.provider.acquire(adapter)
        except AuthenticationRequired:
            raise
        except Exception as exc:
            log.warning("%s %s no usable page: %s", adapter.label, tag, exc)
            succeeded = False
            job.error = str(exc)
        else:
            succeeded = await self._submit(job, adapter, page, tag)

        submitted_at = self._clock()

        if not succeeded:
            job.advance(JobStatus.FAILED)
        elif is_last:
            job.advance(JobStatus.SUCCEEDED)
        else:
            job.advance(JobStatus.AWAITING_READY)
            if page is not None:
                await wait_until_ready(
                    adapter, page,
                    interval_s=self.config.ready_interval_s,
                    max_checks=adapter.ready_max_checks,
                    label=adapter.label,
                    sleep=self._sleep,
                )
            job.advance(JobStatus.SUCCEEDED)

        job.duration_s = round(self._clock() - started, 3)
        if job.succeeded:
            log.info("%s %s submitted via %s: %s", adapter.label, tag,
                     job.method or "reload", truncate(job.text))

        if not is_last:
            remaining = delay_s - (self._clock() - submitted_at)
            if remaining > 0:
                await self._sleep(remaining)

    async def _submit(self, job: PromptJob, adapter: ServiceAdapter, page: Any, tag: str) -> bool:
        """Run the adapter and classify the outcome; True when the job succeeded."""
        try:
            outcome = await adapter.submit_prompt(page, job.text)
        except AuthenticationRequired:
            raise
        except Exception as exc:
            if is_frame_destroyed(exc):
                log.info("%s %s %s", adapter.label, tag, IMPLICIT_SUCCESS_NOTE)
                job.note = IMPLICIT_SUCCESS_NOTE
                return True
            log.warning("%s %s failed: %s", adapter.label, tag, exc)
            job.error = str(exc)
            if isinstance(exc, (LocatorTimeout, ElementNotFound)):
                await self._dump(page, adapter, exc)
            return False
        job.method = outcome.method
        job.error = outcome.error
        return outcome.success

    def _fail(self, job: PromptJob, error: str) -> None:
        if not job.done:
            job.error = error
            job.advance(JobStatus.FAILED)

    async def _dump(self, page: Any, adapter: ServiceAdapter, exc: Exception) -> None:
        if not self.config.diagnostics:
            return
        try:
            if self._diagnostics is not None:
                await self._diagnostics(page, adapter.name, exc)
            else:
                await capture_debug_artifacts(
                    page, debug_dir=self.config.debug_dir, service=adapter.name,
                    tag="locator", error=str(exc),
                )
        except Exception as dump_exc:
            log.warning("diagnostics dump failed: %s", dump_exc)
