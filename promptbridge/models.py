"""Data model: jobs, batches, sessions, bridge connection state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from promptbridge.common import new_message_id


# ---------------------------------------------------------------------------
# Prompt jobs
# ---------------------------------------------------------------------------


class JobStatus(str, Enum):
    PENDING = "pending"
    SUBMITTING = "submitting"
    AWAITING_READY = "awaiting_ready"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.SUBMITTING, JobStatus.FAILED}),
    JobStatus.SUBMITTING: frozenset({
        JobStatus.AWAITING_READY, JobStatus.SUCCEEDED, JobStatus.FAILED,
    }),
    JobStatus.AWAITING_READY: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

# Pending -> Failed covers jobs skipped after a fatal batch error.


@dataclass
class PromptJob:
    text: str
    service: str
    id: str = field(default_factory=new_message_id)
    status: JobStatus = JobStatus.PENDING
    error: str = ""
    note: str = ""
    method: str = ""
    duration_s: float = 0.0

    def advance(self, status: JobStatus) -> None:
        if status not in _JOB_TRANSITIONS[self.status]:
            raise ValueError(f"Illegal job transition {self.status.value} -> {status.value}")
        self.status = status

    @property
    def done(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    def to_result(self, index: int) -> dict[str, Any]:
        row: dict[str, Any] = {
            "index": index,
            "prompt": self.text,
            "success": self.succeeded,
        }
        if self.error:
            row["error"] = self.error
        if self.note:
            row["note"] = self.note
        if self.method:
            row["method"] = self.method
        return row


@dataclass
class BatchRequest:
    """Ordered jobs for one platform. Consumed once by the orchestrator."""
    jobs: tuple[PromptJob, ...]
    service: str
    delay_ms: int = 0
    consumed: bool = False

    def __post_init__(self):
        self.jobs = tuple(self.jobs)
        for job in self.jobs:
            if job.service != self.service:
                raise ValueError(
                    f"job {job.id} targets {job.service!r}, batch targets {self.service!r}"
                )
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")

    @classmethod
    def from_prompts(cls, service: str, prompts: list[str], delay_ms: int = 0) -> "BatchRequest":
        return cls(
            jobs=tuple(PromptJob(text=p, service=service) for p in prompts),
            service=service,
            delay_ms=delay_ms,
        )

    def consume(self) -> None:
        if self.consumed:
            raise RuntimeError("BatchRequest already consumed")
        self.consumed = True


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class SubmitOutcome:
    success: bool
    method: str = ""  # "button" or "keyboard"
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "method": self.method}
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class BatchResult:
    results: list[dict[str, Any]]
    success: bool = True
    error: str = ""

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.get("success"))

    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.results if not r.get("success"))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "results": self.results,
            "successCount": self.success_count,
            "failCount": self.fail_count,
        }
        if self.error:
            out["error"] = self.error
        return out


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class AuthState(str, Enum):
    UNKNOWN = "unknown"
    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"


@dataclass
class ServiceSession:
    """One platform's page, owned by at most one in-flight job."""
    service: str
    page: Any = None
    auth: AuthState = AuthState.UNKNOWN
    last_activity: float = 0.0
    owner_job: Optional[str] = None

    def claim(self, job_id: str) -> None:
        if self.owner_job is not None and self.owner_job != job_id:
            raise RuntimeError(
                f"{self.service} session busy with job {self.owner_job}"
            )
        self.owner_job = job_id
        self.touch()

    def release(self, job_id: str) -> None:
        if self.owner_job == job_id:
            self.owner_job = None
        self.touch()

    def touch(self) -> None:
        self.last_activity = time.monotonic()


# ---------------------------------------------------------------------------
# Bridge connection
# ---------------------------------------------------------------------------


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


_CONN_ORDER = {
    ConnectionState.CONNECTING: 0,
    ConnectionState.OPEN: 1,
    ConnectionState.AUTHENTICATED: 2,
    ConnectionState.CLOSED: 3,
}


@dataclass
class BridgeConnection:
    state: ConnectionState = ConnectionState.CLOSED
    reconnect_attempts: int = 0

    def transition(self, new: ConnectionState) -> None:
        """Move forward only; Closed -> Connecting is the single way back."""
        if self.state == ConnectionState.CLOSED and new == ConnectionState.CONNECTING:
            self.state = new
            return
        if _CONN_ORDER[new] <= _CONN_ORDER[self.state]:
            raise ValueError(
                f"Illegal bridge transition {self.state.value} -> {new.value}"
            )
        self.state = new
