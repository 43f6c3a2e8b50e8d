"""Job records, requests and outcomes."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Background job status."""
    SPAWNED = "spawned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMEOUT})
ACTIVE_STATUSES = frozenset({JobStatus.SPAWNED, JobStatus.RUNNING})


@dataclass
class JobRequest:
    """One prompt to run against an external model CLI."""
    prompt: str = ""
    agent_role: str = ""
    files: list[str] = field(default_factory=list)
    working_directory: str | None = None
    model: str | None = None


@dataclass
class JobOutcome:
    """Normalized result of running a model CLI to completion."""
    ok: bool
    result: str | None = None
    error: str | None = None
    model: str | None = None
    used_fallback: bool = False
    fallback_model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            data: dict[str, Any] = {"content": self.result}
            if self.used_fallback:
                data["used_fallback"] = True
                data["fallback_model"] = self.fallback_model
            return data
        return {"error": self.error}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Job:
    """A background model invocation tracked by the registry."""

    id: str
    backend: str
    model: str
    agent_role: str = ""

    status: JobStatus = JobStatus.SPAWNED
    pid: int | None = None

    # Timing
    spawned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    # Results
    result: str | None = None
    error: str | None = None
    used_fallback: bool = False
    fallback_model: str | None = None

    # Cancellation
    killed_by_user: bool = False
    kill_signal: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "job_id": self.id,
            "backend": self.backend,
            "status": self.status.value,
            "model": self.model,
            "agent_role": self.agent_role,
            "spawned_at": _iso(self.spawned_at),
        }
        if self.completed_at:
            data["completed_at"] = _iso(self.completed_at)
        if self.status == JobStatus.COMPLETED:
            data["result"] = self.result
        if self.error:
            data["error"] = self.error
        if self.killed_by_user:
            data["killed_by_user"] = True
        if self.used_fallback:
            data["used_fallback"] = True
            data["fallback_model"] = self.fallback_model
        return data

    def summary(self) -> dict[str, Any]:
        """Compact listing entry."""
        return {
            "job_id": self.id,
            "backend": self.backend,
            "status": self.status.value,
            "model": self.model,
            "agent_role": self.agent_role,
            "spawned_at": _iso(self.spawned_at),
            "completed_at": _iso(self.completed_at),
        }
