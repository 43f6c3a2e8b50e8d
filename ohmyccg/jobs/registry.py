"""In-memory registry of background model jobs.

Job records change only by applying events posted to the registry. Events
are applied synchronously on the event loop, so a status change is never
interleaved with another. Once a job is terminal, later events are dropped;
this is what lets a user cancel win over a completion that arrives after it.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ohmyccg.config import Settings, codex_settings, gemini_settings, settings as app_settings
from ohmyccg.jobs.backends import CodexBackend, GeminiBackend
from ohmyccg.jobs.executor import SubprocessExecutor
from ohmyccg.jobs.models import Job, JobOutcome, JobRequest, JobStatus
from ohmyccg.jobs.process import ProcessTracker, resolve_signal

logger = logging.getLogger(__name__)

LIST_FILTERS = ("active", "completed", "failed", "all")
LIST_DEFAULT_LIMIT = 50
LIST_MAX_LIMIT = 200


class JobNotFoundError(LookupError):
    """No job with the given id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobStateError(RuntimeError):
    """Operation not allowed in the job's current status."""


# ── Events ─────────────────────────────────────────────


@dataclass(frozen=True)
class JobEvent:
    job_id: str


@dataclass(frozen=True)
class JobStarted(JobEvent):
    """The dispatch task began running the executor."""


@dataclass(frozen=True)
class JobSpawned(JobEvent):
    """A CLI process was started for the job."""
    pid: int


@dataclass(frozen=True)
class JobFinished(JobEvent):
    """The executor returned."""
    outcome: JobOutcome


@dataclass(frozen=True)
class JobTimedOut(JobEvent):
    """A waiter gave up on the job."""
    timeout_ms: int


@dataclass(frozen=True)
class JobKilled(JobEvent):
    """The user cancelled the job."""
    signal: str


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobRegistry:
    """Tracks background jobs for one server process."""

    def __init__(
        self,
        executors: list[SubprocessExecutor] | None = None,
        tracker: ProcessTracker | None = None,
        *,
        poll_initial_delay: float = 0.5,
        poll_backoff_factor: float = 1.5,
        poll_max_delay: float = 2.0,
        default_wait_timeout_ms: int = 300_000,
        max_wait_timeout_ms: int = 3_600_000,
    ):
        self.tracker = tracker or ProcessTracker()
        self.executors: dict[str, SubprocessExecutor] = {}
        for executor in executors or []:
            self.register_executor(executor)

        self.poll_initial_delay = poll_initial_delay
        self.poll_backoff_factor = poll_backoff_factor
        self.poll_max_delay = poll_max_delay
        self.default_wait_timeout_ms = default_wait_timeout_ms
        self.max_wait_timeout_ms = max_wait_timeout_ms

        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def register_executor(self, executor: SubprocessExecutor) -> None:
        if executor.tracker is not self.tracker:
            logger.warning(f"Executor {executor.name} uses a separate process tracker; kill_job cannot signal it")
        self.executors[executor.name] = executor

    def __len__(self) -> int:
        return len(self._jobs)

    # ── Dispatch ───────────────────────────────────────

    def _new_job_id(self) -> str:
        while True:
            job_id = secrets.token_hex(4)
            if job_id not in self._jobs:
                return job_id

    def dispatch(self, backend: str, request: JobRequest) -> str:
        """Start a request in the background and return its job id.

        Must be called from a running event loop.
        """
        executor = self.executors.get(backend)
        if executor is None:
            raise ValueError(f"Unknown backend: {backend}")

        job_id = self._new_job_id()
        self._jobs[job_id] = Job(
            id=job_id,
            backend=backend,
            model=request.model or executor.settings.model,
            agent_role=request.agent_role,
        )

        task = asyncio.create_task(self._run(job_id, executor, request), name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(job_id, None))

        logger.info(f"Dispatched {backend} job {job_id}", extra={"job_id": job_id, "backend": backend})
        return job_id

    async def _run(self, job_id: str, executor: SubprocessExecutor, request: JobRequest) -> None:
        self.post(JobStarted(job_id))
        try:
            outcome = await executor.execute(request, on_spawn=lambda pid: self.post(JobSpawned(job_id, pid)))
        except Exception as e:
            logger.error(f"Job {job_id} crashed: {e}", exc_info=True, extra={"job_id": job_id})
            outcome = JobOutcome(ok=False, error=str(e))
        self.post(JobFinished(job_id, outcome))

    # ── Events ─────────────────────────────────────────

    def post(self, event: JobEvent) -> bool:
        """Apply an event. Returns False if it was discarded."""
        job = self._jobs.get(event.job_id)
        if job is None:
            logger.debug(f"Dropping {type(event).__name__} for unknown job {event.job_id}")
            return False

        if isinstance(event, JobStarted):
            if job.status != JobStatus.SPAWNED:
                return False
            job.status = JobStatus.RUNNING
            return True

        if isinstance(event, JobSpawned):
            if job.is_terminal:
                # Killed before the process existed; deliver the signal now
                if job.killed_by_user:
                    self.tracker.send_signal(event.pid, resolve_signal(job.kill_signal))
                return False
            job.pid = event.pid
            return True

        if isinstance(event, JobFinished):
            if job.is_terminal:
                logger.debug(
                    f"Discarding result for job {job.id} in state {job.status.value}",
                    extra={"job_id": job.id},
                )
                return False
            outcome = event.outcome
            if outcome.ok:
                job.status = JobStatus.COMPLETED
                job.result = outcome.result
                job.used_fallback = outcome.used_fallback
                job.fallback_model = outcome.fallback_model
            else:
                job.status = JobStatus.FAILED
                job.error = outcome.error
            job.completed_at = _now()
            logger.info(f"Job {job.id} {job.status.value}", extra={"job_id": job.id, "backend": job.backend})
            return True

        if isinstance(event, JobTimedOut):
            if job.is_terminal:
                return False
            job.status = JobStatus.TIMEOUT
            job.error = f"wait_for_job timed out after {event.timeout_ms}ms"
            job.completed_at = _now()
            return True

        if isinstance(event, JobKilled):
            if not job.is_active:
                return False
            job.killed_by_user = True
            job.kill_signal = event.signal
            job.status = JobStatus.FAILED
            job.error = f"Killed by user (signal: {event.signal})"
            job.completed_at = _now()
            return True

        raise TypeError(f"Unknown job event: {type(event).__name__}")

    # ── Queries ────────────────────────────────────────

    def poll_once(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def poll_until_terminal(self, job_id: str, timeout_ms: int | None = None) -> Job:
        """Wait until the job is terminal, with backoff between checks.

        On deadline the job is marked ``timeout`` and returned.
        """
        if job_id not in self._jobs:
            raise JobNotFoundError(job_id)

        timeout_ms = min(timeout_ms or self.default_wait_timeout_ms, self.max_wait_timeout_ms)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        delay = self.poll_initial_delay

        while True:
            job = self._jobs[job_id]
            if job.is_terminal:
                return job

            remaining = deadline - loop.time()
            if remaining <= 0:
                self.post(JobTimedOut(job_id, timeout_ms))
                logger.warning(f"Gave up waiting for job {job_id} after {timeout_ms}ms", extra={"job_id": job_id})
                return job

            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * self.poll_backoff_factor, self.poll_max_delay)

    def list(self, status_filter: str = "active", limit: int | None = LIST_DEFAULT_LIMIT) -> list[Job]:
        """Jobs matching a filter, newest first."""
        if status_filter not in LIST_FILTERS:
            raise ValueError(f"Unknown status filter: {status_filter}. Use one of: {', '.join(LIST_FILTERS)}")
        limit = max(1, min(limit or LIST_DEFAULT_LIMIT, LIST_MAX_LIMIT))

        matched = []
        for job in reversed(list(self._jobs.values())):
            if status_filter == "all":
                matched.append(job)
            elif status_filter == "active" and job.is_active:
                matched.append(job)
            elif status_filter == "completed" and job.status == JobStatus.COMPLETED:
                matched.append(job)
            elif status_filter == "failed" and job.status in (JobStatus.FAILED, JobStatus.TIMEOUT):
                matched.append(job)

        matched.sort(key=lambda j: j.spawned_at, reverse=True)
        return matched[:limit]

    # ── Control ────────────────────────────────────────

    def cancel(self, job_id: str, signal: str | None = "SIGTERM") -> Job:
        """Mark a live job killed, then signal its process.

        Raises:
            JobNotFoundError: If the job does not exist
            JobStateError: If the job is already terminal
            ValueError: If the signal is not supported
        """
        sig = resolve_signal(signal)
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not job.is_active:
            raise JobStateError(f"Job {job_id} is in terminal state: {job.status.value}. Cannot kill.")

        self.post(JobKilled(job_id, sig.name))
        self.tracker.send_signal(job.pid, sig)
        logger.info(f"Killed job {job_id} with {sig.name}", extra={"job_id": job_id})
        return job

    async def shutdown(self) -> None:
        """Cancel in-flight dispatch tasks and fail their jobs."""
        pending = dict(self._tasks)
        for task in pending.values():
            task.cancel()
        if pending:
            await asyncio.gather(*pending.values(), return_exceptions=True)
        for job_id in pending:
            self.post(JobFinished(job_id, JobOutcome(ok=False, error="Cancelled at shutdown")))


def build_default_registry(
    settings: Settings | None = None,
    prompts_dir: Path | None = None,
) -> JobRegistry:
    """Registry with the Gemini and Codex executors sharing one tracker."""
    settings = settings or app_settings
    tracker = ProcessTracker()
    executors = []
    if settings.gemini_enabled:
        executors.append(SubprocessExecutor(GeminiBackend(), gemini_settings, tracker, prompts_dir))
    if settings.codex_enabled:
        executors.append(SubprocessExecutor(CodexBackend(), codex_settings, tracker, prompts_dir))
    return JobRegistry(
        executors,
        tracker,
        default_wait_timeout_ms=settings.wait_default_timeout_ms,
        max_wait_timeout_ms=settings.wait_max_timeout_ms,
    )
