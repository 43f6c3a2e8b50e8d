"""Tests for the job registry."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from ohmyccg.config import BackendSettings
from ohmyccg.jobs.backends import GeminiBackend
from ohmyccg.jobs.executor import SubprocessExecutor
from ohmyccg.jobs.models import JobOutcome, JobRequest, JobStatus
from ohmyccg.jobs.process import ProcessTracker
from ohmyccg.jobs.registry import (
    JobFinished,
    JobKilled,
    JobNotFoundError,
    JobRegistry,
    JobSpawned,
    JobStateError,
    JobTimedOut,
)


class GatedExecutor:
    """Executor double that finishes when released."""

    def __init__(self, tracker: ProcessTracker, outcome: JobOutcome | None = None, name: str = "gemini"):
        self.name = name
        self.tracker = tracker
        self.settings = BackendSettings(model="stub-model", timeout=1000, retry_count=0, retry_delay=1, retry_max_delay=1)
        self.outcome = outcome or JobOutcome(ok=True, result="done", model="stub-model")
        self.release = asyncio.Event()
        self.requests: list[JobRequest] = []

    async def execute(self, request, on_spawn=None):
        self.requests.append(request)
        if on_spawn is not None:
            on_spawn(999_999)
        await self.release.wait()
        return self.outcome


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def gated(tracker):
    return GatedExecutor(tracker)


@pytest_asyncio.fixture
async def registry(gated, tracker):
    jobs = JobRegistry([gated], tracker, poll_initial_delay=0.01, poll_max_delay=0.02)
    yield jobs
    await jobs.shutdown()


class TestDispatch:
    """Tests for background dispatch."""

    @pytest.mark.asyncio
    async def test_dispatch_lifecycle(self, registry, gated):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi", agent_role="designer"))

        job = registry.poll_once(job_id)
        assert job.status == JobStatus.SPAWNED
        assert job.model == "stub-model"
        assert job.agent_role == "designer"

        await _settle()
        assert job.status == JobStatus.RUNNING
        assert job.pid == 999_999

        gated.release.set()
        await _settle()

        assert job.status == JobStatus.COMPLETED
        assert job.result == "done"
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_job_ids_are_hex(self, registry):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))
        assert len(job_id) == 8
        int(job_id, 16)

    @pytest.mark.asyncio
    async def test_unknown_backend(self, registry):
        with pytest.raises(ValueError, match="Unknown backend"):
            registry.dispatch("codex", JobRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_failed_outcome(self, tracker):
        executor = GatedExecutor(tracker, JobOutcome(ok=False, error="Gemini error (exit 1): boom"))
        jobs = JobRegistry([executor], tracker)
        executor.release.set()

        job_id = jobs.dispatch("gemini", JobRequest(prompt="hi"))
        await _settle()

        job = jobs.poll_once(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error == "Gemini error (exit 1): boom"

    @pytest.mark.asyncio
    async def test_fallback_annotations_recorded(self, tracker):
        outcome = JobOutcome(ok=True, result="x", used_fallback=True, fallback_model="gemini-2.5-pro")
        executor = GatedExecutor(tracker, outcome)
        jobs = JobRegistry([executor], tracker)
        executor.release.set()

        job_id = jobs.dispatch("gemini", JobRequest(prompt="hi"))
        await _settle()

        data = jobs.poll_once(job_id).to_dict()
        assert data["used_fallback"] is True
        assert data["fallback_model"] == "gemini-2.5-pro"


class TestCancel:
    """Tests for user cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_wins_over_late_completion(self, registry, gated):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))
        await _settle()

        registry.cancel(job_id)
        gated.release.set()
        await _settle()

        job = registry.poll_once(job_id)
        assert job.status == JobStatus.FAILED
        assert job.killed_by_user is True
        assert job.error == "Killed by user (signal: SIGTERM)"
        assert job.result is None

    @pytest.mark.asyncio
    async def test_cancel_with_sigint(self, registry):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))
        job = registry.cancel(job_id, "SIGINT")
        assert job.error == "Killed by user (signal: SIGINT)"
        assert job.kill_signal == "SIGINT"

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, registry):
        with pytest.raises(JobNotFoundError, match="Job not found: deadbeef"):
            registry.cancel("deadbeef")

    @pytest.mark.asyncio
    async def test_cancel_terminal_job(self, registry, gated):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))
        gated.release.set()
        await _settle()

        with pytest.raises(JobStateError, match="terminal state: completed"):
            registry.cancel(job_id)

    @pytest.mark.asyncio
    async def test_cancel_rejects_unsupported_signal(self, registry):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))
        with pytest.raises(ValueError):
            registry.cancel(job_id, "SIGKILL")
        assert registry.poll_once(job_id).is_active


class TestEvents:
    """Tests for event application rules."""

    @pytest.mark.asyncio
    async def test_finished_after_kill_is_discarded(self, registry):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))

        assert registry.post(JobKilled(job_id, "SIGTERM")) is True
        assert registry.post(JobFinished(job_id, JobOutcome(ok=True, result="late"))) is False

        assert registry.poll_once(job_id).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self, registry):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))
        registry.post(JobFinished(job_id, JobOutcome(ok=True, result="first")))

        assert registry.post(JobTimedOut(job_id, 10)) is False
        assert registry.post(JobKilled(job_id, "SIGTERM")) is False
        assert registry.post(JobFinished(job_id, JobOutcome(ok=False, error="second"))) is False
        assert registry.poll_once(job_id).result == "first"

    @pytest.mark.asyncio
    async def test_spawn_after_kill_does_not_set_pid(self, registry):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))
        registry.post(JobKilled(job_id, "SIGTERM"))

        assert registry.post(JobSpawned(job_id, 4321)) is False
        assert registry.poll_once(job_id).pid is None

    def test_events_for_unknown_jobs_dropped(self, tracker):
        jobs = JobRegistry([], tracker)
        assert jobs.post(JobKilled("nope", "SIGTERM")) is False


class TestPolling:
    """Tests for waiting on jobs."""

    @pytest.mark.asyncio
    async def test_poll_returns_when_terminal(self, registry, gated):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))

        async def finish_later():
            await asyncio.sleep(0.05)
            gated.release.set()

        asyncio.create_task(finish_later())
        job = await registry.poll_until_terminal(job_id, timeout_ms=5000)

        assert job.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_poll_timeout_marks_job(self, registry):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))

        job = await registry.poll_until_terminal(job_id, timeout_ms=50)

        assert job.status == JobStatus.TIMEOUT
        assert job.error == "wait_for_job timed out after 50ms"
        assert registry.poll_once(job_id).status == JobStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_late_completion_after_poll_timeout_discarded(self, registry, gated):
        job_id = registry.dispatch("gemini", JobRequest(prompt="hi"))
        await registry.poll_until_terminal(job_id, timeout_ms=30)

        gated.release.set()
        await _settle()

        assert registry.poll_once(job_id).status == JobStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_poll_unknown_job(self, registry):
        with pytest.raises(JobNotFoundError):
            await registry.poll_until_terminal("nope")

    @pytest.mark.asyncio
    async def test_timeout_capped_at_maximum(self, tracker, gated):
        jobs = JobRegistry([gated], tracker, poll_initial_delay=0.01, max_wait_timeout_ms=40)
        job_id = jobs.dispatch("gemini", JobRequest(prompt="hi"))

        job = await jobs.poll_until_terminal(job_id, timeout_ms=10_000_000)

        assert job.error == "wait_for_job timed out after 40ms"
        await jobs.shutdown()

    def test_poll_once_unknown(self, tracker):
        assert JobRegistry([], tracker).poll_once("nope") is None


class TestList:
    """Tests for listing jobs."""

    @pytest.mark.asyncio
    async def test_newest_first(self, registry):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        ids = [registry.dispatch("gemini", JobRequest(prompt=str(i))) for i in range(3)]
        # Spawn times out of insertion order
        for job_id, minutes in zip(ids, [5, 1, 9]):
            registry.poll_once(job_id).spawned_at = base + timedelta(minutes=minutes)

        listed = [job.id for job in registry.list("all")]

        assert listed == [ids[2], ids[0], ids[1]]

    @pytest.mark.asyncio
    async def test_limit_applies_after_sort(self, registry):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        ids = [registry.dispatch("gemini", JobRequest(prompt=str(i))) for i in range(3)]
        for job_id, minutes in zip(ids, [9, 1, 5]):
            registry.poll_once(job_id).spawned_at = base + timedelta(minutes=minutes)

        assert [job.id for job in registry.list("all", limit=1)] == [ids[0]]

    @pytest.mark.asyncio
    async def test_filters(self, registry):
        running = registry.dispatch("gemini", JobRequest(prompt="a"))
        completed = registry.dispatch("gemini", JobRequest(prompt="b"))
        failed = registry.dispatch("gemini", JobRequest(prompt="c"))
        timed_out = registry.dispatch("gemini", JobRequest(prompt="d"))

        registry.post(JobFinished(completed, JobOutcome(ok=True, result="ok")))
        registry.post(JobFinished(failed, JobOutcome(ok=False, error="bad")))
        registry.post(JobTimedOut(timed_out, 10))

        assert [j.id for j in registry.list("active")] == [running]
        assert [j.id for j in registry.list("completed")] == [completed]
        assert {j.id for j in registry.list("failed")} == {failed, timed_out}
        assert len(registry.list("all")) == 4

    @pytest.mark.asyncio
    async def test_unknown_filter(self, registry):
        with pytest.raises(ValueError, match="Unknown status filter"):
            registry.list("stuck")

    @pytest.mark.asyncio
    async def test_limit_clamped(self, registry):
        for i in range(3):
            registry.dispatch("gemini", JobRequest(prompt=str(i)))
        assert len(registry.list("all", limit=0)) == 3
        assert len(registry.list("all", limit=500)) == 3


class TestShutdown:
    """Tests for cancelling in-flight jobs at process exit."""

    @pytest.mark.asyncio
    async def test_running_job_fails_on_shutdown(self, gated, tracker):
        jobs = JobRegistry([gated], tracker)
        job_id = jobs.dispatch("gemini", JobRequest(prompt="x"))
        await _settle()
        assert jobs.poll_once(job_id).status == JobStatus.RUNNING

        await jobs.shutdown()

        job = jobs.poll_once(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error == "Cancelled at shutdown"
        assert jobs.list("active") == []

    @pytest.mark.asyncio
    async def test_job_not_yet_started_fails_on_shutdown(self, gated, tracker):
        jobs = JobRegistry([gated], tracker)
        job_id = jobs.dispatch("gemini", JobRequest(prompt="x"))

        await jobs.shutdown()

        assert jobs.poll_once(job_id).status == JobStatus.FAILED
        assert gated.requests == []

    @pytest.mark.asyncio
    async def test_finished_jobs_untouched(self, gated, tracker):
        jobs = JobRegistry([gated], tracker)
        job_id = jobs.dispatch("gemini", JobRequest(prompt="x"))
        gated.release.set()
        await _settle()

        await jobs.shutdown()

        assert jobs.poll_once(job_id).status == JobStatus.COMPLETED


class TestWithRealProcess:
    """Cancellation against a real child process."""

    @pytest.mark.asyncio
    async def test_kill_running_cli(self, make_cli, fast_settings, tracker, workdir):
        script = make_cli("""
        import time
        print("started", flush=True)
        time.sleep(30)
        """)
        executor = SubprocessExecutor(GeminiBackend(executable=script), fast_settings, tracker)
        jobs = JobRegistry([executor], tracker)

        job_id = jobs.dispatch("gemini", JobRequest(prompt="x", working_directory=str(workdir)))
        for _ in range(200):
            if jobs.poll_once(job_id).pid is not None:
                break
            await asyncio.sleep(0.01)
        pid = jobs.poll_once(job_id).pid
        assert pid in tracker

        jobs.cancel(job_id)
        job = await jobs.poll_until_terminal(job_id, timeout_ms=5000)

        assert job.status == JobStatus.FAILED
        assert job.killed_by_user is True
        for _ in range(200):
            if pid not in tracker:
                break
            await asyncio.sleep(0.01)
        assert pid not in tracker
        await jobs.shutdown()
