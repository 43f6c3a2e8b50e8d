"""Subprocess executor for external model CLIs.

Runs one backend CLI per attempt with the prompt on stdin. Rate-limited
attempts are retried with exponential backoff; a missing model walks the
backend's fallback chain.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ohmyccg.config import BackendSettings, settings as app_settings
from ohmyccg.jobs.backends import BackendStrategy
from ohmyccg.jobs.models import JobOutcome, JobRequest
from ohmyccg.jobs.process import ProcessTracker
from ohmyccg.jobs.prompts import build_prompt
from ohmyccg.jobs.retry import (
    FailureKind,
    classify_failure,
    error_tail,
    is_rate_limited,
    retry_delay,
)

logger = logging.getLogger(__name__)

# Stdout beyond this is read and dropped
MAX_STDOUT_BYTES = 10 * 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024

# Time between SIGTERM and SIGKILL on timeout
TERMINATE_GRACE_SECONDS = 5.0

SpawnCallback = Callable[[int], None]


class ModelNotFoundError(Exception):
    """The CLI rejected the requested model."""

    def __init__(self, model: str, detail: str = ""):
        self.model = model
        self.detail = detail
        super().__init__(f"Model not found: {model}")


@dataclass
class RunResult:
    """Raw result of one CLI process."""
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def combined(self) -> str:
        return self.stderr + self.stdout


async def _read_bounded(stream: asyncio.StreamReader | None, limit: int) -> str:
    """Read a stream to EOF, keeping at most ``limit`` bytes."""
    if stream is None:
        return ""
    kept = bytearray()
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            break
        room = limit - len(kept)
        if room > 0:
            kept.extend(chunk[:room])
    return kept.decode("utf-8", errors="replace")


async def _feed_stdin(stdin: asyncio.StreamWriter | None, data: str) -> None:
    if stdin is None:
        return
    try:
        stdin.write(data.encode("utf-8"))
        await stdin.drain()
        stdin.close()
    except (BrokenPipeError, ConnectionResetError) as e:
        # Child exited without reading; its exit status reports the failure
        logger.debug(f"Child closed stdin early: {e}")


class SubprocessExecutor:
    """Executes prompts through one backend CLI."""

    def __init__(
        self,
        backend: BackendStrategy,
        settings: BackendSettings,
        tracker: ProcessTracker | None = None,
        prompts_dir: Path | None = None,
    ):
        self.backend = backend
        self.settings = settings
        self.tracker = tracker or ProcessTracker()
        self.prompts_dir = prompts_dir if prompts_dir is not None else app_settings.prompts_dir

    @property
    def name(self) -> str:
        return self.backend.name

    async def execute(self, request: JobRequest, on_spawn: SpawnCallback | None = None) -> JobOutcome:
        """Run a request to completion, walking the fallback chain if needed."""
        requested = request.model or self.settings.model
        workdir = request.working_directory or os.getcwd()
        prompt = build_prompt(
            self.prompts_dir,
            self.backend.name,
            request.agent_role,
            request.prompt,
            request.files,
        )

        chain = self.backend.model_chain(requested)
        last_error = ""

        for index, model in enumerate(chain):
            try:
                outcome = await self._execute_with_retry(model, prompt, workdir, on_spawn)
            except ModelNotFoundError as e:
                last_error = f"{e} ({e.detail})" if e.detail else str(e)
                if index < len(chain) - 1:
                    logger.warning(
                        f"{self.backend.display_name} model {model} not found, "
                        f"falling back to {chain[index + 1]}",
                        extra={"backend": self.backend.name, "model": model},
                    )
                    continue
                break

            if index > 0 and outcome.ok:
                outcome.used_fallback = True
                outcome.fallback_model = model
            return outcome

        if len(chain) == 1:
            return JobOutcome(ok=False, error=f"{self.backend.display_name} error: {last_error}", model=requested)
        return JobOutcome(
            ok=False,
            error=f"All models in fallback chain failed. Last error: {last_error}",
            model=chain[-1],
        )

    async def _execute_with_retry(
        self,
        model: str,
        prompt: str,
        workdir: str,
        on_spawn: SpawnCallback | None,
    ) -> JobOutcome:
        """Run one model, retrying rate-limited attempts.

        Raises:
            ModelNotFoundError: If the CLI reports the model does not exist
        """
        display = self.backend.display_name
        cmd = self.backend.build_command(model, workdir)
        timeout_s = self.settings.timeout / 1000
        attempt = 0

        while True:
            log_extra = {"backend": self.backend.name, "model": model, "attempt": attempt}
            logger.info(f"Running {display} with model {model} (attempt {attempt + 1})", extra=log_extra)

            try:
                run = await self._run_once(cmd, prompt, workdir, timeout_s, on_spawn)
            except OSError as e:
                message = str(e)
                if is_rate_limited(message) and attempt < self.settings.retry_count:
                    await self._backoff(attempt, model)
                    attempt += 1
                    continue
                logger.error(f"Failed to start {display}: {message}", extra=log_extra)
                return JobOutcome(ok=False, error=f"{display} spawn error: {message}", model=model)

            if run.timed_out:
                logger.error(f"{display} timed out after {timeout_s:g}s", extra=log_extra)
                return JobOutcome(ok=False, error=f"{display} timed out after {timeout_s:g}s", model=model)

            if run.returncode == 0:
                return JobOutcome(ok=True, result=self.backend.parse_output(run.stdout), model=model)

            kind = classify_failure(run.combined)
            if kind == FailureKind.MODEL_NOT_FOUND:
                raise ModelNotFoundError(model, error_tail(run.combined))
            if kind == FailureKind.RATE_LIMIT and attempt < self.settings.retry_count:
                await self._backoff(attempt, model)
                attempt += 1
                continue

            logger.warning(f"{display} exited with code {run.returncode}", extra=log_extra)
            return JobOutcome(
                ok=False,
                error=f"{display} error (exit {run.returncode}): {error_tail(run.combined)}",
                model=model,
            )

    async def _backoff(self, attempt: int, model: str) -> None:
        delay = retry_delay(attempt, self.settings.retry_delay, self.settings.retry_max_delay)
        logger.warning(
            f"{self.backend.display_name} rate limited, retrying in {delay:.1f}s",
            extra={"backend": self.backend.name, "model": model, "attempt": attempt},
        )
        await asyncio.sleep(delay)

    async def _run_once(
        self,
        cmd: list[str],
        prompt: str,
        workdir: str,
        timeout_s: float,
        on_spawn: SpawnCallback | None,
    ) -> RunResult:
        logger.debug(f"{self.backend.display_name} command: {' '.join(cmd)}")
        logger.debug(f"Prompt length: {len(prompt)} chars")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=workdir,
            env={**os.environ},
        )
        pid = process.pid
        self.tracker.add(pid)
        if on_spawn is not None:
            on_spawn(pid)

        try:
            try:
                async with asyncio.timeout(timeout_s):
                    stdout, stderr, _ = await asyncio.gather(
                        _read_bounded(process.stdout, MAX_STDOUT_BYTES),
                        _read_bounded(process.stderr, MAX_STDOUT_BYTES),
                        _feed_stdin(process.stdin, prompt),
                    )
                    await process.wait()
            except asyncio.TimeoutError:
                await self._terminate(process)
                return RunResult(process.returncode, "", "", timed_out=True)
            except asyncio.CancelledError:
                await self._terminate(process)
                raise
        finally:
            self.tracker.discard(pid)

        return RunResult(process.returncode, stdout, stderr)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL after a grace period."""
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            async with asyncio.timeout(TERMINATE_GRACE_SECONDS):
                await process.wait()
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
