"""Background execution of prompts through external model CLIs."""

from ohmyccg.jobs.backends import BackendStrategy, CodexBackend, GeminiBackend, extract_last_message
from ohmyccg.jobs.executor import ModelNotFoundError, SubprocessExecutor
from ohmyccg.jobs.models import Job, JobOutcome, JobRequest, JobStatus
from ohmyccg.jobs.process import ProcessTracker
from ohmyccg.jobs.registry import (
    JobFinished,
    JobKilled,
    JobNotFoundError,
    JobRegistry,
    JobSpawned,
    JobStarted,
    JobStateError,
    JobTimedOut,
    build_default_registry,
)

__all__ = [
    "BackendStrategy",
    "CodexBackend",
    "GeminiBackend",
    "extract_last_message",
    "ModelNotFoundError",
    "SubprocessExecutor",
    "Job",
    "JobOutcome",
    "JobRequest",
    "JobStatus",
    "ProcessTracker",
    "JobFinished",
    "JobKilled",
    "JobNotFoundError",
    "JobRegistry",
    "JobSpawned",
    "JobStarted",
    "JobStateError",
    "JobTimedOut",
    "build_default_registry",
]
