"""Tools for asking external models and managing background jobs."""

from typing import Any

from ohmyccg.jobs.models import Job, JobRequest, JobStatus
from ohmyccg.jobs.registry import LIST_FILTERS, JobNotFoundError, JobRegistry
from ohmyccg.jobs.process import ALLOWED_SIGNALS
from ohmyccg.tools.base import Tool, ToolParameter, ToolResult

RESULT_PREVIEW_CHARS = 500


def _model_parameters(default_model: str) -> list[ToolParameter]:
    return [
        ToolParameter(
            name="prompt",
            type="string",
            description="Prompt to send",
        ),
        ToolParameter(
            name="agent_role",
            type="string",
            description="Role template to prepend (e.g. architect, designer)",
            required=False,
        ),
        ToolParameter(
            name="files",
            type="array",
            description="File paths to attach as context",
            required=False,
        ),
        ToolParameter(
            name="working_directory",
            type="string",
            description="Directory the CLI runs in",
            required=False,
        ),
        ToolParameter(
            name="model",
            type="string",
            description=f"Model override (default: {default_model})",
            required=False,
        ),
        ToolParameter(
            name="background",
            type="boolean",
            description="Run as a background job and return a job id",
            required=False,
            default=False,
        ),
    ]


class AskModelTool(Tool):
    """Send a prompt to one external model backend."""

    def __init__(self, jobs: JobRegistry, backend: str) -> None:
        self.jobs = jobs
        self.backend = backend
        executor = jobs.executors[backend]
        display = executor.backend.display_name
        super().__init__(
            id=f"ask_{backend}",
            name=f"Ask {display}",
            description=(
                f"Send a prompt to {display} CLI. Set background=true to get a job id "
                "and collect the result with wait_for_job or check_job_status."
            ),
            parameters=_model_parameters(executor.settings.model),
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        request = JobRequest(
            prompt=kwargs["prompt"],
            agent_role=kwargs.get("agent_role") or "",
            files=list(kwargs.get("files") or []),
            working_directory=kwargs.get("working_directory"),
            model=kwargs.get("model"),
        )

        if kwargs.get("background"):
            job_id = self.jobs.dispatch(self.backend, request)
            return ToolResult.ok({
                "job_id": job_id,
                "status": JobStatus.SPAWNED.value,
                "message": "Use wait_for_job or check_job_status to get results.",
            })

        outcome = await self.jobs.executors[self.backend].execute(request)
        if not outcome.ok:
            return ToolResult.fail(outcome.error or "Unknown error")
        return ToolResult.ok(outcome.to_dict())


def _terminal_response(job: Job) -> dict[str, Any]:
    response: dict[str, Any] = {
        "job_id": job.id,
        "status": job.status.value,
        "model": job.model,
        "agent_role": job.agent_role,
    }
    if job.status == JobStatus.COMPLETED:
        response["result"] = job.result
        if job.used_fallback:
            response["used_fallback"] = True
            response["fallback_model"] = job.fallback_model
    else:
        response["error"] = job.error
    return response


class WaitForJobTool(Tool):
    """Block until a background job finishes."""

    def __init__(self, jobs: JobRegistry) -> None:
        self.jobs = jobs
        super().__init__(
            id="wait_for_job",
            name="Wait For Job",
            description=(
                "Poll until a background job reaches a terminal state (completed, failed, timeout), "
                "with exponential backoff. Blocks the caller for the duration."
            ),
            parameters=[
                ToolParameter(name="job_id", type="string", description="Job id from a background ask"),
                ToolParameter(
                    name="timeout_ms",
                    type="number",
                    description=(
                        f"Max wait time in ms (default: {jobs.default_wait_timeout_ms}, "
                        f"max: {jobs.max_wait_timeout_ms})"
                    ),
                    required=False,
                ),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        timeout_ms = kwargs.get("timeout_ms")
        job = await self.jobs.poll_until_terminal(kwargs["job_id"], int(timeout_ms) if timeout_ms else None)
        return ToolResult.ok(_terminal_response(job))


class CheckJobStatusTool(Tool):
    """Non-blocking status check."""

    def __init__(self, jobs: JobRegistry) -> None:
        self.jobs = jobs
        super().__init__(
            id="check_job_status",
            name="Check Job Status",
            description="Return the current status of a background job without waiting.",
            parameters=[
                ToolParameter(name="job_id", type="string", description="Job id from a background ask"),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        job = self.jobs.poll_once(kwargs["job_id"])
        if job is None:
            raise JobNotFoundError(kwargs["job_id"])

        response = job.to_dict()
        result = response.pop("result", None)
        if result is not None:
            response["result_preview"] = result[:RESULT_PREVIEW_CHARS]
        return ToolResult.ok(response)


class KillJobTool(Tool):
    """Cancel a running background job."""

    def __init__(self, jobs: JobRegistry) -> None:
        self.jobs = jobs
        super().__init__(
            id="kill_job",
            name="Kill Job",
            description="Kill a running background job. Only spawned or running jobs can be killed.",
            parameters=[
                ToolParameter(name="job_id", type="string", description="Job id to kill"),
                ToolParameter(
                    name="signal",
                    type="string",
                    description="Signal to send (default: SIGTERM)",
                    required=False,
                    default="SIGTERM",
                    enum=list(ALLOWED_SIGNALS),
                ),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        signal = kwargs.get("signal") or "SIGTERM"
        job = self.jobs.cancel(kwargs["job_id"], signal)
        return ToolResult.ok({
            "job_id": job.id,
            "status": job.status.value,
            "message": f"Job killed with {signal}",
        })


class ListJobsTool(Tool):
    """List background jobs."""

    def __init__(self, jobs: JobRegistry) -> None:
        self.jobs = jobs
        super().__init__(
            id="list_jobs",
            name="List Jobs",
            description="List background jobs, newest first.",
            parameters=[
                ToolParameter(
                    name="status_filter",
                    type="string",
                    description="Which jobs to list (default: active)",
                    required=False,
                    default="active",
                    enum=list(LIST_FILTERS),
                ),
                ToolParameter(
                    name="limit",
                    type="number",
                    description="Max jobs to return (default: 50, max: 200)",
                    required=False,
                    default=50,
                ),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        jobs = self.jobs.list(kwargs.get("status_filter", "active"), int(kwargs.get("limit", 50)))
        summaries = [job.summary() for job in jobs]
        return ToolResult.ok({"jobs": summaries, "total": len(summaries)})
