"""Tool-call boundary: ``{toolName, arguments}`` in, JSON or ``{error}`` out."""

from pathlib import Path

from ohmyccg.jobs.registry import JobRegistry
from ohmyccg.tools.base import Tool, ToolParameter, ToolRegistry, ToolResult
from ohmyccg.tools.jobs import (
    AskModelTool,
    CheckJobStatusTool,
    KillJobTool,
    ListJobsTool,
    WaitForJobTool,
)
from ohmyccg.tools.modes import AutopilotControlTool, RalphControlTool, TeamControlTool
from ohmyccg.tools.state import (
    HudStateReadTool,
    ModeStateReadTool,
    RpiStateReadTool,
    RpiStateWriteTool,
    RpiTransitionTool,
)


def build_tool_registry(jobs: JobRegistry, default_workdir: Path | str | None = None) -> ToolRegistry:
    """All tools, wired to one job registry.

    ``ask_*`` tools are registered only for backends with an executor.
    """
    workdir = Path(default_workdir) if default_workdir else Path.cwd()
    registry = ToolRegistry()

    for backend in jobs.executors:
        registry.register(AskModelTool(jobs, backend))

    registry.register(WaitForJobTool(jobs))
    registry.register(CheckJobStatusTool(jobs))
    registry.register(KillJobTool(jobs))
    registry.register(ListJobsTool(jobs))

    registry.register(RpiStateReadTool(workdir))
    registry.register(RpiStateWriteTool(workdir))
    registry.register(RpiTransitionTool(workdir))
    registry.register(ModeStateReadTool(workdir))
    registry.register(HudStateReadTool(workdir))

    registry.register(RalphControlTool(workdir))
    registry.register(TeamControlTool(workdir))
    registry.register(AutopilotControlTool(workdir))
    return registry


__all__ = [
    "Tool",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "build_tool_registry",
]
