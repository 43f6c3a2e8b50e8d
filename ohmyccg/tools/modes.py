"""Tools driving the Ralph, Team and Autopilot modes.

Each tool takes an ``action`` and forwards to the matching mode engine, so
every change goes through the same validation as in-process callers.
"""

from pathlib import Path
from typing import Any

from ohmyccg.modes.autopilot import AutopilotEngine
from ohmyccg.modes.ralph import RalphLoop
from ohmyccg.modes.team import TeamOrchestrator
from ohmyccg.state.models import RpiPhase, TeamTask, TeamTaskStatus
from ohmyccg.tools.base import Tool, ToolParameter, ToolResult, require_arguments
from ohmyccg.tools.state import WORK_DIR_PARAMETER, resolve_work_dir

RALPH_ACTIONS = [
    "start",
    "start_with_team",
    "next_iteration",
    "record_verification",
    "should_continue",
    "cancel",
    "reset",
    "summary",
]

TEAM_ACTIONS = ["create", "update_task", "ready_tasks", "route", "progress", "cleanup"]

AUTOPILOT_ACTIONS = [
    "start",
    "start_composite",
    "advance",
    "run_phase",
    "record_phase",
    "set_action",
    "check_context",
    "cancel",
    "reset",
    "summary",
]


def _document(state: Any) -> dict[str, Any] | None:
    return state.to_document() if state is not None else None


class RalphControlTool(Tool):
    """Drive the Ralph execute, verify, fix loop."""

    def __init__(self, default_workdir: Path) -> None:
        self.default_workdir = default_workdir
        super().__init__(
            id="ralph_control",
            name="Ralph Control",
            description=(
                "Start, advance and verify the Ralph loop. "
                "Budgets default to ralph.maxIterations from the project config."
            ),
            parameters=[
                WORK_DIR_PARAMETER,
                ToolParameter(name="action", type="string", description="Operation to run", enum=RALPH_ACTIONS),
                ToolParameter(
                    name="max_iterations", type="number", description="Iteration budget for start", required=False
                ),
                ToolParameter(name="team_name", type="string", description="Team for start_with_team", required=False),
                ToolParameter(
                    name="total_tasks",
                    type="number",
                    description="Team task count for start_with_team",
                    required=False,
                    default=0,
                ),
                ToolParameter(name="passed", type="boolean", description="Verification passed", required=False),
                ToolParameter(name="tests", type="boolean", description="Tests passed", required=False, default=False),
                ToolParameter(name="build", type="boolean", description="Build passed", required=False, default=False),
                ToolParameter(name="lsp", type="boolean", description="LSP clean", required=False, default=False),
                ToolParameter(name="issues", type="array", description="Open issues", required=False),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        ralph = RalphLoop(resolve_work_dir(kwargs, self.default_workdir))
        action = kwargs["action"]
        max_iterations = kwargs.get("max_iterations")
        max_iterations = int(max_iterations) if max_iterations is not None else None

        if action == "start":
            return ToolResult.ok({"state": ralph.start(max_iterations).to_document()})

        if action == "start_with_team":
            require_arguments(kwargs, action, "team_name")
            state = ralph.start_with_team(kwargs["team_name"], max_iterations, int(kwargs.get("total_tasks", 0)))
            return ToolResult.ok({"state": state.to_document()})

        if action == "next_iteration":
            return ToolResult.ok({"state": ralph.next_iteration().to_document()})

        if action == "record_verification":
            require_arguments(kwargs, action, "passed")
            state = ralph.record_verification(
                passed=bool(kwargs["passed"]),
                tests=bool(kwargs.get("tests")),
                build=bool(kwargs.get("build")),
                lsp=bool(kwargs.get("lsp")),
                issues=list(kwargs.get("issues") or []),
            )
            return ToolResult.ok({"state": state.to_document()})

        if action == "should_continue":
            return ToolResult.ok(ralph.should_continue())

        if action == "cancel":
            ralph.cancel()
            return ToolResult.ok({"state": _document(ralph.get_state())})

        if action == "reset":
            ralph.reset()
            return ToolResult.ok({"state": None})

        return ToolResult.ok({"summary": ralph.get_summary()})


class TeamControlTool(Tool):
    """Create and update a team task graph."""

    def __init__(self, default_workdir: Path) -> None:
        self.default_workdir = default_workdir
        super().__init__(
            id="team_control",
            name="Team Control",
            description=(
                "Create a team task DAG, update task status, and list ready tasks with their "
                "model routing."
            ),
            parameters=[
                WORK_DIR_PARAMETER,
                ToolParameter(name="action", type="string", description="Operation to run", enum=TEAM_ACTIONS),
                ToolParameter(name="team_name", type="string", description="Team name for create", required=False),
                ToolParameter(
                    name="tasks",
                    type="array",
                    description="Tasks for create: objects with id, title, domain, dependencies",
                    required=False,
                ),
                ToolParameter(name="task_id", type="string", description="Task for update_task", required=False),
                ToolParameter(
                    name="status",
                    type="string",
                    description="New status for update_task",
                    required=False,
                    enum=[s.value for s in TeamTaskStatus],
                ),
                ToolParameter(name="assignee", type="string", description="Worker for update_task", required=False),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        team = TeamOrchestrator(resolve_work_dir(kwargs, self.default_workdir))
        action = kwargs["action"]

        if action == "create":
            require_arguments(kwargs, action, "team_name", "tasks")
            tasks = [TeamTask.model_validate(task) for task in kwargs["tasks"]]
            return ToolResult.ok({"state": team.create_team(kwargs["team_name"], tasks).to_document()})

        if team.load() is None:
            return ToolResult.fail("No team state found")

        if action == "update_task":
            require_arguments(kwargs, action, "task_id", "status")
            task = team.update_task(kwargs["task_id"], kwargs["status"], kwargs.get("assignee"))
            return ToolResult.ok({"task": task.to_document(), "progress": team.get_progress()})

        if action == "ready_tasks":
            return ToolResult.ok({"tasks": [task.to_document() for task in team.get_ready_tasks()]})

        if action == "route":
            return ToolResult.ok({
                "routes": [
                    {"task_id": task.id, **decision.to_dict()}
                    for task, decision in team.route_workers()
                ]
            })

        if action == "progress":
            return ToolResult.ok({
                "progress": team.get_progress(),
                "complete": team.is_complete(),
                "has_failures": team.has_failures(),
            })

        team.cleanup()
        return ToolResult.ok({"state": None})


class AutopilotControlTool(Tool):
    """Drive autopilot through the RPI phases."""

    def __init__(self, default_workdir: Path) -> None:
        self.default_workdir = default_workdir
        super().__init__(
            id="autopilot_control",
            name="Autopilot Control",
            description=(
                "Start autopilot, advance it through init, research, plan, impl and review, "
                "and check context usage."
            ),
            parameters=[
                WORK_DIR_PARAMETER,
                ToolParameter(name="action", type="string", description="Operation to run", enum=AUTOPILOT_ACTIONS),
                ToolParameter(name="requirement", type="string", description="Change being built", required=False),
                ToolParameter(name="linked_ralph", type="boolean", description="Link Ralph into impl", required=False),
                ToolParameter(name="linked_team", type="boolean", description="Link Team into impl", required=False),
                ToolParameter(
                    name="phase",
                    type="string",
                    description="Phase for run_phase and record_phase",
                    required=False,
                    enum=[p.value for p in RpiPhase],
                ),
                ToolParameter(name="current_action", type="string", description="Text for set_action", required=False),
                ToolParameter(
                    name="context_percent", type="number", description="Context usage for check_context", required=False
                ),
                ToolParameter(
                    name="threshold",
                    type="number",
                    description="Clear threshold (default: autopilot.contextThreshold)",
                    required=False,
                ),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        autopilot = AutopilotEngine(resolve_work_dir(kwargs, self.default_workdir))
        action = kwargs["action"]

        if action == "start":
            return ToolResult.ok({"state": autopilot.start(kwargs.get("requirement")).to_document()})

        if action == "start_composite":
            state = autopilot.start_composite(
                kwargs.get("requirement"),
                linked_ralph=kwargs.get("linked_ralph"),
                linked_team=kwargs.get("linked_team"),
            )
            return ToolResult.ok({"state": state.to_document()})

        if action == "advance":
            step = autopilot.advance_phase()
            return ToolResult.ok({
                "next_phase": step["next_phase"].value,
                "auto_transition": step["auto_transition"],
                "state": _document(autopilot.get_state()),
            })

        if action == "run_phase":
            require_arguments(kwargs, action, "phase")
            return ToolResult.ok({"phase": kwargs["phase"], "instructions": autopilot.run_phase(kwargs["phase"])})

        if action == "record_phase":
            require_arguments(kwargs, action, "phase")
            autopilot.record_phase_completion(kwargs["phase"])
            return ToolResult.ok({"state": _document(autopilot.get_state())})

        if action == "set_action":
            require_arguments(kwargs, action, "current_action")
            autopilot.set_current_action(kwargs["current_action"])
            return ToolResult.ok({"state": _document(autopilot.get_state())})

        if action == "check_context":
            require_arguments(kwargs, action, "context_percent")
            threshold = kwargs.get("threshold")
            return ToolResult.ok(autopilot.check_context_usage(
                float(kwargs["context_percent"]),
                float(threshold) if threshold is not None else None,
            ))

        if action == "cancel":
            autopilot.cancel()
            return ToolResult.ok({"state": _document(autopilot.get_state())})

        if action == "reset":
            autopilot.reset()
            return ToolResult.ok({"state": None})

        return ToolResult.ok({"summary": autopilot.get_summary()})
