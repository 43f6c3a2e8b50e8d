"""Tools for reading workflow state and driving RPI transitions."""

from pathlib import Path
from typing import Any

from ohmyccg.rpi.engine import RpiEngine
from ohmyccg.state.manager import StateManager
from ohmyccg.state.models import ConstraintSource, ConstraintType, OrchestrationMode, RpiPhase
from ohmyccg.tools.base import Tool, ToolParameter, ToolResult, require_arguments

HUD_DOCUMENT = "hud-state"

WORK_DIR_PARAMETER = ToolParameter(
    name="work_dir",
    type="string",
    description="Project directory (default: current directory)",
    required=False,
)


def resolve_work_dir(kwargs: dict[str, Any], default: Path) -> Path:
    value = kwargs.get("work_dir")
    return Path(value) if value else default


class RpiStateReadTool(Tool):
    def __init__(self, default_workdir: Path) -> None:
        self.default_workdir = default_workdir
        super().__init__(
            id="rpi_state_read",
            name="Read RPI State",
            description="Read the RPI workflow state (phase, constraints, decisions, artifacts).",
            parameters=[WORK_DIR_PARAMETER],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        rpi = StateManager(resolve_work_dir(kwargs, self.default_workdir)).get_rpi_state()
        if rpi is None:
            return ToolResult.fail("No RPI state found")
        return ToolResult.ok(rpi.to_document())


class RpiTransitionTool(Tool):
    def __init__(self, default_workdir: Path) -> None:
        self.default_workdir = default_workdir
        super().__init__(
            id="rpi_transition",
            name="RPI Transition",
            description="Move the RPI workflow to another phase. Illegal transitions are rejected.",
            parameters=[
                WORK_DIR_PARAMETER,
                ToolParameter(
                    name="target",
                    type="string",
                    description="Phase to move to",
                    enum=[p.value for p in RpiPhase],
                ),
                ToolParameter(
                    name="reason",
                    type="string",
                    description="Why the phase is changing",
                    required=False,
                    default="",
                ),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        engine = RpiEngine(resolve_work_dir(kwargs, self.default_workdir))
        rpi = engine.transition(kwargs["target"], kwargs.get("reason", ""))
        return ToolResult.ok({
            "phase": rpi.phase.value,
            "history": [h.to_document() for h in rpi.history],
        })


class ModeStateReadTool(Tool):
    def __init__(self, default_workdir: Path) -> None:
        self.default_workdir = default_workdir
        super().__init__(
            id="mode_state_read",
            name="Read Mode State",
            description="Read orchestration mode state (ralph, team, autopilot).",
            parameters=[
                WORK_DIR_PARAMETER,
                ToolParameter(
                    name="mode",
                    type="string",
                    description="Mode to read",
                    enum=[m.value for m in OrchestrationMode],
                ),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        mode = OrchestrationMode(kwargs["mode"])
        state = StateManager(resolve_work_dir(kwargs, self.default_workdir)).get_mode_state(mode)
        if state is None:
            return ToolResult.fail(f"No {mode.value} state found")
        return ToolResult.ok(state.to_document())


class HudStateReadTool(Tool):
    """Compact status for a heads-up display."""

    def __init__(self, default_workdir: Path) -> None:
        self.default_workdir = default_workdir
        super().__init__(
            id="hud_state_read",
            name="Read HUD State",
            description="Read HUD metrics plus a compact view of RPI and mode state.",
            parameters=[WORK_DIR_PARAMETER],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        manager = StateManager(resolve_work_dir(kwargs, self.default_workdir))
        rpi = manager.get_rpi_state()
        ralph = manager.get_mode_state(OrchestrationMode.RALPH)
        team = manager.get_mode_state(OrchestrationMode.TEAM)
        autopilot = manager.get_mode_state(OrchestrationMode.AUTOPILOT)

        return ToolResult.ok({
            "hud": manager.store.read(HUD_DOCUMENT) or {},
            "rpi_phase": rpi.phase.value if rpi else None,
            "change_name": rpi.change_name if rpi else None,
            "ralph": {
                "iteration": ralph.iteration,
                "max_iterations": ralph.max_iterations,
                "active": ralph.active,
            } if ralph else None,
            "team": {
                "workers": team.workers,
                "completed_tasks": team.completed_tasks,
                "total_tasks": team.total_tasks,
                "active": team.active,
            } if team else None,
            "autopilot": {
                "phase": autopilot.rpi_phase.value,
                "active": autopilot.active,
            } if autopilot else None,
            "active_modes": manager.get_active_modes(),
        })


RPI_WRITE_ACTIONS = [
    "init",
    "start_research",
    "add_constraint",
    "verify_constraint",
    "record_decision",
    "add_pbt_property",
    "set_proposal",
    "add_spec",
    "add_design",
    "set_tasks",
    "reset",
]

# Artifact setters that take a single path
_ARTIFACT_ACTIONS = ("set_proposal", "add_spec", "add_design", "set_tasks")


class RpiStateWriteTool(Tool):
    """Record constraints, decisions, properties and artifacts on the RPI state."""

    def __init__(self, default_workdir: Path) -> None:
        self.default_workdir = default_workdir
        super().__init__(
            id="rpi_state_write",
            name="Write RPI State",
            description=(
                "Update the RPI workflow: init, add constraints and PBT properties, record "
                "decisions, and register artifacts. Use rpi_transition to change phase."
            ),
            parameters=[
                WORK_DIR_PARAMETER,
                ToolParameter(name="action", type="string", description="Operation to run", enum=RPI_WRITE_ACTIONS),
                ToolParameter(
                    name="change_name", type="string", description="Change for init and start_research", required=False
                ),
                ToolParameter(
                    name="constraint_type",
                    type="string",
                    description="Constraint type for add_constraint",
                    required=False,
                    enum=[t.value for t in ConstraintType],
                ),
                ToolParameter(
                    name="source",
                    type="string",
                    description="Who found the constraint (default: user)",
                    required=False,
                    enum=[s.value for s in ConstraintSource],
                ),
                ToolParameter(
                    name="description",
                    type="string",
                    description="Text for add_constraint and add_pbt_property",
                    required=False,
                ),
                ToolParameter(
                    name="constraint_id", type="string", description="Id for verify_constraint", required=False
                ),
                ToolParameter(name="key", type="string", description="Decision key", required=False),
                ToolParameter(name="value", type="string", description="Decision value", required=False),
                ToolParameter(name="name", type="string", description="Property name", required=False),
                ToolParameter(name="invariant", type="string", description="Property invariant", required=False),
                ToolParameter(
                    name="related_constraints",
                    type="array",
                    description="Constraint ids the property covers",
                    required=False,
                ),
                ToolParameter(name="path", type="string", description="Artifact path", required=False),
            ],
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        engine = RpiEngine(resolve_work_dir(kwargs, self.default_workdir))
        action = kwargs["action"]
        response: dict[str, Any] = {}

        if action == "init":
            engine.init(kwargs.get("change_name"))
        elif action == "start_research":
            require_arguments(kwargs, action, "change_name")
            engine.start_research(kwargs["change_name"])
        elif action == "add_constraint":
            require_arguments(kwargs, action, "constraint_type", "description")
            constraint = engine.add_constraint(
                kwargs["constraint_type"],
                kwargs["description"],
                kwargs.get("source") or ConstraintSource.USER,
            )
            response["constraint"] = constraint.to_document()
        elif action == "verify_constraint":
            require_arguments(kwargs, action, "constraint_id")
            engine.verify_constraint(kwargs["constraint_id"])
        elif action == "record_decision":
            require_arguments(kwargs, action, "key", "value")
            engine.record_decision(kwargs["key"], kwargs["value"])
        elif action == "add_pbt_property":
            require_arguments(kwargs, action, "name", "invariant")
            prop = engine.add_pbt_property(
                kwargs["name"],
                kwargs["invariant"],
                kwargs.get("description") or "",
                kwargs.get("related_constraints"),
            )
            response["property"] = prop.to_document()
        elif action in _ARTIFACT_ACTIONS:
            require_arguments(kwargs, action, "path")
            getattr(engine, action)(kwargs["path"])
        elif action == "reset":
            engine.reset()

        state = engine.get_state()
        response["state"] = state.to_document() if state else None
        return ToolResult.ok(response)
