"""State document schemas.

Pydantic models for every persisted document. Field names are snake_case in
Python and camelCase on disk so existing state directories stay readable.
Mode documents carry an explicit ``variant`` discriminant (``plain`` or
``composite``) written when the document is created.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class StateModel(BaseModel):
    """Base for persisted documents: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        validate_assignment=True,
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# RPI
# =============================================================================

class RpiPhase(str, Enum):
    """Workflow phases for one change."""
    INIT = "init"
    RESEARCH = "research"
    PLAN = "plan"
    IMPL = "impl"
    REVIEW = "review"


class ConstraintType(str, Enum):
    HARD = "hard"
    SOFT = "soft"


class ConstraintSource(str, Enum):
    USER = "user"
    CODEX = "codex"
    GEMINI = "gemini"
    CLAUDE = "claude"


class RpiConstraint(StateModel):
    id: str
    type: ConstraintType
    description: str
    source: ConstraintSource = ConstraintSource.USER
    verified: bool = False


class PbtProperty(StateModel):
    """A property-based-test invariant linked to constraints."""
    id: str
    name: str
    description: str = ""
    invariant: str
    related_constraints: list[str] = Field(default_factory=list)


class RpiArtifacts(StateModel):
    proposal: str | None = None
    specs: list[str] = Field(default_factory=list)
    design: list[str] = Field(default_factory=list)
    tasks: str | None = None


class PhaseTransition(StateModel):
    """One accepted phase transition. Append-only."""
    from_phase: RpiPhase = Field(alias="from")
    to_phase: RpiPhase = Field(alias="to")
    timestamp: str = Field(default_factory=utc_now_iso)
    reason: str = ""


class RpiState(StateModel):
    phase: RpiPhase = RpiPhase.INIT
    change_id: str | None = None
    change_name: str | None = None
    constraints: list[RpiConstraint] = Field(default_factory=list)
    decisions: dict[str, str] = Field(default_factory=dict)
    pbt_properties: list[PbtProperty] = Field(default_factory=list)
    artifacts: RpiArtifacts = Field(default_factory=RpiArtifacts)
    history: list[PhaseTransition] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


# =============================================================================
# Orchestration modes
# =============================================================================

class OrchestrationMode(str, Enum):
    RALPH = "ralph"
    TEAM = "team"
    AUTOPILOT = "autopilot"


class RalphVerification(StateModel):
    passed: bool
    tests: bool = False
    build: bool = False
    lsp: bool = False
    issues: list[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_now_iso)


class LinkedTeam(StateModel):
    """Read-only snapshot of team progress attached to a Ralph run."""
    enabled: bool = True
    team_name: str | None = None
    workers: int = 0
    completed_tasks: int = 0
    total_tasks: int = 0


class _RalphFields(StateModel):
    mode: Literal["ralph"] = "ralph"
    active: bool = True
    iteration: int = 0
    max_iterations: int = 10
    last_verification: RalphVerification | None = None
    started_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class RalphState(_RalphFields):
    variant: Literal["plain"] = "plain"


class TeamRalphState(_RalphFields):
    variant: Literal["composite"] = "composite"
    linked_team: LinkedTeam = Field(default_factory=LinkedTeam)


class TaskDomain(str, Enum):
    FRONTEND = "frontend"
    BACKEND = "backend"
    FULLSTACK = "fullstack"
    GENERAL = "general"


class TeamTaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TeamTask(StateModel):
    """A node in the team task DAG."""
    id: str
    title: str = ""
    description: str = ""
    domain: TaskDomain = TaskDomain.GENERAL
    dependencies: list[str] = Field(default_factory=list)
    status: TeamTaskStatus = TeamTaskStatus.PENDING
    assignee: str | None = None


class TeamState(StateModel):
    mode: Literal["team"] = "team"
    variant: Literal["plain"] = "plain"
    active: bool = True
    team_name: str
    workers: int = 0
    completed_tasks: int = 0
    total_tasks: int = 0
    tasks: list[TeamTask] = Field(default_factory=list)
    started_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class _AutopilotFields(StateModel):
    mode: Literal["autopilot"] = "autopilot"
    active: bool = True
    rpi_phase: RpiPhase = RpiPhase.INIT
    auto_transition: bool = True
    started_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class AutopilotState(_AutopilotFields):
    variant: Literal["plain"] = "plain"


class AutopilotCompositeState(_AutopilotFields):
    variant: Literal["composite"] = "composite"
    linked_ralph: bool = False
    linked_team: bool = False
    context_percent: float = 0
    phases_completed: list[RpiPhase] = Field(default_factory=list)
    current_action: str | None = None


RalphDocument = Annotated[Union[RalphState, TeamRalphState], Field(discriminator="variant")]
AutopilotDocument = Annotated[
    Union[AutopilotState, AutopilotCompositeState], Field(discriminator="variant")
]
ModeDocument = Union[RalphState, TeamRalphState, TeamState, AutopilotState, AutopilotCompositeState]

MODE_ADAPTERS: dict[OrchestrationMode, TypeAdapter] = {
    OrchestrationMode.RALPH: TypeAdapter(RalphDocument),
    OrchestrationMode.TEAM: TypeAdapter(TeamState),
    OrchestrationMode.AUTOPILOT: TypeAdapter(AutopilotDocument),
}

# Documents written before the variant tag existed are tagged by the
# field that only their composite form carries.
_LEGACY_COMPOSITE_MARKERS = {
    OrchestrationMode.RALPH: "linkedTeam",
    OrchestrationMode.AUTOPILOT: "phasesCompleted",
}


def tag_legacy_document(mode: OrchestrationMode, data: dict[str, Any]) -> dict[str, Any]:
    """Add the ``variant`` tag to an untagged legacy document."""
    if "variant" in data:
        return data
    marker = _LEGACY_COMPOSITE_MARKERS.get(mode)
    tagged = dict(data)
    tagged["variant"] = "composite" if marker and marker in data else "plain"
    return tagged
