"""Persistent state documents for RPI and orchestration modes."""

from ohmyccg.state.manager import StateManager
from ohmyccg.state.models import (
    AutopilotCompositeState,
    AutopilotState,
    ConstraintSource,
    ConstraintType,
    LinkedTeam,
    OrchestrationMode,
    PbtProperty,
    PhaseTransition,
    RalphState,
    RalphVerification,
    RpiArtifacts,
    RpiConstraint,
    RpiPhase,
    RpiState,
    TaskDomain,
    TeamRalphState,
    TeamState,
    TeamTask,
    TeamTaskStatus,
)
from ohmyccg.state.store import StateStore

__all__ = [
    "AutopilotCompositeState",
    "AutopilotState",
    "ConstraintSource",
    "ConstraintType",
    "LinkedTeam",
    "OrchestrationMode",
    "PbtProperty",
    "PhaseTransition",
    "RalphState",
    "RalphVerification",
    "RpiArtifacts",
    "RpiConstraint",
    "RpiPhase",
    "RpiState",
    "StateManager",
    "StateStore",
    "TaskDomain",
    "TeamRalphState",
    "TeamState",
    "TeamTask",
    "TeamTaskStatus",
]
