"""Orchestration modes layered on the state store and RPI engine."""

from ohmyccg.modes.autopilot import PHASE_ORDER, AutopilotEngine
from ohmyccg.modes.ralph import ModeNotActiveError, RalphLoop
from ohmyccg.modes.team import TaskNotFoundError, TeamOrchestrator

__all__ = [
    "PHASE_ORDER",
    "AutopilotEngine",
    "ModeNotActiveError",
    "RalphLoop",
    "TaskNotFoundError",
    "TeamOrchestrator",
]
