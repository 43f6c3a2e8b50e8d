"""Autopilot: drives the RPI engine through its phases.

``advance_phase`` walks init -> research -> plan -> impl -> review. Advancing
past review deactivates autopilot and reports ``review`` again with
``auto_transition`` off; that is the signal that the run is finished.

In composite mode autopilot also records which phases are done, the current
action, the last observed context usage, and whether Ralph and Team should
be linked into implementation.
"""

import logging
from pathlib import Path

from ohmyccg.config import ProjectConfig, load_project_config
from ohmyccg.rpi.engine import RpiEngine
from ohmyccg.modes.ralph import ModeNotActiveError
from ohmyccg.state.manager import StateManager
from ohmyccg.state.models import (
    AutopilotCompositeState,
    AutopilotState,
    OrchestrationMode,
    RpiPhase,
)

logger = logging.getLogger(__name__)

PHASE_ORDER: tuple[RpiPhase, ...] = (
    RpiPhase.INIT,
    RpiPhase.RESEARCH,
    RpiPhase.PLAN,
    RpiPhase.IMPL,
    RpiPhase.REVIEW,
)

PHASE_INSTRUCTIONS: dict[RpiPhase, str] = {
    RpiPhase.INIT: "Initialize RPI state and gather requirements. Run /oh-my-ccg:init to set up the change.",
    RpiPhase.RESEARCH: (
        "Run CCG research phase: launch Codex and Gemini in parallel to explore constraints. "
        "Use /ccg:spec-research."
    ),
    RpiPhase.PLAN: "Run CCG planning phase: eliminate ambiguities, extract PBT properties. Use /ccg:spec-plan.",
    RpiPhase.IMPL: (
        "Run CCG implementation phase: route tasks to appropriate model, rewrite prototypes to "
        "production code. Use /ccg:spec-impl."
    ),
    RpiPhase.REVIEW: (
        "Run CCG review phase: dual-model cross-validation with Codex and Gemini in parallel. "
        "Use /ccg:spec-review."
    ),
}

# Implementation instructions keyed by (linked_ralph, linked_team)
LINKED_IMPL_INSTRUCTIONS: dict[tuple[bool, bool], str] = {
    (True, True): (
        "Spawn Team workers for parallel implementation tasks, then wrap in Ralph "
        "execute→verify→fix loop until all tasks verified."
    ),
    (False, True): "Spawn Team workers for parallel implementation tasks. Monitor progress and complete all tasks.",
    (True, False): (
        "Wrap implementation in Ralph execute→verify→fix loop: implement, verify "
        "(tests+build+LSP), fix issues, repeat until passing."
    ),
}


class AutopilotEngine:
    """Phase auto-advancer persisted in ``autopilot-state``."""

    def __init__(
        self,
        workdir: Path | str,
        state: StateManager | None = None,
        rpi: RpiEngine | None = None,
        config: ProjectConfig | None = None,
    ) -> None:
        self.state = state or StateManager(workdir)
        self.config = config or load_project_config(workdir)
        self.rpi = rpi or RpiEngine(workdir, self.state)

    # ── Lifecycle ──────────────────────────────────────

    def start(self, requirement: str | None = None) -> AutopilotState:
        self.rpi.init(requirement)
        autopilot = AutopilotState(rpi_phase=self.rpi.get_current_phase() or RpiPhase.INIT)
        self.state.save_mode_state(autopilot)
        logger.info("Autopilot started", extra={"mode": "autopilot", "phase": autopilot.rpi_phase.value})
        return autopilot

    def start_composite(
        self,
        requirement: str | None = None,
        linked_ralph: bool | None = None,
        linked_team: bool | None = None,
    ) -> AutopilotCompositeState:
        """Start with Ralph and Team links. Unset links come from the project config."""
        if linked_ralph is None:
            linked_ralph = self.config.autopilot.linked_ralph
        if linked_team is None:
            linked_team = self.config.autopilot.linked_team
        self.rpi.init(requirement)
        composite = AutopilotCompositeState(
            rpi_phase=self.rpi.get_current_phase() or RpiPhase.INIT,
            linked_ralph=linked_ralph,
            linked_team=linked_team,
        )
        self.state.save_mode_state(composite)
        logger.info(
            f"Autopilot started in composite mode (ralph={linked_ralph}, team={linked_team})",
            extra={"mode": "autopilot"},
        )
        return composite

    def get_state(self) -> AutopilotState | AutopilotCompositeState | None:
        return self.state.get_mode_state(OrchestrationMode.AUTOPILOT)

    def get_composite_state(self) -> AutopilotCompositeState | None:
        autopilot = self.get_state()
        return autopilot if isinstance(autopilot, AutopilotCompositeState) else None

    def cancel(self) -> None:
        autopilot = self.get_state()
        if autopilot is not None:
            autopilot.active = False
            self.state.save_mode_state(autopilot)

    def reset(self) -> None:
        self.state.clear_mode_state(OrchestrationMode.AUTOPILOT)

    # ── Phases ─────────────────────────────────────────

    def advance_phase(self) -> dict:
        """Transition the RPI engine to the next phase.

        Returns ``{"next_phase", "auto_transition"}``. Past review, autopilot
        is deactivated and ``review`` is returned with ``auto_transition``
        False.

        Raises:
            ModeNotActiveError: If autopilot is not active
        """
        autopilot = self.get_state()
        if autopilot is None or not autopilot.active:
            raise ModeNotActiveError("Autopilot not active.")

        current = self.rpi.get_current_phase() or RpiPhase.INIT
        index = PHASE_ORDER.index(current)

        if index + 1 >= len(PHASE_ORDER):
            autopilot.active = False
            if isinstance(autopilot, AutopilotCompositeState) and current not in autopilot.phases_completed:
                autopilot.phases_completed.append(current)
                autopilot.current_action = None
            self.state.save_mode_state(autopilot)
            logger.info("Autopilot finished all phases", extra={"mode": "autopilot", "phase": current.value})
            return {"next_phase": RpiPhase.REVIEW, "auto_transition": False}

        next_phase = PHASE_ORDER[index + 1]
        self.rpi.transition(next_phase, reason="autopilot")

        if isinstance(autopilot, AutopilotCompositeState):
            if current not in autopilot.phases_completed:
                autopilot.phases_completed.append(current)
            autopilot.current_action = None

        autopilot.rpi_phase = next_phase
        self.state.save_mode_state(autopilot)
        return {"next_phase": next_phase, "auto_transition": autopilot.auto_transition}

    def run_phase(self, phase: RpiPhase | str) -> str:
        """Instructions for what should happen in a phase."""
        phase = RpiPhase(phase)
        composite = self.get_composite_state()
        if phase == RpiPhase.IMPL and composite is not None:
            linked = LINKED_IMPL_INSTRUCTIONS.get((composite.linked_ralph, composite.linked_team))
            if linked:
                return linked
        return PHASE_INSTRUCTIONS[phase]

    # ── Composite ──────────────────────────────────────

    def should_start_ralph(self) -> bool:
        composite = self.get_composite_state()
        return composite is not None and composite.linked_ralph

    def should_start_team(self) -> bool:
        composite = self.get_composite_state()
        return composite is not None and composite.linked_team

    def record_phase_completion(self, phase: RpiPhase | str) -> None:
        """Mark a phase done. Repeats are ignored. No-op outside composite mode."""
        phase = RpiPhase(phase)
        composite = self.get_composite_state()
        if composite is None:
            return
        if phase not in composite.phases_completed:
            composite.phases_completed.append(phase)
        composite.current_action = None
        self.state.save_mode_state(composite)

    def set_current_action(self, action: str) -> None:
        composite = self.get_composite_state()
        if composite is None:
            return
        composite.current_action = action
        self.state.save_mode_state(composite)

    def check_context_usage(self, context_percent: float, threshold: float | None = None) -> dict:
        """Advise clearing context once usage reaches ``threshold`` percent.

        The threshold defaults to the project's ``autopilot.contextThreshold``.
        """
        if threshold is None:
            threshold = self.config.autopilot.context_threshold
        composite = self.get_composite_state()
        if composite is not None:
            composite.context_percent = context_percent
            self.state.save_mode_state(composite)

        if context_percent >= threshold:
            return {
                "should_clear": True,
                "message": (
                    f"Context usage at {context_percent:g}% (threshold: {threshold:g}%). "
                    "Suggest /clear to continue. State is persisted in .oh-my-ccg/state/."
                ),
            }
        return {"should_clear": False, "message": ""}

    def get_summary(self) -> str:
        autopilot = self.get_state()
        if autopilot is None:
            return "Autopilot not active."

        lines = [
            f"Autopilot: {'ACTIVE' if autopilot.active else 'INACTIVE'}",
            f"RPI Phase: {autopilot.rpi_phase.value.upper()}",
            f"Auto-transition: {'ON' if autopilot.auto_transition else 'OFF'}",
        ]

        if isinstance(autopilot, AutopilotCompositeState):
            lines.append("Composite Mode: ON")
            lines.append(f"  Linked Ralph: {'YES' if autopilot.linked_ralph else 'NO'}")
            lines.append(f"  Linked Team:  {'YES' if autopilot.linked_team else 'NO'}")
            lines.append(f"  Phases done: [{', '.join(p.value for p in autopilot.phases_completed)}]")
            if autopilot.current_action:
                lines.append(f"  Current: {autopilot.current_action}")
            if autopilot.context_percent > 0:
                lines.append(f"  Context: {autopilot.context_percent:g}%")

        rpi = self.rpi.get_state()
        if rpi is not None:
            lines.append(f"Change: {rpi.change_name or '(none)'}")
            lines.append(f"Constraints: {len(rpi.constraints)}")

        return "\n".join(lines)
