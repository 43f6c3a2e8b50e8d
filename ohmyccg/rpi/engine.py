"""RPI phase engine.

Tracks one change through the Research -> Plan -> Impl -> Review workflow,
together with its constraints, decisions, PBT properties and artifacts.

State Machine:
    init -> research -> plan -> impl <-> review
    impl -> plan, review -> plan (backtracking)
"""

import logging
from pathlib import Path

from ohmyccg.state.manager import StateManager
from ohmyccg.state.models import (
    ConstraintSource,
    ConstraintType,
    PbtProperty,
    PhaseTransition,
    RpiConstraint,
    RpiPhase,
    RpiState,
)

logger = logging.getLogger(__name__)


# Valid phase transitions
PHASE_TRANSITIONS: dict[RpiPhase, tuple[RpiPhase, ...]] = {
    RpiPhase.INIT: (RpiPhase.RESEARCH,),
    RpiPhase.RESEARCH: (RpiPhase.PLAN,),
    RpiPhase.PLAN: (RpiPhase.IMPL,),
    RpiPhase.IMPL: (RpiPhase.REVIEW, RpiPhase.PLAN),
    RpiPhase.REVIEW: (RpiPhase.IMPL, RpiPhase.PLAN),
}


class NoActiveStateError(RuntimeError):
    """Raised when mutating RPI state before ``init``."""

    def __init__(self, message: str = "No active RPI state. Run init first.") -> None:
        super().__init__(message)


class InvalidTransitionError(ValueError):
    """Raised for a phase change outside the transition table."""

    def __init__(self, current: RpiPhase, target: RpiPhase) -> None:
        self.current = current
        self.target = target
        self.allowed = PHASE_TRANSITIONS[current]
        allowed = ", ".join(p.value for p in self.allowed) or "none"
        super().__init__(
            f"Invalid transition: {current.value} → {target.value}. Allowed: {allowed}"
        )


def can_transition(current: RpiPhase, target: RpiPhase) -> bool:
    return target in PHASE_TRANSITIONS[current]


class RpiEngine:
    """Phase engine over the persisted ``rpi-state`` document.

    Every mutation re-reads the document, validates, and writes it back
    immediately.
    """

    def __init__(self, workdir: Path | str, state: StateManager | None = None) -> None:
        self.state = state or StateManager(workdir)

    def _require_state(self) -> RpiState:
        rpi = self.state.get_rpi_state()
        if rpi is None:
            raise NoActiveStateError()
        return rpi

    # ── Lifecycle ──────────────────────────────────────

    def init(self, change_name: str | None = None) -> RpiState:
        """Create the RPI state, or return the existing one unchanged."""
        existing = self.state.get_rpi_state()
        if existing is not None:
            return existing

        rpi = RpiState(change_name=change_name)
        self.state.save_rpi_state(rpi)
        logger.info(f"RPI state created for change: {change_name or '(unnamed)'}")
        return rpi

    def get_state(self) -> RpiState | None:
        return self.state.get_rpi_state()

    def get_current_phase(self) -> RpiPhase | None:
        rpi = self.state.get_rpi_state()
        return rpi.phase if rpi else None

    def reset(self) -> None:
        self.state.clear_rpi_state()

    # ── Phase Transitions ─────────────────────────────

    def transition(self, target: RpiPhase | str, reason: str = "") -> RpiState:
        """Move to ``target`` if the transition table allows it.

        Raises:
            NoActiveStateError: If ``init`` was never called
            InvalidTransitionError: If ``current -> target`` is not allowed;
                the persisted phase is left unchanged
        """
        target = RpiPhase(target)
        rpi = self._require_state()

        if not can_transition(rpi.phase, target):
            raise InvalidTransitionError(rpi.phase, target)

        rpi.history.append(PhaseTransition(from_phase=rpi.phase, to_phase=target, reason=reason))
        previous = rpi.phase
        rpi.phase = target
        self.state.save_rpi_state(rpi)

        logger.info(
            f"RPI transition {previous.value} -> {target.value}: {reason}",
            extra={"phase": target.value},
        )
        return rpi

    def start_research(self, change_name: str) -> RpiState:
        rpi = self._require_state()

        if rpi.phase == RpiPhase.RESEARCH:
            return rpi
        if rpi.phase != RpiPhase.INIT:
            raise InvalidTransitionError(rpi.phase, RpiPhase.RESEARCH)

        rpi.change_name = change_name
        self.state.save_rpi_state(rpi)
        return self.transition(RpiPhase.RESEARCH, f"Starting research: {change_name}")

    def start_plan(self) -> RpiState:
        return self.transition(RpiPhase.PLAN, "Starting plan phase")

    def start_impl(self) -> RpiState:
        return self.transition(RpiPhase.IMPL, "Starting implementation phase")

    def start_review(self) -> RpiState:
        return self.transition(RpiPhase.REVIEW, "Starting review phase")

    # ── Constraints ───────────────────────────────────

    def add_constraint(
        self,
        type: ConstraintType | str,
        description: str,
        source: ConstraintSource | str = ConstraintSource.USER,
        verified: bool = False,
    ) -> RpiConstraint:
        """Append a constraint with the next sequential ``C%03d`` id."""
        rpi = self._require_state()

        constraint = RpiConstraint(
            id=_next_id("C", [c.id for c in rpi.constraints]),
            type=ConstraintType(type),
            description=description,
            source=ConstraintSource(source),
            verified=verified,
        )
        rpi.constraints.append(constraint)
        self.state.save_rpi_state(rpi)
        return constraint

    def get_constraints(self, type: ConstraintType | str | None = None) -> list[RpiConstraint]:
        rpi = self.state.get_rpi_state()
        if rpi is None:
            return []
        if type is None:
            return list(rpi.constraints)
        wanted = ConstraintType(type)
        return [c for c in rpi.constraints if c.type == wanted]

    def verify_constraint(self, constraint_id: str) -> None:
        """Mark a constraint verified. Unknown ids are ignored."""
        rpi = self._require_state()
        for constraint in rpi.constraints:
            if constraint.id == constraint_id:
                constraint.verified = True
                self.state.save_rpi_state(rpi)
                return

    # ── Decisions ─────────────────────────────────────

    def record_decision(self, key: str, value: str) -> None:
        rpi = self._require_state()
        rpi.decisions[key] = value
        self.state.save_rpi_state(rpi)

    def get_decisions(self) -> dict[str, str]:
        rpi = self.state.get_rpi_state()
        return dict(rpi.decisions) if rpi else {}

    # ── PBT Properties ────────────────────────────────

    def add_pbt_property(
        self,
        name: str,
        invariant: str,
        description: str = "",
        related_constraints: list[str] | None = None,
    ) -> PbtProperty:
        """Append a property with the next sequential ``PBT%03d`` id."""
        rpi = self._require_state()

        prop = PbtProperty(
            id=_next_id("PBT", [p.id for p in rpi.pbt_properties]),
            name=name,
            description=description,
            invariant=invariant,
            related_constraints=list(related_constraints or []),
        )
        rpi.pbt_properties.append(prop)
        self.state.save_rpi_state(rpi)
        return prop

    def get_pbt_properties(self) -> list[PbtProperty]:
        rpi = self.state.get_rpi_state()
        return list(rpi.pbt_properties) if rpi else []

    # ── Artifacts ─────────────────────────────────────

    def set_proposal(self, path: str) -> None:
        rpi = self._require_state()
        rpi.artifacts.proposal = path
        self.state.save_rpi_state(rpi)

    def add_spec(self, path: str) -> None:
        rpi = self._require_state()
        if path not in rpi.artifacts.specs:
            rpi.artifacts.specs.append(path)
            self.state.save_rpi_state(rpi)

    def add_design(self, path: str) -> None:
        rpi = self._require_state()
        if path not in rpi.artifacts.design:
            rpi.artifacts.design.append(path)
            self.state.save_rpi_state(rpi)

    def set_tasks(self, path: str) -> None:
        rpi = self._require_state()
        rpi.artifacts.tasks = path
        self.state.save_rpi_state(rpi)

    # ── Summary ───────────────────────────────────────

    def get_summary(self) -> str:
        rpi = self.state.get_rpi_state()
        if rpi is None:
            return "No active RPI session."

        hard = sum(1 for c in rpi.constraints if c.type == ConstraintType.HARD)
        soft = sum(1 for c in rpi.constraints if c.type == ConstraintType.SOFT)
        lines = [
            f"Phase: {rpi.phase.value.upper()}",
            f"Change: {rpi.change_name or '(none)'}",
            f"Constraints: {hard}H / {soft}S",
            f"Decisions: {len(rpi.decisions)}",
            f"PBT Properties: {len(rpi.pbt_properties)}",
        ]

        if rpi.artifacts.proposal:
            lines.append(f"Proposal: {rpi.artifacts.proposal}")
        if rpi.artifacts.tasks:
            lines.append(f"Tasks: {rpi.artifacts.tasks}")
        if rpi.artifacts.specs:
            lines.append(f"Specs: {len(rpi.artifacts.specs)} files")

        return "\n".join(lines)


def _next_id(prefix: str, existing: list[str]) -> str:
    """Next sequential id, one past the highest already assigned."""
    highest = 0
    for item_id in existing:
        suffix = item_id[len(prefix):]
        if item_id.startswith(prefix) and suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:03d}"
