"""Ralph loop: bounded execute, verify, fix iterations.

The loop stays active until a verification passes or the iteration budget
is spent. A Ralph run may be linked to a team, in which case the state
document also carries a read-only snapshot of the team's progress.
"""

import logging
from pathlib import Path

from ohmyccg.config import ProjectConfig, load_project_config
from ohmyccg.state.manager import StateManager
from ohmyccg.state.models import (
    LinkedTeam,
    OrchestrationMode,
    RalphState,
    RalphVerification,
    TeamRalphState,
    TeamState,
)

logger = logging.getLogger(__name__)


class ModeNotActiveError(RuntimeError):
    """Raised when driving a mode that was never started or has stopped."""


def _check(flag: bool) -> str:
    return "✅" if flag else "❌"


class RalphLoop:
    """Retry loop persisted in ``ralph-state``."""

    def __init__(
        self,
        workdir: Path | str,
        state: StateManager | None = None,
        config: ProjectConfig | None = None,
    ) -> None:
        self.state = state or StateManager(workdir)
        self.config = config or load_project_config(workdir)

    # ── Lifecycle ──────────────────────────────────────

    def start(self, max_iterations: int | None = None) -> RalphState:
        """Start a plain loop. The budget defaults to the project's ``ralph.maxIterations``."""
        if max_iterations is None:
            max_iterations = self.config.ralph.max_iterations
        ralph = RalphState(max_iterations=max_iterations)
        self.state.save_mode_state(ralph)
        logger.info(f"Ralph loop started (max {max_iterations} iterations)", extra={"mode": "ralph"})
        return ralph

    def start_with_team(
        self,
        team_name: str,
        max_iterations: int | None = None,
        total_tasks: int = 0,
    ) -> TeamRalphState:
        """Start a Ralph loop linked to a team."""
        if max_iterations is None:
            max_iterations = self.config.ralph.max_iterations
        ralph = TeamRalphState(
            max_iterations=max_iterations,
            linked_team=LinkedTeam(team_name=team_name, total_tasks=total_tasks),
        )
        self.state.save_mode_state(ralph)
        logger.info(f"Ralph loop started with team {team_name}", extra={"mode": "ralph"})
        return ralph

    def get_state(self) -> RalphState | TeamRalphState | None:
        return self.state.get_mode_state(OrchestrationMode.RALPH)

    def get_team_ralph_state(self) -> TeamRalphState | None:
        ralph = self.get_state()
        return ralph if isinstance(ralph, TeamRalphState) else None

    def cancel(self) -> None:
        ralph = self.get_state()
        if ralph is not None:
            ralph.active = False
            self.state.save_mode_state(ralph)

    def reset(self) -> None:
        self.state.clear_mode_state(OrchestrationMode.RALPH)

    # ── Iterations ─────────────────────────────────────

    def next_iteration(self) -> RalphState | TeamRalphState:
        """Advance the iteration counter.

        Raises:
            ModeNotActiveError: If the loop was never started or is inactive
        """
        ralph = self.get_state()
        if ralph is None:
            raise ModeNotActiveError("Ralph not active. Call start() first.")
        if not ralph.active:
            raise ModeNotActiveError("Ralph is no longer active.")

        ralph.iteration += 1
        self.state.save_mode_state(ralph)
        return ralph

    def record_verification(
        self,
        passed: bool,
        tests: bool = False,
        build: bool = False,
        lsp: bool = False,
        issues: list[str] | None = None,
    ) -> RalphState | TeamRalphState:
        """Record the verification for the current iteration. Passing ends the loop."""
        ralph = self.get_state()
        if ralph is None:
            raise ModeNotActiveError("Ralph not active.")

        ralph.last_verification = RalphVerification(
            passed=passed, tests=tests, build=build, lsp=lsp, issues=issues or []
        )
        if passed:
            ralph.active = False
            logger.info(f"Ralph verification passed at iteration {ralph.iteration}", extra={"mode": "ralph"})

        self.state.save_mode_state(ralph)
        return ralph

    def should_continue(self) -> dict:
        """Whether another iteration should run. Ends the loop when it should not."""
        ralph = self.get_state()
        if ralph is None:
            return {"continue": False, "reason": "Ralph not active"}
        if not ralph.active:
            return {"continue": False, "reason": "Ralph completed or cancelled"}

        if ralph.iteration >= ralph.max_iterations:
            ralph.active = False
            self.state.save_mode_state(ralph)
            return {"continue": False, "reason": f"Max iterations reached ({ralph.max_iterations})"}

        if ralph.last_verification is not None and ralph.last_verification.passed:
            ralph.active = False
            self.state.save_mode_state(ralph)
            return {"continue": False, "reason": "Verification passed"}

        return {"continue": True, "reason": f"Iteration {ralph.iteration}/{ralph.max_iterations}"}

    # ── Team link ──────────────────────────────────────

    def sync_team_progress(self, team: TeamState) -> TeamRalphState | None:
        """Copy team progress counters into the linked-team snapshot.

        No-op for a plain Ralph run.
        """
        ralph = self.get_team_ralph_state()
        if ralph is None:
            return None

        ralph.linked_team = LinkedTeam(
            enabled=ralph.linked_team.enabled,
            team_name=team.team_name,
            workers=team.workers,
            completed_tasks=team.completed_tasks,
            total_tasks=team.total_tasks,
        )
        self.state.save_mode_state(ralph)
        return ralph

    def get_linked_team(self) -> LinkedTeam | None:
        ralph = self.get_team_ralph_state()
        return ralph.linked_team if ralph else None

    def get_summary(self) -> str:
        ralph = self.get_state()
        if ralph is None:
            return "Ralph not active."

        lines = [
            f"Ralph Loop: {'ACTIVE' if ralph.active else 'INACTIVE'}",
            f"Iteration: {ralph.iteration}/{ralph.max_iterations}",
        ]

        v = ralph.last_verification
        if v is not None:
            lines.append(f"Last Verification: {'PASSED' if v.passed else 'FAILED'}")
            lines.append(f"  Tests: {_check(v.tests)} | Build: {_check(v.build)} | LSP: {_check(v.lsp)}")
            if v.issues:
                lines.append(f"  Issues: {', '.join(v.issues)}")

        if isinstance(ralph, TeamRalphState):
            team = ralph.linked_team
            lines.append(f"Linked Team: {team.team_name or '(unnamed)'}")
            lines.append(f"  Tasks: {team.completed_tasks}/{team.total_tasks} | Workers: {team.workers}")

        return "\n".join(lines)
