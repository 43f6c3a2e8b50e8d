"""Team mode: a task DAG worked by routed workers.

A task is ready when it is pending and every dependency is completed. The
task list is persisted in ``team-state`` so a new process can ``load()`` it.
Dependency cycles are not detected; tasks in a cycle never become ready.
"""

import logging
from pathlib import Path

from ohmyccg.config import ProjectConfig, load_project_config
from ohmyccg.router.model_router import ModelRouter, RoutingDecision
from ohmyccg.state.manager import StateManager
from ohmyccg.state.models import OrchestrationMode, TeamState, TeamTask, TeamTaskStatus

logger = logging.getLogger(__name__)


class TaskNotFoundError(LookupError):
    """No task with the given id in the current team."""


class TeamOrchestrator:
    """Tracks team tasks and their routing."""

    def __init__(
        self,
        workdir: Path | str,
        state: StateManager | None = None,
        router: ModelRouter | None = None,
        config: ProjectConfig | None = None,
    ) -> None:
        self.state = state or StateManager(workdir)
        self.config = config or load_project_config(workdir)
        self.router = router or ModelRouter.from_config(self.config)
        self.tasks: list[TeamTask] = []

    def create_team(self, team_name: str, tasks: list[TeamTask]) -> TeamState:
        self.tasks = list(tasks)
        team = TeamState(team_name=team_name, total_tasks=len(self.tasks), tasks=self.tasks)
        self.state.save_mode_state(team)
        logger.info(f"Team {team_name} created with {len(self.tasks)} tasks", extra={"mode": "team"})
        return team

    def load(self) -> TeamState | None:
        """Restore the task list from the persisted document."""
        team = self.get_state()
        self.tasks = list(team.tasks) if team else []
        return team

    def get_state(self) -> TeamState | None:
        return self.state.get_mode_state(OrchestrationMode.TEAM)

    # ── Scheduling ─────────────────────────────────────

    def _status_of(self, task_id: str) -> TeamTaskStatus | None:
        for task in self.tasks:
            if task.id == task_id:
                return task.status
        return None

    def get_ready_tasks(self) -> list[TeamTask]:
        """Pending tasks whose dependencies are all completed."""
        return [
            task for task in self.tasks
            if task.status == TeamTaskStatus.PENDING
            and all(self._status_of(dep) == TeamTaskStatus.COMPLETED for dep in task.dependencies)
        ]

    def route_workers(self) -> list[tuple[TeamTask, RoutingDecision]]:
        """Routing for every ready task."""
        return [(task, self.router.route_task(task.domain)) for task in self.get_ready_tasks()]

    def update_task(self, task_id: str, status: TeamTaskStatus | str, assignee: str | None = None) -> TeamTask:
        """Set a task's status and refresh the persisted counters.

        Raises:
            TaskNotFoundError: If no task has ``task_id``
        """
        status = TeamTaskStatus(status)
        task = next((t for t in self.tasks if t.id == task_id), None)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")

        task.status = status
        if assignee:
            task.assignee = assignee

        team = self.get_state()
        if team is not None:
            team.tasks = self.tasks
            team.total_tasks = len(self.tasks)
            team.completed_tasks = sum(1 for t in self.tasks if t.status == TeamTaskStatus.COMPLETED)
            team.workers = len({t.assignee for t in self.tasks if t.assignee and t.status == TeamTaskStatus.IN_PROGRESS})
            self.state.save_mode_state(team)
        return task

    # ── Progress ───────────────────────────────────────

    def is_complete(self) -> bool:
        """True when every task has finished, successfully or not."""
        return all(t.status in (TeamTaskStatus.COMPLETED, TeamTaskStatus.FAILED) for t in self.tasks)

    def has_failures(self) -> bool:
        return any(t.status == TeamTaskStatus.FAILED for t in self.tasks)

    def get_progress(self) -> dict[str, int]:
        counts = {status: 0 for status in TeamTaskStatus}
        for task in self.tasks:
            counts[task.status] += 1
        return {
            "completed": counts[TeamTaskStatus.COMPLETED],
            "in_progress": counts[TeamTaskStatus.IN_PROGRESS],
            "pending": counts[TeamTaskStatus.PENDING],
            "failed": counts[TeamTaskStatus.FAILED],
            "total": len(self.tasks),
        }

    def cleanup(self) -> None:
        self.state.clear_mode_state(OrchestrationMode.TEAM)
        self.tasks = []
