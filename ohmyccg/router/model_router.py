"""Routing of tasks and agents to model providers.

Frontend work goes to Gemini, backend work to Codex, everything else stays
with Claude. Disabled providers are skipped and their work falls through to
Claude.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from ohmyccg.config import ProjectConfig
from ohmyccg.state.models import TaskDomain


class ModelProvider(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"


@dataclass
class RoutingDecision:
    provider: ModelProvider
    role: str
    reason: str
    model: str | None = None  # set for Claude, from the project's defaultModel

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["provider"] = self.provider.value
        if self.model is None:
            data.pop("model")
        return data


# Per-agent roles on the external providers
AGENT_ROUTING: dict[str, dict[ModelProvider, str]] = {
    "analyst": {ModelProvider.CODEX: "analyst"},
    "planner": {ModelProvider.CODEX: "planner", ModelProvider.GEMINI: "designer"},
    "architect": {ModelProvider.CODEX: "architect"},
    "verifier": {ModelProvider.CODEX: "code-reviewer"},
    "reviewer": {ModelProvider.CODEX: "code-reviewer", ModelProvider.GEMINI: "designer"},
    "critic": {ModelProvider.CODEX: "critic"},
    "test-engineer": {ModelProvider.CODEX: "test-engineer"},
    "designer": {ModelProvider.GEMINI: "designer"},
    "writer": {ModelProvider.GEMINI: "writer"},
}


class ModelRouter:
    """Chooses a provider and role for a task."""

    def __init__(
        self,
        codex_enabled: bool = True,
        gemini_enabled: bool = True,
        codex_role: str = "architect",
        gemini_role: str = "designer",
        claude_role: str = "executor",
        claude_model: str | None = None,
    ):
        self.codex_enabled = codex_enabled
        self.gemini_enabled = gemini_enabled
        self.codex_role = codex_role
        self.gemini_role = gemini_role
        self.claude_role = claude_role
        self.claude_model = claude_model

    @classmethod
    def from_config(cls, config: ProjectConfig) -> "ModelRouter":
        return cls(
            codex_enabled=config.models.codex.enabled,
            gemini_enabled=config.models.gemini.enabled,
            codex_role=config.models.codex.default_role,
            gemini_role=config.models.gemini.default_role,
            claude_model=config.default_model,
        )

    def _claude(self, role: str, reason: str) -> RoutingDecision:
        return RoutingDecision(ModelProvider.CLAUDE, role, reason, model=self.claude_model)

    def route_task(
        self,
        domain: TaskDomain | str = TaskDomain.GENERAL,
        agent_role: str | None = None,
    ) -> RoutingDecision:
        """Route a single task by domain."""
        domain = TaskDomain(domain)

        if domain == TaskDomain.FRONTEND and self.gemini_enabled:
            role = agent_role or self.gemini_role
            return RoutingDecision(ModelProvider.GEMINI, role, f"Frontend domain routed to Gemini ({role})")

        if domain == TaskDomain.BACKEND and self.codex_enabled:
            role = agent_role or self.codex_role
            return RoutingDecision(ModelProvider.CODEX, role, f"Backend domain routed to Codex ({role})")

        role = agent_role or self.claude_role
        return self._claude(role, f"General domain handled by Claude ({role})")

    def parallel_route(
        self,
        domain: TaskDomain | str = TaskDomain.GENERAL,
        agent_role: str | None = None,
        requires_cross_validation: bool = False,
    ) -> list[RoutingDecision]:
        """Routes to run in parallel. Fullstack work is cross-validated by both externals."""
        domain = TaskDomain(domain)
        if not (requires_cross_validation or domain == TaskDomain.FULLSTACK):
            return [self.route_task(domain, agent_role)]

        decisions = []
        if self.codex_enabled:
            decisions.append(RoutingDecision(
                ModelProvider.CODEX,
                agent_role or self.codex_role,
                "Cross-validation: Codex for backend/logic perspective",
            ))
        if self.gemini_enabled:
            decisions.append(RoutingDecision(
                ModelProvider.GEMINI,
                agent_role or self.gemini_role,
                "Cross-validation: Gemini for frontend/pattern perspective",
            ))

        if not decisions:
            decisions.append(self._claude(agent_role or self.claude_role, "Fallback: no external models available"))
        return decisions

    def route_for_agent(self, agent_name: str) -> list[RoutingDecision]:
        """External routes for a named agent. Unknown agents get none."""
        routing = AGENT_ROUTING.get(agent_name)
        if not routing:
            return []

        decisions = []
        codex_role = routing.get(ModelProvider.CODEX)
        if codex_role and self.codex_enabled:
            decisions.append(RoutingDecision(
                ModelProvider.CODEX, codex_role, f"Agent {agent_name} routes to Codex as {codex_role}"
            ))
        gemini_role = routing.get(ModelProvider.GEMINI)
        if gemini_role and self.gemini_enabled:
            decisions.append(RoutingDecision(
                ModelProvider.GEMINI, gemini_role, f"Agent {agent_name} routes to Gemini as {gemini_role}"
            ))
        return decisions

    def get_available_models(self) -> list[ModelProvider]:
        models = [ModelProvider.CLAUDE]
        if self.codex_enabled:
            models.append(ModelProvider.CODEX)
        if self.gemini_enabled:
            models.append(ModelProvider.GEMINI)
        return models
