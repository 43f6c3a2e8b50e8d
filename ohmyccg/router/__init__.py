"""Model routing."""

from ohmyccg.router.model_router import AGENT_ROUTING, ModelProvider, ModelRouter, RoutingDecision

__all__ = ["AGENT_ROUTING", "ModelProvider", "ModelRouter", "RoutingDecision"]
