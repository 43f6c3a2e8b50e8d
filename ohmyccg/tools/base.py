"""Base tool interface and registry."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any]) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_response(self) -> dict[str, Any]:
        """JSON response body: the data, or ``{"error": ...}``."""
        if self.success:
            return self.data
        return {"error": self.error}


@dataclass
class ToolParameter:
    """Tool parameter definition."""

    name: str
    type: str  # string, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class Tool(ABC):
    """Base class for all tools."""

    id: str
    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool with given parameters."""
        pass

    def to_schema(self) -> dict[str, Any]:
        """Tool description with a JSON schema for its arguments."""
        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "name": self.id,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        }

    def bind_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Keep known arguments, fill defaults, and check required ones.

        Raises:
            ValueError: If a required argument is missing or an enum value is invalid
        """
        bound = {}
        for param in self.parameters:
            value = arguments.get(param.name)
            if value is None:
                if param.required:
                    raise ValueError(f"Missing required argument: {param.name}")
                if param.default is not None:
                    bound[param.name] = param.default
                continue
            if param.enum and value not in param.enum:
                raise ValueError(f"Invalid {param.name}: {value}. Use one of: {', '.join(param.enum)}")
            bound[param.name] = value
        return bound


def require_arguments(kwargs: dict[str, Any], action: str, *names: str) -> None:
    """Check the arguments an ``action`` needs beyond the schema's required ones.

    Raises:
        ValueError: Naming every missing argument
    """
    missing = [name for name in names if kwargs.get(name) is None]
    if missing:
        raise ValueError(f"{action} requires: {', '.join(missing)}")


class ToolRegistry:
    """Registry for available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.id] = tool

    def get(self, tool_id: str) -> Tool | None:
        """Get a tool by ID."""
        return self._tools.get(tool_id)

    def list_all(self) -> list[Tool]:
        """List all registered tools."""
        return list(self._tools.values())

    def get_schemas(self, tool_ids: list[str] | None = None) -> list[dict[str, Any]]:
        """Get JSON schemas for tools."""
        tools = self._tools.values() if tool_ids is None else [
            self._tools[tid] for tid in tool_ids if tid in self._tools
        ]
        return [t.to_schema() for t in tools]

    async def execute(self, tool_id: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Execute a tool by ID. Errors come back as a failed result."""
        tool = self._tools.get(tool_id)
        if not tool:
            return ToolResult.fail(f"Unknown tool: {tool_id}")
        try:
            return await tool.execute(**tool.bind_arguments(arguments or {}))
        except Exception as e:
            logger.warning(f"Tool {tool_id} failed: {e}", extra={"tool": tool_id})
            return ToolResult.fail(str(e))

    async def handle(self, request: dict[str, Any]) -> dict[str, Any]:
        """Answer one ``{"toolName", "arguments"}`` request."""
        tool_name = request.get("toolName")
        if not isinstance(tool_name, str):
            return {"error": "Request is missing toolName"}
        arguments = request.get("arguments") or {}
        if not isinstance(arguments, dict):
            return {"error": "arguments must be an object"}
        result = await self.execute(tool_name, arguments)
        return result.to_response()
