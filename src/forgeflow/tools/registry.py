"""
Forgeflow Tool Registry

Central registry for all tools available to the workflow. Each tool
is registered with its security descriptor (ToolSecurity) that
determines how the ToolManager gates calls to it.

The registry filters tools for an execution context so that agents
are only offered what the caller's permissions and security level
actually allow.
"""

from __future__ import annotations

from forgeflow.core.models import ExecutionContext, RiskLevel, SecurityLevel
from forgeflow.exceptions import ValidationError
from forgeflow.logging import get_logger
from forgeflow.tools.models import ToolCategory, ToolDefinition
from forgeflow.tools.risk import HIGH_RISK_PERMISSIONS

logger = get_logger("forgeflow.tools.registry")


class ToolRegistry:
    """Name-keyed store of tool definitions.

    Registering a name twice replaces the earlier definition; the
    replacement is logged so that shadowed built-ins are visible.
    """

    def __init__(self, web_environment: bool = False) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._web_environment = web_environment

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a tool definition. Last registration for a name wins."""
        self._validate_definition(tool)
        if tool.name in self._tools:
            logger.warning(
                "Tool '%s' is already registered, overwriting",
                tool.name,
                extra={"tool_name": tool.name},
            )
        self._tools[tool.name] = tool
        logger.debug("Registered tool %s", tool.name, extra={"tool_name": tool.name})

    @staticmethod
    def _validate_definition(tool: ToolDefinition) -> None:
        if not tool.name.strip():
            raise ValidationError("Tool name must not be blank")
        if not callable(tool.executor):
            raise ValidationError(
                f"Tool '{tool.name}' executor is not callable",
                context={"tool_name": tool.name},
            )
        if tool.parameters.get("type", "object") != "object":
            raise ValidationError(
                f"Tool '{tool.name}' parameters schema must describe an object",
                context={"tool_name": tool.name},
            )

    def get_tool(self, name: str) -> ToolDefinition | None:
        """Look up a registered tool by name."""
        return self._tools.get(name)

    def unregister_tool(self, name: str) -> bool:
        """Remove a tool. Returns whether it was registered."""
        removed = self._tools.pop(name, None)
        if removed is not None:
            logger.debug("Unregistered tool %s", name, extra={"tool_name": name})
        return removed is not None

    def get_all_tools(self) -> list[ToolDefinition]:
        """Return all registered tools."""
        return list(self._tools.values())

    def get_tools_by_category(self, category: ToolCategory) -> list[ToolDefinition]:
        return [t for t in self._tools.values() if t.category == category]

    def get_available_tools(self, context: ExecutionContext) -> list[ToolDefinition]:
        """Return tools the given context may call.

        Filters by:
        - environment: web hosts only see tools marked allowed_in_web
        - permissions: tool permissions must be a subset of the user's
        - RESTRICTED contexts: no tool needing an elevated permission
        - high-risk tools: only offered to ELEVATED contexts
        """
        user_permissions = set(context.user.permissions)
        level = context.security.level
        result: list[ToolDefinition] = []
        for tool in self._tools.values():
            security = tool.security
            if self._web_environment and not security.allowed_in_web:
                continue
            if not set(security.permissions) <= user_permissions:
                continue
            if level == SecurityLevel.RESTRICTED and HIGH_RISK_PERMISSIONS.intersection(
                security.permissions
            ):
                continue
            if security.risk_level == RiskLevel.HIGH and level != SecurityLevel.ELEVATED:
                continue
            result.append(tool)
        return result

    def get_schemas(self, tools: list[ToolDefinition] | None = None) -> list[dict]:
        """Get Claude API tool schemas for a set of tools.

        If tools is None, returns schemas for all registered tools.
        """
        source = tools if tools is not None else list(self._tools.values())
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.parameters,
            }
            for t in source
        ]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
