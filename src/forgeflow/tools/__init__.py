"""
Forgeflow Safety-Gated Tool Execution System

Every side-effecting operation of the workflow is routed through the
tool pipeline before it touches the workspace:

    Runner → ToolManager → validators → approval → executor → audit

Components:
- ToolRegistry: Central registry of tool definitions
- ParameterValidator / SecurityValidator: schema and policy checks
- assess_tool_risk: heuristic 0-100 risk score
- ApprovalFlow / SessionApprovals: operator approval and always-allow grants
- ToolAuditLog: bounded audit and approval logs
- ToolManager: the pipeline itself
- Built-in tools: file operations and commands (forgeflow.tools.builtin)
"""

from forgeflow.tools.approval import ApprovalFlow, ApprovalOutcome, ApprovalState, SessionApprovals
from forgeflow.tools.audit import BoundedLog, ToolAuditLog
from forgeflow.tools.manager import ToolManager
from forgeflow.tools.models import (
    ApprovalDecision,
    ToolCall,
    ToolCategory,
    ToolDefinition,
    ToolResult,
    ToolSecurity,
)
from forgeflow.tools.registry import ToolRegistry
from forgeflow.tools.risk import assess_tool_risk, is_high_risk
from forgeflow.tools.validators import ParameterValidator, SecurityValidator

__all__ = [
    "ApprovalDecision",
    "ApprovalFlow",
    "ApprovalOutcome",
    "ApprovalState",
    "BoundedLog",
    "ParameterValidator",
    "SecurityValidator",
    "SessionApprovals",
    "ToolAuditLog",
    "ToolCall",
    "ToolCategory",
    "ToolDefinition",
    "ToolManager",
    "ToolRegistry",
    "ToolResult",
    "ToolSecurity",
    "assess_tool_risk",
    "is_high_risk",
]
