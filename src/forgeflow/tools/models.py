"""
Forgeflow Tool System Models

Pydantic models for the safety-gated tool pipeline. Every tool call
is validated, risk-scored, approval-gated when its definition asks
for it, executed, and recorded in the bounded audit logs.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from forgeflow.core.models import ExecutionContext, RiskLevel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ToolCategory(str, Enum):
    FILESYSTEM = "filesystem"
    COMMAND = "command"
    NETWORK = "network"
    WORKSPACE = "workspace"
    GENERAL = "general"


class ToolSecurity(BaseModel):
    """Security descriptor attached to every tool definition."""
    requires_approval: bool = False
    allowed_in_web: bool = True
    risk_level: RiskLevel = RiskLevel.LOW
    permissions: list[str] = Field(default_factory=list)


class ToolResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# Sync or async: (params, context) -> ToolResult
ToolExecutorFn = Callable[[dict[str, Any], ExecutionContext], ToolResult | Awaitable[ToolResult]]


class ToolDefinition(BaseModel):
    """A registered tool: schema, security policy and executor."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    category: ToolCategory = ToolCategory.GENERAL
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    security: ToolSecurity = Field(default_factory=ToolSecurity)
    executor: ToolExecutorFn
    version: str = "1.0"

    @property
    def risk_level(self) -> RiskLevel:
        return self.security.risk_level


class ToolCall(BaseModel):
    """One entry of a batch handed to ``ToolManager.execute_batch``."""
    id: str = Field(default_factory=lambda: f"call-{uuid.uuid4().hex[:8]}")
    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ApprovalDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    ALWAYS_ALLOW = "always-allow"

    @property
    def granted(self) -> bool:
        return self is not ApprovalDecision.DENY


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class AuditLogEntry(BaseModel):
    """One tool invocation as seen by the pipeline."""
    id: str = Field(default_factory=lambda: f"audit-{uuid.uuid4().hex[:8]}")
    timestamp: datetime = Field(default_factory=_utcnow)
    tool_name: str
    session_id: str
    agent_id: str
    user_id: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    outcome: AuditOutcome
    execution_time_ms: float = 0.0
    error_code: str | None = None
    error: str | None = None


class ApprovalLogEntry(BaseModel):
    """One approval decision with the risk assessment that drove it."""
    id: str = Field(default_factory=lambda: f"appr-{uuid.uuid4().hex[:8]}")
    timestamp: datetime = Field(default_factory=_utcnow)
    tool_name: str
    session_id: str
    agent_id: str
    user_id: str
    decision: str
    risk_score: int
    warnings: list[str] = Field(default_factory=list)
    factors: list[str] = Field(default_factory=list)
    high_risk_confirmed: bool | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class ExecutionStats(BaseModel):
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    tool_usage: dict[str, int] = Field(default_factory=dict)
    average_execution_time_ms: float = 0.0
    last_execution_time: datetime | None = None


class SecurityStats(BaseModel):
    total_approval_requests: int = 0
    approved_requests: int = 0
    denied_requests: int = 0
    approval_rate: float = 0.0
    average_risk_score: float = 0.0
    high_risk_executions: int = 0
