"""
Forgeflow Core Data Models

Shared types used across the engine: session enums, runner results,
execution contexts, risk assessments and the action list consumed by
the execution runner. This module must have zero internal
dependencies beyond pydantic and the exception hierarchy.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Enums ───────────────────────────────────────────────────

class SessionState(str, Enum):
    """Workflow state of a session."""
    IDLE = "idle"
    AGENT_ASSIGNMENT = "agent_assignment"
    CONTEXT_GENERATION = "context_generation"
    PLANNING = "planning"
    AWAITING_PLAN_APPROVAL = "awaiting_plan_approval"
    PLAN_REVIEW = "plan_review"
    AWAITING_REVIEW_APPROVAL = "awaiting_review_approval"
    EXECUTION = "execution"
    AWAITING_EXECUTION_APPROVAL = "awaiting_execution_approval"
    RECOVERY = "recovery"
    AWAITING_RECOVERY_DECISION = "awaiting_recovery_decision"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.ERROR, SessionState.CANCELLED})


class PhaseType(str, Enum):
    """Independently assignable workflow phases."""
    CONTEXT = "context"
    PLANNING = "planning"
    REVIEW = "review"
    EXECUTION = "execution"
    RECOVERY = "recovery"


class WorkflowMode(str, Enum):
    """SPEED auto-runs phases; STRUCTURED approves each transition."""
    SPEED = "speed"
    STRUCTURED = "structured"


class SecurityLevel(str, Enum):
    RESTRICTED = "restricted"
    NORMAL = "normal"
    ELEVATED = "elevated"


class RiskLevel(str, Enum):
    """Declared risk of a tool."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionType(str, Enum):
    CREATE_FILE = "create_file"
    MODIFY_FILE = "modify_file"
    DELETE_FILE = "delete_file"
    RUN_COMMAND = "run_command"
    INSTALL_DEPENDENCY = "install_dependency"


class ActionStatus(str, Enum):
    """Lifecycle state of an ActionUnit."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RecoveryChoice(str, Enum):
    """Operator choices offered by the default error handler."""
    RETRY = "retry"
    RECONFIGURE = "reconfigure"
    SKIP = "skip"
    ABORT = "abort"


# ─── Session Descriptors ─────────────────────────────────────

class PhaseAgentMapping(BaseModel):
    """Which agent handles which phase."""
    assignments: dict[PhaseType, str] = Field(default_factory=dict)
    reasoning: str = ""
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    alternatives: dict[PhaseType, list[str]] = Field(default_factory=dict)

    def agent_for(self, phase: PhaseType) -> str | None:
        return self.assignments.get(phase)


class SessionRequirements(BaseModel):
    """What the operator asked for."""
    description: str = ""
    has_images: bool = False
    workspace_size: str = "small"
    complexity: str = "moderate"
    tools_required: list[str] = Field(default_factory=list)
    custom_instructions: str | None = None


class ProgressUpdate(BaseModel):
    message: str
    increment: float | None = None
    cancellable: bool = False
    show_in_status_bar: bool = True


# ─── Runner Harness ──────────────────────────────────────────

class RunnerResult(BaseModel):
    """Uniform outcome of any phase execution."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error: Exception | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""


class OperationTimeout(BaseModel):
    """Timeout window for ``BaseRunner.run``; duration in seconds."""
    duration: float = Field(gt=0)
    message: str = ""
    allow_extension: bool = False


class ErrorRecoveryOptions(BaseModel):
    retry: bool = False
    reconfigure: bool = False
    skip: bool = False
    abort: bool = True

    @classmethod
    def from_choice(cls, choice: RecoveryChoice) -> ErrorRecoveryOptions:
        if choice == RecoveryChoice.ABORT:
            return cls()
        return cls(**{choice.value: True, "abort": False})

    @property
    def choice(self) -> RecoveryChoice:
        for option in (RecoveryChoice.RETRY, RecoveryChoice.RECONFIGURE, RecoveryChoice.SKIP):
            if getattr(self, option.value):
                return option
        return RecoveryChoice.ABORT


# ─── Tool Execution Context ─────────────────────────────────

class UserInfo(BaseModel):
    id: str
    permissions: list[str] = Field(default_factory=list)


class SecurityContext(BaseModel):
    level: SecurityLevel = SecurityLevel.NORMAL
    allow_dangerous: bool = False


class ExecutionContext(BaseModel):
    """Who is calling a tool, from which session, under what policy."""
    agent_id: str
    session_id: str
    user: UserInfo
    security: SecurityContext = Field(default_factory=SecurityContext)
    workspace: str | None = None


class RiskAssessment(BaseModel):
    """Heuristic harm estimate for one prospective tool call."""
    score: int = Field(0, ge=0, le=100)
    warnings: list[str] = Field(default_factory=list)
    factors: list[str] = Field(default_factory=list)


# ─── Action List ─────────────────────────────────────────────

class ActionResult(BaseModel):
    success: bool
    output: str | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class ActionUnit(BaseModel):
    """One step of an execution sequence."""
    id: str = Field(default_factory=lambda: f"action-{uuid.uuid4().hex[:8]}")
    type: ActionType
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    status: ActionStatus = ActionStatus.PENDING
    result: ActionResult | None = None


class ActionMetadata(BaseModel):
    total_actions: int = 0
    estimated_duration: float = 0.0
    complexity: str = "moderate"
    risk_level: RiskLevel = RiskLevel.MEDIUM


class ActionList(BaseModel):
    """Plan artifact persisted as ``action-list.json``."""
    version: str = "1.0"
    timestamp: str = Field(default_factory=lambda: _utcnow().isoformat())
    actions: list[ActionUnit] = Field(default_factory=list)
    metadata: ActionMetadata = Field(default_factory=ActionMetadata)

    def get(self, action_id: str) -> ActionUnit | None:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def with_status(self, status: ActionStatus) -> list[ActionUnit]:
        return [a for a in self.actions if a.status == status]


class ExecutionSummary(BaseModel):
    total_actions: int = 0
    completed_actions: int = 0
    failed_actions: int = 0
    skipped_actions: int = 0
    execution_time_ms: float = 0.0
    recovery_attempts: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_actions == 0:
            return 0.0
        return self.completed_actions / self.total_actions


# ─── Workspace Context ───────────────────────────────────────

class FileNode(BaseModel):
    path: str
    type: str = "file"
    language: str | None = None


class ContextSummary(BaseModel):
    total_files: int = 0
    primary_languages: list[str] = Field(default_factory=list)
    frameworks: list[str] = Field(default_factory=list)
    description: str = ""


class WorkspaceContext(BaseModel):
    """Context artifact persisted as ``context.json``."""
    timestamp: str = Field(default_factory=lambda: _utcnow().isoformat())
    workspace_root: str
    file_structure: list[FileNode] = Field(default_factory=list)
    summary: ContextSummary = Field(default_factory=ContextSummary)


# ─── Agent Chat ──────────────────────────────────────────────

class ChatMessage(BaseModel):
    role: str
    content: str


class ChatResponse(BaseModel):
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProcessResult(BaseModel):
    exit_code: int
    stdout: str = ""
    stderr: str = ""
