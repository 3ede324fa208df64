"""
Forgeflow — Session-Driven Agent Workflow Engine

Usage:
    from forgeflow import Forgeflow

    engine = Forgeflow(workspace="./my-project")
    result = await engine.run("Add a /health endpoint with a test")

    # Approve each phase before it starts:
    engine = Forgeflow(workspace=".", phase_gate=ConsolePhaseGate())
    result = await engine.run("...", mode=WorkflowMode.STRUCTURED)

Every side effect (file writes, shell commands, dependency installs)
goes through one ToolManager: parameter and security validation, risk
scoring, operator approval and a bounded audit log.
"""

from forgeflow.config import ForgeflowSettings
from forgeflow.core.models import (
    ActionList,
    ActionStatus,
    ActionType,
    ActionUnit,
    ExecutionContext,
    OperationTimeout,
    PhaseAgentMapping,
    PhaseType,
    RiskAssessment,
    RunnerResult,
    SessionState,
    WorkflowMode,
)
from forgeflow.core.session import Session, SessionStateMachine
from forgeflow.engine import Forgeflow, PhaseOutcome, WorkflowResult
from forgeflow.exceptions import ForgeflowError
from forgeflow.runners.execution import ExecutionOptions
from forgeflow.tools.manager import ToolManager
from forgeflow.tools.registry import ToolRegistry
from forgeflow.tools.risk import assess_tool_risk

__version__ = "0.3.0"

__all__ = [
    # Main API
    "Forgeflow",
    "ForgeflowSettings",
    "PhaseOutcome",
    "WorkflowResult",
    "__version__",
    # Sessions
    "Session",
    "SessionStateMachine",
    "SessionState",
    "WorkflowMode",
    "PhaseType",
    "PhaseAgentMapping",
    # Runners
    "ExecutionOptions",
    "OperationTimeout",
    "RunnerResult",
    # Actions
    "ActionList",
    "ActionStatus",
    "ActionType",
    "ActionUnit",
    # Tools
    "ExecutionContext",
    "RiskAssessment",
    "ToolManager",
    "ToolRegistry",
    "assess_tool_risk",
    # Errors
    "ForgeflowError",
]
