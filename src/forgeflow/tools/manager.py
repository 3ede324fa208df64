"""
Forgeflow Tool Manager

The critical safety component that sits between phase logic and
actual side effects. Every tool call is:

1. Looked up in the ToolRegistry
2. Validated against the tool's parameter schema
3. Validated against the security policy for the calling context
4. Approval-gated (risk-scored, always-allow aware) when the tool asks for it
5. Executed with latency measurement
6. Counted in the execution statistics and recorded in the audit logs

Any failure surfaces as a ToolExecutionError carrying one of the codes
TOOL_NOT_FOUND, INVALID_PARAMETERS, SECURITY_VIOLATION, USER_DENIED or
EXECUTION_ERROR. ``try_execute_tool`` and ``execute_batch`` convert the
error into a failed ToolResult instead.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from pathlib import Path
from typing import Any

from forgeflow.core.interfaces import ApprovalPrompt
from forgeflow.core.models import ExecutionContext, RiskAssessment
from forgeflow.exceptions import ToolExecutionError
from forgeflow.logging import get_logger
from forgeflow.observability import metrics
from forgeflow.tools.approval import ApprovalFlow, SessionApprovals
from forgeflow.tools.audit import DEFAULT_LOG_CAP, ExecutionStatsTracker, ToolAuditLog
from forgeflow.tools.models import (
    ApprovalDecision,
    ApprovalLogEntry,
    AuditLogEntry,
    AuditOutcome,
    ExecutionStats,
    SecurityStats,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from forgeflow.tools.registry import ToolRegistry
from forgeflow.tools.risk import HIGH_RISK_THRESHOLD, assess_tool_risk
from forgeflow.tools.validators import ParameterValidator, SecurityValidator

logger = get_logger("forgeflow.tools.manager")

# More than RAPID_EXECUTION_LIMIT calls of one tool in one session within
# RAPID_EXECUTION_WINDOW seconds raises the risk score.
RAPID_EXECUTION_LIMIT = 5
RAPID_EXECUTION_WINDOW = 60.0
RAPID_EXECUTION_SCORE = 10


class ToolManager:
    """Validates, gates, executes and audits tool calls.

    One instance is owned by the engine and injected into sessions and
    runners; approvals granted with ``always-allow`` last until
    ``clear_session`` is called for that session.
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        approval_prompt: ApprovalPrompt | None = None,
        security_validator: SecurityValidator | None = None,
        log_cap: int = DEFAULT_LOG_CAP,
        approval_timeout: float = 300.0,
        high_risk_threshold: int = HIGH_RISK_THRESHOLD,
    ):
        self.registry = registry or ToolRegistry()
        self._approval_prompt = approval_prompt
        self._security_validator = security_validator or SecurityValidator()
        self._approval_timeout = approval_timeout
        self._threshold = high_risk_threshold
        self._session_approvals = SessionApprovals()
        self._audit = ToolAuditLog(cap=log_cap, high_risk_threshold=high_risk_threshold)
        self._stats = ExecutionStatsTracker()
        self._session_stats: dict[str, ExecutionStatsTracker] = {}
        self._history: dict[tuple[str, str], deque[float]] = {}

    # ── execution ──

    async def execute_tool(
        self,
        name: str,
        params: dict[str, Any] | None,
        context: ExecutionContext,
    ) -> ToolResult:
        """Run one tool call through the full pipeline.

        Raises ToolExecutionError on any failure.
        """
        params = dict(params or {})
        tool = self.registry.get_tool(name)
        if tool is None:
            self._record_rejection(name, params, context, "TOOL_NOT_FOUND", f"Tool not found: {name}")
            raise ToolExecutionError(f"Tool not found: {name}", code="TOOL_NOT_FOUND", tool_name=name)

        self._track_call(context.session_id, name)

        validation = ParameterValidator.validate(params, tool.parameters)
        if not validation.valid:
            message = f"Invalid parameters for {name}: {'; '.join(validation.errors)}"
            self._record_rejection(name, params, context, "INVALID_PARAMETERS", message)
            raise ToolExecutionError(message, code="INVALID_PARAMETERS", tool_name=name)

        security = self._security_validator.validate_execution(tool, params, context)
        if not security.valid:
            message = f"Security violation for {name}: {'; '.join(security.errors)}"
            self._record_rejection(name, params, context, "SECURITY_VIOLATION", message)
            raise ToolExecutionError(message, code="SECURITY_VIOLATION", tool_name=name)
        for warning in security.warnings:
            logger.warning(warning, extra={"tool_name": name, "session_id": context.session_id})

        if tool.security.requires_approval and not await self._approve(tool, params, context):
            message = f"User denied execution of {name}"
            self._record_rejection(
                name, params, context, "USER_DENIED", message, outcome=AuditOutcome.DENIED
            )
            raise ToolExecutionError(message, code="USER_DENIED", tool_name=name)

        return await self._invoke(tool, params, context)

    async def try_execute_tool(
        self,
        name: str,
        params: dict[str, Any] | None,
        context: ExecutionContext,
    ) -> ToolResult:
        """Like execute_tool, but failures come back as ``success=False``."""
        try:
            return await self.execute_tool(name, params, context)
        except ToolExecutionError as e:
            return ToolResult(success=False, error=e.message, metadata={"code": e.code})

    async def execute_batch(
        self,
        calls: list[ToolCall],
        context: ExecutionContext,
        continue_on_error: bool = True,
    ) -> list[ToolResult]:
        """Execute calls in order. Stops after the first failure unless
        ``continue_on_error``; results cover only the calls attempted."""
        results: list[ToolResult] = []
        for call in calls:
            result = await self.try_execute_tool(call.name, call.parameters, context)
            result.metadata.setdefault("call_id", call.id)
            results.append(result)
            if not result.success and not continue_on_error:
                break
        return results

    async def _approve(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        context: ExecutionContext,
    ) -> bool:
        if self._session_approvals.is_granted(context.session_id, tool.name):
            logger.debug(
                "Tool pre-approved for session",
                extra={"tool_name": tool.name, "session_id": context.session_id},
            )
            return True

        risk = self.assess_risk(tool, params, context)

        if self._approval_prompt is None:
            # No approval mechanism available: block
            decision = ApprovalDecision.DENY
            confirmed = None
        else:
            flow = ApprovalFlow(self._approval_prompt, self._approval_timeout, self._threshold)
            outcome = await flow.run(tool, params, context, risk)
            decision = outcome.decision
            confirmed = outcome.high_risk_confirmed

        if decision == ApprovalDecision.ALWAYS_ALLOW:
            self._session_approvals.grant(context.session_id, tool.name)

        self._audit.record_approval(
            ApprovalLogEntry(
                tool_name=tool.name,
                session_id=context.session_id,
                agent_id=context.agent_id,
                user_id=context.user.id,
                decision=decision.value,
                risk_score=risk.score,
                warnings=risk.warnings,
                factors=risk.factors,
                high_risk_confirmed=confirmed,
                parameters=params,
            )
        )
        metrics.record_approval(tool_name=tool.name, decision=decision.value, risk_score=risk.score)
        return decision.granted

    async def _invoke(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        context: ExecutionContext,
    ) -> ToolResult:
        start = time.monotonic()
        try:
            result = tool.executor(params, context)
            # Support both sync and async executors
            if asyncio.iscoroutine(result):
                result = await result
        except Exception as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            message = f"Tool execution error: {type(e).__name__}: {e}"
            self._finish(tool.name, params, context, False, elapsed_ms, "EXECUTION_ERROR", message)
            raise ToolExecutionError(
                message, code="EXECUTION_ERROR", tool_name=tool.name, original_error=e
            ) from e

        elapsed_ms = (time.monotonic() - start) * 1000
        if not isinstance(result, ToolResult):
            result = ToolResult(success=True, data=result)
        result.metadata.setdefault("execution_time_ms", round(elapsed_ms, 2))

        if not result.success:
            message = result.error or f"Tool {tool.name} reported failure"
            self._finish(tool.name, params, context, False, elapsed_ms, "EXECUTION_ERROR", message)
            raise ToolExecutionError(message, code="EXECUTION_ERROR", tool_name=tool.name)

        self._finish(tool.name, params, context, True, elapsed_ms)
        return result

    # ── bookkeeping ──

    def _finish(
        self,
        name: str,
        params: dict[str, Any],
        context: ExecutionContext,
        success: bool,
        elapsed_ms: float,
        error_code: str | None = None,
        error: str | None = None,
    ) -> None:
        self._stats.record(name, success, elapsed_ms)
        tracker = self._session_stats.setdefault(context.session_id, ExecutionStatsTracker())
        tracker.record(name, success, elapsed_ms)
        outcome = AuditOutcome.SUCCESS if success else AuditOutcome.FAILURE
        self._audit.record_execution(
            AuditLogEntry(
                tool_name=name,
                session_id=context.session_id,
                agent_id=context.agent_id,
                user_id=context.user.id,
                parameters=params,
                outcome=outcome,
                execution_time_ms=elapsed_ms,
                error_code=error_code,
                error=error,
            )
        )
        metrics.record_tool_call(tool_name=name, outcome=outcome.value, duration_ms=elapsed_ms)
        log = logger.info if success else logger.warning
        log(
            "Tool %s %s in %.1fms",
            name,
            "succeeded" if success else "failed",
            elapsed_ms,
            extra={
                "tool_name": name,
                "session_id": context.session_id,
                "duration_ms": round(elapsed_ms, 2),
                "error_code": error_code,
            },
        )

    def _record_rejection(
        self,
        name: str,
        params: dict[str, Any],
        context: ExecutionContext,
        code: str,
        message: str,
        outcome: AuditOutcome = AuditOutcome.FAILURE,
    ) -> None:
        self._audit.record_execution(
            AuditLogEntry(
                tool_name=name,
                session_id=context.session_id,
                agent_id=context.agent_id,
                user_id=context.user.id,
                parameters=params,
                outcome=outcome,
                error_code=code,
                error=message,
            )
        )
        metrics.record_tool_call(tool_name=name, outcome=outcome.value)
        logger.warning(
            message,
            extra={"tool_name": name, "session_id": context.session_id, "error_code": code},
        )

    def _track_call(self, session_id: str, name: str) -> None:
        now = time.monotonic()
        history = self._history.setdefault((session_id, name), deque())
        while history and now - history[0] >= RAPID_EXECUTION_WINDOW:
            history.popleft()
        history.append(now)

    def assess_risk(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        context: ExecutionContext,
    ) -> RiskAssessment:
        """Heuristic risk score plus the rapid-execution bump for this session."""
        risk = assess_tool_risk(tool, params, context)
        history = self._history.get((context.session_id, tool.name), ())
        if len(history) > RAPID_EXECUTION_LIMIT:
            risk = RiskAssessment(
                score=min(risk.score + RAPID_EXECUTION_SCORE, 100),
                warnings=[*risk.warnings, "Multiple rapid executions of this tool detected"],
                factors=[*risk.factors, "Rapid successive executions detected"],
            )
        return risk

    # ── reporting ──

    def get_execution_stats(self, session_id: str | None = None) -> ExecutionStats:
        if session_id is None:
            return self._stats.snapshot()
        tracker = self._session_stats.get(session_id)
        return tracker.snapshot() if tracker else ExecutionStats()

    def clear_stats(self) -> None:
        self._stats.reset()
        self._session_stats.clear()

    def get_audit_log(self, session_id: str | None = None) -> list[AuditLogEntry]:
        if session_id is None:
            return self._audit.audit.entries()
        return self._audit.entries_for_session(session_id)

    def get_approval_log(self, session_id: str | None = None) -> list[ApprovalLogEntry]:
        if session_id is None:
            return self._audit.approvals.entries()
        return self._audit.approvals_for_session(session_id)

    def get_approval_log_for_tool(self, name: str) -> list[ApprovalLogEntry]:
        return self._audit.approvals_for_tool(name)

    def clear_approval_log(self) -> None:
        self._audit.approvals.clear()

    def get_security_stats(self) -> SecurityStats:
        return self._audit.security_stats()

    def export_audit_data(self) -> dict[str, Any]:
        return self._audit.export(self._stats.snapshot())

    def export_audit_json(self, path: str | Path) -> None:
        self._audit.export_json(path, self._stats.snapshot())

    # ── session lifecycle ──

    def is_session_approved(self, session_id: str, name: str) -> bool:
        return self._session_approvals.is_granted(session_id, name)

    def clear_session(self, session_id: str) -> None:
        """Forget everything recorded for one session.

        Drops its always-allow grants, call history, statistics and its
        entries in the audit and approval logs. Aggregate statistics are kept.
        """
        cleared = self._session_approvals.clear_session(session_id)
        for key in [k for k in self._history if k[0] == session_id]:
            del self._history[key]
        self._session_stats.pop(session_id, None)
        removed = self._audit.clear_session(session_id)
        logger.debug(
            "Cleared %d session approval(s) and %d log entries",
            cleared,
            removed,
            extra={"session_id": session_id},
        )
