"""
Forgeflow Tool Audit Logs

Bounded, append-only records of every tool invocation and every
approval decision, plus running execution statistics.

Features:
- Bounded: each log holds at most ``cap`` entries (default 1000),
  the oldest entry is evicted first
- Queryable: filter by tool or session
- Exportable: JSON export for external audit tools
"""

from __future__ import annotations

import json
from collections import deque
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from forgeflow.tools.models import (
    ApprovalDecision,
    ApprovalLogEntry,
    AuditLogEntry,
    ExecutionStats,
    SecurityStats,
)
from forgeflow.tools.risk import HIGH_RISK_THRESHOLD

DEFAULT_LOG_CAP = 1000

EntryT = TypeVar("EntryT", bound=BaseModel)


class BoundedLog(Generic[EntryT]):
    """FIFO log that never holds more than ``cap`` entries."""

    def __init__(self, cap: int = DEFAULT_LOG_CAP):
        if cap < 1:
            raise ValueError("Log cap must be at least 1")
        self._entries: deque[EntryT] = deque(maxlen=cap)

    @property
    def cap(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: EntryT) -> None:
        self._entries.append(entry)

    def entries(self) -> list[EntryT]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def remove_where(self, predicate: Callable[[EntryT], bool]) -> int:
        """Drop matching entries, keeping order; returns how many went."""
        kept = [e for e in self._entries if not predicate(e)]
        removed = len(self._entries) - len(kept)
        self._entries = deque(kept, maxlen=self._entries.maxlen)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EntryT]:
        return iter(list(self._entries))


class ExecutionStatsTracker:
    """Running totals for executed tool calls."""

    def __init__(self) -> None:
        self._stats = ExecutionStats()

    def record(self, tool_name: str, success: bool, execution_time_ms: float) -> None:
        stats = self._stats
        stats.total_executions += 1
        if success:
            stats.successful_executions += 1
        else:
            stats.failed_executions += 1
        stats.tool_usage[tool_name] = stats.tool_usage.get(tool_name, 0) + 1
        n = stats.total_executions
        stats.average_execution_time_ms += (execution_time_ms - stats.average_execution_time_ms) / n
        stats.last_execution_time = datetime.now(timezone.utc)

    def snapshot(self) -> ExecutionStats:
        return self._stats.model_copy(deep=True)

    def reset(self) -> None:
        self._stats = ExecutionStats()


class ToolAuditLog:
    """Audit and approval logs of one ToolManager."""

    def __init__(self, cap: int = DEFAULT_LOG_CAP, high_risk_threshold: int = HIGH_RISK_THRESHOLD):
        self.audit: BoundedLog[AuditLogEntry] = BoundedLog(cap)
        self.approvals: BoundedLog[ApprovalLogEntry] = BoundedLog(cap)
        self._threshold = high_risk_threshold

    def record_execution(self, entry: AuditLogEntry) -> None:
        self.audit.append(entry)

    def record_approval(self, entry: ApprovalLogEntry) -> None:
        self.approvals.append(entry)

    def approvals_for_tool(self, tool_name: str) -> list[ApprovalLogEntry]:
        return [e for e in self.approvals if e.tool_name == tool_name]

    def entries_for_session(self, session_id: str) -> list[AuditLogEntry]:
        return [e for e in self.audit if e.session_id == session_id]

    def approvals_for_session(self, session_id: str) -> list[ApprovalLogEntry]:
        return [e for e in self.approvals if e.session_id == session_id]

    def clear_session(self, session_id: str) -> int:
        """Remove every entry of one session from both logs."""
        removed = self.audit.remove_where(lambda e: e.session_id == session_id)
        removed += self.approvals.remove_where(lambda e: e.session_id == session_id)
        return removed

    def security_stats(self) -> SecurityStats:
        entries = self.approvals.entries()
        total = len(entries)
        if total == 0:
            return SecurityStats()
        approved = sum(1 for e in entries if e.decision != ApprovalDecision.DENY.value)
        return SecurityStats(
            total_approval_requests=total,
            approved_requests=approved,
            denied_requests=total - approved,
            approval_rate=approved / total,
            average_risk_score=sum(e.risk_score for e in entries) / total,
            high_risk_executions=sum(1 for e in entries if e.risk_score >= self._threshold),
        )

    def export(self, stats: ExecutionStats | None = None) -> dict[str, Any]:
        """Serializable snapshot of both logs."""
        data: dict[str, Any] = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "audit_log": [e.model_dump(mode="json") for e in self.audit],
            "approval_log": [e.model_dump(mode="json") for e in self.approvals],
            "security_stats": self.security_stats().model_dump(mode="json"),
        }
        if stats is not None:
            data["execution_stats"] = stats.model_dump(mode="json")
        return data

    def export_json(self, path: str | Path, stats: ExecutionStats | None = None) -> None:
        """Export both logs as JSON for external audit."""
        Path(path).write_text(json.dumps(self.export(stats), indent=2, default=str))
