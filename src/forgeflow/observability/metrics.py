"""OpenTelemetry metrics for Forgeflow.

Counters and histograms for tool calls, approval decisions, runner
durations and recovery attempts. Instruments come from the global
meter provider; without a configured SDK they are no-ops.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import metrics

if TYPE_CHECKING:
    from collections.abc import Generator

_meter: metrics.Meter | None = None
_tool_calls_total: metrics.Counter | None = None
_tool_duration: metrics.Histogram | None = None
_approvals_total: metrics.Counter | None = None
_runner_duration: metrics.Histogram | None = None
_recovery_attempts_total: metrics.Counter | None = None


def _ensure_meter() -> metrics.Meter:
    """Lazily create the meter and instruments."""
    global _meter, _tool_calls_total, _tool_duration, _approvals_total
    global _runner_duration, _recovery_attempts_total

    if _meter is not None:
        return _meter

    _meter = metrics.get_meter("forgeflow", "0.3.0")
    _tool_calls_total = _meter.create_counter(
        "forgeflow.tool_calls.total",
        description="Tool calls by outcome",
        unit="1",
    )
    _tool_duration = _meter.create_histogram(
        "forgeflow.tool_call.duration_ms",
        description="Tool executor latency in milliseconds",
        unit="ms",
    )
    _approvals_total = _meter.create_counter(
        "forgeflow.approvals.total",
        description="Approval decisions",
        unit="1",
    )
    _runner_duration = _meter.create_histogram(
        "forgeflow.runner.duration_seconds",
        description="Phase runner duration in seconds",
        unit="s",
    )
    _recovery_attempts_total = _meter.create_counter(
        "forgeflow.recovery_attempts.total",
        description="Recovery attempts during execution",
        unit="1",
    )
    return _meter


def record_tool_call(*, tool_name: str, outcome: str, duration_ms: float | None = None) -> None:
    """Record one tool call with its audit outcome (success/failure/denied)."""
    _ensure_meter()
    attributes = {"forgeflow.tool_name": tool_name, "forgeflow.outcome": outcome}
    _tool_calls_total.add(1, attributes)
    if duration_ms is not None:
        _tool_duration.record(duration_ms, {"forgeflow.tool_name": tool_name})


def record_approval(*, tool_name: str, decision: str, risk_score: int) -> None:
    """Record an approval decision."""
    _ensure_meter()
    _approvals_total.add(
        1,
        {
            "forgeflow.tool_name": tool_name,
            "forgeflow.decision": decision,
            "forgeflow.high_risk": str(risk_score >= 70),
        },
    )


def record_runner_duration(*, runner: str, duration_seconds: float, success: bool) -> None:
    _ensure_meter()
    _runner_duration.record(
        duration_seconds,
        {"forgeflow.runner": runner, "forgeflow.success": str(success)},
    )


def record_recovery_attempt(*, session_id: str, attempt: int) -> None:
    _ensure_meter()
    _recovery_attempts_total.add(
        1, {"forgeflow.session_id": session_id, "forgeflow.attempt": str(attempt)}
    )


@contextmanager
def measure_runner_duration(runner: str) -> Generator[dict[str, bool], None, None]:
    """Measure a runner invocation; set ``state["success"]`` inside the block."""
    state = {"success": False}
    start = time.monotonic()
    try:
        yield state
    finally:
        record_runner_duration(
            runner=runner,
            duration_seconds=time.monotonic() - start,
            success=state["success"],
        )
