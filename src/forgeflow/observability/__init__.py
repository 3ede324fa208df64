"""Forgeflow Observability: OpenTelemetry metrics.

Instruments use the global meter provider; configure an SDK to export
them. Without one, all calls are no-ops.
"""

from forgeflow.observability.metrics import (
    measure_runner_duration,
    record_approval,
    record_recovery_attempt,
    record_runner_duration,
    record_tool_call,
)

__all__ = [
    "measure_runner_duration",
    "record_approval",
    "record_recovery_attempt",
    "record_runner_duration",
    "record_tool_call",
]
