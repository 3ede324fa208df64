"""Tests for the OpenTelemetry metric helpers."""

from unittest.mock import patch

import pytest

from forgeflow.observability import metrics


class TestMeasureRunnerDuration:
    def test_records_success_flag(self):
        with patch.object(metrics, "record_runner_duration") as record:
            with metrics.measure_runner_duration("Planning") as state:
                state["success"] = True
        kwargs = record.call_args.kwargs
        assert kwargs["runner"] == "Planning"
        assert kwargs["success"] is True
        assert kwargs["duration_seconds"] >= 0

    def test_records_failure_on_exception(self):
        with patch.object(metrics, "record_runner_duration") as record:
            with pytest.raises(RuntimeError):
                with metrics.measure_runner_duration("Execution"):
                    raise RuntimeError("boom")
        assert record.call_args.kwargs["success"] is False


def test_recorders_are_noops_without_sdk():
    metrics.record_tool_call(tool_name="read_file", outcome="success", duration_ms=1.5)
    metrics.record_approval(tool_name="delete_file", decision="deny", risk_score=80)
    metrics.record_recovery_attempt(session_id="s-1", attempt=1)
    metrics.record_runner_duration(runner="Context Analysis", duration_seconds=0.1, success=True)
