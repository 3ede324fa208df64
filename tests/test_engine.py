"""
Tests for the Forgeflow engine.

Verifies:
- a full SPEED run over in-memory collaborators
- STRUCTURED phase gates
- one operator-approved retry per phase, skip and abort
- session cleanup on dispose
"""

import json
from unittest.mock import AsyncMock

import pytest

from forgeflow.config import ForgeflowSettings
from forgeflow.core.models import (
    ChatResponse,
    PhaseAgentMapping,
    PhaseType,
    SessionState,
    WorkflowMode,
)
from forgeflow.engine import Forgeflow
from forgeflow.runners.execution import ExecutionOptions

PLAN = {
    "actions": [
        {
            "id": "action-1",
            "type": "create_file",
            "description": "Add the health check handler",
            "parameters": {"path": "src/health.py", "content": "def health():\n    return 'ok'\n"},
        },
        {
            "id": "action-2",
            "type": "run_command",
            "description": "Run the test suite",
            "parameters": {"command": "pytest -q"},
            "dependencies": ["action-1"],
        },
    ]
}

BROKEN_PLAN = {
    "actions": [
        {
            "id": "action-1",
            "type": "modify_file",
            "description": "Patch a file that is not there",
            "parameters": {"path": "missing.py", "content": "x"},
        }
    ]
}


def reply(data):
    return ChatResponse(content=json.dumps(data) if isinstance(data, dict) else data)


@pytest.fixture
def approval_prompt():
    prompt = AsyncMock()
    prompt.ask.return_value = "always-allow"
    prompt.confirm_high_risk.return_value = True
    return prompt


@pytest.fixture
def make_engine(store, process_runner, chat_client, approval_prompt):
    store.files["src/app.py"] = "print('hi')\n"
    chat_client.send_message.return_value = reply(PLAN)

    def _make(interactive=False, **kwargs):
        return Forgeflow(
            "/workspace",
            settings=ForgeflowSettings(interactive=interactive),
            chat_client=chat_client,
            file_store=store,
            process_runner=process_runner,
            approval_prompt=approval_prompt,
            **kwargs,
        )

    return _make


def recovery(answer):
    prompt = AsyncMock()
    prompt.choose.return_value = answer
    return prompt


# ─── Full run ───────────────────────────────────────────────


class TestSpeedRun:
    @pytest.mark.asyncio
    async def test_runs_all_phases(self, make_engine, store, process_runner):
        engine = make_engine()
        result = await engine.run("Add a health check endpoint")

        assert result.success
        assert result.final_state == SessionState.COMPLETED
        assert [p.phase for p in result.phases] == [
            PhaseType.CONTEXT,
            PhaseType.PLANNING,
            PhaseType.EXECUTION,
        ]
        assert all(p.success and p.attempts == 1 for p in result.phases)
        assert result.execution.completed_actions == 2
        assert result.artifacts == [
            ".forgeflow/context.json",
            ".forgeflow/action-list.json",
            ".forgeflow/spec.md",
            ".forgeflow/execution-report.md",
        ]
        assert store.files["src/health.py"].startswith("def health")
        assert process_runner.calls == [("pytest -q", "/workspace", 300.0)]

    @pytest.mark.asyncio
    async def test_session_is_disposed(self, make_engine):
        engine = make_engine()
        result = await engine.run("Add a health check endpoint")
        assert engine.sessions == {}
        assert not engine.tool_manager.is_session_approved(result.session_id, "execute_command")
        manager = engine.tool_manager
        assert manager.get_audit_log(result.session_id) == []
        assert manager.get_approval_log(result.session_id) == []
        assert manager.get_execution_stats(result.session_id).total_executions == 0
        assert manager.get_execution_stats().total_executions > 0

    @pytest.mark.asyncio
    async def test_agents_assigned(self, make_engine, chat_client):
        engine = make_engine()
        mapping = PhaseAgentMapping(assignments={PhaseType.PLANNING: "planner"})
        machine = engine.create_session("Add a health check endpoint", agent_mapping=mapping)
        await engine.run_session(machine)

        assert machine.agent_mapping.agent_for(PhaseType.PLANNING) == "planner"
        assert machine.agent_mapping.agent_for(PhaseType.RECOVERY) == "default"
        assert SessionState.AGENT_ASSIGNMENT in [h[0] for h in machine.history]
        assert chat_client.send_message.call_args_list[0][0][0] == "planner"

    @pytest.mark.asyncio
    async def test_headless_failure_stops_run(self, make_engine, chat_client):
        chat_client.send_message.return_value = reply("I would rather not.")
        result = await make_engine().run("Add a health check endpoint")

        assert not result.success
        assert result.final_state == SessionState.ERROR
        assert [p.phase for p in result.phases] == [PhaseType.CONTEXT, PhaseType.PLANNING]
        assert result.phases[-1].error_code == "PLANNING_PARSE_ERROR"
        assert result.execution is None

    @pytest.mark.asyncio
    async def test_recovered_execution_is_not_a_success(self, make_engine, chat_client):
        chat_client.send_message.return_value = reply(BROKEN_PLAN)
        result = await make_engine().run("Patch the app")

        assert not result.success
        assert result.final_state == SessionState.ERROR
        execution = result.phases[-1]
        assert execution.phase == PhaseType.EXECUTION
        assert execution.error_code == "ACTIONS_FAILED"
        assert (result.execution.failed_actions, result.execution.skipped_actions) == (1, 0)
        assert result.execution.recovery_attempts == 1

    @pytest.mark.asyncio
    async def test_cancelled_session_runs_nothing(self, make_engine, chat_client):
        engine = make_engine()
        machine = engine.create_session("Add a health check endpoint")
        assert engine.cancel(machine.id)
        assert not engine.cancel("session-unknown")

        result = await engine.run_session(machine)
        assert not result.success
        assert result.phases == []
        assert result.final_state == SessionState.CANCELLED
        chat_client.send_message.assert_not_called()


# ─── Operator decisions ─────────────────────────────────────


class TestRecoveryDecisions:
    @pytest.mark.asyncio
    async def test_retry_planning_once(self, make_engine, chat_client):
        chat_client.send_message.side_effect = [reply("not json"), reply(PLAN)]
        engine = make_engine(interactive=True, recovery_prompt=recovery("retry"))
        result = await engine.run("Add a health check endpoint")

        assert result.success
        planning = result.phases[1]
        assert planning.success
        assert planning.attempts == 2

    @pytest.mark.asyncio
    async def test_execution_retried_at_most_once(self, make_engine, chat_client):
        chat_client.send_message.return_value = reply(BROKEN_PLAN)
        prompt = recovery("retry")
        engine = make_engine(interactive=True, recovery_prompt=prompt)
        result = await engine.run(
            "Patch the app", options=ExecutionOptions(enable_recovery=False)
        )

        execution = result.phases[-1]
        assert not execution.success
        assert execution.attempts == 2
        assert execution.error_code == "ACTIONS_FAILED"
        assert prompt.choose.await_count == 2
        assert result.execution.failed_actions == 1

    @pytest.mark.asyncio
    async def test_skip_continues_to_next_phase(self, make_engine, chat_client):
        chat_client.send_message.return_value = reply("not json")
        engine = make_engine(interactive=True, recovery_prompt=recovery("skip"))
        result = await engine.run("Add a health check endpoint")

        assert not result.success
        planning, execution = result.phases[1], result.phases[2]
        assert planning.skipped
        # no action list, the fatal error only offers abort
        assert not execution.skipped
        assert execution.error_code == "ACTION_LIST_MISSING"


# ─── STRUCTURED mode ────────────────────────────────────────


class TestStructuredMode:
    @pytest.mark.asyncio
    async def test_gates_before_planning_and_execution(self, make_engine):
        gate = AsyncMock()
        gate.confirm.return_value = True
        engine = make_engine(interactive=True, phase_gate=gate)
        machine = engine.create_session("Add a health check endpoint", mode=WorkflowMode.STRUCTURED)
        result = await engine.run_session(machine)

        assert result.success
        phases = [c.args[0] for c in gate.confirm.call_args_list]
        assert phases == [PhaseType.PLANNING, PhaseType.EXECUTION]
        assert "file(s), languages: python" in gate.confirm.call_args_list[0].args[1]
        assert gate.confirm.call_args_list[1].args[1].startswith("2 action(s)")
        assert SessionState.AWAITING_PLAN_APPROVAL in [h[0] for h in machine.history]

    @pytest.mark.asyncio
    async def test_rejected_gate_cancels(self, make_engine, chat_client):
        gate = AsyncMock()
        gate.confirm.return_value = False
        engine = make_engine(interactive=True, phase_gate=gate)
        result = await engine.run("Add a health check endpoint", mode=WorkflowMode.STRUCTURED)

        assert not result.success
        assert result.final_state == SessionState.CANCELLED
        assert [p.phase for p in result.phases] == [PhaseType.CONTEXT]
        chat_client.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_headless_structured_runs_without_gate(self, make_engine):
        gate = AsyncMock()
        result = await make_engine(phase_gate=gate).run(
            "Add a health check endpoint", mode=WorkflowMode.STRUCTURED
        )
        assert result.success
        gate.confirm.assert_not_called()
