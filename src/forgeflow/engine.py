"""
Forgeflow Engine

Host bootstrap: owns one ToolManager (with the built-in tools
registered against the workspace FileStore and ProcessRunner) and
drives sessions through the phases:

1. Assign an agent to every phase that has none
2. Context generation (workspace scan -> context.json)
3. Planning (agent -> action-list.json + spec.md)
4. Execution (action list -> tool calls -> execution-report.md)

In STRUCTURED mode a PhaseGate signs off before planning and before
execution. A failing phase goes through the runner's error handler;
the operator's choice decides whether the phase is retried once,
skipped, or the run stops.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from forgeflow.adapters.claude import ClaudeChatClient
from forgeflow.adapters.files import LocalFileStore
from forgeflow.adapters.process import SubprocessRunner
from forgeflow.config import ForgeflowSettings
from forgeflow.core.interfaces import (
    AgentChatClient,
    ApprovalPrompt,
    FileStore,
    PhaseGate,
    ProcessRunner,
    ProgressSink,
    RecoveryPrompt,
    TimeoutPrompt,
)
from forgeflow.core.models import (
    ActionList,
    ExecutionSummary,
    OperationTimeout,
    PhaseAgentMapping,
    PhaseType,
    RunnerResult,
    SessionRequirements,
    SessionState,
    WorkflowMode,
    WorkspaceContext,
)
from forgeflow.core.session import Session, SessionStateMachine
from forgeflow.logging import get_logger
from forgeflow.runners.base import DEFAULT_AGENT, BaseRunner
from forgeflow.runners.context import CONTEXT_ARTIFACT, ContextRunner
from forgeflow.runners.execution import (
    ACTION_LIST_ARTIFACT,
    REPORT_ARTIFACT,
    ExecutionOptions,
    ExecutionRunner,
)
from forgeflow.runners.planning import SPEC_ARTIFACT, PlanningRunner
from forgeflow.tools.builtin import register_all_builtins
from forgeflow.tools.manager import ToolManager
from forgeflow.tools.registry import ToolRegistry
from forgeflow.tools.validators import SecurityValidator

logger = get_logger("forgeflow.engine")

PHASE_ORDER = (PhaseType.CONTEXT, PhaseType.PLANNING, PhaseType.EXECUTION)
MAX_PHASE_RETRIES = 1


class PhaseOutcome(BaseModel):
    phase: PhaseType
    success: bool
    skipped: bool = False
    attempts: int = 1
    error: str | None = None
    error_code: str | None = None


class WorkflowResult(BaseModel):
    """What a host gets back from ``Forgeflow.run``."""

    session_id: str
    success: bool
    final_state: SessionState
    phases: list[PhaseOutcome] = Field(default_factory=list)
    execution: ExecutionSummary | None = None
    artifacts: list[str] = Field(default_factory=list)


class Forgeflow:
    """Workflow engine: one tool pipeline shared by every session it runs."""

    def __init__(
        self,
        workspace: str,
        settings: ForgeflowSettings | None = None,
        chat_client: AgentChatClient | None = None,
        file_store: FileStore | None = None,
        process_runner: ProcessRunner | None = None,
        approval_prompt: ApprovalPrompt | None = None,
        recovery_prompt: RecoveryPrompt | None = None,
        timeout_prompt: TimeoutPrompt | None = None,
        phase_gate: PhaseGate | None = None,
        progress: ProgressSink | None = None,
    ):
        """Initialize the engine.

        Args:
            workspace: Root directory the session works in.
            settings: Engine settings. Defaults to ``ForgeflowSettings()``.
            chat_client: Agent client. If None, a ClaudeChatClient using
                ANTHROPIC_API_KEY is created.
            file_store: Workspace persistence. Defaults to LocalFileStore.
            process_runner: Shell runner. Defaults to SubprocessRunner.
            approval_prompt: Operator prompt for gated tools. Without one,
                tools that require approval are denied.
            recovery_prompt: Operator prompt after a phase failure.
            timeout_prompt: Operator prompt offering a timeout extension.
            phase_gate: Sign-off between phases in STRUCTURED mode.
            progress: Sink receiving every progress update.
        """
        self.workspace = workspace
        self.settings = settings or ForgeflowSettings()
        self.chat_client = chat_client or ClaudeChatClient(model=self.settings.model)
        self.file_store = file_store or LocalFileStore(workspace)
        self.process_runner = process_runner or SubprocessRunner()
        self.recovery_prompt = recovery_prompt
        self.timeout_prompt = timeout_prompt
        self.phase_gate = phase_gate
        self.progress = progress

        registry = ToolRegistry(web_environment=self.settings.web_environment)
        register_all_builtins(
            registry,
            self.file_store,
            self.process_runner,
            default_cwd=workspace,
            command_timeout=self.settings.command_timeout_seconds,
        )
        self.tool_manager = ToolManager(
            registry=registry,
            approval_prompt=approval_prompt,
            security_validator=SecurityValidator(web_environment=self.settings.web_environment),
            log_cap=self.settings.audit_log_cap,
            approval_timeout=self.settings.approval_timeout_seconds,
            high_risk_threshold=self.settings.high_risk_threshold,
        )
        self.sessions: dict[str, SessionStateMachine] = {}

    # ── sessions ──

    def create_session(
        self,
        requirement: str,
        mode: WorkflowMode = WorkflowMode.SPEED,
        agent_mapping: PhaseAgentMapping | None = None,
        custom_instructions: str | None = None,
        session_id: str | None = None,
    ) -> SessionStateMachine:
        session = Session(
            workspace=self.workspace,
            requirements=SessionRequirements(
                description=requirement, custom_instructions=custom_instructions
            ),
            mode=mode,
            agent_mapping=agent_mapping,
            progress=self.progress,
            session_id=session_id,
        )
        machine = SessionStateMachine(session, strict=self.settings.strict_transitions)
        machine.on_dispose(self.tool_manager.clear_session)
        machine.on_dispose(self._forget)
        self.sessions[machine.id] = machine
        logger.info("Session created", extra={"session_id": machine.id})
        return machine

    def cancel(self, session_id: str) -> bool:
        """Cancel a running session. Returns False if it is unknown."""
        machine = self.sessions.get(session_id)
        if machine is None:
            return False
        machine.cancel()
        return True

    def _forget(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    # ── workflow ──

    async def run(
        self,
        requirement: str,
        mode: WorkflowMode = WorkflowMode.SPEED,
        agent_mapping: PhaseAgentMapping | None = None,
        options: ExecutionOptions | None = None,
        timeouts: dict[PhaseType, OperationTimeout] | None = None,
        custom_instructions: str | None = None,
    ) -> WorkflowResult:
        """Run context, planning and execution for one requirement."""
        machine = self.create_session(requirement, mode, agent_mapping, custom_instructions)
        try:
            return await self.run_session(machine, options, timeouts)
        finally:
            machine.dispose()

    async def run_session(
        self,
        machine: SessionStateMachine,
        options: ExecutionOptions | None = None,
        timeouts: dict[PhaseType, OperationTimeout] | None = None,
    ) -> WorkflowResult:
        """Drive an existing session through every phase."""
        timeouts = timeouts or {}
        if not machine.is_cancelled():
            self.assign_agents(machine)

        outcomes: list[PhaseOutcome] = []
        execution: ExecutionSummary | None = None
        completed = True

        for phase in PHASE_ORDER:
            if machine.is_cancelled():
                completed = False
                break
            if not await self._gate(machine, phase):
                logger.info(
                    "Operator stopped the run before %s",
                    phase.value,
                    extra={"session_id": machine.id},
                )
                machine.cancel()
                completed = False
                break

            outcome, result = await self._run_phase(machine, phase, options, timeouts.get(phase))
            outcomes.append(outcome)
            if phase == PhaseType.EXECUTION and isinstance(result.data, ExecutionSummary):
                execution = result.data
            if not outcome.success:
                completed = False
                if not outcome.skipped:
                    break

        if completed and not machine.is_cancelled():
            machine.complete()

        return WorkflowResult(
            session_id=machine.id,
            success=completed and machine.state == SessionState.COMPLETED,
            final_state=machine.state,
            phases=outcomes,
            execution=execution,
            artifacts=await self._existing_artifacts(),
        )

    def assign_agents(self, machine: SessionStateMachine) -> PhaseAgentMapping:
        """Give every unassigned phase the default agent."""
        machine.set_state(SessionState.AGENT_ASSIGNMENT, "Assigning agents to phases")
        mapping = machine.agent_mapping
        missing = [phase for phase in PhaseType if phase not in mapping.assignments]
        for phase in missing:
            mapping.assignments[phase] = DEFAULT_AGENT
        if missing and not mapping.reasoning:
            mapping.reasoning = "Default agent for unassigned phases"
        logger.debug(
            "Agent assignments: %s",
            {phase.value: agent for phase, agent in mapping.assignments.items()},
            extra={"session_id": machine.id},
        )
        return mapping

    def build_runner(
        self,
        machine: SessionStateMachine,
        phase: PhaseType,
        options: ExecutionOptions | None = None,
    ) -> BaseRunner:
        kwargs = {
            "tool_manager": self.tool_manager,
            "file_store": self.file_store,
            "chat_client": self.chat_client,
            "settings": self.settings,
            "recovery_prompt": self.recovery_prompt,
            "timeout_prompt": self.timeout_prompt,
        }
        if phase == PhaseType.CONTEXT:
            return ContextRunner(machine, **kwargs)
        if phase == PhaseType.PLANNING:
            return PlanningRunner(machine, **kwargs)
        if phase == PhaseType.EXECUTION:
            return ExecutionRunner(machine, options=options, **kwargs)
        raise ValueError(f"No runner for phase: {phase.value}")

    async def _run_phase(
        self,
        machine: SessionStateMachine,
        phase: PhaseType,
        options: ExecutionOptions | None,
        timeout: OperationTimeout | None,
    ) -> tuple[PhaseOutcome, RunnerResult]:
        attempts = 0
        while True:
            attempts += 1
            machine.metadata.pop("retry_requested", None)
            runner = self.build_runner(machine, phase, options)
            result = await runner.run(timeout)
            if result.success:
                return PhaseOutcome(phase=phase, success=True, attempts=attempts), result

            decision = runner.last_recovery_options
            if decision is None and not machine.is_cancelled():
                # failure reported in the result rather than raised
                decision = await runner.default_error_handler(
                    result.error or runner.create_fatal_error(f"{runner.get_runner_name()} failed")
                )

            retry = machine.metadata.pop("retry_requested", False)
            if retry and attempts <= MAX_PHASE_RETRIES and not machine.is_cancelled():
                logger.info(
                    "Retrying %s",
                    phase.value,
                    extra={"session_id": machine.id, "runner": runner.get_runner_name()},
                )
                if phase == PhaseType.EXECUTION:
                    options = (options or ExecutionOptions()).model_copy(
                        update={"retry_failed": True}
                    )
                continue

            error = result.error
            return (
                PhaseOutcome(
                    phase=phase,
                    success=False,
                    skipped=bool(decision and decision.skip),
                    attempts=attempts,
                    error=result.error_message or None,
                    error_code=getattr(error, "code", None),
                ),
                result,
            )

    async def _gate(self, machine: SessionStateMachine, phase: PhaseType) -> bool:
        if machine.mode != WorkflowMode.STRUCTURED or phase == PHASE_ORDER[0]:
            return True
        if self.phase_gate is None or not self.settings.interactive:
            logger.info(
                "No phase gate available, continuing to %s",
                phase.value,
                extra={"session_id": machine.id},
            )
            return True

        if phase == PhaseType.EXECUTION:
            machine.set_state(SessionState.AWAITING_PLAN_APPROVAL, "Waiting for plan approval")
        summary = await self._phase_summary(phase)
        return bool(await self.phase_gate.confirm(phase, summary))

    async def _phase_summary(self, phase: PhaseType) -> str:
        """Describe what the previous phase produced."""
        if phase == PhaseType.PLANNING:
            raw = await self._read_artifact(CONTEXT_ARTIFACT)
            if raw is None:
                return "No workspace context available."
            context = WorkspaceContext.model_validate_json(raw)
            return (
                f"{context.summary.description}\n"
                f"{context.summary.total_files} file(s), languages: "
                f"{', '.join(context.summary.primary_languages) or 'unknown'}"
            )

        raw = await self._read_artifact(ACTION_LIST_ARTIFACT)
        if raw is None:
            return "No action list available."
        plan = ActionList.model_validate_json(raw)
        lines = [
            f"{len(plan.actions)} action(s), complexity {plan.metadata.complexity}, "
            f"risk {plan.metadata.risk_level.value}, ~{plan.metadata.estimated_duration} hours",
            "",
        ]
        lines += [f"{i}. {a.description}" for i, a in enumerate(plan.actions, start=1)]
        return "\n".join(lines)

    async def _read_artifact(self, name: str) -> str | None:
        path = self.settings.artifact_path(name)
        if not await self.file_store.exists(path):
            return None
        return await self.file_store.read(path)

    async def _existing_artifacts(self) -> list[str]:
        found = []
        for name in (CONTEXT_ARTIFACT, ACTION_LIST_ARTIFACT, SPEC_ARTIFACT, REPORT_ARTIFACT):
            path = self.settings.artifact_path(name)
            if await self.file_store.exists(path):
                found.append(path)
        return found
