"""
Forgeflow Runner Harness

Template-method wrapper around one workflow phase. Subclasses provide
``execute``, ``validate_inputs`` and ``get_runner_name``; ``run``
supplies everything around them:

1. Refuse to start on a cancelled session
2. Validate inputs (recoverable VALIDATION_ERROR on failure)
3. Race ``execute()`` against the optional timeout and the
   cancellation signal, with at most one operator-approved extension
4. Discard the outcome if the session was cancelled meanwhile
5. Route raised errors to ``handle_error``

The harness never cancels the phase task when it loses a race; the
task is abandoned and its eventual outcome ignored.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from forgeflow.config import ForgeflowSettings
from forgeflow.core.interfaces import AgentChatClient, FileStore, RecoveryPrompt, TimeoutPrompt
from forgeflow.core.models import (
    ChatMessage,
    ErrorRecoveryOptions,
    ExecutionContext,
    OperationTimeout,
    PhaseType,
    RecoveryChoice,
    RunnerResult,
    SecurityContext,
    SessionState,
    UserInfo,
)
from forgeflow.core.session import SessionStateMachine
from forgeflow.exceptions import (
    AuthError,
    CancelledError,
    ForgeflowError,
    NetworkError,
    OperationTimeoutError,
    RateLimitError,
    RunnerError,
    ValidationError,
    as_forgeflow_error,
)
from forgeflow.logging import get_logger
from forgeflow.observability.metrics import measure_runner_duration
from forgeflow.tools.builtin import BUILTIN_PERMISSIONS
from forgeflow.tools.manager import ToolManager

logger = get_logger("forgeflow.runners")

DEFAULT_AGENT = "default"


class BaseRunner(ABC):
    """Common harness for the context, planning and execution phases."""

    phase: PhaseType | None = None

    def __init__(
        self,
        machine: SessionStateMachine,
        tool_manager: ToolManager | None = None,
        file_store: FileStore | None = None,
        chat_client: AgentChatClient | None = None,
        settings: ForgeflowSettings | None = None,
        recovery_prompt: RecoveryPrompt | None = None,
        timeout_prompt: TimeoutPrompt | None = None,
        context: ExecutionContext | None = None,
    ):
        self.machine = machine
        self.tool_manager = tool_manager
        self.file_store = file_store
        self.chat_client = chat_client
        self.settings = settings or ForgeflowSettings()
        self.recovery_prompt = recovery_prompt
        self.timeout_prompt = timeout_prompt
        self.context = context or ExecutionContext(
            agent_id=self.agent_id,
            session_id=machine.id,
            user=UserInfo(id="local", permissions=list(BUILTIN_PERMISSIONS)),
            security=SecurityContext(),
            workspace=machine.workspace,
        )
        self.last_recovery_options: ErrorRecoveryOptions | None = None

    # ── subclass contract ──

    @abstractmethod
    async def execute(self) -> RunnerResult: ...

    @abstractmethod
    def validate_inputs(self) -> bool: ...

    @abstractmethod
    def get_runner_name(self) -> str: ...

    async def handle_error(self, error: ForgeflowError) -> None:
        """Route a failure to the matching handler."""
        if isinstance(error, NetworkError):
            await self.handle_network_error(error)
        elif isinstance(error, AuthError):
            await self.handle_auth_error(error)
        elif isinstance(error, RateLimitError):
            await self.handle_rate_limit_error(error)
        else:
            await self.default_error_handler(error)

    # ── harness ──

    async def run(self, timeout: OperationTimeout | None = None) -> RunnerResult:
        name = self.get_runner_name()
        extra = {"runner": name, "session_id": self.machine.id}

        if self.machine.is_cancelled():
            return RunnerResult(
                success=False, error=CancelledError("Session was cancelled before execution")
            )

        if not self.validate_inputs():
            error = ValidationError(
                f"Invalid inputs for {name}",
                suggested_fix="Check your configuration and try again",
            )
            await self.handle_error(error)
            return RunnerResult(success=False, error=error)

        self.report_progress(f"Starting {name}")
        logger.info("Starting %s", name, extra=extra)

        with measure_runner_duration(name) as state:
            try:
                result = await self._execute_with_timeout(name, timeout)
            except Exception as e:
                if self.machine.is_cancelled() or isinstance(e, CancelledError):
                    return self._cancelled_during_execution()
                error = as_forgeflow_error(e)
                logger.warning(
                    "%s failed: %s",
                    name,
                    error.message,
                    extra={**extra, "error_code": error.code},
                )
                await self.handle_error(error)
                return RunnerResult(success=False, error=error)

            if self.machine.is_cancelled():
                return self._cancelled_during_execution()

            state["success"] = result.success

        self.report_progress(f"Completed {name}")
        logger.info("Completed %s", name, extra=extra)
        return result

    async def _execute_with_timeout(
        self, name: str, timeout: OperationTimeout | None
    ) -> RunnerResult:
        task = asyncio.ensure_future(self.execute())
        task.add_done_callback(_consume_abandoned)

        finished = await self._race(task, timeout.duration if timeout else None)
        if not finished and timeout is not None and not self.machine.is_cancelled():
            if timeout.allow_extension and await self._request_extension(name, timeout):
                finished = await self._race(task, timeout.duration)
            if not finished and not self.machine.is_cancelled():
                raise OperationTimeoutError(f"Operation timed out: {timeout.message or name}")

        if not finished:
            raise CancelledError("Session was cancelled during execution")
        return task.result()

    async def _race(self, task: asyncio.Future, duration: float | None) -> bool:
        """Wait for ``task``, the cancellation signal or the timeout."""
        cancelled = asyncio.ensure_future(self.machine.wait_cancelled())
        try:
            done, _ = await asyncio.wait(
                {task, cancelled}, timeout=duration, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancelled.cancel()
        return task in done

    async def _request_extension(self, name: str, timeout: OperationTimeout) -> bool:
        if self.timeout_prompt is None or not self.settings.interactive:
            return False
        extend = await self.timeout_prompt.extend(name, timeout)
        logger.info(
            "Timeout extension %s",
            "granted" if extend else "refused",
            extra={"runner": name, "session_id": self.machine.id},
        )
        return bool(extend)

    def _cancelled_during_execution(self) -> RunnerResult:
        return RunnerResult(
            success=False, error=CancelledError("Session was cancelled during execution")
        )

    # ── error factories and handlers ──

    def create_recoverable_error(
        self,
        message: str,
        code: str = "RUNNER_ERROR",
        suggested_fix: str | None = None,
        configuration_link: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> RunnerError:
        return RunnerError(
            message,
            code=code,
            recoverable=True,
            suggested_fix=suggested_fix,
            configuration_link=configuration_link,
            context={"runner": self.get_runner_name(), **(context or {})},
        )

    def create_fatal_error(
        self,
        message: str,
        code: str = "RUNNER_ERROR",
        suggested_fix: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> RunnerError:
        return RunnerError(
            message,
            code=code,
            recoverable=False,
            suggested_fix=suggested_fix,
            context={"runner": self.get_runner_name(), **(context or {})},
        )

    async def default_error_handler(self, error: BaseException) -> ErrorRecoveryOptions:
        """Record the failure on the session and ask the operator what next.

        Headless sessions always abort.
        """
        err = as_forgeflow_error(error)
        name = self.get_runner_name()
        logger.error(
            "%s error: %s",
            name,
            err.message,
            extra={"runner": name, "session_id": self.machine.id, "error_code": err.code},
        )
        self.machine.error(f"{name} failed: {err.message}", err.to_dict())

        options = ErrorRecoveryOptions()
        if self.settings.interactive and self.recovery_prompt is not None:
            choices = [RecoveryChoice.ABORT]
            if err.recoverable:
                choices[:0] = [RecoveryChoice.RETRY, RecoveryChoice.SKIP]
            if err.configuration_link:
                choices.insert(-1, RecoveryChoice.RECONFIGURE)

            self.machine.set_state(
                SessionState.AWAITING_RECOVERY_DECISION, f"Waiting for a decision on {name}"
            )
            answer = await self.recovery_prompt.choose(name, err, [c.value for c in choices])
            try:
                choice = RecoveryChoice(answer)
            except ValueError:
                choice = RecoveryChoice.ABORT
            if choice not in choices:
                choice = RecoveryChoice.ABORT
            options = ErrorRecoveryOptions.from_choice(choice)
            self.machine.set_state(SessionState.ERROR, f"{name}: {choice.value}")

        if options.retry:
            self.machine.metadata["retry_requested"] = True
        elif options.reconfigure:
            self.machine.metadata["reconfigure_requested"] = err.configuration_link

        self.last_recovery_options = options
        return options

    async def handle_network_error(self, error: BaseException) -> ErrorRecoveryOptions:
        err = error if isinstance(error, NetworkError) else NetworkError(str(error))
        if err.suggested_fix is None:
            err = NetworkError(
                err.message,
                suggested_fix="Check your network connection and that the agent provider is reachable",
                configuration_link=err.configuration_link,
                context=err.context,
            )
        return await self.default_error_handler(err)

    async def handle_auth_error(self, error: BaseException) -> ErrorRecoveryOptions:
        err = error if isinstance(error, AuthError) else AuthError(str(error))
        if err.suggested_fix is None:
            err = AuthError(
                err.message,
                recoverable=err.recoverable,
                suggested_fix="Set ANTHROPIC_API_KEY or update the agent credentials",
                configuration_link=err.configuration_link or "https://console.anthropic.com/settings/keys",
                context=err.context,
            )
        return await self.default_error_handler(err)

    async def handle_rate_limit_error(self, error: BaseException) -> ErrorRecoveryOptions:
        err = error if isinstance(error, RateLimitError) else RateLimitError(str(error))
        if err.suggested_fix is None:
            wait = f"{err.retry_after:.0f}s" if err.retry_after else "a moment"
            err = RateLimitError(
                err.message,
                retry_after=err.retry_after,
                suggested_fix=f"Wait {wait} and retry",
                configuration_link=err.configuration_link,
            )
        return await self.default_error_handler(err)

    # ── helpers for phase logic ──

    def check_cancellation(self) -> None:
        """Raise CancelledError if the session was cancelled."""
        if self.machine.is_cancelled():
            raise CancelledError("Session was cancelled")

    def report_progress(self, message: str, increment: float | None = None) -> None:
        self.check_cancellation()
        self.machine.report_progress(message, increment, cancellable=True)

    @property
    def agent_id(self) -> str:
        if self.phase is None:
            return DEFAULT_AGENT
        return self.machine.agent_mapping.agent_for(self.phase) or DEFAULT_AGENT

    async def ask_agent(self, prompt: str, system: str | None = None) -> str:
        """Send one prompt to the agent assigned to this runner's phase."""
        if self.chat_client is None:
            raise self.create_fatal_error(
                f"{self.get_runner_name()} requires an agent chat client",
                code="CONFIGURATION_ERROR",
            )
        self.check_cancellation()
        messages = [ChatMessage(role="user", content=prompt)]
        options = {"system": system} if system else None
        response = await self.chat_client.send_message(self.agent_id, messages, options)
        self.check_cancellation()
        return response.content

    def _require_store(self) -> FileStore:
        if self.file_store is None:
            raise self.create_fatal_error(
                f"{self.get_runner_name()} requires a workspace file store",
                code="CONFIGURATION_ERROR",
            )
        return self.file_store

    async def read_workspace_file(self, path: str) -> str:
        return await self._require_store().read(path)

    async def write_workspace_file(self, path: str, content: str) -> None:
        await self._require_store().write(path, content)

    async def workspace_file_exists(self, path: str) -> bool:
        return await self._require_store().exists(path)

    async def ensure_directory(self, path: str) -> None:
        await self._require_store().create_directory(path)

    async def save_artifact(self, name: str, content: str) -> str:
        """Write ``content`` under the artifact directory and return its path."""
        await self.ensure_directory(self.settings.artifact_dir)
        path = self.settings.artifact_path(name)
        await self.write_workspace_file(path, content)
        return path

    async def load_artifact(self, name: str) -> str | None:
        path = self.settings.artifact_path(name)
        if not await self.workspace_file_exists(path):
            return None
        return await self.read_workspace_file(path)


def _consume_abandoned(task: asyncio.Future) -> None:
    # retrieve the outcome of a task the harness stopped waiting for
    if not task.cancelled():
        task.exception()
