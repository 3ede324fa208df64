"""
Forgeflow Collaborator Interfaces

The engine never talks to a concrete host. Phase logic, the tool
pipeline and the harness consume these narrow protocols; bundled
implementations live in ``forgeflow.adapters``, tests use mocks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from forgeflow.core.models import (
    ChatMessage,
    ChatResponse,
    ExecutionContext,
    OperationTimeout,
    PhaseType,
    ProcessResult,
    ProgressUpdate,
    RiskAssessment,
)

if TYPE_CHECKING:
    from forgeflow.exceptions import ForgeflowError
    from forgeflow.tools.models import ToolDefinition


class AgentChatClient(Protocol):
    async def send_message(
        self,
        agent: str,
        messages: list[ChatMessage],
        options: dict[str, Any] | None = None,
    ) -> ChatResponse: ...


class FileStore(Protocol):
    """Workspace persistence. Paths are workspace-relative."""

    async def read(self, path: str) -> str: ...

    async def write(self, path: str, content: str) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def create_directory(self, path: str) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def list_files(self, path: str = "") -> list[str]: ...


class ProcessRunner(Protocol):
    async def run(self, command: str, cwd: str, timeout: float = 300.0) -> ProcessResult: ...


class ProgressSink(Protocol):
    def report(self, update: ProgressUpdate) -> None: ...


class ApprovalPrompt(Protocol):
    """Operator decision for a security-gated tool call.

    ``ask`` returns ``"allow"``, ``"deny"`` or ``"always-allow"``.
    """

    async def ask(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        context: ExecutionContext,
        risk: RiskAssessment,
    ) -> str: ...

    async def confirm_high_risk(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        risk: RiskAssessment,
    ) -> bool: ...


class RecoveryPrompt(Protocol):
    """Operator choice after a runner failure: one of ``choices``."""

    async def choose(self, runner_name: str, error: ForgeflowError, choices: list[str]) -> str: ...


class TimeoutPrompt(Protocol):
    async def extend(self, runner_name: str, timeout: OperationTimeout) -> bool: ...


class PhaseGate(Protocol):
    """Operator sign-off between phases in STRUCTURED mode."""

    async def confirm(self, phase: PhaseType, summary: str) -> bool: ...
