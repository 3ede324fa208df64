"""Shared test fixtures for the Forgeflow test suite."""

import logging
from unittest.mock import AsyncMock

import pytest

from forgeflow.config import ForgeflowSettings
from forgeflow.core.models import (
    ChatResponse,
    ExecutionContext,
    ProcessResult,
    RiskLevel,
    SecurityContext,
    SecurityLevel,
    SessionRequirements,
    UserInfo,
)
from forgeflow.core.session import Session, SessionStateMachine
from forgeflow.tools.builtin import BUILTIN_PERMISSIONS
from forgeflow.tools.models import ToolCategory, ToolDefinition, ToolResult, ToolSecurity


class MemoryFileStore:
    """In-memory FileStore for runner and tool tests."""

    def __init__(self, files=None):
        self.files: dict[str, str] = dict(files or {})
        self.directories: set[str] = set()

    async def read(self, path):
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def write(self, path, content):
        self.files[path] = content

    async def exists(self, path):
        return path in self.files or path in self.directories

    async def create_directory(self, path):
        self.directories.add(path)

    async def delete(self, path):
        del self.files[path]

    async def list_files(self, path=""):
        prefix = f"{path.rstrip('/')}/" if path else ""
        return sorted(p for p in self.files if p.startswith(prefix))


class RecordingProcessRunner:
    """ProcessRunner returning a canned result and remembering each call."""

    def __init__(self, exit_code=0, stdout="ok", stderr=""):
        self.result = ProcessResult(exit_code=exit_code, stdout=stdout, stderr=stderr)
        self.calls: list[tuple[str, str, float]] = []

    async def run(self, command, cwd, timeout=300.0):
        self.calls.append((command, cwd, timeout))
        return self.result


@pytest.fixture(autouse=True)
def restore_forgeflow_logger():
    # configure_logging binds a handler to the current sys.stderr
    logger = logging.getLogger("forgeflow")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


@pytest.fixture
def settings():
    return ForgeflowSettings(interactive=False)


@pytest.fixture
def session():
    return Session(
        workspace="/workspace",
        requirements=SessionRequirements(description="Add a health check endpoint"),
        session_id="session-test",
    )


@pytest.fixture
def machine(session):
    return SessionStateMachine(session)


@pytest.fixture
def context():
    return ExecutionContext(
        agent_id="agent-test",
        session_id="session-test",
        user=UserInfo(id="user-1", permissions=list(BUILTIN_PERMISSIONS)),
        security=SecurityContext(level=SecurityLevel.NORMAL),
        workspace="/workspace",
    )


@pytest.fixture
def store():
    return MemoryFileStore()


@pytest.fixture
def process_runner():
    return RecordingProcessRunner()


@pytest.fixture
def chat_client():
    client = AsyncMock()
    client.send_message.return_value = ChatResponse(content="Retry the failed step later.")
    return client


@pytest.fixture
def make_tool():
    """Factory for ad-hoc tool definitions."""

    def _make(
        name="echo",
        risk_level=RiskLevel.LOW,
        requires_approval=False,
        permissions=None,
        category=ToolCategory.GENERAL,
        allowed_in_web=True,
        executor=None,
        parameters=None,
    ):
        def _echo(params, ctx):
            return ToolResult(success=True, data=params.get("text", "ok"))

        return ToolDefinition(
            name=name,
            description=f"{name} tool",
            category=category,
            parameters=parameters
            or {
                "type": "object",
                "properties": {"text": {"type": "string"}},
            },
            security=ToolSecurity(
                requires_approval=requires_approval,
                risk_level=risk_level,
                allowed_in_web=allowed_in_web,
                permissions=list(permissions or []),
            ),
            executor=executor or _echo,
        )

    return _make
