"""Tests for the bundled collaborator adapters."""

import io
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest
from rich.console import Console

from forgeflow.adapters import (
    ClaudeChatClient,
    ConsoleApprovalPrompt,
    ConsolePhaseGate,
    ConsoleRecoveryPrompt,
    ConsoleTimeoutPrompt,
    LocalFileStore,
    LoggingProgressSink,
    SubprocessRunner,
)
from forgeflow.adapters.claude import translate_error
from forgeflow.core.models import (
    ChatMessage,
    OperationTimeout,
    PhaseType,
    ProgressUpdate,
    RiskAssessment,
)
from forgeflow.exceptions import (
    AuthError,
    NetworkError,
    OperationTimeoutError,
    RateLimitError,
    RunnerError,
    SecurityViolationError,
)

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def response(status, headers=None):
    return httpx.Response(status, headers=headers or {}, request=REQUEST)


# ─── LocalFileStore ─────────────────────────────────────────


class TestLocalFileStore:
    @pytest.mark.asyncio
    async def test_write_read_list_delete(self, tmp_path):
        store = LocalFileStore(tmp_path)
        await store.write("src/pkg/mod.py", "x = 1\n")
        await store.write("README.md", "# r")

        assert await store.read("src/pkg/mod.py") == "x = 1\n"
        assert await store.exists("src/pkg")
        assert await store.list_files() == ["README.md", "src/pkg/mod.py"]
        assert await store.list_files("src") == ["src/pkg/mod.py"]
        assert await store.list_files("nope") == []

        await store.delete("README.md")
        assert not await store.exists("README.md")

    @pytest.mark.asyncio
    async def test_create_directory(self, tmp_path):
        store = LocalFileStore(tmp_path)
        await store.create_directory(".forgeflow/nested")
        assert (tmp_path / ".forgeflow" / "nested").is_dir()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["../outside.txt", "src/../../etc/passwd", "/etc/passwd"])
    async def test_escape_rejected(self, tmp_path, path):
        store = LocalFileStore(tmp_path / "ws")
        with pytest.raises(SecurityViolationError):
            await store.read(path)

    @pytest.mark.asyncio
    async def test_root_cannot_be_deleted(self, tmp_path):
        with pytest.raises(SecurityViolationError):
            await LocalFileStore(tmp_path).delete(".")


# ─── SubprocessRunner ───────────────────────────────────────


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")
class TestSubprocessRunner:
    @pytest.mark.asyncio
    async def test_captures_output(self, tmp_path):
        result = await SubprocessRunner().run("echo hello; echo oops 1>&2; exit 3", str(tmp_path))
        assert result.exit_code == 3
        assert result.stdout == "hello\n"
        assert result.stderr == "oops\n"

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path):
        result = await SubprocessRunner().run("pwd", str(tmp_path))
        assert result.stdout.strip() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_timeout_kills(self, tmp_path):
        with pytest.raises(OperationTimeoutError):
            await SubprocessRunner().run("sleep 5", str(tmp_path), timeout=0.1)

    @pytest.mark.asyncio
    async def test_output_truncated(self, tmp_path):
        result = await SubprocessRunner(max_output_bytes=5).run("echo 1234567890", str(tmp_path))
        assert result.stdout.startswith("12345\n[TRUNCATED")


# ─── ClaudeChatClient ───────────────────────────────────────


def sdk_client(*blocks):
    client = MagicMock()
    client.messages.create = AsyncMock(
        return_value=SimpleNamespace(
            content=list(blocks),
            model="claude-test",
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=12, output_tokens=3),
        )
    )
    return client


class TestClaudeChatClient:
    @pytest.mark.asyncio
    async def test_send_message(self):
        sdk = sdk_client(
            SimpleNamespace(type="text", text="Hello "),
            SimpleNamespace(type="tool_use"),
            SimpleNamespace(type="text", text="world"),
        )
        client = ClaudeChatClient(model="base-model", client=sdk, agent_models={"planner": "big-model"})
        reply = await client.send_message(
            "planner",
            [ChatMessage(role="system", content="house rules"), ChatMessage(role="user", content="hi")],
            {"system": "be brief", "temperature": 0.2},
        )

        assert reply.content == "Hello world"
        assert reply.metadata["output_tokens"] == 3
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["model"] == "big-model"
        assert kwargs["system"] == "be brief\n\nhouse rules"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_unmapped_agent_uses_default_model(self):
        sdk = sdk_client(SimpleNamespace(type="text", text="ok"))
        await ClaudeChatClient(model="base-model", client=sdk).send_message(
            "anyone", [ChatMessage(role="user", content="x")]
        )
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["model"] == "base-model"
        assert "system" not in kwargs

    @pytest.mark.asyncio
    async def test_sdk_errors_are_translated(self):
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(side_effect=anthropic.APIConnectionError(request=REQUEST))
        with pytest.raises(NetworkError):
            await ClaudeChatClient(client=sdk).send_message("a", [ChatMessage(role="user", content="x")])


class TestTranslateError:
    def test_rate_limit_with_retry_after(self):
        err = translate_error(
            anthropic.RateLimitError("slow down", response=response(429, {"retry-after": "12"}), body=None)
        )
        assert isinstance(err, RateLimitError)
        assert err.retry_after == 12.0

    def test_auth_is_fatal(self):
        err = translate_error(anthropic.AuthenticationError("bad key", response=response(401), body=None))
        assert isinstance(err, AuthError)
        assert not err.recoverable

    def test_server_error_is_recoverable_network_error(self):
        err = translate_error(anthropic.InternalServerError("boom", response=response(503), body=None))
        assert isinstance(err, NetworkError)
        assert err.recoverable
        assert err.context["status_code"] == 503

    def test_bad_request_is_not_recoverable(self):
        err = translate_error(anthropic.BadRequestError("bad", response=response(400), body=None))
        assert isinstance(err, NetworkError)
        assert not err.recoverable


# ─── Console prompts ────────────────────────────────────────


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=100)


class TestConsolePrompts:
    @pytest.mark.asyncio
    async def test_approval_prompt(self, console, make_tool, context):
        with patch("forgeflow.adapters.prompts.Prompt.ask", return_value="always-allow") as ask:
            answer = await ConsoleApprovalPrompt(console).ask(
                make_tool("delete_file"),
                {"path": "a.txt"},
                context,
                RiskAssessment(score=75, warnings=["Deletes files"]),
            )
        assert answer == "always-allow"
        assert ask.call_args.kwargs["choices"] == ["allow", "deny", "always-allow"]
        assert ask.call_args.kwargs["default"] == "deny"
        output = console.file.getvalue()
        assert "delete_file" in output
        assert "75/100" in output
        assert "Deletes files" in output

    @pytest.mark.asyncio
    async def test_high_risk_confirmation(self, console, make_tool):
        with patch("forgeflow.adapters.prompts.Confirm.ask", return_value=True):
            assert await ConsoleApprovalPrompt(console).confirm_high_risk(
                make_tool(), {}, RiskAssessment(score=90, factors=["Shell"])
            )
        assert "Factors: Shell" in console.file.getvalue()

    @pytest.mark.asyncio
    async def test_recovery_prompt(self, console):
        error = RunnerError("Plan failed", suggested_fix="Retry planning")
        with patch("forgeflow.adapters.prompts.Prompt.ask", return_value="skip") as ask:
            choice = await ConsoleRecoveryPrompt(console).choose("Planning", error, ["retry", "skip", "abort"])
        assert choice == "skip"
        assert ask.call_args.kwargs["default"] == "abort"
        assert "Retry planning" in console.file.getvalue()

    @pytest.mark.asyncio
    async def test_timeout_prompt(self, console):
        with patch("forgeflow.adapters.prompts.Confirm.ask", return_value=False) as ask:
            assert not await ConsoleTimeoutPrompt(console).extend("Planning", OperationTimeout(duration=30))
        assert "longer than 30s" in ask.call_args.args[0]

    @pytest.mark.asyncio
    async def test_phase_gate(self, console):
        with patch("forgeflow.adapters.prompts.Confirm.ask", return_value=True):
            assert await ConsolePhaseGate(console).confirm(PhaseType.EXECUTION, "3 actions planned")
        assert "3 actions planned" in console.file.getvalue()


# ─── Progress ───────────────────────────────────────────────


def test_logging_progress_sink_keeps_updates():
    sink = LoggingProgressSink(session_id="s-1")
    sink.report(ProgressUpdate(message="Starting planning phase"))
    sink.report(ProgressUpdate(message="Done", increment=50))
    assert [u.message for u in sink.updates] == ["Starting planning phase", "Done"]
    assert sink.updates[1].increment == 50
