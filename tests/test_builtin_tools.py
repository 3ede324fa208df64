"""Tests for the built-in file and command tools."""

from unittest.mock import AsyncMock

import pytest

from forgeflow.core.models import RiskLevel
from forgeflow.exceptions import ToolExecutionError
from forgeflow.tools.builtin import BUILTIN_PERMISSIONS, register_all_builtins
from forgeflow.tools.builtin.commands import PACKAGE_MANAGERS, install_command
from forgeflow.tools.manager import ToolManager
from forgeflow.tools.registry import ToolRegistry


@pytest.fixture
def registry(store, process_runner):
    reg = ToolRegistry()
    register_all_builtins(reg, store, process_runner, default_cwd="/fallback", command_timeout=60.0)
    return reg


@pytest.fixture
def manager(registry):
    prompt = AsyncMock()
    prompt.ask.return_value = "allow"
    prompt.confirm_high_risk.return_value = True
    return ToolManager(registry=registry, approval_prompt=prompt)


# ─── Registration ───────────────────────────────────────────


class TestRegistration:
    def test_all_tools_registered(self, registry):
        assert {t.name for t in registry.get_all_tools()} == {
            "read_file",
            "write_file",
            "create_file",
            "delete_file",
            "list_directory",
            "create_directory",
            "execute_command",
            "install_dependency",
        }

    def test_security_profiles(self, registry):
        assert registry.get_tool("read_file").risk_level == RiskLevel.LOW
        assert not registry.get_tool("read_file").security.requires_approval
        assert registry.get_tool("delete_file").security.requires_approval
        assert registry.get_tool("execute_command").security.requires_approval
        assert not registry.get_tool("write_file").security.allowed_in_web

    def test_permissions_cover_builtins(self, registry):
        for tool in registry.get_all_tools():
            assert set(tool.security.permissions) <= set(BUILTIN_PERMISSIONS)


# ─── File tools ─────────────────────────────────────────────


class TestFileTools:
    @pytest.mark.asyncio
    async def test_create_then_read(self, manager, store, context):
        await manager.execute_tool("create_file", {"path": "app.py", "content": "print(1)\n"}, context)
        result = await manager.execute_tool("read_file", {"path": "app.py"}, context)
        assert result.data == "print(1)\n"
        assert store.files["app.py"] == "print(1)\n"

    @pytest.mark.asyncio
    async def test_create_existing_fails_without_overwrite(self, manager, store, context):
        store.files["app.py"] = "old"
        with pytest.raises(ToolExecutionError) as exc_info:
            await manager.execute_tool("create_file", {"path": "app.py", "content": "new"}, context)
        assert "already exists" in exc_info.value.message

        await manager.execute_tool(
            "create_file", {"path": "app.py", "content": "new", "overwrite": True}, context
        )
        assert store.files["app.py"] == "new"

    @pytest.mark.asyncio
    async def test_read_missing(self, manager, context):
        with pytest.raises(ToolExecutionError) as exc_info:
            await manager.execute_tool("read_file", {"path": "nope.txt"}, context)
        assert exc_info.value.code == "EXECUTION_ERROR"
        assert "File not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_write_and_delete(self, manager, store, context):
        await manager.execute_tool("write_file", {"path": "a.txt", "content": "x"}, context)
        await manager.execute_tool("delete_file", {"path": "a.txt"}, context)
        assert "a.txt" not in store.files

    @pytest.mark.asyncio
    async def test_list_and_create_directory(self, manager, store, context):
        store.files.update({"src/a.py": "", "src/b.py": "", "README.md": ""})
        await manager.execute_tool("create_directory", {"path": "docs"}, context)
        result = await manager.execute_tool("list_directory", {"path": "src"}, context)
        assert result.data == ["src/a.py", "src/b.py"]
        assert "docs" in store.directories


# ─── Command tools ──────────────────────────────────────────


class TestCommandTools:
    @pytest.mark.asyncio
    async def test_execute_command_uses_context_workspace(self, manager, process_runner, context):
        result = await manager.execute_tool("execute_command", {"command": "ls"}, context)
        assert result.data == "ok"
        assert process_runner.calls == [("ls", "/workspace", 60.0)]

    @pytest.mark.asyncio
    async def test_default_cwd(self, manager, process_runner, context):
        no_workspace = context.model_copy(update={"workspace": None})
        await manager.execute_tool("execute_command", {"command": "ls", "timeout": 5}, no_workspace)
        assert process_runner.calls[0] == ("ls", "/fallback", 5.0)

    @pytest.mark.asyncio
    async def test_non_zero_exit_fails(self, manager, process_runner, context):
        process_runner.result = process_runner.result.model_copy(
            update={"exit_code": 2, "stderr": "bad flag"}
        )
        with pytest.raises(ToolExecutionError) as exc_info:
            await manager.execute_tool("execute_command", {"command": "ls -Z"}, context)
        assert exc_info.value.message == "Command exited with code 2: bad flag"

    @pytest.mark.asyncio
    async def test_dangerous_command_blocked(self, manager, process_runner, context):
        with pytest.raises(ToolExecutionError) as exc_info:
            await manager.execute_tool("execute_command", {"command": "rm -rf /"}, context)
        assert exc_info.value.code == "SECURITY_VIOLATION"
        assert process_runner.calls == []

    @pytest.mark.asyncio
    async def test_install_dependency(self, manager, process_runner, context):
        await manager.execute_tool(
            "install_dependency", {"package": "pytest", "manager": "uv", "dev": True}, context
        )
        assert process_runner.calls[0][0] == "uv add --dev pytest"

    @pytest.mark.asyncio
    async def test_unknown_manager_rejected_by_schema(self, manager, context):
        with pytest.raises(ToolExecutionError) as exc_info:
            await manager.execute_tool(
                "install_dependency", {"package": "x", "manager": "brew"}, context
            )
        assert exc_info.value.code == "INVALID_PARAMETERS"


class TestInstallCommand:
    @pytest.mark.parametrize(
        "manager_name,dev,expected",
        [
            ("pip", False, "python -m pip install requests"),
            ("poetry", True, "poetry add --group dev requests"),
            ("npm", True, "npm install --save-dev requests"),
            ("yarn", False, "yarn add requests"),
            ("pnpm", True, "pnpm add --save-dev requests"),
        ],
    )
    def test_commands(self, manager_name, dev, expected):
        assert install_command("requests", manager_name, dev) == expected

    def test_every_manager_supported(self):
        for name in PACKAGE_MANAGERS:
            assert install_command("requests", name)

    def test_rejects_shell_injection(self):
        with pytest.raises(ValueError):
            install_command("requests; rm -rf ~")

    def test_version_specifier_is_quoted(self):
        assert install_command("requests>=2.0") == "python -m pip install 'requests>=2.0'"
