"""Command tools backed by the ProcessRunner.

- execute_command: MEDIUM risk, always requires approval
- install_dependency: MEDIUM risk, always requires approval

Commands run in the context's workspace. A non-zero exit code is a
failed ToolResult carrying stderr.
"""

from __future__ import annotations

import re
import shlex
from typing import Any

from forgeflow.core.interfaces import ProcessRunner
from forgeflow.core.models import ExecutionContext, ProcessResult, RiskLevel
from forgeflow.tools.models import ToolCategory, ToolDefinition, ToolResult, ToolSecurity

EXECUTE_PERMISSION = "system.execute"

PACKAGE_MANAGERS = ("pip", "uv", "poetry", "npm", "yarn", "pnpm")

_PACKAGE_NAME = re.compile(r"^[A-Za-z0-9@][A-Za-z0-9@/._\-\[\],=<>~!^]*$")

_MAX_OUTPUT = 65536


def install_command(package: str, manager: str = "pip", dev: bool = False) -> str:
    """Build the install command line for ``package``."""
    if not _PACKAGE_NAME.match(package):
        raise ValueError(f"Invalid package specifier: {package!r}")
    quoted = shlex.quote(package)
    if manager == "pip":
        return f"python -m pip install {quoted}"
    if manager == "uv":
        return f"uv add {'--dev ' if dev else ''}{quoted}"
    if manager == "poetry":
        return f"poetry add {'--group dev ' if dev else ''}{quoted}"
    if manager == "npm":
        return f"npm install {'--save-dev ' if dev else ''}{quoted}"
    if manager == "yarn":
        return f"yarn add {'--dev ' if dev else ''}{quoted}"
    if manager == "pnpm":
        return f"pnpm add {'--save-dev ' if dev else ''}{quoted}"
    raise ValueError(f"Unsupported package manager: {manager}")


def _to_result(command: str, proc: ProcessResult) -> ToolResult:
    metadata = {"command": command, "exit_code": proc.exit_code}
    stdout = proc.stdout[:_MAX_OUTPUT]
    if proc.exit_code != 0:
        detail = (proc.stderr or proc.stdout).strip()[:_MAX_OUTPUT]
        return ToolResult(
            success=False,
            data=stdout,
            error=f"Command exited with code {proc.exit_code}: {detail}",
            metadata=metadata,
        )
    return ToolResult(success=True, data=stdout, metadata=metadata)


def create_command_tools(
    runner: ProcessRunner,
    default_cwd: str = ".",
    timeout: float = 300.0,
) -> list[ToolDefinition]:
    """Build the command tools bound to ``runner``."""

    async def execute_command(params: dict[str, Any], context: ExecutionContext) -> ToolResult:
        command = params["command"]
        cwd = context.workspace or default_cwd
        proc = await runner.run(command, cwd, timeout=float(params.get("timeout") or timeout))
        return _to_result(command, proc)

    async def install_dependency(params: dict[str, Any], context: ExecutionContext) -> ToolResult:
        command = install_command(
            params["package"], params.get("manager") or "pip", bool(params.get("dev", False))
        )
        cwd = context.workspace or default_cwd
        proc = await runner.run(command, cwd, timeout=timeout)
        return _to_result(command, proc)

    command_security = ToolSecurity(
        requires_approval=True,
        risk_level=RiskLevel.MEDIUM,
        allowed_in_web=False,
        permissions=[EXECUTE_PERMISSION],
    )

    return [
        ToolDefinition(
            name="execute_command",
            description="Run a shell command in the workspace and return its output.",
            category=ToolCategory.COMMAND,
            parameters={
                "type": "object",
                "properties": {
                    "command": {"type": "string", "minLength": 1},
                    "timeout": {"type": "number", "minimum": 1, "maximum": 3600},
                },
                "required": ["command"],
            },
            security=command_security,
            executor=execute_command,
        ),
        ToolDefinition(
            name="install_dependency",
            description="Install a package with the project's package manager.",
            category=ToolCategory.COMMAND,
            parameters={
                "type": "object",
                "properties": {
                    "package": {"type": "string", "minLength": 1, "maxLength": 214},
                    "manager": {"type": "string", "enum": list(PACKAGE_MANAGERS)},
                    "dev": {"type": "boolean"},
                },
                "required": ["package"],
            },
            security=command_security.model_copy(deep=True),
            executor=install_dependency,
        ),
    ]
