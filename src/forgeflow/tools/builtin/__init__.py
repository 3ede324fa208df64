"""
Forgeflow Built-in Tools

File and command tools with security profiles, registered by the
engine against its FileStore and ProcessRunner.
"""

from forgeflow.core.interfaces import FileStore, ProcessRunner
from forgeflow.tools.builtin.commands import EXECUTE_PERMISSION, create_command_tools
from forgeflow.tools.builtin.file_ops import READ_PERMISSION, WRITE_PERMISSION, create_file_tools
from forgeflow.tools.registry import ToolRegistry

BUILTIN_PERMISSIONS = [READ_PERMISSION, WRITE_PERMISSION, EXECUTE_PERMISSION]


def register_all_builtins(
    registry: ToolRegistry,
    store: FileStore,
    runner: ProcessRunner,
    default_cwd: str = ".",
    command_timeout: float = 300.0,
) -> None:
    """Register all built-in tools with the given registry."""
    for tool in create_file_tools(store):
        registry.register_tool(tool)
    for tool in create_command_tools(runner, default_cwd, command_timeout):
        registry.register_tool(tool)


__all__ = [
    "BUILTIN_PERMISSIONS",
    "create_command_tools",
    "create_file_tools",
    "register_all_builtins",
]
