"""File operation tools backed by the workspace FileStore.

Risk profiles:
- read_file, list_directory: LOW, no approval (read-only)
- create_file, write_file, create_directory: MEDIUM (modify the workspace)
- delete_file: MEDIUM, always requires approval

All paths are workspace-relative; the FileStore refuses to leave the
workspace root.
"""

from __future__ import annotations

from typing import Any

from forgeflow.core.interfaces import FileStore
from forgeflow.core.models import ExecutionContext, RiskLevel
from forgeflow.tools.models import ToolCategory, ToolDefinition, ToolResult, ToolSecurity

READ_PERMISSION = "filesystem.read"
WRITE_PERMISSION = "filesystem.write"

_PATH_PROPERTY = {"type": "string", "minLength": 1, "description": "Workspace-relative path"}


def create_file_tools(store: FileStore) -> list[ToolDefinition]:
    """Build the file tools bound to ``store``."""

    async def read_file(params: dict[str, Any], context: ExecutionContext) -> ToolResult:
        path = params["path"]
        if not await store.exists(path):
            return ToolResult(success=False, error=f"File not found: {path}")
        content = await store.read(path)
        return ToolResult(success=True, data=content, metadata={"bytes": len(content)})

    async def write_file(params: dict[str, Any], context: ExecutionContext) -> ToolResult:
        path, content = params["path"], params["content"]
        await store.write(path, content)
        return ToolResult(success=True, data=f"Written {len(content)} bytes to {path}")

    async def create_file(params: dict[str, Any], context: ExecutionContext) -> ToolResult:
        path = params["path"]
        content = params.get("content") or ""
        if await store.exists(path) and not params.get("overwrite", False):
            return ToolResult(success=False, error=f"File already exists: {path}")
        await store.write(path, content)
        return ToolResult(success=True, data=f"Created {path} ({len(content)} bytes)")

    async def delete_file(params: dict[str, Any], context: ExecutionContext) -> ToolResult:
        path = params["path"]
        if not await store.exists(path):
            return ToolResult(success=False, error=f"File not found: {path}")
        await store.delete(path)
        return ToolResult(success=True, data=f"Deleted {path}")

    async def list_directory(params: dict[str, Any], context: ExecutionContext) -> ToolResult:
        files = await store.list_files(params.get("path") or "")
        return ToolResult(success=True, data=files, metadata={"count": len(files)})

    async def create_directory(params: dict[str, Any], context: ExecutionContext) -> ToolResult:
        path = params["path"]
        await store.create_directory(path)
        return ToolResult(success=True, data=f"Created directory {path}")

    return [
        ToolDefinition(
            name="read_file",
            description="Read the contents of a workspace file.",
            category=ToolCategory.FILESYSTEM,
            parameters={
                "type": "object",
                "properties": {"path": _PATH_PROPERTY},
                "required": ["path"],
            },
            security=ToolSecurity(risk_level=RiskLevel.LOW, permissions=[READ_PERMISSION]),
            executor=read_file,
        ),
        ToolDefinition(
            name="write_file",
            description="Write content to a workspace file, replacing what is there.",
            category=ToolCategory.FILESYSTEM,
            parameters={
                "type": "object",
                "properties": {
                    "path": _PATH_PROPERTY,
                    "content": {"type": "string", "description": "Full file content"},
                },
                "required": ["path", "content"],
            },
            security=ToolSecurity(
                risk_level=RiskLevel.MEDIUM,
                allowed_in_web=False,
                permissions=[WRITE_PERMISSION],
            ),
            executor=write_file,
        ),
        ToolDefinition(
            name="create_file",
            description="Create a new workspace file with optional content.",
            category=ToolCategory.FILESYSTEM,
            parameters={
                "type": "object",
                "properties": {
                    "path": _PATH_PROPERTY,
                    "content": {"type": "string"},
                    "overwrite": {"type": "boolean"},
                },
                "required": ["path"],
            },
            security=ToolSecurity(
                risk_level=RiskLevel.MEDIUM,
                allowed_in_web=False,
                permissions=[WRITE_PERMISSION],
            ),
            executor=create_file,
        ),
        ToolDefinition(
            name="delete_file",
            description="Delete a workspace file.",
            category=ToolCategory.FILESYSTEM,
            parameters={
                "type": "object",
                "properties": {"path": _PATH_PROPERTY},
                "required": ["path"],
            },
            security=ToolSecurity(
                requires_approval=True,
                risk_level=RiskLevel.MEDIUM,
                allowed_in_web=False,
                permissions=[WRITE_PERMISSION],
            ),
            executor=delete_file,
        ),
        ToolDefinition(
            name="list_directory",
            description="List files under a workspace directory.",
            category=ToolCategory.WORKSPACE,
            parameters={
                "type": "object",
                "properties": {"path": {"type": "string"}},
            },
            security=ToolSecurity(risk_level=RiskLevel.LOW, permissions=[READ_PERMISSION]),
            executor=list_directory,
        ),
        ToolDefinition(
            name="create_directory",
            description="Create a workspace directory, including parents.",
            category=ToolCategory.WORKSPACE,
            parameters={
                "type": "object",
                "properties": {"path": _PATH_PROPERTY},
                "required": ["path"],
            },
            security=ToolSecurity(
                risk_level=RiskLevel.MEDIUM,
                allowed_in_web=False,
                permissions=[WRITE_PERMISSION],
            ),
            executor=create_directory,
        ),
    ]
