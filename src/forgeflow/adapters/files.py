"""Local filesystem FileStore rooted at the workspace directory."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

from forgeflow.exceptions import SecurityViolationError


class LocalFileStore:
    """FileStore over ``pathlib``; blocking I/O runs in a worker thread.

    Every path is resolved against the workspace root and rejected if
    it escapes it.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if target != self._root and self._root not in target.parents:
            raise SecurityViolationError(
                f"Path escapes the workspace: {path}",
                context={"path": path, "workspace": str(self._root)},
            )
        return target

    async def read(self, path: str) -> str:
        target = self.resolve(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")

    async def write(self, path: str, content: str) -> None:
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).exists)

    async def create_directory(self, path: str) -> None:
        target = self.resolve(path)
        await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)

    async def delete(self, path: str) -> None:
        target = self.resolve(path)
        if target == self._root:
            raise SecurityViolationError("Refusing to delete the workspace root")
        await asyncio.to_thread(target.unlink)

    async def list_files(self, path: str = "") -> list[str]:
        """Workspace-relative POSIX paths of all files below ``path``."""
        base = self.resolve(path)

        def _walk() -> list[str]:
            if not base.is_dir():
                return []
            found: list[str] = []
            for dirpath, _dirnames, filenames in os.walk(base):
                for name in filenames:
                    found.append((Path(dirpath) / name).relative_to(self._root).as_posix())
            return sorted(found)

        return await asyncio.to_thread(_walk)
