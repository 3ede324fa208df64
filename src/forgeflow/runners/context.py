"""
Forgeflow Context Runner

First workflow phase: lists the workspace through the FileStore,
drops noise (VCS metadata, dependency folders, build output, anything
matched by ``.gitignore``), detects languages and frameworks, and
persists the result as ``context.json`` in the artifact directory.
"""

from __future__ import annotations

import fnmatch
from collections import Counter
from pathlib import PurePosixPath

from forgeflow.core.models import (
    ContextSummary,
    FileNode,
    PhaseType,
    RunnerResult,
    SessionState,
    WorkspaceContext,
)
from forgeflow.exceptions import ForgeflowError
from forgeflow.logging import get_logger
from forgeflow.runners.base import BaseRunner

logger = get_logger("forgeflow.runners.context")

CONTEXT_ARTIFACT = "context.json"
MAX_FILES = 100

IGNORED_DIRECTORIES = frozenset({
    ".git",
    ".hg",
    ".svn",
    ".vscode",
    ".idea",
    ".forgeflow",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    ".mypy_cache",
    ".pytest_cache",
    ".tox",
    "dist",
    "build",
    "out",
    "coverage",
    ".nyc_output",
    "tmp",
    "temp",
})

IGNORED_FILE_PATTERNS = ("*.log", "*.min.js", "*.min.css", "*.pyc", ".DS_Store", "Thumbs.db")

LANGUAGES = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".rs": "rust",
    ".php": "php",
    ".rb": "ruby",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".sql": "sql",
    ".sh": "shell",
}

# Data/markup formats do not make a project "a <language> project"
_NON_PRIMARY = frozenset({"json", "yaml", "toml", "markdown"})

FRAMEWORK_MARKERS = {
    "pyproject.toml": "Python packaging",
    "manage.py": "Django",
    "angular.json": "Angular",
    "vue.config.js": "Vue.js",
    "next.config.js": "Next.js",
    "nuxt.config.js": "Nuxt.js",
    "svelte.config.js": "Svelte",
    "Cargo.toml": "Cargo",
    "go.mod": "Go modules",
    "package.json": "Node.js",
}


def detect_language(path: str) -> str | None:
    return LANGUAGES.get(PurePosixPath(path).suffix.lower())


class ContextRunner(BaseRunner):
    """Builds the workspace context consumed by the planning phase."""

    phase = PhaseType.CONTEXT

    def __init__(self, *args, max_files: int = MAX_FILES, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_files = max_files
        self.ignore_patterns: list[str] = list(IGNORED_FILE_PATTERNS)

    def get_runner_name(self) -> str:
        return "Context Analysis"

    def validate_inputs(self) -> bool:
        return self.file_store is not None and bool(self.machine.workspace)

    async def execute(self) -> RunnerResult:
        self.machine.set_state(SessionState.CONTEXT_GENERATION, "Analyzing workspace")
        self.machine.set_phase(PhaseType.CONTEXT)

        await self._load_gitignore()
        files = [f for f in await self.file_store.list_files() if not self.is_ignored(f)]
        files.sort()
        self.check_cancellation()
        self.report_progress(f"Found {len(files)} relevant file(s)")

        context = self.build_context(files)
        await self.save_artifact(CONTEXT_ARTIFACT, context.model_dump_json(indent=2))
        logger.info(
            "Workspace context saved (%d files)",
            context.summary.total_files,
            extra={"session_id": self.machine.id, "runner": self.get_runner_name()},
        )
        return RunnerResult(success=True, data=context)

    async def _load_gitignore(self) -> None:
        try:
            if not await self.workspace_file_exists(".gitignore"):
                return
            content = await self.read_workspace_file(".gitignore")
        except (OSError, ForgeflowError) as e:
            logger.debug("Could not read .gitignore: %s", e, extra={"session_id": self.machine.id})
            return
        for line in content.splitlines():
            line = line.strip()
            if line and not line.startswith(("#", "!")):
                self.ignore_patterns.append(line.rstrip("/"))

    def is_ignored(self, path: str) -> bool:
        parts = PurePosixPath(path).parts
        if any(part in IGNORED_DIRECTORIES for part in parts[:-1]):
            return True
        for pattern in self.ignore_patterns:
            if "/" in pattern:
                if fnmatch.fnmatch(path, pattern.lstrip("/")) or path.startswith(pattern.lstrip("/") + "/"):
                    return True
            elif any(fnmatch.fnmatch(part, pattern) for part in parts):
                return True
        return False

    def build_context(self, files: list[str]) -> WorkspaceContext:
        languages = Counter(
            lang for lang in (detect_language(f) for f in files) if lang and lang not in _NON_PRIMARY
        )
        primary = [lang for lang, _ in languages.most_common(5)]

        names = {PurePosixPath(f).name for f in files}
        frameworks = sorted({fw for marker, fw in FRAMEWORK_MARKERS.items() if marker in names})

        description = f"A {primary[0] if primary else 'mixed-language'} project"
        if frameworks:
            description += f" using {', '.join(frameworks[:3])}"

        return WorkspaceContext(
            workspace_root=self.machine.workspace,
            file_structure=[
                FileNode(path=f, language=detect_language(f)) for f in files[: self.max_files]
            ],
            summary=ContextSummary(
                total_files=len(files),
                primary_languages=primary,
                frameworks=frameworks,
                description=description,
            ),
        )
