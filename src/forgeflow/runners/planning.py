"""
Forgeflow Planning Runner

Second workflow phase: loads the workspace context, asks the planning
agent for a JSON action list, validates it into an ActionList and
persists ``action-list.json`` together with a human-readable ``spec.md``.
"""

from __future__ import annotations

import json
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from forgeflow.core.models import (
    ActionList,
    ActionMetadata,
    ActionType,
    ActionUnit,
    PhaseType,
    RiskLevel,
    RunnerResult,
    SessionState,
    WorkspaceContext,
)
from forgeflow.exceptions import RunnerError
from forgeflow.logging import get_logger
from forgeflow.runners.base import BaseRunner
from forgeflow.runners.context import CONTEXT_ARTIFACT
from forgeflow.runners.execution import ACTION_LIST_ARTIFACT

logger = get_logger("forgeflow.runners.planning")

SPEC_ARTIFACT = "spec.md"

# Rough effort per action type, in minutes
ACTION_MINUTES = {
    ActionType.CREATE_FILE: 15,
    ActionType.MODIFY_FILE: 10,
    ActionType.DELETE_FILE: 2,
    ActionType.RUN_COMMAND: 5,
    ActionType.INSTALL_DEPENDENCY: 3,
}

_JSON_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL)

PLANNING_SYSTEM_PROMPT = """You are a planning agent for an automated coding workflow.
Break the user's requirements into an ordered list of concrete actions.

Reply with JSON only, in this shape:
{
  "actions": [
    {
      "id": "action-1",
      "type": "create_file | modify_file | delete_file | run_command | install_dependency",
      "description": "what this step does",
      "parameters": {"path": "...", "command": "...", "package": "...", "language": "..."},
      "dependencies": ["ids of earlier actions this one needs"]
    }
  ]
}

Only reference files inside the workspace, using relative paths."""


def parse_action_list(reply: str) -> ActionList:
    """Extract and validate the action list from an agent reply.

    Raises RunnerError(PLANNING_PARSE_ERROR) when the reply holds no
    valid action list.
    """
    match = _JSON_FENCE.search(reply)
    text = match.group(1) if match else reply
    start, end = text.find("{"), text.rfind("}")
    try:
        if start == -1 or end < start:
            raise ValueError("no JSON object in reply")
        data: Any = json.loads(text[start : end + 1])
        actions = data["actions"] if isinstance(data, dict) else None
        if not isinstance(actions, list):
            raise ValueError("reply has no 'actions' list")
        action_list = ActionList(actions=[ActionUnit.model_validate(a) for a in actions])
    except (ValueError, KeyError, PydanticValidationError) as e:
        raise RunnerError(
            f"Could not parse the planning agent's reply: {e}",
            code="PLANNING_PARSE_ERROR",
            recoverable=True,
            suggested_fix="Retry planning or rephrase the requirements",
        ) from e

    known: set[str] = set()
    for action in action_list.actions:
        unknown = [d for d in action.dependencies if d not in known]
        if unknown:
            raise RunnerError(
                f"Action {action.id} depends on unknown or later action(s): {', '.join(unknown)}",
                code="PLANNING_PARSE_ERROR",
                recoverable=True,
            )
        known.add(action.id)
    return action_list


def calculate_metadata(actions: list[ActionUnit]) -> ActionMetadata:
    total = len(actions)
    minutes = sum(ACTION_MINUTES[a.type] for a in actions)

    if total > 10 or minutes > 120:
        complexity = "complex"
    elif total > 5 or minutes > 60:
        complexity = "moderate"
    else:
        complexity = "simple"

    has_delete = any(a.type == ActionType.DELETE_FILE for a in actions)
    has_command = any(a.type == ActionType.RUN_COMMAND for a in actions)
    if has_delete or (has_command and total > 8):
        risk = RiskLevel.HIGH
    elif has_command or total > 5:
        risk = RiskLevel.MEDIUM
    else:
        risk = RiskLevel.LOW

    return ActionMetadata(
        total_actions=total,
        estimated_duration=round(minutes / 60, 2),
        complexity=complexity,
        risk_level=risk,
    )


class PlanningRunner(BaseRunner):
    """Turns requirements plus workspace context into an ActionList."""

    phase = PhaseType.PLANNING

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.workspace_context: WorkspaceContext | None = None
        self.plan_reply = ""

    def get_runner_name(self) -> str:
        return "Planning"

    def validate_inputs(self) -> bool:
        return (
            self.file_store is not None
            and self.chat_client is not None
            and bool(self.machine.requirements.description.strip())
        )

    async def execute(self) -> RunnerResult:
        self.machine.set_state(SessionState.PLANNING, "Generating implementation plan")
        self.machine.set_phase(PhaseType.PLANNING)

        self.workspace_context = await self._load_context()
        self.report_progress("Asking the planning agent for an action list")
        self.plan_reply = await self.ask_agent(self._build_prompt(), system=PLANNING_SYSTEM_PROMPT)

        action_list = parse_action_list(self.plan_reply)
        action_list.metadata = calculate_metadata(action_list.actions)

        await self.save_artifact(ACTION_LIST_ARTIFACT, action_list.model_dump_json(indent=2))
        await self.save_artifact(SPEC_ARTIFACT, self.build_spec(action_list))
        logger.info(
            "Planned %d action(s)",
            len(action_list.actions),
            extra={"session_id": self.machine.id, "runner": self.get_runner_name()},
        )
        return RunnerResult(
            success=True,
            data=action_list,
            metadata={"complexity": action_list.metadata.complexity},
        )

    async def _load_context(self) -> WorkspaceContext:
        raw = await self.load_artifact(CONTEXT_ARTIFACT)
        if raw is None:
            raise self.create_recoverable_error(
                "Workspace context not found, run context generation first",
                code="CONTEXT_MISSING",
                suggested_fix="Run the context phase before planning",
            )
        try:
            return WorkspaceContext.model_validate_json(raw)
        except PydanticValidationError as e:
            raise self.create_recoverable_error(
                "Workspace context is malformed",
                code="CONTEXT_INVALID",
                suggested_fix="Regenerate the workspace context",
            ) from e

    def _build_prompt(self) -> str:
        ctx = self.workspace_context
        requirements = self.machine.requirements
        files = "\n".join(f"- {node.path}" for node in ctx.file_structure) if ctx else ""
        parts = [
            "## Requirements",
            requirements.description,
        ]
        if requirements.custom_instructions:
            parts += ["", "## Additional instructions", requirements.custom_instructions]
        if ctx:
            parts += [
                "",
                "## Workspace",
                ctx.summary.description,
                f"Languages: {', '.join(ctx.summary.primary_languages) or 'unknown'}",
                "",
                "Files:",
                files or "(empty workspace)",
            ]
        return "\n".join(parts)

    def build_spec(self, action_list: ActionList) -> str:
        meta = action_list.metadata
        counts = Counter(a.type.value for a in action_list.actions)
        lines = [
            "# Implementation Specification",
            "",
            f"**Generated:** {datetime.now(timezone.utc).isoformat()}  ",
            f"**Workspace:** {self.machine.workspace}  ",
            f"**Total Actions:** {len(action_list.actions)}  ",
            f"**Estimated Duration:** {meta.estimated_duration} hours  ",
            f"**Complexity:** {meta.complexity}  ",
            f"**Risk Level:** {meta.risk_level.value}",
            "",
            "## User Requirements",
            "",
            self.machine.requirements.description,
            "",
        ]
        if self.workspace_context:
            lines += ["## Workspace Context", "", self.workspace_context.summary.description, ""]

        lines += ["## Action List Summary", ""]
        lines += [f"- **{kind.replace('_', ' ')}**: {n} action(s)" for kind, n in counts.items()]
        lines += ["", "### Detailed Actions", ""]
        for i, action in enumerate(action_list.actions, start=1):
            lines.append(f"{i}. **{action.type.value.replace('_', ' ')}**: {action.description}")
            path = action.parameters.get("path") or action.parameters.get("file_path")
            if path:
                lines.append(f"   - File: `{path}`")
            if action.parameters.get("command"):
                lines.append(f"   - Command: `{action.parameters['command']}`")
            if action.dependencies:
                lines.append(f"   - Dependencies: {', '.join(action.dependencies)}")
        lines.append("")
        return "\n".join(lines)
