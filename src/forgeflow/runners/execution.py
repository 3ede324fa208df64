"""
Forgeflow Execution Runner

Carries out an ActionList strictly in list order. Every side effect
goes through the ToolManager:

    create_file         -> create_file        (content from the agent)
    modify_file         -> read_file + write_file (content from the agent)
    delete_file         -> delete_file
    run_command         -> execute_command
    install_dependency  -> install_dependency

A unit runs only when all of its dependencies are COMPLETED; otherwise
it is SKIPPED. Failures either trigger the RecoveryController, stop the
run (``continue_on_error=False``) or are recorded and passed over.
A unit that failed fails the run even after recovery skipped it.
"""

from __future__ import annotations

import json
import re
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from forgeflow.core.models import (
    ActionList,
    ActionResult,
    ActionStatus,
    ActionType,
    ActionUnit,
    ExecutionSummary,
    PhaseType,
    RunnerResult,
    SessionState,
)
from forgeflow.exceptions import (
    CancelledError,
    ForgeflowError,
    RecoveryExhaustedError,
    ToolExecutionError,
)
from forgeflow.logging import get_logger
from forgeflow.runners.base import BaseRunner
from forgeflow.runners.recovery import RecoveryAttempt, RecoveryController
from forgeflow.tools.models import ToolResult

logger = get_logger("forgeflow.runners.execution")

ACTION_LIST_ARTIFACT = "action-list.json"
REPORT_ARTIFACT = "execution-report.md"

_CODE_FENCE = re.compile(r"```[\w.+-]*\n(.*?)```", re.DOTALL)

FILE_SYSTEM_PROMPT = (
    "You are a code generation agent. Reply with the complete file content only, "
    "in a single fenced code block, without explanations."
)

STATUS_ICONS = {
    ActionStatus.COMPLETED: "[x]",
    ActionStatus.FAILED: "[!]",
    ActionStatus.SKIPPED: "[-]",
    ActionStatus.IN_PROGRESS: "[~]",
    ActionStatus.PENDING: "[ ]",
}


class ExecutionOptions(BaseModel):
    dry_run: bool = False
    continue_on_error: bool = True
    enable_recovery: bool = True
    max_recovery_attempts: int = Field(default=2, ge=0)
    retry_failed: bool = False


def extract_code(reply: str) -> str:
    """Return the first fenced block of an agent reply, or the reply itself."""
    match = _CODE_FENCE.search(reply)
    if match:
        return match.group(1)
    return reply.strip() + "\n"


class ExecutionRunner(BaseRunner):
    """Sequential executor for the plan produced by the planning phase."""

    phase = PhaseType.EXECUTION

    def __init__(
        self,
        *args: Any,
        action_list: ActionList | None = None,
        options: ExecutionOptions | None = None,
        recovery: RecoveryController | None = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.action_list = action_list
        self.options = options or ExecutionOptions(
            max_recovery_attempts=self.settings.max_recovery_attempts
        )
        self.recovery = recovery or RecoveryController(
            self.machine, self.chat_client, self.options.max_recovery_attempts
        )
        self.summary = ExecutionSummary()
        # ids of units that failed during this run, kept even when recovery skips them
        self.failed_action_ids: list[str] = []

    def get_runner_name(self) -> str:
        return "Execution"

    def validate_inputs(self) -> bool:
        if self.tool_manager is None:
            return False
        if self.action_list is None:
            return self.file_store is not None
        if self.chat_client is None and not self.options.dry_run:
            return not any(self.needs_generated_content(a) for a in self.action_list.actions)
        return True

    @staticmethod
    def needs_generated_content(action: ActionUnit) -> bool:
        return (
            action.type in (ActionType.CREATE_FILE, ActionType.MODIFY_FILE)
            and action.parameters.get("content") is None
        )

    async def execute(self) -> RunnerResult:
        self.machine.set_state(SessionState.EXECUTION, "Executing action list")
        self.machine.set_phase(PhaseType.EXECUTION)
        started = time.monotonic()

        self.failed_action_ids = []
        action_list = await self._load_action_list()
        if not self.validate_inputs():
            raise self.create_fatal_error(
                "Action list needs generated file content but no agent chat client is set",
                code="CONFIGURATION_ERROR",
                suggested_fix="Configure an agent or give every file action its content",
            )
        rerun = [ActionStatus.IN_PROGRESS]
        if self.options.retry_failed:
            rerun += [ActionStatus.FAILED, ActionStatus.SKIPPED]
        for action in action_list.actions:
            if action.status in rerun:
                action.status = ActionStatus.PENDING
                action.result = None

        try:
            await self._process(action_list)
        finally:
            self.summary = self._summarize(action_list, started)
            if not self.options.dry_run and self.file_store is not None:
                await self.save_artifact(
                    ACTION_LIST_ARTIFACT, action_list.model_dump_json(indent=2)
                )

        if not self.options.dry_run and self.file_store is not None:
            await self.save_artifact(REPORT_ARTIFACT, self.build_report(action_list))

        failed = self.failed_ids(action_list)
        success = not failed
        return RunnerResult(
            success=success,
            data=self.summary,
            error=None
            if success
            else self.create_recoverable_error(
                f"{len(failed)} action(s) failed", code="ACTIONS_FAILED"
            ),
            metadata={
                "failed_action_ids": failed,
                "recovery_plans": [a.plan for a in self.recovery.attempts],
                "dry_run": self.options.dry_run,
            },
        )

    async def _load_action_list(self) -> ActionList:
        if self.action_list is not None:
            return self.action_list
        raw = await self.load_artifact(ACTION_LIST_ARTIFACT)
        if raw is None:
            raise self.create_fatal_error(
                "No action list found, run the planning phase first",
                code="ACTION_LIST_MISSING",
                suggested_fix="Run the planning phase to generate an action list",
            )
        try:
            self.action_list = ActionList.model_validate_json(raw)
        except PydanticValidationError as e:
            raise self.create_fatal_error(
                f"Action list is malformed: {e.error_count()} error(s)",
                code="ACTION_LIST_INVALID",
            ) from e
        return self.action_list

    async def _process(self, action_list: ActionList) -> None:
        total = len(action_list.actions) or 1
        for index, action in enumerate(action_list.actions):
            self.check_cancellation()
            if action.status != ActionStatus.PENDING:
                continue

            if not self.are_dependencies_satisfied(action, action_list):
                action.status = ActionStatus.SKIPPED
                action.result = ActionResult(success=False, error="Dependencies not satisfied")
                logger.info(
                    "Skipping %s: dependencies not satisfied",
                    action.id,
                    extra={"session_id": self.machine.id, "action_id": action.id},
                )
                continue

            self.report_progress(
                f"[{index + 1}/{total}] {action.description}", increment=100 / total
            )
            await self.execute_action(action)

            if action.status != ActionStatus.FAILED:
                continue
            if self.options.enable_recovery:
                if not self.recovery.can_attempt():
                    raise RecoveryExhaustedError(
                        self.recovery.attempt_count,
                        context={"action_id": action.id},
                    )
                await self.recovery.recover(action_list)
            elif not self.options.continue_on_error:
                logger.warning(
                    "Stopping after failed action %s",
                    action.id,
                    extra={"session_id": self.machine.id, "action_id": action.id},
                )
                break

    def are_dependencies_satisfied(
        self, action: ActionUnit, action_list: ActionList | None = None
    ) -> bool:
        """True iff every dependency resolves to a COMPLETED unit."""
        source = action_list or self.action_list
        for dep_id in action.dependencies:
            dep = source.get(dep_id) if source else None
            if dep is None or dep.status != ActionStatus.COMPLETED:
                return False
        return True

    async def execute_action(self, action: ActionUnit) -> ActionResult:
        """Run one unit and record its result on it."""
        action.status = ActionStatus.IN_PROGRESS
        extra = {"session_id": self.machine.id, "action_id": action.id}
        try:
            if self.options.dry_run:
                output = f"[dry run] {action.type.value}: {action.description}"
            else:
                output = await self._dispatch(action)
            result = ActionResult(success=True, output=output)
            action.status = ActionStatus.COMPLETED
        except CancelledError:
            # left IN_PROGRESS, the next load resets it to PENDING
            raise
        except ForgeflowError as e:
            result = ActionResult(success=False, error=e.message)
            action.status = ActionStatus.FAILED
        except Exception as e:
            result = ActionResult(success=False, error=str(e) or type(e).__name__)
            action.status = ActionStatus.FAILED
        action.result = result
        if action.status == ActionStatus.FAILED:
            self.failed_action_ids.append(action.id)
            logger.warning("Action %s failed: %s", action.id, result.error, extra=extra)
        else:
            logger.info("Action %s %s", action.id, action.status.value, extra=extra)
        return result

    async def _dispatch(self, action: ActionUnit) -> str:
        params = action.parameters
        if action.type == ActionType.CREATE_FILE:
            path = self._path_of(action)
            content = params.get("content")
            if content is None:
                content = await self._generate_file_content(action)
            result = await self._call("create_file", {"path": path, "content": content})
        elif action.type == ActionType.MODIFY_FILE:
            path = self._path_of(action)
            current = await self._call("read_file", {"path": path})
            content = params.get("content")
            if content is None:
                content = await self._generate_file_content(action, str(current.data))
            result = await self._call("write_file", {"path": path, "content": content})
        elif action.type == ActionType.DELETE_FILE:
            path = self._path_of(action)
            if self.file_store is not None and not await self.workspace_file_exists(path):
                return f"File {path} does not exist (already deleted)"
            result = await self._call("delete_file", {"path": path})
        elif action.type == ActionType.RUN_COMMAND:
            command = params.get("command")
            if not command:
                raise ToolExecutionError("Command not specified for run_command action")
            call: dict[str, Any] = {"command": command}
            if params.get("timeout"):
                call["timeout"] = params["timeout"]
            result = await self._call("execute_command", call)
        else:
            package = params.get("package") or params.get("package_name")
            if not package:
                raise ToolExecutionError("Package not specified for install_dependency action")
            call = {"package": package}
            if params.get("manager"):
                call["manager"] = params["manager"]
            if "dev" in params:
                call["dev"] = bool(params["dev"])
            result = await self._call("install_dependency", call)
        return result.data if isinstance(result.data, str) else json.dumps(result.data, default=str)

    async def _call(self, tool_name: str, params: dict[str, Any]) -> ToolResult:
        self.check_cancellation()
        return await self.tool_manager.execute_tool(tool_name, params, self.context)

    @staticmethod
    def _path_of(action: ActionUnit) -> str:
        path = action.parameters.get("path") or action.parameters.get("file_path")
        if not path:
            raise ToolExecutionError(f"File path not specified for {action.type.value} action")
        return path

    async def _generate_file_content(self, action: ActionUnit, current: str | None = None) -> str:
        path = self._path_of(action)
        language = action.parameters.get("language") or "the appropriate language"
        prompt = [
            f"Task: {action.description}",
            f"File: {path}",
            f"Language: {language}",
            f"Project requirements: {self.machine.requirements.description or 'n/a'}",
        ]
        if current is not None:
            prompt += ["", "Current content:", "```", current, "```", "", "Return the full modified file."]
        else:
            prompt += ["", "Return the full file content."]
        reply = await self.ask_agent("\n".join(prompt), system=FILE_SYSTEM_PROMPT)
        return extract_code(reply)

    def failed_ids(self, action_list: ActionList) -> list[str]:
        """Units that failed in this run, including those recovery skipped,
        plus units still FAILED from an earlier run."""
        failed = list(self.failed_action_ids)
        failed += [
            a.id for a in action_list.with_status(ActionStatus.FAILED) if a.id not in failed
        ]
        return failed

    def _summarize(self, action_list: ActionList, started: float) -> ExecutionSummary:
        failed = self.failed_ids(action_list)
        skipped = [a for a in action_list.with_status(ActionStatus.SKIPPED) if a.id not in failed]
        return ExecutionSummary(
            total_actions=len(action_list.actions),
            completed_actions=len(action_list.with_status(ActionStatus.COMPLETED)),
            failed_actions=len(failed),
            skipped_actions=len(skipped),
            execution_time_ms=(time.monotonic() - started) * 1000,
            recovery_attempts=self.recovery.attempt_count,
        )

    def build_report(self, action_list: ActionList) -> str:
        s = self.summary
        lines = [
            "# Execution Report",
            "",
            f"**Generated:** {datetime.now(timezone.utc).isoformat()}  ",
            f"**Workspace:** {self.machine.workspace}  ",
            f"**Duration:** {s.execution_time_ms / 1000:.1f} seconds  ",
            f"**Recovery Attempts:** {s.recovery_attempts}",
            "",
            "## Summary",
            "",
            f"- **Total Actions:** {s.total_actions}",
            f"- **Completed:** {s.completed_actions}",
            f"- **Failed:** {s.failed_actions}",
            f"- **Skipped:** {s.skipped_actions}",
            f"- **Success Rate:** {round(s.success_rate * 100)}%",
            "",
            "## Action Results",
            "",
        ]
        for i, action in enumerate(action_list.actions, start=1):
            lines.append(f"### {i}. {STATUS_ICONS[action.status]} {action.description}")
            lines.append("")
            lines.append(f"- **Type:** {action.type.value.replace('_', ' ')}")
            lines.append(f"- **Status:** {action.status.value}")
            path = action.parameters.get("path") or action.parameters.get("file_path")
            if path:
                lines.append(f"- **File:** `{path}`")
            if action.parameters.get("command"):
                lines.append(f"- **Command:** `{action.parameters['command']}`")
            if action.result:
                if action.result.output:
                    lines.append(f"- **Output:** {action.result.output}")
                if action.result.error:
                    lines.append(f"- **Error:** {action.result.error}")
                lines.append(f"- **Timestamp:** {action.result.timestamp.isoformat()}")
            lines.append("")

        if self.recovery.attempts:
            lines += ["## Recovery", ""]
            for attempt in self.recovery.attempts:
                lines.append(self._format_attempt(attempt))
            lines.append("")
        return "\n".join(lines)

    @staticmethod
    def _format_attempt(attempt: RecoveryAttempt) -> str:
        skipped = ", ".join(attempt.skipped_ids) or "none"
        plan = attempt.plan.strip() or "(no plan returned)"
        return f"### Attempt {attempt.attempt}\n\nSkipped: {skipped}\n\n{plan}\n"
