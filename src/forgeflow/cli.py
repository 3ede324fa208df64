"""
Forgeflow CLI

Command-line interface for the Forgeflow workflow engine.

Commands:
    forgeflow run "requirement"            — Context, planning and execution
    forgeflow run --mode structured "..."  — Approve each phase first
    forgeflow tools                        — List built-in tools
    forgeflow risk TOOL PARAMS_JSON        — Score a prospective tool call

Usage:
    export ANTHROPIC_API_KEY=...
    forgeflow run --workspace ./app "Add input validation to the signup form"
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from forgeflow import __version__
from forgeflow.adapters.files import LocalFileStore
from forgeflow.adapters.process import SubprocessRunner
from forgeflow.adapters.progress import LoggingProgressSink
from forgeflow.adapters.prompts import (
    ConsoleApprovalPrompt,
    ConsolePhaseGate,
    ConsoleRecoveryPrompt,
    ConsoleTimeoutPrompt,
)
from forgeflow.config import ForgeflowSettings
from forgeflow.core.models import ExecutionContext, SecurityContext, SecurityLevel, UserInfo, WorkflowMode
from forgeflow.engine import Forgeflow, WorkflowResult
from forgeflow.exceptions import ForgeflowError
from forgeflow.logging import configure_logging
from forgeflow.runners.execution import ExecutionOptions
from forgeflow.tools.builtin import BUILTIN_PERMISSIONS, register_all_builtins
from forgeflow.tools.manager import ToolManager
from forgeflow.tools.registry import ToolRegistry

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="forgeflow")
def cli() -> None:
    """Forgeflow — Session-Driven Agent Workflow Engine"""


@cli.command()
@click.argument("requirement")
@click.option(
    "--workspace",
    "-w",
    default=".",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Workspace directory",
)
@click.option(
    "--mode",
    type=click.Choice([m.value for m in WorkflowMode]),
    default=WorkflowMode.SPEED.value,
    help="speed runs every phase; structured asks before planning and execution",
)
@click.option("--headless", is_flag=True, help="Never prompt; gated tools are denied")
@click.option("--dry-run", is_flag=True, help="Plan and report without side effects")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.option("--json-output", is_flag=True, help="Print the result as JSON")
@click.option(
    "--audit-out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the tool audit export to this file",
)
def run(
    requirement: str,
    workspace: Path,
    mode: str,
    headless: bool,
    dry_run: bool,
    json_logs: bool,
    json_output: bool,
    audit_out: Path | None,
) -> None:
    """Run a workflow session for REQUIREMENT."""
    try:
        settings = ForgeflowSettings.from_env()
    except ForgeflowError as e:
        raise click.ClickException(e.message) from e
    settings = settings.model_copy(
        update={
            "interactive": settings.interactive and not headless,
            "log_json": settings.log_json or json_logs,
        }
    )
    configure_logging(settings.log_level, json_output=settings.log_json)

    engine = _build_engine(workspace.resolve(), settings)
    options = ExecutionOptions(
        dry_run=dry_run, max_recovery_attempts=settings.max_recovery_attempts
    )

    try:
        result = asyncio.run(engine.run(requirement, mode=WorkflowMode(mode), options=options))
    except KeyboardInterrupt:
        console.print("\n  Session interrupted.")
        sys.exit(130)
    finally:
        if audit_out is not None:
            engine.tool_manager.export_audit_json(audit_out)

    if json_output:
        click.echo(result.model_dump_json(indent=2))
    else:
        _print_result(result)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.option("--web", is_flag=True, help="Only tools allowed in a web environment")
def tools(web: bool) -> None:
    """List built-in tools and their security profile."""
    registry = _builtin_registry(web)
    table = Table(title="Built-in tools")
    for column in ("Name", "Category", "Risk", "Approval", "Permissions", "Web"):
        table.add_column(column)
    for tool in sorted(registry.get_all_tools(), key=lambda t: t.name):
        if web and not tool.security.allowed_in_web:
            continue
        table.add_row(
            tool.name,
            tool.category.value,
            tool.security.risk_level.value,
            "yes" if tool.security.requires_approval else "no",
            ", ".join(tool.security.permissions) or "-",
            "yes" if tool.security.allowed_in_web else "no",
        )
    console.print(table)


@cli.command()
@click.argument("tool_name")
@click.argument("params_json", default="{}")
@click.option(
    "--level",
    type=click.Choice([level.value for level in SecurityLevel]),
    default=SecurityLevel.NORMAL.value,
    help="Security level of the calling context",
)
def risk(tool_name: str, params_json: str, level: str) -> None:
    """Print the risk assessment for calling TOOL_NAME with PARAMS_JSON."""
    try:
        params = json.loads(params_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e.msg}", param_hint="PARAMS_JSON") from e
    if not isinstance(params, dict):
        raise click.BadParameter("must be a JSON object", param_hint="PARAMS_JSON")

    manager = ToolManager(registry=_builtin_registry(False))
    tool = manager.registry.get_tool(tool_name)
    if tool is None:
        raise click.ClickException(f"Unknown tool: {tool_name}")

    context = ExecutionContext(
        agent_id="cli",
        session_id="cli",
        user=UserInfo(id="local", permissions=list(BUILTIN_PERMISSIONS)),
        security=SecurityContext(level=SecurityLevel(level)),
    )
    assessment = manager.assess_risk(tool, params, context)

    style = "red" if assessment.score >= 70 else "yellow" if assessment.score >= 40 else "green"
    console.print(f"  Tool: [bold]{tool.name}[/] ({tool.security.risk_level.value} risk)")
    console.print(f"  Score: [{style}]{assessment.score}/100[/]")
    for factor in assessment.factors:
        console.print(f"  Factor: {factor}")
    for warning in assessment.warnings:
        console.print(f"  [yellow]Warning:[/] {warning}")


def _build_engine(workspace: Path, settings: ForgeflowSettings) -> Forgeflow:
    interactive = settings.interactive
    prompt_console = Console(stderr=True)
    return Forgeflow(
        workspace=str(workspace),
        settings=settings,
        approval_prompt=ConsoleApprovalPrompt(prompt_console) if interactive else None,
        recovery_prompt=ConsoleRecoveryPrompt(prompt_console) if interactive else None,
        timeout_prompt=ConsoleTimeoutPrompt(prompt_console) if interactive else None,
        phase_gate=ConsolePhaseGate(prompt_console) if interactive else None,
        progress=LoggingProgressSink(),
    )


def _builtin_registry(web: bool) -> ToolRegistry:
    registry = ToolRegistry(web_environment=web)
    register_all_builtins(registry, LocalFileStore("."), SubprocessRunner())
    return registry


def _print_result(result: WorkflowResult) -> None:
    status = "[green]SUCCESS[/]" if result.success else "[red]FAILED[/]"
    console.print(f"\n  Status: {status}  ({result.final_state.value})")
    console.print(f"  Session: {result.session_id}")
    for outcome in result.phases:
        mark = "ok" if outcome.success else "skipped" if outcome.skipped else "failed"
        line = f"  {outcome.phase.value:10s} {mark}"
        if outcome.attempts > 1:
            line += f" after {outcome.attempts} attempts"
        if outcome.error:
            line += f": {outcome.error}"
        console.print(line)
    if result.execution is not None:
        s = result.execution
        console.print(
            f"  Actions: {s.completed_actions}/{s.total_actions} completed, "
            f"{s.failed_actions} failed, {s.skipped_actions} skipped"
        )
    for path in result.artifacts:
        console.print(f"  Artifact: {path}")


if __name__ == "__main__":
    cli()
