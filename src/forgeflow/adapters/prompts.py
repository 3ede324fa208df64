"""
Rich console prompts for approval, recovery, timeout and phase decisions.

Prompts block on stdin, so they run in a worker thread; the caller's
timeout (e.g. the 300s approval window) keeps working while the
operator thinks.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from forgeflow.core.models import ExecutionContext, OperationTimeout, PhaseType, RiskAssessment

if TYPE_CHECKING:
    from forgeflow.exceptions import ForgeflowError
    from forgeflow.tools.models import ToolDefinition


def _risk_style(score: int) -> str:
    if score >= 70:
        return "bold red"
    if score >= 40:
        return "yellow"
    return "green"


class ConsoleApprovalPrompt:
    """ApprovalPrompt asking the operator on the terminal."""

    def __init__(self, console: Console | None = None):
        self._console = console or Console(stderr=True)

    async def ask(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        context: ExecutionContext,
        risk: RiskAssessment,
    ) -> str:
        return await asyncio.to_thread(self._ask, tool, params, context, risk)

    def _ask(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        context: ExecutionContext,
        risk: RiskAssessment,
    ) -> str:
        table = Table(show_header=False, box=None)
        table.add_row("Tool", f"[bold]{tool.name}[/] ({tool.security.risk_level.value} risk)")
        table.add_row("Agent", context.agent_id)
        table.add_row("Risk", f"[{_risk_style(risk.score)}]{risk.score}/100[/]")
        table.add_row("Parameters", json.dumps(params, indent=2, default=str)[:2000])
        for warning in risk.warnings:
            table.add_row("Warning", f"[yellow]{warning}[/]")
        self._console.print(Panel(table, title="Approval required", border_style="cyan"))
        return Prompt.ask(
            "Allow this operation?",
            choices=["allow", "deny", "always-allow"],
            default="deny",
            console=self._console,
        )

    async def confirm_high_risk(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        risk: RiskAssessment,
    ) -> bool:
        def _confirm() -> bool:
            factors = "; ".join(risk.factors) or "none"
            self._console.print(
                f"[bold red]High risk ({risk.score}/100)[/] for {tool.name}. Factors: {factors}"
            )
            return Confirm.ask("Are you sure?", default=False, console=self._console)

        return await asyncio.to_thread(_confirm)


class ConsoleRecoveryPrompt:
    """RecoveryPrompt offering retry/reconfigure/skip/abort."""

    def __init__(self, console: Console | None = None):
        self._console = console or Console(stderr=True)

    async def choose(self, runner_name: str, error: ForgeflowError, choices: list[str]) -> str:
        def _choose() -> str:
            self._console.print(
                Panel(
                    f"{error.message}\n\n[dim]code: {error.code}[/]"
                    + (f"\n[green]Suggested fix:[/] {error.suggested_fix}" if error.suggested_fix else "")
                    + (f"\n[blue]Configure:[/] {error.configuration_link}" if error.configuration_link else ""),
                    title=f"{runner_name} failed",
                    border_style="red",
                )
            )
            return Prompt.ask("What now?", choices=choices, default=choices[-1], console=self._console)

        return await asyncio.to_thread(_choose)


class ConsoleTimeoutPrompt:
    """TimeoutPrompt granting one extra window on confirmation."""

    def __init__(self, console: Console | None = None):
        self._console = console or Console(stderr=True)

    async def extend(self, runner_name: str, timeout: OperationTimeout) -> bool:
        question = f"{runner_name} is taking longer than {timeout.duration:.0f}s. Keep waiting?"
        return await asyncio.to_thread(
            Confirm.ask, question, default=False, console=self._console
        )


class ConsolePhaseGate:
    """PhaseGate for STRUCTURED mode."""

    def __init__(self, console: Console | None = None):
        self._console = console or Console(stderr=True)

    async def confirm(self, phase: PhaseType, summary: str) -> bool:
        def _confirm() -> bool:
            self._console.print(Panel(summary, title=f"Before {phase.value}", border_style="cyan"))
            return Confirm.ask(f"Proceed with {phase.value}?", default=True, console=self._console)

        return await asyncio.to_thread(_confirm)
