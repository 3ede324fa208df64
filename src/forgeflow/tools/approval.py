"""
Forgeflow Approval Flow

Explicit state machine for operator approval of a gated tool call:

    PROMPTED -> CONFIRMED_HIGH_RISK -> DECIDED
    PROMPTED -> DECIDED

The prompt returns ``allow``, ``deny`` or ``always-allow``. A non-deny
answer on a high-risk score must survive a second confirmation; a
refusal there turns the decision into ``deny``. A prompt that does not
answer within the timeout (default 300s) is a ``deny``.

``SessionApprovals`` remembers ``always-allow`` answers keyed by
``(session_id, tool_name)`` until the session is cleared.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

from pydantic import BaseModel

from forgeflow.core.interfaces import ApprovalPrompt
from forgeflow.core.models import ExecutionContext, RiskAssessment
from forgeflow.logging import get_logger
from forgeflow.tools.models import ApprovalDecision, ToolDefinition
from forgeflow.tools.risk import HIGH_RISK_THRESHOLD

logger = get_logger("forgeflow.tools.approval")


class ApprovalState(str, Enum):
    PROMPTED = "prompted"
    CONFIRMED_HIGH_RISK = "confirmed_high_risk"
    DECIDED = "decided"


class ApprovalOutcome(BaseModel):
    decision: ApprovalDecision
    high_risk_confirmed: bool | None = None
    timed_out: bool = False
    states: list[ApprovalState]


class ApprovalFlow:
    """One-shot approval exchange with an ApprovalPrompt."""

    def __init__(
        self,
        prompt: ApprovalPrompt,
        timeout: float = 300.0,
        high_risk_threshold: int = HIGH_RISK_THRESHOLD,
    ):
        self._prompt = prompt
        self._timeout = timeout
        self._threshold = high_risk_threshold

    async def run(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        context: ExecutionContext,
        risk: RiskAssessment,
    ) -> ApprovalOutcome:
        states = [ApprovalState.PROMPTED]
        try:
            answer = await asyncio.wait_for(
                self._prompt.ask(tool, params, context, risk), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Approval prompt timed out after %.0fs, denying",
                self._timeout,
                extra={"tool_name": tool.name, "session_id": context.session_id},
            )
            states.append(ApprovalState.DECIDED)
            return ApprovalOutcome(decision=ApprovalDecision.DENY, timed_out=True, states=states)

        decision = self._parse(answer)
        confirmed: bool | None = None

        if decision.granted and risk.score >= self._threshold:
            states.append(ApprovalState.CONFIRMED_HIGH_RISK)
            try:
                confirmed = bool(
                    await asyncio.wait_for(
                        self._prompt.confirm_high_risk(tool, params, risk), timeout=self._timeout
                    )
                )
            except asyncio.TimeoutError:
                confirmed = False
            if not confirmed:
                decision = ApprovalDecision.DENY

        states.append(ApprovalState.DECIDED)
        logger.info(
            "Approval decided: %s",
            decision.value,
            extra={
                "tool_name": tool.name,
                "session_id": context.session_id,
                "risk_score": risk.score,
                "decision": decision.value,
            },
        )
        return ApprovalOutcome(decision=decision, high_risk_confirmed=confirmed, states=states)

    @staticmethod
    def _parse(answer: Any) -> ApprovalDecision:
        if isinstance(answer, ApprovalDecision):
            return answer
        try:
            return ApprovalDecision(str(answer).strip().lower())
        except ValueError:
            # unknown answers never grant
            return ApprovalDecision.DENY


class SessionApprovals:
    """Always-allow set keyed by (session_id, tool_name)."""

    def __init__(self) -> None:
        self._approved: set[tuple[str, str]] = set()

    def grant(self, session_id: str, tool_name: str) -> None:
        self._approved.add((session_id, tool_name))

    def is_granted(self, session_id: str, tool_name: str) -> bool:
        return (session_id, tool_name) in self._approved

    def clear_session(self, session_id: str) -> int:
        stale = {key for key in self._approved if key[0] == session_id}
        self._approved -= stale
        return len(stale)

    def clear(self) -> None:
        self._approved.clear()

    def __len__(self) -> int:
        return len(self._approved)
