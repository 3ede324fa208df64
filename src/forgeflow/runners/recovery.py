"""
Forgeflow Recovery Controller

Bounded recovery for sequential action execution. Each attempt:

1. Captures a snapshot of the action list (counts, failure messages,
   the first pending units)
2. Asks the recovery agent for a plan; the text is recorded, never parsed
3. Applies the deterministic fallback: every FAILED unit becomes
   SKIPPED with its error prefixed "Skipped due to recovery: "

Once ``max_attempts`` attempts have been made, the next request raises
RecoveryExhaustedError.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from forgeflow.core.interfaces import AgentChatClient
from forgeflow.core.models import (
    ActionList,
    ActionResult,
    ActionStatus,
    ChatMessage,
    PhaseType,
    SessionState,
)
from forgeflow.core.session import SessionStateMachine
from forgeflow.exceptions import ForgeflowError, RecoveryExhaustedError
from forgeflow.logging import get_logger
from forgeflow.observability.metrics import record_recovery_attempt

logger = get_logger("forgeflow.runners.recovery")

SKIP_PREFIX = "Skipped due to recovery: "
SNAPSHOT_PENDING_LIMIT = 5

RECOVERY_SYSTEM_PROMPT = (
    "You are a recovery agent for an automated coding workflow. "
    "Given the state of a partially executed plan, explain what went wrong "
    "and propose how to proceed. Be brief and concrete."
)


class PendingAction(BaseModel):
    id: str
    type: str
    description: str


class RecoverySnapshot(BaseModel):
    total_actions: int
    completed_actions: int
    failed_actions: int
    skipped_actions: int
    pending_actions: int
    failures: dict[str, str] = Field(default_factory=dict)
    next_pending: list[PendingAction] = Field(default_factory=list)


class RecoveryAttempt(BaseModel):
    attempt: int
    snapshot: RecoverySnapshot
    plan: str = ""
    skipped_ids: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RecoveryController:
    """Counts recovery attempts for one execution and applies the fallback."""

    def __init__(
        self,
        machine: SessionStateMachine,
        chat_client: AgentChatClient | None = None,
        max_attempts: int = 2,
    ):
        self._machine = machine
        self._chat_client = chat_client
        self._max_attempts = max_attempts
        self.attempts: list[RecoveryAttempt] = []

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def can_attempt(self) -> bool:
        return self.attempt_count < self._max_attempts

    @staticmethod
    def snapshot(action_list: ActionList) -> RecoverySnapshot:
        actions = action_list.actions
        pending = [a for a in actions if a.status == ActionStatus.PENDING]
        return RecoverySnapshot(
            total_actions=len(actions),
            completed_actions=sum(1 for a in actions if a.status == ActionStatus.COMPLETED),
            failed_actions=sum(1 for a in actions if a.status == ActionStatus.FAILED),
            skipped_actions=sum(1 for a in actions if a.status == ActionStatus.SKIPPED),
            pending_actions=len(pending),
            failures={
                a.id: (a.result.error if a.result and a.result.error else "unknown error")
                for a in actions
                if a.status == ActionStatus.FAILED
            },
            next_pending=[
                PendingAction(id=a.id, type=a.type.value, description=a.description)
                for a in pending[:SNAPSHOT_PENDING_LIMIT]
            ],
        )

    async def recover(self, action_list: ActionList) -> RecoveryAttempt:
        """Run one recovery attempt over ``action_list`` (mutated in place).

        Raises RecoveryExhaustedError once the attempt cap is reached.
        """
        if not self.can_attempt():
            raise RecoveryExhaustedError(self.attempt_count)

        number = self.attempt_count + 1
        extra = {"session_id": self._machine.id, "attempt": number}
        self._machine.set_state(
            SessionState.RECOVERY, f"Recovery attempt {number}/{self._max_attempts}"
        )
        logger.info("Starting recovery attempt %d", number, extra=extra)
        record_recovery_attempt(session_id=self._machine.id, attempt=number)

        snapshot = self.snapshot(action_list)
        attempt = RecoveryAttempt(attempt=number, snapshot=snapshot)
        self.attempts.append(attempt)

        attempt.plan = await self._request_plan(snapshot)
        attempt.skipped_ids = self.apply_fallback(action_list)

        logger.info(
            "Recovery attempt %d skipped %d failed action(s)",
            number,
            len(attempt.skipped_ids),
            extra=extra,
        )
        self._machine.set_state(SessionState.EXECUTION, "Resuming execution after recovery")
        return attempt

    async def _request_plan(self, snapshot: RecoverySnapshot) -> str:
        if self._chat_client is None:
            return ""
        agent = self._machine.agent_mapping.agent_for(PhaseType.RECOVERY) or "default"
        prompt = (
            "Execution of the plan hit failures. Current state:\n\n"
            f"{snapshot.model_dump_json(indent=2)}\n\n"
            "Propose a recovery strategy."
        )
        try:
            response = await self._chat_client.send_message(
                agent,
                [ChatMessage(role="user", content=prompt)],
                {"system": RECOVERY_SYSTEM_PROMPT},
            )
        except ForgeflowError as e:
            # the fallback does not depend on the plan
            logger.warning(
                "Recovery agent unavailable: %s",
                e.message,
                extra={"session_id": self._machine.id, "error_code": e.code},
            )
            return ""
        return response.content

    @staticmethod
    def apply_fallback(action_list: ActionList) -> list[str]:
        """Mark every FAILED unit SKIPPED. Returns the affected ids."""
        skipped: list[str] = []
        for action in action_list.actions:
            if action.status != ActionStatus.FAILED:
                continue
            previous = action.result.error if action.result and action.result.error else "failed"
            action.status = ActionStatus.SKIPPED
            action.result = ActionResult(success=False, error=f"{SKIP_PREFIX}{previous}")
            skipped.append(action.id)
        return skipped
