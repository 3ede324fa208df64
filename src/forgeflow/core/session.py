"""
Forgeflow Session State Machine

A ``Session`` is the host-owned record of one workflow run. All
mutation goes through ``SessionStateMachine``: state transitions,
phase changes, cancellation, error capture and progress reporting.

Transitions are permissive by default (any state may follow any
other). ``strict=True`` enforces ALLOWED_TRANSITIONS and raises
InvalidTransitionError; ERROR and CANCELLED are reachable from
every state. COMPLETED and CANCELLED may only restart at IDLE; ERROR
may also await a recovery decision or re-enter a phase for a retry.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from forgeflow.core.interfaces import ProgressSink
from forgeflow.core.models import (
    PhaseAgentMapping,
    PhaseType,
    ProgressUpdate,
    SessionRequirements,
    SessionState,
    TERMINAL_STATES,
    WorkflowMode,
)
from forgeflow.exceptions import InvalidTransitionError
from forgeflow.logging import get_logger

logger = get_logger("forgeflow.session")

S = SessionState

ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    S.IDLE: frozenset({S.AGENT_ASSIGNMENT, S.CONTEXT_GENERATION, S.PLANNING}),
    S.AGENT_ASSIGNMENT: frozenset({S.CONTEXT_GENERATION, S.PLANNING}),
    S.CONTEXT_GENERATION: frozenset({S.PLANNING, S.COMPLETED}),
    S.PLANNING: frozenset({S.AWAITING_PLAN_APPROVAL, S.PLAN_REVIEW, S.EXECUTION, S.COMPLETED}),
    S.AWAITING_PLAN_APPROVAL: frozenset({S.PLANNING, S.PLAN_REVIEW, S.EXECUTION}),
    S.PLAN_REVIEW: frozenset({S.AWAITING_REVIEW_APPROVAL, S.PLANNING, S.EXECUTION}),
    S.AWAITING_REVIEW_APPROVAL: frozenset({S.PLANNING, S.EXECUTION}),
    S.EXECUTION: frozenset({S.AWAITING_EXECUTION_APPROVAL, S.RECOVERY, S.COMPLETED}),
    S.AWAITING_EXECUTION_APPROVAL: frozenset({S.EXECUTION}),
    S.RECOVERY: frozenset({S.AWAITING_RECOVERY_DECISION, S.EXECUTION, S.PLANNING}),
    S.AWAITING_RECOVERY_DECISION: frozenset({S.RECOVERY, S.EXECUTION, S.PLANNING}),
    S.COMPLETED: frozenset({S.IDLE}),
    S.ERROR: frozenset(
        {S.IDLE, S.AWAITING_RECOVERY_DECISION, S.CONTEXT_GENERATION, S.PLANNING, S.EXECUTION}
    ),
    S.CANCELLED: frozenset({S.IDLE}),
}

StateListener = Callable[[SessionState, SessionState, str | None], None]


class SessionErrorRecord(BaseModel):
    message: str
    details: Any = None
    state_before: SessionState
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Session:
    """Host-owned record of one workflow run."""

    def __init__(
        self,
        workspace: str,
        requirements: SessionRequirements | None = None,
        mode: WorkflowMode = WorkflowMode.SPEED,
        agent_mapping: PhaseAgentMapping | None = None,
        progress: ProgressSink | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        self.id = session_id or f"session-{uuid.uuid4().hex[:12]}"
        self.workspace = workspace
        self.state = SessionState.IDLE
        self.current_phase: PhaseType | None = None
        self.agent_mapping = agent_mapping or PhaseAgentMapping()
        self.requirements = requirements or SessionRequirements()
        self.mode = mode
        self.cancellation = asyncio.Event()
        self.progress = progress
        self.start_time = datetime.now(timezone.utc)
        self.metadata: dict[str, Any] = dict(metadata or {})


class SessionStateMachine:
    """Phase, cancellation, error and progress tracking for a Session."""

    def __init__(self, session: Session, strict: bool = False):
        self._session = session
        self._strict = strict
        self._last_error: SessionErrorRecord | None = None
        self._listeners: list[StateListener] = []
        self._dispose_callbacks: list[Callable[[str], None]] = []
        self._disposed = False
        self.history: list[tuple[SessionState, datetime, str | None]] = [
            (session.state, session.start_time, None)
        ]

    # ── read-only views ──

    @property
    def session(self) -> Session:
        return self._session

    @property
    def id(self) -> str:
        return self._session.id

    @property
    def workspace(self) -> str:
        return self._session.workspace

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def current_phase(self) -> PhaseType | None:
        return self._session.current_phase

    @property
    def mode(self) -> WorkflowMode:
        return self._session.mode

    @property
    def metadata(self) -> dict[str, Any]:
        return self._session.metadata

    @property
    def agent_mapping(self) -> PhaseAgentMapping:
        return self._session.agent_mapping

    @property
    def requirements(self) -> SessionRequirements:
        return self._session.requirements

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # ── transitions ──

    def set_state(self, state: SessionState, message: str | None = None) -> None:
        """Move to ``state`` and report progress."""
        current = self._session.state
        if self._strict and not self.can_transition(current, state):
            raise InvalidTransitionError(current.value, state.value)
        self._apply(state, message)
        self.report_progress(message or f"Session state: {state.value}")

    @staticmethod
    def can_transition(current: SessionState, target: SessionState) -> bool:
        if target in (SessionState.ERROR, SessionState.CANCELLED) or target == current:
            return True
        return target in ALLOWED_TRANSITIONS.get(current, frozenset())

    def _apply(self, state: SessionState, message: str | None) -> None:
        previous = self._session.state
        self._session.state = state
        self.history.append((state, datetime.now(timezone.utc), message))
        logger.debug(
            "Session %s: %s -> %s",
            self.id,
            previous.value,
            state.value,
            extra={"session_id": self.id, "state": state.value},
        )
        for listener in list(self._listeners):
            listener(previous, state, message)

    def set_phase(self, phase: PhaseType) -> None:
        self._session.current_phase = phase
        self.report_progress(f"Starting {phase.value} phase")

    def complete(self) -> None:
        self.set_state(SessionState.COMPLETED, "Session completed")

    def reset(self) -> None:
        """Start a new run on the same session."""
        self.set_state(SessionState.IDLE, "Session reset")
        self._session.cancellation.clear()
        self._session.current_phase = None
        self._last_error = None

    # ── cancellation ──

    def cancel(self) -> None:
        """Idempotently cancel the session."""
        if self._session.cancellation.is_set():
            return
        self._session.cancellation.set()
        self._apply(SessionState.CANCELLED, "Session cancelled")
        logger.info("Session cancelled", extra={"session_id": self.id})
        self.report_progress("Session cancelled")

    def is_cancelled(self) -> bool:
        return self._session.cancellation.is_set()

    async def wait_cancelled(self) -> None:
        await self._session.cancellation.wait()

    # ── errors ──

    def error(self, message: str, details: Any = None) -> None:
        record = SessionErrorRecord(
            message=message, details=details, state_before=self._session.state
        )
        self._last_error = record
        self._apply(SessionState.ERROR, message)
        logger.error(message, extra={"session_id": self.id, "state": SessionState.ERROR.value})
        self.report_progress(f"Error: {message}")

    def get_last_error(self) -> SessionErrorRecord | None:
        return self._last_error

    def clear_error(self) -> None:
        self._last_error = None

    # ── progress ──

    def report_progress(
        self,
        message: str,
        increment: float | None = None,
        *,
        cancellable: bool = False,
        show_in_status_bar: bool = True,
    ) -> None:
        """Forward a progress update to the sink, unthrottled."""
        sink = self._session.progress
        if sink is None or self._disposed:
            return
        sink.report(
            ProgressUpdate(
                message=message,
                increment=increment,
                cancellable=cancellable,
                show_in_status_bar=show_in_status_bar,
            )
        )

    # ── listeners & lifecycle ──

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        self._listeners = [cb for cb in self._listeners if cb is not listener]

    def on_dispose(self, callback: Callable[[str], None]) -> None:
        """Register ``callback(session_id)`` to run once on dispose()."""
        self._dispose_callbacks.append(callback)

    @property
    def is_terminal(self) -> bool:
        return self._session.state in TERMINAL_STATES

    def dispose(self) -> None:
        """Release listeners and fire disposal callbacks. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        for callback in self._dispose_callbacks:
            callback(self.id)
        self._dispose_callbacks.clear()
        self._listeners.clear()
        logger.debug("Session disposed", extra={"session_id": self.id})
