"""
Forgeflow Custom Exceptions

Structured exception hierarchy for the Forgeflow workflow engine.
Every Forgeflow exception is a structured error: it carries a
machine-readable ``code``, a ``recoverable`` flag, and optional
``suggested_fix`` / ``configuration_link`` / ``context`` fields that
the runner harness uses to decide between retry, skip and abort.

Exception hierarchy:
    ForgeflowError
    +-- ValidationError              (input/parameter validation)
    +-- SecurityViolationError       (security policy rejected a tool call)
    +-- ToolNotFoundError            (unknown tool name)
    +-- UserDeniedError              (operator denied approval)
    +-- ToolExecutionError           (tool pipeline failure, any tool code)
    +-- NetworkError                 (agent/provider connectivity)
    +-- AuthError                    (provider credentials)
    +-- RateLimitError               (provider throttling)
    +-- OperationTimeoutError        (runner timeout race lost)
    +-- CancelledError               (session cancelled)
    +-- RecoveryExhaustedError       (recovery attempt cap reached, fatal)
    +-- RunnerError                  (generic phase failure)
    +-- InvalidTransitionError       (strict session state machine)
    +-- ConfigurationError           (bad settings)
"""

from __future__ import annotations

from typing import Any


class ForgeflowError(Exception):
    """Base exception for all Forgeflow errors.

    Attributes are set once in ``__init__`` and treated as read-only.
    """

    default_code = "FORGEFLOW_ERROR"
    default_recoverable = True

    def __init__(
        self,
        message: str,
        code: str | None = None,
        recoverable: bool | None = None,
        suggested_fix: str | None = None,
        configuration_link: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self.suggested_fix = suggested_fix
        self.configuration_link = configuration_link
        self.context = dict(context or {})

    @property
    def details(self) -> dict[str, Any]:
        return {"code": self.code, "recoverable": self.recoverable, **self.context}

    def to_dict(self) -> dict[str, Any]:
        """Serializable view used by audit export and JSON logging."""
        return {
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "suggested_fix": self.suggested_fix,
            "configuration_link": self.configuration_link,
            "context": self.context,
        }


class ValidationError(ForgeflowError):
    """Raised when runner inputs or tool parameters fail validation."""

    default_code = "VALIDATION_ERROR"


class SecurityViolationError(ForgeflowError):
    """Raised when the security validator rejects a tool call."""

    default_code = "SECURITY_VIOLATION"
    default_recoverable = False


class ToolNotFoundError(ForgeflowError):
    """Raised when a tool name is not in the registry."""

    default_code = "TOOL_NOT_FOUND"
    default_recoverable = False


class UserDeniedError(ForgeflowError):
    """Raised when the operator denies a security-gated tool call."""

    default_code = "USER_DENIED"


class ToolExecutionError(ForgeflowError):
    """Raised by the tool pipeline for any failed tool call.

    ``code`` is one of TOOL_NOT_FOUND, INVALID_PARAMETERS,
    SECURITY_VIOLATION, USER_DENIED or EXECUTION_ERROR.
    """

    default_code = "EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        tool_name: str | None = None,
        original_error: BaseException | None = None,
        **kwargs: Any,
    ):
        context = {"tool_name": tool_name, **(kwargs.pop("context", None) or {})}
        super().__init__(message, code=code, context=context, **kwargs)
        self.tool_name = tool_name
        self.original_error = original_error


class NetworkError(ForgeflowError):
    """Raised when an agent or provider cannot be reached."""

    default_code = "NETWORK_ERROR"


class AuthError(ForgeflowError):
    """Raised when provider authentication fails."""

    default_code = "AUTH_ERROR"


class RateLimitError(ForgeflowError):
    """Raised when a provider throttles requests."""

    default_code = "RATE_LIMIT_ERROR"

    def __init__(self, message: str, retry_after: float | None = None, **kwargs: Any):
        context = {"retry_after": retry_after, **(kwargs.pop("context", None) or {})}
        super().__init__(message, context=context, **kwargs)
        self.retry_after = retry_after


class OperationTimeoutError(ForgeflowError):
    """Raised when a runner loses its timeout race."""

    default_code = "TIMEOUT"


class CancelledError(ForgeflowError):
    """Raised when the session was cancelled.

    Not a subclass of ``asyncio.CancelledError``: cooperative
    cancellation is a normal, reportable outcome.
    """

    default_code = "CANCELLED"
    default_recoverable = False


class RecoveryExhaustedError(ForgeflowError):
    """Raised when the recovery attempt cap is reached. Always fatal."""

    default_code = "RECOVERY_EXHAUSTED"
    default_recoverable = False

    def __init__(self, attempts: int, message: str | None = None, **kwargs: Any):
        context = {"attempts": attempts, **(kwargs.pop("context", None) or {})}
        super().__init__(
            message or f"Recovery exhausted after {attempts} attempt(s)",
            recoverable=False,
            context=context,
            **kwargs,
        )
        self.attempts = attempts


class RunnerError(ForgeflowError):
    """Generic phase runner failure built by the error factories."""

    default_code = "RUNNER_ERROR"


class InvalidTransitionError(ForgeflowError):
    """Raised by a strict session state machine on an illegal transition."""

    default_code = "INVALID_TRANSITION"
    default_recoverable = False

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Illegal session transition: {current} -> {target}",
            context={"from": current, "to": target},
        )
        self.current = current
        self.target = target


class ConfigurationError(ForgeflowError):
    """Raised for invalid Forgeflow settings."""

    default_code = "CONFIGURATION_ERROR"
    default_recoverable = False


def as_forgeflow_error(error: BaseException) -> ForgeflowError:
    """Wrap an arbitrary exception into a recoverable RunnerError."""
    if isinstance(error, ForgeflowError):
        return error
    return RunnerError(
        str(error) or type(error).__name__,
        context={"error_type": type(error).__name__},
    )
