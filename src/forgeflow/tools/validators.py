"""
Forgeflow Parameter and Security Validators

ParameterValidator checks tool parameters against the tool's
JSON-schema-like ``parameters`` dict (required fields, primitive
types, enums, length/range bounds, nested objects and arrays).

SecurityValidator checks whether a call is allowed at all in the
current execution context: permission coverage, web environment
restrictions and the elevated-level requirement for high-risk tools.
Suspicious parameters produce warnings; for command tools they block
unless the context allows dangerous operations.
"""

from __future__ import annotations

import json
import re
from typing import Any

from forgeflow.core.models import ExecutionContext, RiskLevel, SecurityLevel
from forgeflow.tools.models import ToolCategory, ToolDefinition, ValidationResult

_DANGEROUS_PARAMETER_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"rm\s+-rf",
        r"del\s+/[sq]",
        r"format\s+c:",
        r"shutdown",
        r"reboot",
        r"__import__",
        r"eval\(",
        r"exec\(",
    )
)


def _type_matches(value: Any, expected: str) -> bool:
    # bool is an int subclass; keep them apart
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "object":
        return isinstance(value, dict)
    if expected == "array":
        return isinstance(value, list)
    if expected == "null":
        return value is None
    return False


class ParameterValidator:
    """Structural validation of tool parameters."""

    @classmethod
    def validate(cls, params: Any, schema: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        cls._validate_value(params, schema, "params", errors, warnings)
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    @classmethod
    def _validate_value(
        cls,
        value: Any,
        schema: dict[str, Any],
        path: str,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        expected = schema.get("type")
        if expected is not None and not _type_matches(value, expected):
            errors.append(f"{path}: Expected {expected}, got {type(value).__name__}")
            return

        enum = schema.get("enum")
        if enum is not None and value not in enum:
            errors.append(f"{path}: Value must be one of: {', '.join(map(str, enum))}")

        if isinstance(value, dict):
            properties: dict[str, Any] = schema.get("properties", {})
            for required in schema.get("required", []):
                if value.get(required) is None:
                    errors.append(f"{path}: Missing required property '{required}'")
            for key, item in value.items():
                prop_schema = properties.get(key)
                if prop_schema is None:
                    if properties:
                        warnings.append(f"{path}: Unknown property '{key}'")
                    continue
                if item is None and key not in schema.get("required", []):
                    continue
                cls._validate_value(item, prop_schema, f"{path}.{key}", errors, warnings)

        elif isinstance(value, list) and "items" in schema:
            for index, item in enumerate(value):
                cls._validate_value(item, schema["items"], f"{path}[{index}]", errors, warnings)

        elif isinstance(value, str):
            min_length = schema.get("minLength")
            max_length = schema.get("maxLength")
            if min_length is not None and len(value) < min_length:
                errors.append(f"{path}: String too short (minimum {min_length})")
            if max_length is not None and len(value) > max_length:
                errors.append(f"{path}: String too long (maximum {max_length})")

        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            minimum = schema.get("minimum")
            maximum = schema.get("maximum")
            if minimum is not None and value < minimum:
                errors.append(f"{path}: Number too small (minimum {minimum})")
            if maximum is not None and value > maximum:
                errors.append(f"{path}: Number too large (maximum {maximum})")


class SecurityValidator:
    """Policy validation of a tool call in an execution context."""

    def __init__(self, web_environment: bool = False):
        self._web_environment = web_environment

    @property
    def web_environment(self) -> bool:
        return self._web_environment

    def validate_execution(
        self,
        tool: ToolDefinition,
        params: dict[str, Any],
        context: ExecutionContext,
    ) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        security = tool.security

        if security.risk_level == RiskLevel.HIGH:
            if context.security.level == SecurityLevel.RESTRICTED:
                errors.append("High-risk tools are blocked in restricted mode")
            elif context.security.level != SecurityLevel.ELEVATED:
                errors.append("High-risk tool requires elevated security level")
            warnings.append("This tool performs potentially dangerous operations")

        if self._web_environment and not security.allowed_in_web:
            errors.append("Tool not allowed in web environment")

        missing = [p for p in security.permissions if p not in context.user.permissions]
        if missing:
            errors.append(f"Missing permissions: {', '.join(missing)}")

        param_string = json.dumps(params, default=str)
        if any(p.search(param_string) for p in _DANGEROUS_PARAMETER_PATTERNS):
            message = f"Potentially dangerous pattern detected in parameters for {tool.name}"
            # command tools block; everything else only warns
            if tool.category == ToolCategory.COMMAND and not context.security.allow_dangerous:
                errors.append(f"{message} (dangerous commands are not allowed)")
            else:
                warnings.append(message)

        path = params.get("path")
        if isinstance(path, str) and (".." in path or path.startswith("/")):
            warnings.append("File path may access files outside workspace")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
