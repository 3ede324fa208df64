"""
Forgeflow Settings

Runtime configuration for the workflow engine. Defaults are usable
as-is; ``ForgeflowSettings.from_env()`` overlays ``FORGEFLOW_*``
environment variables, e.g.::

    FORGEFLOW_AUDIT_LOG_CAP=500
    FORGEFLOW_INTERACTIVE=false
    FORGEFLOW_LOG_JSON=true
"""

from __future__ import annotations

import os

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from forgeflow.exceptions import ConfigurationError

ENV_PREFIX = "FORGEFLOW_"


class ForgeflowSettings(BaseModel):
    """Engine-wide settings shared by the tool pipeline and the runners."""

    audit_log_cap: int = Field(default=1000, ge=1, le=1_000_000)
    approval_timeout_seconds: float = Field(default=300.0, gt=0)
    command_timeout_seconds: float = Field(default=300.0, gt=0)
    max_recovery_attempts: int = Field(default=2, ge=0, le=10)
    high_risk_threshold: int = Field(default=70, ge=0, le=100)
    interactive: bool = True
    web_environment: bool = False
    strict_transitions: bool = False
    artifact_dir: str = ".forgeflow"
    model: str = "claude-sonnet-4-5"
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ForgeflowSettings:
        """Build settings from ``FORGEFLOW_*`` environment variables.

        Unknown variables are ignored; malformed values raise ConfigurationError.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, str] = {}
        for name in cls.model_fields:
            value = env.get(f"{ENV_PREFIX}{name.upper()}")
            if value is not None:
                overrides[name] = value

        try:
            return cls.model_validate(overrides)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid Forgeflow settings: {e.error_count()} error(s)",
                context={"errors": [err["loc"][0] for err in e.errors()]},
                suggested_fix="Check the FORGEFLOW_* environment variables",
            ) from e

    def artifact_path(self, name: str) -> str:
        """Workspace-relative path of a persisted artifact."""
        return f"{self.artifact_dir}/{name}"
