"""Tests for ForgeflowSettings."""

import pytest

from forgeflow.config import ForgeflowSettings
from forgeflow.exceptions import ConfigurationError


class TestDefaults:
    def test_defaults(self):
        settings = ForgeflowSettings()
        assert settings.audit_log_cap == 1000
        assert settings.approval_timeout_seconds == 300.0
        assert settings.command_timeout_seconds == 300.0
        assert settings.max_recovery_attempts == 2
        assert settings.high_risk_threshold == 70
        assert settings.interactive is True
        assert settings.web_environment is False
        assert settings.artifact_dir == ".forgeflow"

    def test_artifact_path(self):
        assert ForgeflowSettings().artifact_path("context.json") == ".forgeflow/context.json"
        assert ForgeflowSettings(artifact_dir="out").artifact_path("spec.md") == "out/spec.md"


class TestFromEnv:
    def test_reads_prefixed_variables(self):
        settings = ForgeflowSettings.from_env(
            {
                "FORGEFLOW_AUDIT_LOG_CAP": "500",
                "FORGEFLOW_INTERACTIVE": "false",
                "FORGEFLOW_LOG_JSON": "true",
                "FORGEFLOW_MODEL": "claude-haiku-4-5",
            }
        )
        assert settings.audit_log_cap == 500
        assert settings.interactive is False
        assert settings.log_json is True
        assert settings.model == "claude-haiku-4-5"

    def test_ignores_unknown_variables(self):
        settings = ForgeflowSettings.from_env({"FORGEFLOW_NOPE": "1", "HOME": "/root"})
        assert settings == ForgeflowSettings()

    def test_invalid_value_raises_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ForgeflowSettings.from_env({"FORGEFLOW_AUDIT_LOG_CAP": "0"})
        assert exc_info.value.code == "CONFIGURATION_ERROR"
        assert "audit_log_cap" in exc_info.value.context["errors"]

    def test_malformed_number(self):
        with pytest.raises(ConfigurationError):
            ForgeflowSettings.from_env({"FORGEFLOW_APPROVAL_TIMEOUT_SECONDS": "soon"})
