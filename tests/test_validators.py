"""Tests for ParameterValidator and SecurityValidator."""

import pytest

from forgeflow.core.models import RiskLevel, SecurityContext, SecurityLevel, UserInfo
from forgeflow.tools.models import ToolCategory
from forgeflow.tools.validators import ParameterValidator, SecurityValidator

SCHEMA = {
    "type": "object",
    "properties": {
        "path": {"type": "string", "minLength": 1, "maxLength": 20},
        "count": {"type": "integer", "minimum": 1, "maximum": 10},
        "mode": {"type": "string", "enum": ["fast", "safe"]},
        "force": {"type": "boolean"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "options": {
            "type": "object",
            "properties": {"depth": {"type": "number"}},
            "required": ["depth"],
        },
    },
    "required": ["path"],
}


# ─── ParameterValidator ─────────────────────────────────────


class TestParameterValidator:
    def test_valid_params(self):
        result = ParameterValidator.validate(
            {"path": "a.txt", "count": 3, "mode": "safe", "tags": ["x"]}, SCHEMA
        )
        assert result.valid
        assert result.errors == []

    def test_missing_required(self):
        result = ParameterValidator.validate({}, SCHEMA)
        assert not result.valid
        assert "params: Missing required property 'path'" in result.errors

    def test_type_mismatch_reports_path(self):
        result = ParameterValidator.validate({"path": 5}, SCHEMA)
        assert "params.path: Expected string, got int" in result.errors

    def test_bool_is_not_integer(self):
        result = ParameterValidator.validate({"path": "a", "count": True}, SCHEMA)
        assert "params.count: Expected integer, got bool" in result.errors

    def test_enum(self):
        result = ParameterValidator.validate({"path": "a", "mode": "yolo"}, SCHEMA)
        assert not result.valid
        assert "one of: fast, safe" in result.errors[0]

    @pytest.mark.parametrize(
        "params,fragment",
        [
            ({"path": ""}, "String too short"),
            ({"path": "x" * 21}, "String too long"),
            ({"path": "a", "count": 0}, "Number too small"),
            ({"path": "a", "count": 11}, "Number too large"),
        ],
    )
    def test_bounds(self, params, fragment):
        result = ParameterValidator.validate(params, SCHEMA)
        assert any(fragment in e for e in result.errors)

    def test_array_items(self):
        result = ParameterValidator.validate({"path": "a", "tags": ["ok", 3]}, SCHEMA)
        assert "params.tags[1]: Expected string, got int" in result.errors

    def test_nested_object(self):
        result = ParameterValidator.validate({"path": "a", "options": {}}, SCHEMA)
        assert "params.options: Missing required property 'depth'" in result.errors

    def test_unknown_property_is_warning(self):
        result = ParameterValidator.validate({"path": "a", "extra": 1}, SCHEMA)
        assert result.valid
        assert "params: Unknown property 'extra'" in result.warnings

    def test_optional_none_is_skipped(self):
        assert ParameterValidator.validate({"path": "a", "count": None}, SCHEMA).valid

    def test_non_object_params(self):
        result = ParameterValidator.validate(["not", "a", "dict"], SCHEMA)
        assert result.errors == ["params: Expected object, got list"]


# ─── SecurityValidator ──────────────────────────────────────


class TestSecurityValidator:
    def test_allowed_call(self, make_tool, context):
        tool = make_tool(permissions=["filesystem.read"])
        assert SecurityValidator().validate_execution(tool, {"path": "a.txt"}, context).valid

    def test_missing_permissions(self, make_tool, context):
        tool = make_tool(permissions=["network.request"])
        result = SecurityValidator().validate_execution(tool, {}, context)
        assert "Missing permissions: network.request" in result.errors

    def test_web_environment(self, make_tool, context):
        tool = make_tool(allowed_in_web=False)
        assert SecurityValidator().validate_execution(tool, {}, context).valid
        result = SecurityValidator(web_environment=True).validate_execution(tool, {}, context)
        assert "Tool not allowed in web environment" in result.errors

    def test_high_risk_needs_elevated(self, make_tool, context):
        tool = make_tool(risk_level=RiskLevel.HIGH)
        result = SecurityValidator().validate_execution(tool, {}, context)
        assert "High-risk tool requires elevated security level" in result.errors

        elevated = context.model_copy(
            update={"security": SecurityContext(level=SecurityLevel.ELEVATED)}
        )
        result = SecurityValidator().validate_execution(tool, {}, elevated)
        assert result.valid
        assert result.warnings

    def test_high_risk_blocked_in_restricted(self, make_tool, context):
        restricted = context.model_copy(
            update={"security": SecurityContext(level=SecurityLevel.RESTRICTED)}
        )
        result = SecurityValidator().validate_execution(
            make_tool(risk_level=RiskLevel.HIGH), {}, restricted
        )
        assert "High-risk tools are blocked in restricted mode" in result.errors

    def test_dangerous_command_blocked(self, make_tool, context):
        tool = make_tool(category=ToolCategory.COMMAND)
        result = SecurityValidator().validate_execution(tool, {"command": "rm -rf build"}, context)
        assert not result.valid
        assert "dangerous" in result.errors[0]

    def test_dangerous_command_allowed_when_permitted(self, make_tool, context):
        permissive = context.model_copy(update={"security": SecurityContext(allow_dangerous=True)})
        tool = make_tool(category=ToolCategory.COMMAND)
        result = SecurityValidator().validate_execution(tool, {"command": "rm -rf build"}, permissive)
        assert result.valid
        assert result.warnings

    def test_dangerous_pattern_in_file_content_only_warns(self, make_tool, context):
        tool = make_tool(category=ToolCategory.FILESYSTEM)
        result = SecurityValidator().validate_execution(
            tool, {"path": "a.py", "content": "eval(x)"}, context
        )
        assert result.valid
        assert any("dangerous pattern" in w for w in result.warnings)

    def test_path_outside_workspace_warns(self, make_tool, context):
        result = SecurityValidator().validate_execution(make_tool(), {"path": "../etc"}, context)
        assert result.valid
        assert "File path may access files outside workspace" in result.warnings

    def test_user_without_permissions(self, make_tool, context):
        anonymous = context.model_copy(update={"user": UserInfo(id="anon")})
        tool = make_tool(permissions=["filesystem.read", "filesystem.write"])
        result = SecurityValidator().validate_execution(tool, {}, anonymous)
        assert result.errors == ["Missing permissions: filesystem.read, filesystem.write"]
