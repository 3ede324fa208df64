"""
Forgeflow Risk Assessor

Scores a prospective tool invocation from 0 to 100. The score drives
the approval UX: at or above HIGH_RISK_THRESHOLD the operator must
confirm a second time before the decision is accepted.

Scoring:
  base            low=10, medium=40, high=70
  patterns        ordered table over the lower-cased JSON of the params
  path param      absolute +15, sensitive name +10
  url param       non-HTTPS +10, shortener +15, invalid +5
  context         RESTRICTED +10
  permissions     any of HIGH_RISK_PERMISSIONS +10
  clamp           [0, 100]
"""

from __future__ import annotations

import json
import re
from typing import Any, NamedTuple
from urllib.parse import urlparse

from forgeflow.core.models import ExecutionContext, RiskAssessment, RiskLevel, SecurityLevel
from forgeflow.tools.models import ToolDefinition

HIGH_RISK_THRESHOLD = 70

BASE_SCORES: dict[RiskLevel, int] = {
    RiskLevel.LOW: 10,
    RiskLevel.MEDIUM: 40,
    RiskLevel.HIGH: 70,
}


class RiskPattern(NamedTuple):
    pattern: re.Pattern[str]
    label: str
    score: int


# Checked in order; each matching row contributes once.
RISK_PATTERNS: tuple[RiskPattern, ...] = (
    RiskPattern(re.compile(r"rm\s+-rf|del\s+/[sq]|format\s+c:|mkfs|dd\s+if="), "Destructive file operations", 30),
    RiskPattern(re.compile(r"shutdown|reboot|halt|poweroff|init\s+[06]"), "System control commands", 25),
    RiskPattern(re.compile(r"__import__|eval\(|exec\(|curl[^|]*\|\s*(?:ba)?sh|wget[^|]*\|\s*(?:ba)?sh"), "Code execution patterns", 20),
    RiskPattern(re.compile(r"\.\./|\.\.\\"), "Directory traversal patterns", 15),
    RiskPattern(re.compile(r"password|secret|token|api[_-]?key|credential"), "Sensitive data patterns", 10),
    RiskPattern(re.compile(r"localhost|127\.0\.0\.1|192\.168\.|(?<![\d.])10\.\d+\.\d+\.\d+"), "Local network references", 5),
)

SENSITIVE_PATHS = (
    "package.json",
    ".env",
    ".git",
    "node_modules",
    "pyproject.toml",
    "config",
    "settings",
    "credentials",
    "secrets",
    "keys",
)

URL_SHORTENERS = ("bit.ly", "tinyurl.com", "goo.gl", "t.co", "short.link")

HIGH_RISK_PERMISSIONS = frozenset({"filesystem.write", "system.execute", "network.request"})

_WINDOWS_ABSOLUTE = re.compile(r"^[a-zA-Z]:[\\/]")


def assess_tool_risk(
    tool: ToolDefinition,
    params: dict[str, Any] | None,
    context: ExecutionContext,
) -> RiskAssessment:
    """Score a prospective tool invocation. Pure: no I/O, no state."""
    warnings: list[str] = []
    factors: list[str] = []

    risk_level = tool.security.risk_level
    score = BASE_SCORES[risk_level]
    factors.append(f"{risk_level.value.capitalize()}-risk tool category")

    params = params or {}
    param_string = json.dumps(params, default=str, sort_keys=True).lower()
    for row in RISK_PATTERNS:
        if row.pattern.search(param_string):
            score += row.score
            warnings.append(row.label)
            factors.append(row.label)

    path = params.get("path")
    if isinstance(path, str) and path:
        if path.startswith("/") or _WINDOWS_ABSOLUTE.match(path):
            score += 15
            warnings.append("Absolute file path detected")
            factors.append("Absolute file path usage")
        if any(name in path.lower() for name in SENSITIVE_PATHS):
            score += 10
            warnings.append("Access to sensitive files detected")
            factors.append("Sensitive file access")

    url = params.get("url")
    if isinstance(url, str) and url:
        score += _score_url(url, warnings, factors)

    if context.security.level == SecurityLevel.RESTRICTED:
        score += 10
        factors.append("Restricted security context")

    if HIGH_RISK_PERMISSIONS.intersection(tool.security.permissions):
        score += 10
        factors.append("High-risk permissions required")

    return RiskAssessment(score=max(0, min(score, 100)), warnings=warnings, factors=factors)


def _score_url(url: str, warnings: list[str], factors: list[str]) -> int:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        warnings.append("Invalid URL format")
        factors.append("Invalid URL format")
        return 5

    score = 0
    if parsed.scheme != "https":
        score += 10
        warnings.append("Non-HTTPS URL detected")
        factors.append("Insecure protocol")

    hostname = parsed.hostname.lower()
    if any(hostname == d or hostname.endswith(f".{d}") for d in URL_SHORTENERS):
        score += 15
        warnings.append("URL shortener detected")
        factors.append("URL shortener usage")
    return score


def is_high_risk(assessment: RiskAssessment, threshold: int = HIGH_RISK_THRESHOLD) -> bool:
    return assessment.score >= threshold
