from __future__ import annotations

from .api import API_FUNCTIONS, API_TABLE_NAME, HostApi
from .runtime import SandboxedRuntime
from .ruleset import (
    EvaluationContext,
    Ruleset,
    evaluate_activation,
    evaluate_deactivation,
    list_rulesets,
    resolve_ruleset,
)
from .sandbox import BLOCKED_GLOBALS, apply_sandbox, is_sandboxed

__all__ = [
    "API_FUNCTIONS",
    "API_TABLE_NAME",
    "BLOCKED_GLOBALS",
    "EvaluationContext",
    "HostApi",
    "Ruleset",
    "SandboxedRuntime",
    "apply_sandbox",
    "evaluate_activation",
    "evaluate_deactivation",
    "is_sandboxed",
    "list_rulesets",
    "resolve_ruleset",
]
