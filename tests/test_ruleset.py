from __future__ import annotations

from pathlib import Path

import pytest

from impressionism.errors import EvalError, LoadError
from impressionism.lua import (
    EvaluationContext,
    Ruleset,
    SandboxedRuntime,
    evaluate_activation,
    evaluate_deactivation,
    list_rulesets,
    resolve_ruleset,
)
from impressionism.store import HookType

KEYWORD_RULESET = """
local M = {}

function M.evaluate_activation(context)
    if context.recent_message and string.find(context.recent_message, "docs") then
        return {"writing-helper"}
    end
    return {}
end

function M.evaluate_deactivation(context)
    if context.hook_type == "stop" then
        return {"writing-helper"}
    end
    return {}
end

return M
"""


def _context(hook_type: HookType = HookType.USER_PROMPT_SUBMIT, message: str | None = None):
    return EvaluationContext(session_id="s1", hook_type=hook_type, recent_message=message)


def test_missing_deactivation_function_is_named() -> None:
    ruleset = Ruleset.from_source(
        "half", "return { evaluate_activation = function(ctx) return {} end }"
    )

    with pytest.raises(LoadError) as excinfo:
        ruleset.validate(SandboxedRuntime())

    assert "missing required function 'evaluate_deactivation'" in str(excinfo.value)
    assert excinfo.value.ruleset == "half"


def test_wrong_export_type_names_actual_type() -> None:
    ruleset = Ruleset.from_source(
        "typo",
        """
        return {
            evaluate_activation = function(ctx) return {} end,
            evaluate_deactivation = "not a function",
        }
        """,
    )

    with pytest.raises(LoadError, match="as string instead of function"):
        ruleset.validate(SandboxedRuntime())


def test_module_must_return_table() -> None:
    ruleset = Ruleset.from_source("number", "return 42")

    with pytest.raises(LoadError, match="must return a table, got number"):
        ruleset.validate(SandboxedRuntime())


def test_syntax_error_is_load_error() -> None:
    ruleset = Ruleset.from_source("broken", "return {")

    with pytest.raises(LoadError, match="Failed to evaluate ruleset 'broken'"):
        ruleset.validate(SandboxedRuntime())


def test_evaluate_keyword_ruleset() -> None:
    ruleset = Ruleset.from_source("keywords", KEYWORD_RULESET)
    runtime = SandboxedRuntime()
    ruleset.validate(runtime)
    exports = ruleset.load(runtime)

    assert evaluate_activation(runtime, exports, _context(message="update the docs")) == [
        "writing-helper"
    ]
    assert evaluate_activation(runtime, exports, _context(message="run tests")) == []
    assert evaluate_deactivation(runtime, exports, _context(HookType.STOP)) == ["writing-helper"]


def test_non_string_result_is_eval_error() -> None:
    ruleset = Ruleset.from_source(
        "numbers",
        """
        return {
            evaluate_activation = function(ctx) return {1, 2} end,
            evaluate_deactivation = function(ctx) return {} end,
        }
        """,
    )
    runtime = SandboxedRuntime()
    exports = ruleset.load(runtime)

    with pytest.raises(EvalError, match="expected string") as excinfo:
        evaluate_activation(runtime, exports, _context(), "numbers")

    assert excinfo.value.phase == "evaluate_activation"
    assert excinfo.value.session_id == "s1"


def test_runtime_error_carries_ruleset_and_phase() -> None:
    ruleset = Ruleset.from_source(
        "raises",
        """
        return {
            evaluate_activation = function(ctx) return {} end,
            evaluate_deactivation = function(ctx) error("boom") end,
        }
        """,
    )
    runtime = SandboxedRuntime()
    exports = ruleset.load(runtime)

    with pytest.raises(EvalError, match="boom") as excinfo:
        evaluate_deactivation(runtime, exports, _context(), "raises")

    message = str(excinfo.value)
    assert "ruleset=raises" in message
    assert "phase=evaluate_deactivation" in message


def test_context_omits_absent_fields() -> None:
    context = EvaluationContext(session_id="s1", hook_type=HookType.SESSION_START)

    assert context.to_dict() == {"session_id": "s1", "hook_type": "session_start"}


@pytest.mark.parametrize("name", ["default", "minimal"])
def test_builtin_rulesets_validate(name: str) -> None:
    Ruleset.builtin(name).validate(SandboxedRuntime())


def test_unknown_builtin_is_load_error() -> None:
    with pytest.raises(LoadError, match="Unknown builtin ruleset"):
        Ruleset.builtin("nope")


def test_user_rules_shadow_builtins(tmp_path: Path) -> None:
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    (rules_dir / "default.lua").write_text(KEYWORD_RULESET)
    (rules_dir / "custom.lua").write_text(KEYWORD_RULESET)

    found = list_rulesets(rules_dir)
    resolved = resolve_ruleset("default", rules_dir)

    assert found["minimal"] == "builtin"
    assert found["default"] == str(rules_dir / "default.lua")
    assert found["custom"] == str(rules_dir / "custom.lua")
    assert resolved.source == KEYWORD_RULESET


def test_resolve_ruleset_accepts_lua_path(tmp_path: Path) -> None:
    path = tmp_path / "mine.lua"
    path.write_text(KEYWORD_RULESET)

    ruleset = resolve_ruleset(str(path))

    assert ruleset.name == "mine"
