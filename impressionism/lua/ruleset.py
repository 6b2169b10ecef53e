"""Ruleset loading and validation.

A ruleset is a Lua chunk that returns a table exporting two functions:

- ``evaluate_activation(context)`` returns skill identifiers to activate
- ``evaluate_deactivation(context)`` returns skill identifiers to deactivate
"""

from __future__ import annotations

from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import lupa

from ..errors import EvalError, LoadError
from ..store import HookType
from .runtime import SandboxedRuntime, lua_type_name

REQUIRED_FUNCTIONS = ("evaluate_activation", "evaluate_deactivation")
RULESET_SUFFIX = ".lua"


@dataclass
class Ruleset:
    name: str
    source: str

    @classmethod
    def from_source(cls, name: str, source: str) -> Ruleset:
        return cls(name=name, source=source)

    @classmethod
    def from_file(cls, path: str | Path) -> Ruleset:
        path = Path(path).expanduser()
        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise LoadError(path.stem, f"Failed to read ruleset: {path}: {exc}") from exc
        return cls(name=path.stem, source=source)

    @classmethod
    def builtin(cls, name: str) -> Ruleset:
        resource = resources.files("impressionism").joinpath("rules", f"{name}{RULESET_SUFFIX}")
        if not resource.is_file():
            raise LoadError(name, f"Unknown builtin ruleset '{name}'")
        return cls(name=name, source=resource.read_text(encoding="utf-8"))

    def _evaluate_module(self, runtime: SandboxedRuntime) -> Any:
        try:
            exports = runtime.execute(self.source, self.name)
        except EvalError as exc:
            raise LoadError(self.name, f"Failed to evaluate ruleset '{self.name}': {exc}") from exc
        if lupa.lua_type(exports) != "table":
            raise LoadError(
                self.name,
                f"Ruleset '{self.name}' must return a table, got {lua_type_name(exports)}",
            )
        return exports

    def validate(self, runtime: SandboxedRuntime) -> None:
        exports = self._evaluate_module(runtime)
        for func_name in REQUIRED_FUNCTIONS:
            _validate_exported_function(exports, func_name, self.name)

    def load(self, runtime: SandboxedRuntime) -> Any:
        return self._evaluate_module(runtime)


def _validate_exported_function(exports: Any, name: str, ruleset_name: str) -> None:
    value = exports[name]
    if value is None:
        raise LoadError(ruleset_name, f"Ruleset '{ruleset_name}' missing required function '{name}'")
    if lupa.lua_type(value) != "function":
        raise LoadError(
            ruleset_name,
            f"Ruleset '{ruleset_name}' exports '{name}' as {lua_type_name(value)} "
            "instead of function",
        )


def builtin_ruleset_names() -> list[str]:
    rules_dir = resources.files("impressionism").joinpath("rules")
    return sorted(
        entry.name[: -len(RULESET_SUFFIX)]
        for entry in rules_dir.iterdir()
        if entry.name.endswith(RULESET_SUFFIX)
    )


def list_rulesets(rules_dir: str | Path | None = None) -> dict[str, str]:
    """Map ruleset name to where it comes from; user rules shadow builtins."""

    found = {name: "builtin" for name in builtin_ruleset_names()}
    if rules_dir is not None:
        directory = Path(rules_dir).expanduser()
        if directory.is_dir():
            for path in sorted(directory.glob(f"*{RULESET_SUFFIX}")):
                found[path.stem] = str(path)
    return found


def resolve_ruleset(name_or_path: str, rules_dir: str | Path | None = None) -> Ruleset:
    candidate = Path(name_or_path).expanduser()
    if candidate.suffix == RULESET_SUFFIX and candidate.is_file():
        return Ruleset.from_file(candidate)
    if rules_dir is not None:
        user_path = Path(rules_dir).expanduser() / f"{name_or_path}{RULESET_SUFFIX}"
        if user_path.is_file():
            return Ruleset.from_file(user_path)
    return Ruleset.builtin(name_or_path)


@dataclass
class EvaluationContext:
    session_id: str
    hook_type: HookType
    recent_message: str | None = None
    tool_name: str | None = None
    workspace_path: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"session_id": self.session_id, "hook_type": self.hook_type.value}
        if self.recent_message is not None:
            data["recent_message"] = self.recent_message
        if self.tool_name is not None:
            data["tool_name"] = self.tool_name
        if self.workspace_path is not None:
            data["workspace_path"] = self.workspace_path
        return data

    def to_lua_table(self, runtime: SandboxedRuntime) -> Any:
        return runtime.table_from(self.to_dict())


def _lua_string_list(result: Any, *, phase: str, ruleset: str) -> list[str]:
    if lupa.lua_type(result) != "table":
        raise EvalError(
            f"{phase} must return a table of skill names, got {lua_type_name(result)}",
            ruleset=ruleset,
            phase=phase,
        )
    items: list[tuple[int, str]] = []
    for key, value in result.items():
        if not isinstance(key, int) or isinstance(key, bool):
            raise EvalError(
                f"{phase} returned a non-array table (key {key!r})", ruleset=ruleset, phase=phase
            )
        if not isinstance(value, str):
            raise EvalError(
                f"{phase} returned {lua_type_name(value)} at index {key}, expected string",
                ruleset=ruleset,
                phase=phase,
            )
        items.append((key, value))
    return [value for _, value in sorted(items)]


def _evaluate(
    phase: str, runtime: SandboxedRuntime, exports: Any, context: EvaluationContext, ruleset: str
) -> list[str]:
    try:
        func = exports[phase]
        if lupa.lua_type(func) != "function":
            raise EvalError(f"ruleset does not export {phase}", ruleset=ruleset, phase=phase)
        result = runtime.call(phase, func, context.to_lua_table(runtime))
        return _lua_string_list(result, phase=phase, ruleset=ruleset)
    except EvalError as exc:
        raise EvalError(
            exc.args[0], ruleset=ruleset, phase=phase, session_id=context.session_id
        ) from exc
    except Exception as exc:
        # Converting the returned table decodes Lua strings; bad bytes land here.
        raise EvalError(
            f"{phase} returned an unreadable result: {type(exc).__name__}: {exc}",
            ruleset=ruleset,
            phase=phase,
            session_id=context.session_id,
        ) from exc


def evaluate_activation(
    runtime: SandboxedRuntime, exports: Any, context: EvaluationContext, ruleset: str = ""
) -> list[str]:
    return _evaluate("evaluate_activation", runtime, exports, context, ruleset)


def evaluate_deactivation(
    runtime: SandboxedRuntime, exports: Any, context: EvaluationContext, ruleset: str = ""
) -> list[str]:
    return _evaluate("evaluate_deactivation", runtime, exports, context, ruleset)
