from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import lupa

from ..errors import EvalError
from . import sandbox

if TYPE_CHECKING:
    from .api import HostApi

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 1000
DEFAULT_MAX_MEMORY = 64 * 1024 * 1024
HOOK_INSTRUCTION_COUNT = 1000
TIMEOUT_MESSAGE = "execution time limit exceeded"

# Installed while ``debug`` still exists; the hook outlives the library.
_DEADLINE_HOOK = f"""
local deadline_exceeded = ...
local err, sethook = error, debug.sethook
local function hook()
    if deadline_exceeded() then
        -- fire on every instruction from now on so pcall cannot swallow it
        sethook(hook, "", 1)
        err("{TIMEOUT_MESSAGE}", 0)
    end
end
sethook(hook, "", {HOOK_INSTRUCTION_COUNT})
"""


def lua_type_name(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (str, bytes)):
        return "string"
    return lupa.lua_type(value) or type(value).__name__


class SandboxedRuntime:
    """One capability-scoped Lua state.

    Instances are cheap and must not be shared: callers create a fresh one
    for every ruleset evaluation.
    """

    def __init__(
        self,
        api: HostApi | None = None,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_memory: int | None = DEFAULT_MAX_MEMORY,
    ) -> None:
        self.timeout_ms = timeout_ms
        self._deadline: float | None = None
        self._timed_out = False
        kwargs: dict[str, Any] = {
            "register_eval": False,
            "register_builtins": False,
            "unpack_returned_tuples": True,
            "attribute_filter": sandbox.deny_attribute_access,
        }
        if max_memory:
            kwargs["max_memory"] = max_memory
        self.lua = lupa.LuaRuntime(**kwargs)
        self.lua.execute(_DEADLINE_HOOK, self._deadline_exceeded)
        self._guard_check = sandbox.apply_sandbox(self.lua)
        if api is not None:
            api.register(self)
        sandbox.ensure_sandboxed(self.lua, self._guard_check)

    def _deadline_exceeded(self) -> bool:
        if self._deadline is None:
            return False
        if time.monotonic() > self._deadline:
            self._timed_out = True
            return True
        return False

    def is_sandboxed(self) -> bool:
        return sandbox.is_sandboxed(self.lua, self._guard_check)

    def table_from(self, data: Any) -> Any:
        return self.lua.table_from(data, recursive=True)

    def _run(self, label: str, func: Any, *args: Any) -> Any:
        self._timed_out = False
        self._deadline = time.monotonic() + self.timeout_ms / 1000.0
        try:
            return func(*args)
        except EvalError:
            raise
        except lupa.LuaError as exc:
            if self._timed_out:
                raise EvalError(f"{label} exceeded {self.timeout_ms} ms time limit") from exc
            raise EvalError(f"{label} failed: {exc}") from exc
        except MemoryError as exc:
            raise EvalError(f"{label} exceeded the Lua memory limit") from exc
        except Exception as exc:
            # Host API callbacks raising inside Lua come back as their own type.
            raise EvalError(f"{label} failed: {type(exc).__name__}: {exc}") from exc
        finally:
            self._deadline = None

    def execute(self, source: str, name: str = "chunk") -> Any:
        sandbox.reject_bytecode(source, name)
        return self._run(f"loading {name}", self.lua.execute, source)

    def call(self, label: str, func: Any, *args: Any) -> Any:
        return self._run(label, func, *args)
