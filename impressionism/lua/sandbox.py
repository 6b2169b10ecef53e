"""Capability removal for ruleset Lua states.

Everything that reaches the filesystem, the process, the Python bridge,
metatables, the garbage collector or the code loader is set to nil. What is
left is plain computation (string, table, math, utf8) plus whatever host API
the runtime registers afterwards. String pattern functions are wrapped so a
single backtracking match cannot run past the execution deadline.
"""

from __future__ import annotations

from typing import Any

from ..errors import EvalError

BLOCKED_GLOBALS = (
    "os",
    "io",
    "debug",
    "package",
    "require",
    "module",
    "loadfile",
    "dofile",
    "load",
    "loadstring",
    "rawget",
    "rawset",
    "rawequal",
    "rawlen",
    "collectgarbage",
    "getfenv",
    "setfenv",
    "newproxy",
    "getmetatable",
    "setmetatable",
    "coroutine",
    "print",
    "python",
)

# (table, member) pairs removed from libraries that otherwise stay available.
BLOCKED_MEMBERS = (("string", "dump"),)

# Library pattern functions are replaced by wrappers that refuse calls whose
# backtracking could outrun the deadline hook, which cannot fire inside C.
GUARDED_STRING_FUNCTIONS = ("find", "match", "gmatch", "gsub")
MAX_PATTERN_COST = 10**8

BYTECODE_SIGNATURE = "\x1bLua"

# subject length ** (repetition items + 1 unless anchored) must stay under the limit
_PATTERN_GUARD = """
local limit = ...
local string_table = string
local find, match, gmatch, gsub = string.find, string.match, string.gmatch, string.gsub
local sub, type, error, tostring, pairs = string.sub, type, error, tostring, pairs

local function set_end(pattern, i)
    local j = i + 1
    if sub(pattern, j, j) == "^" then j = j + 1 end
    if sub(pattern, j, j) == "]" then j = j + 1 end
    while j <= #pattern and sub(pattern, j, j) ~= "]" do
        if sub(pattern, j, j) == "%" then j = j + 2 else j = j + 1 end
    end
    return j
end

local function repetitions(pattern)
    local count, i, item = 0, 1, false
    while i <= #pattern do
        local c = sub(pattern, i, i)
        if c == "%" then
            local nxt = sub(pattern, i + 1, i + 1)
            if nxt == "b" then
                i, item = i + 4, false
            elseif nxt == "f" then
                i, item = set_end(pattern, i + 2) + 1, false
            else
                i, item = i + 2, true
            end
        elseif c == "[" then
            i, item = set_end(pattern, i) + 1, true
        elseif item and (c == "*" or c == "+" or c == "-") then
            count, i, item = count + 1, i + 1, false
        elseif item and c == "?" then
            i, item = i + 1, false
        elseif c == "(" or c == ")" or (c == "^" and i == 1) then
            i, item = i + 1, false
        else
            i, item = i + 1, true
        end
    end
    return count
end

local function check(name, s, pattern)
    local kind = type(s)
    if type(pattern) ~= "string" or (kind ~= "string" and kind ~= "number") then
        return
    end
    local count = repetitions(pattern)
    if count == 0 then
        return
    end
    local size = #tostring(s)
    local exponent = count
    if sub(pattern, 1, 1) ~= "^" then
        exponent = count + 1
    end
    if size ^ exponent > limit then
        error(name .. ": pattern is too expensive for a " .. size .. "-byte subject", 3)
    end
end

local guarded = {
    find = function(s, pattern, init, plain)
        if not plain then
            check("string.find", s, pattern)
        end
        return find(s, pattern, init, plain)
    end,
    match = function(s, pattern, init)
        check("string.match", s, pattern)
        return match(s, pattern, init)
    end,
    gmatch = function(s, pattern, ...)
        check("string.gmatch", s, pattern)
        return gmatch(s, pattern, ...)
    end,
    gsub = function(s, pattern, repl, n)
        check("string.gsub", s, pattern)
        return gsub(s, pattern, repl, n)
    end,
}
for name, fn in pairs(guarded) do
    string_table[name] = fn
end

return function()
    for name, fn in pairs(guarded) do
        if string_table[name] ~= fn then
            return false
        end
    end
    return true
end
"""


def apply_sandbox(lua: Any) -> Any:
    """Strip blocked capabilities; returns the pattern guard's self-check."""

    guard_check = lua.execute(_PATTERN_GUARD, MAX_PATTERN_COST)
    globals_table = lua.globals()
    for table_name, member in BLOCKED_MEMBERS:
        table = globals_table[table_name]
        if table is not None:
            table[member] = None
    for name in BLOCKED_GLOBALS:
        globals_table[name] = None
    return guard_check


def blocked_capabilities_present(lua: Any, guard_check: Any = None) -> list[str]:
    globals_table = lua.globals()
    present = [name for name in BLOCKED_GLOBALS if globals_table[name] is not None]
    for table_name, member in BLOCKED_MEMBERS:
        table = globals_table[table_name]
        if table is not None and table[member] is not None:
            present.append(f"{table_name}.{member}")
    if guard_check is None or not guard_check():
        present.extend(f"unguarded string.{name}" for name in GUARDED_STRING_FUNCTIONS)
    return present


def is_sandboxed(lua: Any, guard_check: Any = None) -> bool:
    return not blocked_capabilities_present(lua, guard_check)


def ensure_sandboxed(lua: Any, guard_check: Any = None) -> None:
    present = blocked_capabilities_present(lua, guard_check)
    if present:
        raise EvalError(f"sandbox check failed; still reachable: {', '.join(present)}")


def deny_attribute_access(obj: Any, attr_name: Any, is_setting: bool) -> Any:
    """lupa attribute filter: scripts may call host functions, never inspect them."""

    raise AttributeError(f"access to attribute {attr_name!r} is not allowed")


def reject_bytecode(source: str, name: str) -> None:
    if source.startswith(BYTECODE_SIGNATURE):
        raise EvalError(f"precompiled Lua chunks are not allowed ({name})")
