from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import lupa

from ..ranking import cosine_similarity
from ..semantic import Embedder, embed_text
from ..store import SkillStore

if TYPE_CHECKING:
    from .runtime import SandboxedRuntime

API_TABLE_NAME = "impressionism"
API_FUNCTIONS = (
    "get_recent_messages",
    "get_active_skills",
    "search_skills",
    "embed_text",
    "cosine_similarity",
    "get_param",
    "log",
)
MAX_RESULTS = 100

rules_logger = logging.getLogger("impressionism.rules")

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _as_count(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a number")
    return max(0, min(int(value), MAX_RESULTS))


def _as_text(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    return value


def lua_array_to_floats(value: Any) -> list[float]:
    if lupa.lua_type(value) != "table":
        raise TypeError("expected an array of numbers")
    items = sorted(
        ((k, v) for k, v in value.items() if isinstance(k, int)),
        key=lambda kv: kv[0],
    )
    vector: list[float] = []
    for _, item in items:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            raise TypeError("vector entries must be numbers")
        vector.append(float(item))
    return vector


class HostApi:
    """The capability set handed to ruleset scripts.

    Only the functions in ``API_FUNCTIONS`` are exposed, as a single
    ``impressionism`` table. Everything returned to Lua is converted to plain
    Lua tables so no Python object ever reaches a script.
    """

    def __init__(
        self,
        store: SkillStore,
        *,
        embedder: Embedder | None = None,
        params: Mapping[str, Any] | None = None,
        ruleset_name: str | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.params = dict(params or {})
        self.ruleset_name = ruleset_name
        self.similarities: dict[str, float] = {}
        self.notes: list[str] = []
        self._runtime: SandboxedRuntime | None = None

    def functions(self) -> dict[str, Callable[..., Any]]:
        return {name: getattr(self, name) for name in API_FUNCTIONS}

    def register(self, runtime: SandboxedRuntime) -> None:
        self._runtime = runtime
        table = runtime.lua.table_from(self.functions())
        runtime.lua.globals()[API_TABLE_NAME] = table

    def _to_lua(self, data: Any) -> Any:
        if self._runtime is None:
            return data
        return self._runtime.table_from(data)

    def similarity_for(self, identifier: str) -> float | None:
        return self.similarities.get(identifier)

    def get_recent_messages(self, session_id: Any, count: Any = 10) -> Any:
        session_id = _as_text(session_id, "session_id")
        messages = self.store.get_recent_messages(session_id, _as_count(count, "count"))
        return self._to_lua(
            [
                {
                    "sequence": m.sequence,
                    "role": m.role.value,
                    "event_type": m.event_type,
                    "tool_name": m.tool_name,
                    "content": m.content_preview,
                    "active_skills": list(m.active_skills),
                    "logged_at": m.logged_at,
                }
                for m in messages
            ]
        )

    def get_active_skills(self, session_id: Any) -> Any:
        session_id = _as_text(session_id, "session_id")
        entries = []
        for row in self.store.get_active_skills(session_id):
            entry: dict[str, Any] = {
                "skill_id": row.skill_id,
                "name": row.skill_id,
                "activated_at": row.activated_at,
                "activation_reason": row.activation_reason,
            }
            skill = self.store.find_skill(row.skill_id)
            if skill is not None:
                entry.update(
                    id=skill.id,
                    name=skill.name,
                    path=skill.path,
                    description=skill.description,
                    source=skill.source.value,
                    embedding=list(skill.embedding),
                )
            entries.append({k: v for k, v in entry.items() if v is not None})
        return self._to_lua(entries)

    def search_skills(self, query_text: Any, limit: Any = 10) -> Any:
        query_text = _as_text(query_text, "query_text")
        query_vector = embed_text(query_text, self.embedder)
        if not query_vector:
            return self._to_lua([])
        results = []
        for skill, score in self.store.search_skills(query_vector, _as_count(limit, "limit")):
            for key in (skill.id, skill.name):
                best = self.similarities.get(key)
                if best is None or score > best:
                    self.similarities[key] = score
            entry = {
                "id": skill.id,
                "name": skill.name,
                "path": skill.path,
                "description": skill.description,
                "source": skill.source.value,
                "similarity": score,
            }
            results.append({k: v for k, v in entry.items() if v is not None})
        return self._to_lua(results)

    def embed_text(self, text: Any) -> Any:
        return self._to_lua(embed_text(_as_text(text, "text"), self.embedder))

    def cosine_similarity(self, vector_a: Any, vector_b: Any) -> float:
        return cosine_similarity(lua_array_to_floats(vector_a), lua_array_to_floats(vector_b))

    def get_param(self, name: Any, default: Any = None) -> Any:
        name = _as_text(name, "name")
        if name not in self.params:
            return default
        value = self.params[name]
        if isinstance(value, (dict, list, tuple)):
            return self._to_lua(value)
        return value

    def log(self, level: Any, message: Any = None) -> None:
        if message is None:
            level, message = "info", level
        level_name = str(level).lower()
        text = str(message)
        prefix = f"[{self.ruleset_name}] " if self.ruleset_name else ""
        rules_logger.log(_LOG_LEVELS.get(level_name, logging.INFO), "%s%s", prefix, text)
        self.notes.append(text)
