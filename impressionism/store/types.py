from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class SkillSource(str, Enum):
    USER = "user"
    PROJECT = "project"
    PLUGIN = "plugin"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class HookType(str, Enum):
    SESSION_START = "session_start"
    USER_PROMPT_SUBMIT = "user_prompt_submit"
    POST_TOOL_USE = "post_tool_use"
    STOP = "stop"

    @property
    def event_name(self) -> str:
        return _EVENT_NAMES[self]

    @property
    def role(self) -> MessageRole:
        if self is HookType.USER_PROMPT_SUBMIT:
            return MessageRole.USER
        if self is HookType.POST_TOOL_USE:
            return MessageRole.TOOL
        return MessageRole.ASSISTANT

    @classmethod
    def parse(cls, value: str) -> HookType:
        raw = value.strip()
        for hook, event_name in _EVENT_NAMES.items():
            if raw == event_name:
                return hook
        normalized = raw.lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"unknown hook event: {value!r}") from None


_EVENT_NAMES = {
    HookType.SESSION_START: "SessionStart",
    HookType.USER_PROMPT_SUBMIT: "UserPromptSubmit",
    HookType.POST_TOOL_USE: "PostToolUse",
    HookType.STOP: "Stop",
}


def skill_id_for_path(path: str | Path) -> str:
    normalized = str(Path(path).expanduser().resolve())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


@dataclass
class Skill:
    id: str
    name: str
    path: str
    content_hash: str
    indexed_at: str
    source: SkillSource
    description: str | None = None
    embedding: list[float] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class FileHash:
    path: str
    content_hash: str
    last_checked: str


@dataclass
class Session:
    session_id: str
    workspace_path: str
    started_at: str
    last_active: str


@dataclass
class MessageLog:
    id: int
    session_id: str
    sequence: int
    role: MessageRole
    event_type: str
    logged_at: str
    tool_name: str | None = None
    content_preview: str | None = None
    content_embedding: list[float] | None = None
    active_skills: list[str] = field(default_factory=list)


@dataclass
class SessionSkill:
    session_id: str
    skill_id: str
    activated_at: str
    activation_reason: str | None = None
