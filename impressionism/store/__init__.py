from __future__ import annotations

from ._store import SkillStore
from .types import (
    FileHash,
    HookType,
    MessageLog,
    MessageRole,
    Session,
    SessionSkill,
    Skill,
    SkillSource,
    skill_id_for_path,
)

__all__ = [
    "FileHash",
    "HookType",
    "MessageLog",
    "MessageRole",
    "Session",
    "SessionSkill",
    "Skill",
    "SkillSource",
    "SkillStore",
    "skill_id_for_path",
]
