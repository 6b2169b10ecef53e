from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from .. import db
from ..errors import StoreError
from .types import MessageLog, MessageRole, Session, SessionSkill

if TYPE_CHECKING:
    from ._store import SkillStore


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        session_id=row["session_id"],
        workspace_path=row["workspace_path"],
        started_at=row["started_at"],
        last_active=row["last_active"],
    )


def _row_to_message(row: sqlite3.Row) -> MessageLog:
    embedding = db.deserialize_embedding(row["content_embedding"])
    return MessageLog(
        id=int(row["id"]),
        session_id=row["session_id"],
        sequence=int(row["sequence"]),
        role=MessageRole(row["role"]),
        event_type=row["event_type"],
        tool_name=row["tool_name"],
        content_preview=row["content_preview"],
        content_embedding=embedding or None,
        active_skills=list(db.from_json(row["active_skills_json"], default=[])),
        logged_at=row["logged_at"],
    )


def _row_to_session_skill(row: sqlite3.Row) -> SessionSkill:
    return SessionSkill(
        session_id=row["session_id"],
        skill_id=row["skill_id"],
        activated_at=row["activated_at"],
        activation_reason=row["activation_reason"],
    )


def ensure_session(store: SkillStore, session_id: str, workspace_path: str) -> Session:
    now = store.now_iso()
    with store.transaction("ensure_session"):
        store.conn.execute(
            """
            INSERT INTO sessions(session_id, workspace_path, started_at, last_active)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                last_active = excluded.last_active
            """,
            (session_id, workspace_path, now, now),
        )
    session = get_session(store, session_id)
    if session is None:
        raise StoreError(f"session {session_id} missing after upsert", operation="ensure_session")
    return session


def get_session(store: SkillStore, session_id: str) -> Session | None:
    row = store.query_one("SELECT * FROM sessions WHERE session_id = ?", (session_id,))
    return _row_to_session(row) if row else None


def append_message(
    store: SkillStore,
    *,
    session_id: str,
    role: MessageRole,
    event_type: str,
    tool_name: str | None = None,
    content_preview: str | None = None,
    content_embedding: Sequence[float] | None = None,
    active_skills: Sequence[str] = (),
) -> MessageLog:
    now = store.now_iso()
    with store.transaction("append_message"):
        row = store.conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) AS seq FROM message_log WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        sequence = int(row["seq"]) + 1
        cur = store.conn.execute(
            """
            INSERT INTO message_log(
                session_id, sequence, role, event_type, tool_name,
                content_preview, content_embedding, active_skills_json, logged_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                sequence,
                role.value,
                event_type,
                tool_name,
                content_preview,
                db.serialize_embedding(content_embedding) if content_embedding else None,
                db.to_json(list(active_skills)),
                now,
            ),
        )
        message_id = int(cur.lastrowid or 0)
    return MessageLog(
        id=message_id,
        session_id=session_id,
        sequence=sequence,
        role=role,
        event_type=event_type,
        tool_name=tool_name,
        content_preview=content_preview,
        content_embedding=list(content_embedding) if content_embedding else None,
        active_skills=list(active_skills),
        logged_at=now,
    )


def get_recent_messages(store: SkillStore, session_id: str, count: int) -> list[MessageLog]:
    if count <= 0:
        return []
    rows = store.query_all(
        """
        SELECT * FROM message_log
        WHERE session_id = ?
        ORDER BY sequence DESC
        LIMIT ?
        """,
        (session_id, count),
    )
    messages = [_row_to_message(row) for row in rows]
    messages.reverse()
    return messages


def latest_message_text(store: SkillStore, session_id: str) -> str | None:
    row = store.query_one(
        """
        SELECT content_preview FROM message_log
        WHERE session_id = ? AND content_preview IS NOT NULL AND content_preview != ''
        ORDER BY sequence DESC
        LIMIT 1
        """,
        (session_id,),
    )
    return row["content_preview"] if row else None


def _insert_session_skill(
    store: SkillStore, session_id: str, skill_id: str, reason: str | None, now: str
) -> bool:
    # DO NOTHING keeps the first activated_at and reason.
    cur = store.conn.execute(
        """
        INSERT INTO session_skills(session_id, skill_id, activated_at, activation_reason)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(session_id, skill_id) DO NOTHING
        """,
        (session_id, skill_id, now, reason),
    )
    return cur.rowcount > 0


def _delete_session_skill(store: SkillStore, session_id: str, skill_id: str) -> bool:
    cur = store.conn.execute(
        "DELETE FROM session_skills WHERE session_id = ? AND skill_id = ?",
        (session_id, skill_id),
    )
    return cur.rowcount > 0


def activate_skill(
    store: SkillStore, session_id: str, skill_id: str, reason: str | None = None
) -> bool:
    with store.transaction("activate_skill"):
        return _insert_session_skill(store, session_id, skill_id, reason, store.now_iso())


def deactivate_skill(store: SkillStore, session_id: str, skill_id: str) -> bool:
    with store.transaction("deactivate_skill"):
        return _delete_session_skill(store, session_id, skill_id)


def deactivate_all_skills(store: SkillStore, session_id: str) -> int:
    with store.transaction("deactivate_all_skills"):
        cur = store.conn.execute("DELETE FROM session_skills WHERE session_id = ?", (session_id,))
    return int(cur.rowcount)


def get_active_skills(store: SkillStore, session_id: str) -> list[SessionSkill]:
    rows = store.query_all(
        """
        SELECT * FROM session_skills
        WHERE session_id = ?
        ORDER BY activated_at ASC, skill_id ASC
        """,
        (session_id,),
    )
    return [_row_to_session_skill(row) for row in rows]


def apply_reconciliation(
    store: SkillStore,
    session_id: str,
    activations: Iterable[tuple[str, str | None]],
    deactivations: Iterable[str],
) -> dict[str, list[str]]:
    """Apply one evaluation's activations and deactivations atomically.

    Returns the ids split by outcome: ``activated``, ``already_active``,
    ``deactivated`` and ``not_active``.
    """

    outcome: dict[str, list[str]] = {
        "activated": [],
        "already_active": [],
        "deactivated": [],
        "not_active": [],
    }
    now = store.now_iso()
    with store.transaction("apply_reconciliation"):
        for skill_id, reason in activations:
            if _insert_session_skill(store, session_id, skill_id, reason, now):
                outcome["activated"].append(skill_id)
            else:
                outcome["already_active"].append(skill_id)
        for skill_id in deactivations:
            if _delete_session_skill(store, session_id, skill_id):
                outcome["deactivated"].append(skill_id)
            else:
                outcome["not_active"].append(skill_id)
    return outcome
