from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .. import db
from .. import ranking
from .types import FileHash, Skill, SkillSource

if TYPE_CHECKING:
    from ._store import SkillStore


def _row_to_skill(row: sqlite3.Row) -> Skill:
    return Skill(
        id=row["id"],
        name=row["name"],
        path=row["path"],
        description=row["description"],
        embedding=db.deserialize_embedding(row["embedding"]),
        metadata=db.from_json(row["metadata_json"]),
        content_hash=row["content_hash"],
        indexed_at=row["indexed_at"],
        source=SkillSource(row["source"]),
    )


def upsert_skill_with_hash(store: SkillStore, skill: Skill, file_hash: FileHash) -> None:
    with store.transaction("upsert_skill"):
        store.conn.execute(
            """
            INSERT INTO skill_index(
                id, name, path, description, embedding, metadata_json,
                content_hash, indexed_at, source
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                path = excluded.path,
                description = excluded.description,
                embedding = excluded.embedding,
                metadata_json = excluded.metadata_json,
                content_hash = excluded.content_hash,
                indexed_at = excluded.indexed_at,
                source = excluded.source
            """,
            (
                skill.id,
                skill.name,
                skill.path,
                skill.description,
                db.serialize_embedding(skill.embedding),
                db.to_json(skill.metadata),
                skill.content_hash,
                skill.indexed_at,
                skill.source.value,
            ),
        )
        store.conn.execute(
            """
            INSERT INTO file_hashes(path, content_hash, last_checked)
            VALUES (?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                content_hash = excluded.content_hash,
                last_checked = excluded.last_checked
            """,
            (file_hash.path, file_hash.content_hash, file_hash.last_checked),
        )


def touch_file_hash(store: SkillStore, path: str, checked_at: str) -> None:
    with store.transaction("touch_file_hash"):
        store.conn.execute(
            "UPDATE file_hashes SET last_checked = ? WHERE path = ?",
            (checked_at, path),
        )


def get_skill(store: SkillStore, skill_id: str) -> Skill | None:
    row = store.query_one("SELECT * FROM skill_index WHERE id = ?", (skill_id,))
    return _row_to_skill(row) if row else None


def find_skill(store: SkillStore, identifier: str) -> Skill | None:
    skill = get_skill(store, identifier)
    if skill is not None:
        return skill
    row = store.query_one(
        "SELECT * FROM skill_index WHERE name = ? ORDER BY id ASC LIMIT 1",
        (identifier,),
    )
    return _row_to_skill(row) if row else None


def list_skills(store: SkillStore) -> list[Skill]:
    rows = store.query_all("SELECT * FROM skill_index ORDER BY id ASC")
    return [_row_to_skill(row) for row in rows]


def delete_skill_path(store: SkillStore, path: str) -> bool:
    with store.transaction("delete_skill_path"):
        skill_cur = store.conn.execute("DELETE FROM skill_index WHERE path = ?", (path,))
        hash_cur = store.conn.execute("DELETE FROM file_hashes WHERE path = ?", (path,))
    return bool(skill_cur.rowcount or hash_cur.rowcount)


def get_file_hash(store: SkillStore, path: str) -> FileHash | None:
    row = store.query_one(
        "SELECT path, content_hash, last_checked FROM file_hashes WHERE path = ?",
        (path,),
    )
    if row is None:
        return None
    return FileHash(
        path=row["path"], content_hash=row["content_hash"], last_checked=row["last_checked"]
    )


def list_file_hashes(store: SkillStore) -> list[FileHash]:
    rows = store.query_all(
        "SELECT path, content_hash, last_checked FROM file_hashes ORDER BY path ASC"
    )
    return [
        FileHash(path=r["path"], content_hash=r["content_hash"], last_checked=r["last_checked"])
        for r in rows
    ]


def search_skills(
    store: SkillStore, query_vector: Sequence[float], limit: int
) -> list[tuple[Skill, float]]:
    return ranking.rank_skills(query_vector, list_skills(store), limit)
