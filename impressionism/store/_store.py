from __future__ import annotations

import datetime as dt
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .. import db
from ..errors import StoreError
from . import sessions as store_sessions
from . import skills as store_skills
from .types import FileHash, MessageLog, MessageRole, Session, SessionSkill, Skill


class SkillStore:
    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        try:
            self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
            db.initialize_schema(self.conn)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"cannot open database at {self.db_path}: {exc}", operation="open") from exc

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> SkillStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @staticmethod
    def now_iso() -> str:
        return dt.datetime.now(dt.UTC).isoformat()

    @contextmanager
    def transaction(self, operation: str = "write") -> Iterator[sqlite3.Connection]:
        if self.conn.in_transaction:
            yield self.conn
            return
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise StoreError(f"{operation} failed: {exc}", operation=operation) from exc
        try:
            yield self.conn
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise StoreError(f"{operation} failed: {exc}", operation=operation) from exc
        except BaseException:
            self.conn.rollback()
            raise
        try:
            self.conn.commit()
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise StoreError(f"{operation} commit failed: {exc}", operation=operation) from exc

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"query failed: {exc}", operation="query") from exc

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"query failed: {exc}", operation="query") from exc

    # Skills and file hashes

    def upsert_skill_with_hash(self, skill: Skill, file_hash: FileHash) -> None:
        store_skills.upsert_skill_with_hash(self, skill, file_hash)

    def touch_file_hash(self, path: str, checked_at: str | None = None) -> None:
        store_skills.touch_file_hash(self, path, checked_at or self.now_iso())

    def get_skill(self, skill_id: str) -> Skill | None:
        return store_skills.get_skill(self, skill_id)

    def find_skill(self, identifier: str) -> Skill | None:
        return store_skills.find_skill(self, identifier)

    def list_skills(self) -> list[Skill]:
        return store_skills.list_skills(self)

    def delete_skill_path(self, path: str) -> bool:
        return store_skills.delete_skill_path(self, path)

    def get_file_hash(self, path: str) -> FileHash | None:
        return store_skills.get_file_hash(self, path)

    def list_file_hashes(self) -> list[FileHash]:
        return store_skills.list_file_hashes(self)

    def search_skills(
        self, query_vector: Sequence[float], limit: int
    ) -> list[tuple[Skill, float]]:
        return store_skills.search_skills(self, query_vector, limit)

    # Sessions, message log, active skills

    def ensure_session(self, session_id: str, workspace_path: str) -> Session:
        return store_sessions.ensure_session(self, session_id, workspace_path)

    def get_session(self, session_id: str) -> Session | None:
        return store_sessions.get_session(self, session_id)

    def append_message(
        self,
        *,
        session_id: str,
        role: MessageRole,
        event_type: str,
        tool_name: str | None = None,
        content_preview: str | None = None,
        content_embedding: Sequence[float] | None = None,
        active_skills: Sequence[str] = (),
    ) -> MessageLog:
        return store_sessions.append_message(
            self,
            session_id=session_id,
            role=role,
            event_type=event_type,
            tool_name=tool_name,
            content_preview=content_preview,
            content_embedding=content_embedding,
            active_skills=active_skills,
        )

    def get_recent_messages(self, session_id: str, count: int) -> list[MessageLog]:
        return store_sessions.get_recent_messages(self, session_id, count)

    def latest_message_text(self, session_id: str) -> str | None:
        return store_sessions.latest_message_text(self, session_id)

    def activate_skill(self, session_id: str, skill_id: str, reason: str | None = None) -> bool:
        return store_sessions.activate_skill(self, session_id, skill_id, reason)

    def deactivate_skill(self, session_id: str, skill_id: str) -> bool:
        return store_sessions.deactivate_skill(self, session_id, skill_id)

    def deactivate_all_skills(self, session_id: str) -> int:
        return store_sessions.deactivate_all_skills(self, session_id)

    def get_active_skills(self, session_id: str) -> list[SessionSkill]:
        return store_sessions.get_active_skills(self, session_id)

    def apply_reconciliation(
        self,
        session_id: str,
        activations: Iterable[tuple[str, str | None]],
        deactivations: Iterable[str],
    ) -> dict[str, list[str]]:
        return store_sessions.apply_reconciliation(self, session_id, activations, deactivations)

    def stats(self) -> dict[str, Any]:
        counts = {}
        for table in db.TABLES:
            row = self.query_one(f"SELECT COUNT(*) AS n FROM {table}")
            counts[table] = int(row["n"]) if row else 0
        by_source = {
            row["source"]: int(row["n"])
            for row in self.query_all(
                "SELECT source, COUNT(*) AS n FROM skill_index GROUP BY source ORDER BY source"
            )
        }
        latest = self.query_one("SELECT MAX(indexed_at) AS latest FROM skill_index")
        checked = self.query_one("SELECT MAX(last_checked) AS latest FROM file_hashes")
        missing_paths = sum(
            1 for file_hash in self.list_file_hashes() if not Path(file_hash.path).exists()
        )
        size_bytes = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "database": {
                "path": str(self.db_path),
                "size_bytes": size_bytes,
                "schema_version": db.schema_version(self.conn),
            },
            "counts": counts,
            "skills_by_source": by_source,
            "last_indexed_at": latest["latest"] if latest else None,
            "last_checked_at": checked["latest"] if checked else None,
            "missing_paths": missing_paths,
        }
