from __future__ import annotations

import json
import sqlite3
import struct
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import sqlite_vec

from .config import ImpressionismConfig

DEFAULT_DB_PATH = Path(ImpressionismConfig().db_path).expanduser()
SCHEMA_VERSION = 1

TABLES = ("skill_index", "file_hashes", "sessions", "message_log", "session_skills")


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def initialize_schema(conn: sqlite3.Connection) -> None:
    if schema_version(conn) >= SCHEMA_VERSION:
        return
    _initialize_schema_v1(conn)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()


def _initialize_schema_v1(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS skill_index (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            path TEXT NOT NULL UNIQUE,
            description TEXT,
            embedding BLOB,
            metadata_json TEXT,
            content_hash TEXT NOT NULL,
            indexed_at TEXT NOT NULL,
            source TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_skill_index_name ON skill_index(name);

        CREATE TABLE IF NOT EXISTS file_hashes (
            path TEXT PRIMARY KEY,
            content_hash TEXT NOT NULL,
            last_checked TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS sessions (
            session_id TEXT PRIMARY KEY,
            workspace_path TEXT NOT NULL,
            started_at TEXT NOT NULL,
            last_active TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS message_log (
            id INTEGER PRIMARY KEY,
            session_id TEXT NOT NULL,
            sequence INTEGER NOT NULL,
            role TEXT NOT NULL,
            event_type TEXT NOT NULL,
            tool_name TEXT,
            content_preview TEXT,
            content_embedding BLOB,
            active_skills_json TEXT,
            logged_at TEXT NOT NULL,
            UNIQUE(session_id, sequence)
        );
        CREATE INDEX IF NOT EXISTS idx_message_log_session ON message_log(session_id, sequence DESC);

        CREATE TABLE IF NOT EXISTS session_skills (
            session_id TEXT NOT NULL,
            skill_id TEXT NOT NULL,
            activated_at TEXT NOT NULL,
            activation_reason TEXT,
            PRIMARY KEY (session_id, skill_id)
        );
        CREATE INDEX IF NOT EXISTS idx_session_skills_session ON session_skills(session_id);
        """
    )


def serialize_embedding(vector: Sequence[float] | None) -> bytes | None:
    if vector is None:
        return None
    return sqlite_vec.serialize_float32([float(v) for v in vector])


def deserialize_embedding(blob: bytes | None) -> list[float]:
    if not blob:
        return []
    count = len(blob) // 4
    return list(struct.unpack(f"{count}f", blob[: count * 4]))


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def from_json(text: str | None, default: Any = None) -> Any:
    if not text:
        return {} if default is None else default
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {} if default is None else default
