from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from impressionism import db
from impressionism.errors import StoreError
from impressionism.store import FileHash, MessageRole, Skill, SkillSource, SkillStore


def _skill(skill_id: str, name: str, embedding: list[float], path: str | None = None) -> Skill:
    return Skill(
        id=skill_id,
        name=name,
        path=path or f"/skills/{name}/SKILL.md",
        description=f"{name} description",
        embedding=embedding,
        metadata={"name": name},
        content_hash=f"hash-{skill_id}",
        indexed_at="2026-01-01T00:00:00+00:00",
        source=SkillSource.USER,
    )


def _add(store: SkillStore, skill: Skill) -> None:
    store.upsert_skill_with_hash(
        skill,
        FileHash(path=skill.path, content_hash=skill.content_hash, last_checked=skill.indexed_at),
    )


def test_upsert_and_find_skill(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    _add(store, _skill("id-1", "writing-helper", [1.0, 0.0]))

    by_id = store.get_skill("id-1")
    by_name = store.find_skill("writing-helper")

    assert by_id is not None and by_name is not None
    assert by_id.id == by_name.id == "id-1"
    assert by_name.embedding == [1.0, 0.0]
    assert by_name.metadata == {"name": "writing-helper"}
    assert store.get_file_hash(by_id.path).content_hash == "hash-id-1"
    assert store.find_skill("missing") is None


def test_search_skills_ranks_stored_embeddings(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    _add(store, _skill("a", "alpha", [1.0, 0.0]))
    _add(store, _skill("b", "beta", [0.0, 1.0]))
    _add(store, _skill("c", "gamma", [0.9, 0.1]))

    results = store.search_skills([1.0, 0.0], 2)

    assert [skill.id for skill, _ in results] == ["a", "c"]
    assert results[0][1] == pytest.approx(1.0)
    assert results[1][1] == pytest.approx(0.9939, abs=1e-3)


def test_delete_skill_path_removes_skill_and_hash(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    skill = _skill("a", "alpha", [1.0])
    _add(store, skill)

    assert store.delete_skill_path(skill.path) is True
    assert store.get_skill("a") is None
    assert store.get_file_hash(skill.path) is None
    assert store.delete_skill_path(skill.path) is False


def test_activation_is_idempotent_and_keeps_first_reason(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    store.ensure_session("s1", "/work")

    assert store.activate_skill("s1", "writing-helper", "first") is True
    first = store.get_active_skills("s1")
    assert store.activate_skill("s1", "writing-helper", "second") is False
    second = store.get_active_skills("s1")

    assert len(second) == 1
    assert second[0].activated_at == first[0].activated_at
    assert second[0].activation_reason == "first"


def test_deactivating_inactive_skill_is_noop(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    store.ensure_session("s1", "/work")
    store.activate_skill("s1", "a")

    assert store.deactivate_skill("s1", "b") is False
    assert store.deactivate_skill("s1", "a") is True
    assert store.deactivate_skill("s1", "a") is False
    assert store.get_active_skills("s1") == []


def test_deactivate_all_skills_counts_rows(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    store.ensure_session("s1", "/work")
    for skill_id in ("a", "b", "c"):
        store.activate_skill("s1", skill_id)

    assert store.deactivate_all_skills("s1") == 3
    assert store.get_active_skills("s1") == []


def test_message_sequence_is_per_session_and_increasing(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    store.ensure_session("s1", "/work")
    store.ensure_session("s2", "/work")

    seqs = [
        store.append_message(
            session_id="s1",
            role=MessageRole.USER,
            event_type="UserPromptSubmit",
            content_preview=f"message {i}",
        ).sequence
        for i in range(3)
    ]
    other = store.append_message(session_id="s2", role=MessageRole.TOOL, event_type="PostToolUse")

    assert seqs == [1, 2, 3]
    assert other.sequence == 1
    recent = store.get_recent_messages("s1", 2)
    assert [m.sequence for m in recent] == [2, 3]
    assert [m.content_preview for m in recent] == ["message 1", "message 2"]
    assert store.latest_message_text("s1") == "message 2"
    assert store.get_recent_messages("s1", 0) == []


def test_message_keeps_active_snapshot_and_embedding(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    store.ensure_session("s1", "/work")
    store.append_message(
        session_id="s1",
        role=MessageRole.ASSISTANT,
        event_type="Stop",
        content_preview="done",
        content_embedding=[0.5, 0.25],
        active_skills=["a", "b"],
    )

    (message,) = store.get_recent_messages("s1", 10)

    assert message.role is MessageRole.ASSISTANT
    assert message.active_skills == ["a", "b"]
    assert message.content_embedding == [0.5, 0.25]


def test_ensure_session_touches_last_active(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    first = store.ensure_session("s1", "/work")
    second = store.ensure_session("s1", "/elsewhere")

    assert second.started_at == first.started_at
    assert second.workspace_path == "/work"
    assert second.last_active >= first.last_active


def test_apply_reconciliation_reports_outcomes(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    store.ensure_session("s1", "/work")
    store.activate_skill("s1", "keep")
    store.activate_skill("s1", "drop")

    outcome = store.apply_reconciliation(
        "s1",
        [("keep", "again"), ("new", "because")],
        ["drop", "ghost"],
    )

    assert outcome == {
        "activated": ["new"],
        "already_active": ["keep"],
        "deactivated": ["drop"],
        "not_active": ["ghost"],
    }
    active = {row.skill_id: row.activation_reason for row in store.get_active_skills("s1")}
    assert active == {"keep": None, "new": "because"}


def test_apply_reconciliation_rolls_back_on_failure(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    store.ensure_session("s1", "/work")
    store.activate_skill("s1", "a")

    def _boom():
        yield "a"
        raise sqlite3.OperationalError("disk I/O error")

    with pytest.raises(StoreError):
        store.apply_reconciliation("s1", [("b", None)], _boom())

    assert [row.skill_id for row in store.get_active_skills("s1")] == ["a"]


def test_stats_counts_tables(tmp_path: Path) -> None:
    store = SkillStore(tmp_path / "s.sqlite")
    _add(store, _skill("a", "alpha", [1.0], path=str(tmp_path / "missing" / "SKILL.md")))
    store.ensure_session("s1", "/work")

    stats = store.stats()

    assert stats["counts"]["skill_index"] == 1
    assert stats["counts"]["sessions"] == 1
    assert stats["skills_by_source"] == {"user": 1}
    assert stats["missing_paths"] == 1
    assert stats["database"]["schema_version"] == db.SCHEMA_VERSION


def test_store_open_failure_is_store_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")

    with pytest.raises(StoreError):
        SkillStore(blocker / "s.sqlite")
