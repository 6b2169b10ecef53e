from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

VOCABULARY = ("write", "document", "test", "sql", "deploy", "docker")


class KeywordEmbedder:
    """Deterministic embedder: one dimension per vocabulary word present."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def __call__(self, texts: Sequence[str]) -> list[list[float]]:
        vectors = []
        for text in texts:
            self.calls.append(text)
            lowered = text.lower()
            vectors.append([1.0 if word in lowered else 0.0 for word in VOCABULARY])
        return vectors


@pytest.fixture(autouse=True)
def _isolate_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("IMPRESSIONISM_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("IMPRESSIONISM_DB_PATH", str(tmp_path / "data" / "impressionism.sqlite"))
    monkeypatch.setenv("IMPRESSIONISM_RULES_DIR", str(tmp_path / "rules"))
    monkeypatch.setenv("IMPRESSIONISM_USER_SKILLS_DIR", str(tmp_path / "skills"))
    monkeypatch.setenv("IMPRESSIONISM_PLUGINS_DIR", str(tmp_path / "plugins"))
    monkeypatch.setenv("IMPRESSIONISM_EMBEDDING_DISABLED", "1")


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


def _write_skill(root: Path, dirname: str, name: str, description: str, body: str = "") -> Path:
    skill_dir = root / dirname
    skill_dir.mkdir(parents=True, exist_ok=True)
    path = skill_dir / "SKILL.md"
    path.write_text(f"---\nname: {name}\ndescription: {description}\n---\n\n{body}\n")
    return path


@pytest.fixture
def write_skill():
    return _write_skill
