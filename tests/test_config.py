import json
from pathlib import Path

import pytest

from impressionism.config import (
    ImpressionismConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_empty_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}
    empty = tmp_path / "empty.json"
    empty.write_text("  \n")
    assert read_config_file(empty) == {}


def test_write_config_file_round_trips(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    written = write_config_file({"ruleset": "minimal"}, config_path)

    assert written == config_path
    assert json.loads(config_path.read_text()) == {"ruleset": "minimal"}


def test_get_config_path_honours_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("IMPRESSIONISM_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_load_config_applies_file_then_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "ruleset": "minimal",
                "eval_timeout_ms": 250,
                "extra_skill_dirs": ["/opt/skills", " "],
                "params": {"activation_threshold": 0.5},
                "unknown_key": "ignored",
            }
        )
    )
    monkeypatch.setenv("IMPRESSIONISM_EVAL_TIMEOUT_MS", "750")
    monkeypatch.setenv("IMPRESSIONISM_EXTRA_SKILL_DIRS", "/a, /b")

    cfg = load_config(config_path)

    assert cfg.ruleset == "minimal"
    assert cfg.eval_timeout_ms == 750
    assert cfg.extra_skill_dirs == ["/a", "/b"]
    assert cfg.params == {"activation_threshold": 0.5}
    assert not hasattr(cfg, "unknown_key")


def test_load_config_warns_and_keeps_default_for_bad_int(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.delenv("IMPRESSIONISM_EVAL_TIMEOUT_MS", raising=False)
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"eval_timeout_ms": "soon"}))

    with pytest.warns(RuntimeWarning, match="eval_timeout_ms"):
        cfg = load_config(config_path)

    assert cfg.eval_timeout_ms == ImpressionismConfig().eval_timeout_ms


def test_embedding_disabled_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("IMPRESSIONISM_EMBEDDING_DISABLED", "yes")

    cfg = load_config(tmp_path / "missing.json")

    assert cfg.embedding_disabled is True
    assert get_env_overrides()["embedding_disabled"] == "yes"


def test_load_config_warns_on_bad_bool_and_list(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("IMPRESSIONISM_EMBEDDING_DISABLED", "maybe")
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"extra_skill_dirs": 7, "params": ["x"]}))

    with pytest.warns(RuntimeWarning) as record:
        cfg = load_config(config_path)

    messages = " ".join(str(w.message) for w in record)
    assert "extra_skill_dirs" in messages
    assert "params" in messages
    assert "environment value for embedding_disabled" in messages
    assert cfg.embedding_disabled is False
    assert cfg.extra_skill_dirs == []
    assert cfg.params == {}
