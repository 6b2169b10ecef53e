from __future__ import annotations

import json
import os
import warnings
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/impressionism/config.json").expanduser()
DEFAULT_DATA_DIR = Path("~/.local/share/impressionism").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "IMPRESSIONISM_DB_PATH",
    "rules_dir": "IMPRESSIONISM_RULES_DIR",
    "ruleset": "IMPRESSIONISM_RULESET",
    "user_skills_dir": "IMPRESSIONISM_USER_SKILLS_DIR",
    "plugins_dir": "IMPRESSIONISM_PLUGINS_DIR",
    "extra_skill_dirs": "IMPRESSIONISM_EXTRA_SKILL_DIRS",
    "eval_timeout_ms": "IMPRESSIONISM_EVAL_TIMEOUT_MS",
    "lua_max_memory_bytes": "IMPRESSIONISM_LUA_MAX_MEMORY",
    "embedding_model": "IMPRESSIONISM_EMBEDDING_MODEL",
    "embedding_disabled": "IMPRESSIONISM_EMBEDDING_DISABLED",
    "content_preview_chars": "IMPRESSIONISM_CONTENT_PREVIEW_CHARS",
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("IMPRESSIONISM_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class ImpressionismConfig:
    db_path: str = str(DEFAULT_DATA_DIR / "impressionism.sqlite")
    rules_dir: str = "~/.config/impressionism/rules"
    ruleset: str = "default"
    user_skills_dir: str = "~/.claude/skills"
    plugins_dir: str = "~/.claude/plugins"
    extra_skill_dirs: list[str] = field(default_factory=list)
    eval_timeout_ms: int = 1000
    lua_max_memory_bytes: int = 64 * 1024 * 1024
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_disabled: bool = False
    content_preview_chars: int = 500

    # Values ruleset scripts read through impressionism.get_param().
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_INT_KEYS = {"eval_timeout_ms", "lua_max_memory_bytes", "content_preview_chars"}
_BOOL_KEYS = {"embedding_disabled"}
_LIST_KEYS = {"extra_skill_dirs"}

_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}

_MISSING = object()


def _to_bool(value: object) -> object:
    if isinstance(value, (bool, int)):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return _MISSING


def _to_int(value: object) -> object:
    if isinstance(value, bool):
        return _MISSING
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return _MISSING


def _to_str_list(value: object) -> object:
    # Env values arrive comma separated; the file holds a JSON list.
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return _MISSING
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _to_params(value: object) -> object:
    return dict(value) if isinstance(value, dict) else _MISSING


def _coerce(key: str, value: object, origin: str) -> object:
    if key in _INT_KEYS:
        converter, kind = _to_int, "int"
    elif key in _BOOL_KEYS:
        converter, kind = _to_bool, "bool"
    elif key in _LIST_KEYS:
        converter, kind = _to_str_list, "list"
    elif key == "params":
        converter, kind = _to_params, "object"
    else:
        return value
    converted = converter(value)
    if converted is _MISSING:
        warnings.warn(
            f"Ignoring {origin} value for {key}: expected {kind}, got {value!r}",
            RuntimeWarning,
            stacklevel=3,
        )
    return converted


def _apply(cfg: ImpressionismConfig, values: dict[str, Any], origin: str) -> ImpressionismConfig:
    for key, value in values.items():
        if value is None or not hasattr(cfg, key):
            continue
        converted = _coerce(key, value, origin)
        if converted is not _MISSING:
            setattr(cfg, key, converted)
    return cfg


def load_config(path: Path | None = None) -> ImpressionismConfig:
    cfg = ImpressionismConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply(cfg, data, "config file")
    return _apply(cfg, get_env_overrides(), "environment")
