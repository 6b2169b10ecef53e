from __future__ import annotations

import json
import logging
import sys
from typing import Any

import typer
from rich import print
from rich.markup import escape

from ..config import ImpressionismConfig, load_config, read_config_file, write_config_file
from ..errors import LoadError, StoreError
from ..lua.ruleset import Ruleset, resolve_ruleset
from ..semantic import Embedder, resolve_embedder
from ..store import SkillStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: int = 0) -> None:
    # stdout carries hook output; diagnostics go to stderr only.
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)


def load_config_or_exit() -> ImpressionismConfig:
    try:
        read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc
    return load_config()


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc


def write_config_or_exit(data: dict[str, Any]) -> None:
    try:
        write_config_file(data)
    except OSError as exc:
        print(f"[red]Failed to write config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def store_from_path(db_path: str | None, config: ImpressionismConfig | None = None) -> SkillStore:
    config = config or load_config()
    try:
        return SkillStore(db_path or config.db_path)
    except StoreError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc


def embedder_for(config: ImpressionismConfig) -> Embedder | None:
    return resolve_embedder(config.embedding_model, disabled=config.embedding_disabled)


def load_ruleset_or_exit(name: str | None, config: ImpressionismConfig) -> Ruleset:
    try:
        return resolve_ruleset(name or config.ruleset, config.rules_dir)
    except LoadError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc


def read_hook_payload() -> dict[str, Any]:
    """Read the JSON object a hook runner pipes on stdin, if any."""

    if sys.stdin is None or sys.stdin.isatty():
        return {}
    raw = sys.stdin.read()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("ignoring invalid hook payload: %s", exc)
        return {}
    if not isinstance(payload, dict):
        logger.warning("ignoring non-object hook payload")
        return {}
    return payload
