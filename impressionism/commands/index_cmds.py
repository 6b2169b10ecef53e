from __future__ import annotations

import json

import typer
from rich import print
from rich.markup import escape

from ..config import ImpressionismConfig
from ..indexer import IndexMode, SkillIndexer, default_skill_sources


def index_cmd(
    *,
    store_from_path,
    embedder_for,
    config: ImpressionismConfig,
    db_path: str | None,
    workspace: str | None,
    force: bool,
    quick: bool,
    as_json: bool,
) -> None:
    mode = IndexMode.from_flags(force=force, quick=quick)
    store = store_from_path(db_path, config)
    try:
        indexer = SkillIndexer(store, embedder_for(config))
        report = indexer.index(default_skill_sources(config, workspace), mode)
    finally:
        store.close()

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        return
    print(
        f"[bold]Indexed[/bold] {report.indexed} skill(s) ({mode.value}); "
        f"{report.skipped} unchanged, {report.removed} removed"
    )
    if report.failures:
        print(f"[yellow]{report.failed} file(s) failed:[/yellow]")
        for failure in report.failures:
            print(f"- {escape(failure.path)}: {escape(failure.error)}")
