from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from rich import print
from rich.markup import escape

from . import __version__
from .commands.common import (
    configure_logging,
    embedder_for,
    load_config_or_exit,
    load_ruleset_or_exit,
    read_config_or_exit,
    read_hook_payload,
    store_from_path,
    write_config_or_exit,
)
from .commands.index_cmds import index_cmd
from .commands.maintenance_cmds import init_cmd, status_cmd
from .commands.rules_cmds import rules_check_cmd, rules_list_cmd
from .commands.session_cmds import log_cmd, select_cmd
from .errors import LoadError, StoreError

app = typer.Typer(help="impressionism: context-aware skill activation for Claude Code")
rules_app = typer.Typer(help="Inspect and validate Lua rulesets")
app.add_typer(rules_app, name="rules")


@contextmanager
def _fatal_errors() -> Iterator[None]:
    try:
        yield
    except (StoreError, LoadError) as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc


@app.callback()
def _main(
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Log to stderr (-v info, -vv debug)"
    ),
) -> None:
    configure_logging(verbose)


@app.command()
def init(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    if_needed: bool = typer.Option(False, help="Skip when already initialized"),
) -> None:
    """Initialize configuration and data directories."""

    config = load_config_or_exit()
    with _fatal_errors():
        init_cmd(
            store_from_path=store_from_path,
            read_config_or_exit=read_config_or_exit,
            write_config_or_exit=write_config_or_exit,
            config=config,
            db_path=db_path,
            if_needed=if_needed,
        )


@app.command()
def index(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    workspace: Optional[str] = typer.Option(
        None, help="Workspace whose .claude/skills should be indexed (default: cwd)"
    ),
    force: bool = typer.Option(False, help="Re-index every skill, ignoring file hashes"),
    quick: bool = typer.Option(False, help="Only pick up new or modified files"),
    as_json: bool = typer.Option(False, "--json", help="Print the index report as JSON"),
) -> None:
    """Index skills from the configured directories."""

    config = load_config_or_exit()
    with _fatal_errors():
        index_cmd(
            store_from_path=store_from_path,
            embedder_for=embedder_for,
            config=config,
            db_path=db_path,
            workspace=workspace or str(Path.cwd()),
            force=force,
            quick=quick,
            as_json=as_json,
        )


@app.command()
def select(
    session: str = typer.Option(..., help="Session id for tracking context"),
    workspace: Optional[str] = typer.Option(
        None, help="Workspace path for project-specific skills (default: cwd)"
    ),
    event: str = typer.Option("SessionStart", help="Hook event that triggered selection"),
    ruleset: Optional[str] = typer.Option(None, help="Ruleset name or .lua path"),
    deactivate_only: bool = typer.Option(
        False, help="Only evaluate deactivation rules, skip activation"
    ),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    as_json: bool = typer.Option(False, "--json", help="Print the selection result as JSON"),
) -> None:
    """Select skills for the current context (called by hooks)."""

    config = load_config_or_exit()
    payload = read_hook_payload()
    with _fatal_errors():
        select_cmd(
            store_from_path=store_from_path,
            embedder_for=embedder_for,
            load_ruleset_or_exit=load_ruleset_or_exit,
            config=config,
            db_path=db_path,
            session_id=session,
            workspace=workspace or str(Path.cwd()),
            event=event,
            ruleset_name=ruleset,
            deactivate_only=deactivate_only,
            payload=payload,
            as_json=as_json,
        )


@app.command()
def log(
    session: str = typer.Option(..., help="Session id for tracking context"),
    event: str = typer.Option(..., help="UserPromptSubmit, PostToolUse or Stop"),
    workspace: Optional[str] = typer.Option(None, help="Workspace path"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    as_json: bool = typer.Option(False, "--json", help="Print the logged row as JSON"),
) -> None:
    """Log a hook event to the session history (reads the hook payload from stdin)."""

    config = load_config_or_exit()
    payload = read_hook_payload()
    with _fatal_errors():
        log_cmd(
            store_from_path=store_from_path,
            embedder_for=embedder_for,
            config=config,
            db_path=db_path,
            session_id=session,
            event=event,
            workspace=workspace,
            payload=payload,
            as_json=as_json,
        )


@app.command()
def status(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    workspace: Optional[str] = typer.Option(
        None, help="Workspace whose skills are checked (default: cwd)"
    ),
) -> None:
    """Show status of the skill index."""

    config = load_config_or_exit()
    with _fatal_errors():
        status_cmd(
            store_from_path=store_from_path,
            config=config,
            db_path=db_path,
            workspace=workspace or str(Path.cwd()),
        )


@rules_app.command("list")
def rules_list() -> None:
    """List builtin and user rulesets."""

    rules_list_cmd(config=load_config_or_exit())


@rules_app.command("check")
def rules_check(
    name: str = typer.Argument(..., help="Ruleset name or .lua path"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Validate a ruleset without running it."""

    config = load_config_or_exit()
    with _fatal_errors():
        rules_check_cmd(
            store_from_path=store_from_path,
            load_ruleset_or_exit=load_ruleset_or_exit,
            config=config,
            db_path=db_path,
            name=name,
        )


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
