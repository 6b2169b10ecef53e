from __future__ import annotations

import json
from pathlib import Path

import typer
from rich import print
from rich.markup import escape

from ..config import ImpressionismConfig
from ..orchestrator import ActivationOrchestrator, HookEvent, SelectionResult, record_event
from ..store import HookType, SkillStore

LOGGABLE_HOOKS = (HookType.USER_PROMPT_SUBMIT, HookType.POST_TOOL_USE, HookType.STOP)


def _print_active(store: SkillStore, result: SelectionResult) -> None:
    if not result.active:
        return
    print("[bold]Active skills[/bold]")
    for row in result.active:
        skill = store.find_skill(row.skill_id)
        if skill is None:
            print(f"- {escape(row.skill_id)}")
            continue
        line = f"- {escape(skill.name)} ({escape(skill.path)})"
        if skill.description:
            line += f": {escape(skill.description)}"
        print(line)


def select_cmd(
    *,
    store_from_path,
    embedder_for,
    load_ruleset_or_exit,
    config: ImpressionismConfig,
    db_path: str | None,
    session_id: str,
    workspace: str,
    event: str,
    ruleset_name: str | None,
    deactivate_only: bool,
    payload: dict,
    as_json: bool,
) -> None:
    """Evaluate the ruleset for one hook event and reconcile active skills."""

    try:
        hook_type = HookType.parse(event)
    except ValueError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc
    ruleset = load_ruleset_or_exit(ruleset_name, config)
    store = store_from_path(db_path, config)
    try:
        orchestrator = ActivationOrchestrator(
            store, ruleset, config, embedder=embedder_for(config)
        )
        hook_event = HookEvent.from_hook_payload(
            hook_type, session_id, payload, workspace_path=str(Path(workspace).expanduser())
        )
        result = orchestrator.handle_event(hook_event, deactivate_only=deactivate_only)
        if as_json:
            typer.echo(json.dumps(result.to_dict(), indent=2))
            return
        _print_active(store, result)
        for error in result.errors:
            print(f"[yellow]Ruleset error:[/yellow] {escape(str(error))}")
    finally:
        store.close()


def log_cmd(
    *,
    store_from_path,
    embedder_for,
    config: ImpressionismConfig,
    db_path: str | None,
    session_id: str,
    event: str,
    workspace: str | None,
    payload: dict,
    as_json: bool,
) -> None:
    """Record a hook event in the session history without evaluating rules."""

    try:
        hook_type = HookType.parse(event)
    except ValueError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc
    if hook_type not in LOGGABLE_HOOKS:
        allowed = ", ".join(hook.event_name for hook in LOGGABLE_HOOKS)
        print(f"[red]log does not accept hook event {escape(repr(event))}; use {allowed}[/red]")
        raise typer.Exit(code=1)
    store = store_from_path(db_path, config)
    try:
        hook_event = HookEvent.from_hook_payload(
            hook_type,
            session_id,
            payload,
            workspace_path=str(Path(workspace).expanduser()) if workspace else None,
        )
        message = record_event(
            store,
            hook_event,
            preview_chars=config.content_preview_chars,
            embedder=embedder_for(config),
        )
    finally:
        store.close()
    if as_json:
        typer.echo(
            json.dumps(
                {
                    "session_id": message.session_id,
                    "sequence": message.sequence,
                    "role": message.role.value,
                    "event_type": message.event_type,
                    "tool_name": message.tool_name,
                    "active_skills": message.active_skills,
                },
                indent=2,
            )
        )
        return
    print(f"Logged {message.event_type} #{message.sequence} for session {escape(session_id)}")
