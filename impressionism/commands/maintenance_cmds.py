from __future__ import annotations

from pathlib import Path

from rich import print

from ..config import ImpressionismConfig, get_config_path
from ..indexer import SkillIndexer, default_skill_sources


def init_cmd(
    *,
    store_from_path,
    read_config_or_exit,
    write_config_or_exit,
    config: ImpressionismConfig,
    db_path: str | None,
    if_needed: bool,
) -> None:
    """Write the default config, create data directories and the database."""

    config_path = get_config_path()
    target_db = Path(db_path or config.db_path).expanduser()
    if if_needed and config_path.exists() and target_db.exists():
        print(f"Already initialized ({config_path})")
        return

    existing = read_config_or_exit()
    data = ImpressionismConfig().to_dict()
    data.update(existing)
    if not config_path.exists() or data != existing:
        write_config_or_exit(data)
        print(f"Wrote config to {config_path}")

    Path(config.rules_dir).expanduser().mkdir(parents=True, exist_ok=True)
    store = store_from_path(db_path, config)
    try:
        print(f"Initialized database at {store.db_path}")
    finally:
        store.close()


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / 1024 / 1024:.1f} MB"
    return f"{size / 1024 / 1024 / 1024:.1f} GB"


def status_cmd(
    *,
    store_from_path,
    config: ImpressionismConfig,
    db_path: str | None,
    workspace: str | None,
) -> None:
    store = store_from_path(db_path, config)
    try:
        stats_data = store.stats()
        pending = SkillIndexer(store).pending_changes(default_skill_sources(config, workspace))
    finally:
        store.close()

    db_stats = stats_data["database"]
    counts = stats_data["counts"]
    print("[bold]Database[/bold]")
    print(f"- Path: {db_stats['path']}")
    print(f"- Size: {_format_bytes(int(db_stats['size_bytes']))}")
    print(f"- Schema version: {db_stats['schema_version']}")
    print(f"- Sessions: {counts['sessions']}")
    print(f"- Messages: {counts['message_log']}")
    print(f"- Active skill rows: {counts['session_skills']}")

    print("\n[bold]Skill index[/bold]")
    print(f"- Skills: {counts['skill_index']}")
    for source, count in stats_data["skills_by_source"].items():
        print(f"  - {source}: {count}")
    print(f"- Last indexed: {stats_data['last_indexed_at'] or 'never'}")
    print(f"- Last checked: {stats_data['last_checked_at'] or 'never'}")
    print(f"- Missing files: {stats_data['missing_paths']}")
    stale = pending["new"] + pending["changed"] + pending["removed"]
    if stale:
        print(
            f"- [yellow]Stale:[/yellow] {pending['new']} new, {pending['changed']} changed, "
            f"{pending['removed']} removed (run `impressionism index`)"
        )
    else:
        print("- Up to date")

    print("\n[bold]Ruleset[/bold]")
    print(f"- Active ruleset: {config.ruleset}")
    print(f"- Rules dir: {Path(config.rules_dir).expanduser()}")
