from __future__ import annotations

from rich import print

from ..config import ImpressionismConfig
from ..lua.ruleset import list_rulesets
from ..orchestrator import ActivationOrchestrator


def rules_list_cmd(*, config: ImpressionismConfig) -> None:
    found = list_rulesets(config.rules_dir)
    if not found:
        print("No rulesets found")
        return
    for name, origin in found.items():
        marker = " [green](active)[/green]" if name == config.ruleset else ""
        print(f"- {name}: {origin}{marker}")


def rules_check_cmd(
    *,
    store_from_path,
    load_ruleset_or_exit,
    config: ImpressionismConfig,
    db_path: str | None,
    name: str,
) -> None:
    """Load and validate a ruleset without calling its functions."""

    ruleset = load_ruleset_or_exit(name, config)
    store = store_from_path(db_path, config)
    try:
        ActivationOrchestrator(store, ruleset, config).validate_ruleset()
    finally:
        store.close()
    print(f"[green]Ruleset '{ruleset.name}' is valid[/green]")
