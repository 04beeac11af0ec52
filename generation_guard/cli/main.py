"""
CLI interface for Generation Guard.

Provides command-line access to the ledger database, the settings file
and per-user usage stats.
"""

import sqlite3
import sys
from typing import Any, Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from generation_guard.config.loader import DEFAULT_SETTINGS, GovernanceSettings
from generation_guard.config.settings_store import SettingsStore
from generation_guard.core.errors import GovernanceError
from generation_guard.core.identity import user_key
from generation_guard.core.ledger import DAY, HOUR, summarize_window
from generation_guard.logging_config import setup_logging, stop_logging
from generation_guard.storage.db import DEFAULT_DB_PATH
from generation_guard.storage.repository import UsageRepository, initialize_schema

app = typer.Typer()
settings_app = typer.Typer(help="Inspect and edit governance settings.")
app.add_typer(settings_app, name="settings")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_SETTINGS_PATH = "generation_guard.yaml"


def _parse_assignments(assignments: List[str]) -> Dict[str, Any]:
    """Turn KEY=VALUE strings into a mapping with YAML-typed values."""
    changes: Dict[str, Any] = {}
    for item in assignments:
        key, sep, raw_value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{item}'")
        changes[key.strip()] = yaml.safe_load(raw_value) if raw_value.strip() else raw_value
    return changes


def _settings_table(settings: GovernanceSettings) -> Table:
    table = Table(title="Governance Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column("Default", justify="right", style="dim")
    defaults = DEFAULT_SETTINGS.to_dict()
    for key, value in sorted(settings.to_dict().items()):
        table.add_row(key, str(value), str(defaults[key]))
    return table


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Generation Guard CLI."""
    setup_logging(debug)
    ctx.call_on_close(stop_logging)
    if ctx.invoked_subcommand is None:
        console.print("Generation Guard - Use --help to see available commands")


@app.command()
def init(
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite ledger"),
):
    """Initialize the usage ledger database."""
    try:
        initialize_schema(db)
        console.print(f"[green]✓[/] Database initialized at {db}")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@settings_app.command("show")
def settings_show(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="YAML settings file (defaults are shown when omitted)"
    ),
):
    """Show the effective governance settings."""
    try:
        store = SettingsStore.from_file(config) if config else SettingsStore()
    except (FileNotFoundError, yaml.YAMLError, GovernanceError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(_settings_table(store.get()))
    sys.exit(EXIT_CODE_PASS)


@settings_app.command("set")
def settings_set(
    assignments: List[str] = typer.Argument(..., help="One or more KEY=VALUE pairs"),
    config: str = typer.Option(
        DEFAULT_SETTINGS_PATH, "--config", "-c", help="YAML settings file to update"
    ),
):
    """
    Update settings in a YAML file.

    The file is created with default values when it does not exist yet.
    Unknown keys are rejected so typos do not silently disappear.
    """
    changes = _parse_assignments(assignments)
    unknown = sorted(set(changes) - set(DEFAULT_SETTINGS.to_dict()))
    if unknown:
        console.print(f"[red]Error:[/] Unknown settings keys: {', '.join(unknown)}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        try:
            store = SettingsStore.from_file(config)
        except FileNotFoundError:
            store = SettingsStore(path=config)
        updated = store.update(changes)
    except (yaml.YAMLError, GovernanceError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    for key in sorted(changes):
        console.print(f"[green]✓[/] {key} = {getattr(updated, key)}")
    console.print(f"Saved to {config}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(
    user_id: str = typer.Argument(..., help="User to report on"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite ledger"),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="YAML settings file for limits"
    ),
):
    """Show rolling hourly and daily usage for a user."""
    try:
        settings = SettingsStore.from_file(config).get() if config else DEFAULT_SETTINGS
        repository = UsageRepository(db)
        key = user_key(user_id)
        hourly = summarize_window(
            repository.window_events(key, HOUR), HOUR,
            settings.hourly_batch_limit, settings.soft_warning_threshold,
        )
        daily = summarize_window(repository.window_events(key, DAY), DAY, settings.daily_batch_limit)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No usage data found[/]")
            console.print("Run `generation-guard init` to initialize the database\n")
            sys.exit(EXIT_CODE_PASS)
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except (FileNotFoundError, yaml.YAMLError, GovernanceError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Usage for {user_id}")
    table.add_column("Window", style="cyan")
    table.add_column("Batches", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Ideas", justify="right")
    table.add_column("Next reset")
    for label, window_stats in (("Hourly", hourly), ("Daily", daily)):
        reset = window_stats.next_reset_timestamp
        table.add_row(
            label,
            f"{window_stats.batch_count:g}",
            f"{window_stats.batch_limit:g}",
            f"{window_stats.remaining:g}",
            str(window_stats.ideas_count),
            reset.isoformat(timespec="seconds") if reset else "-",
        )
    console.print(table)
    if hourly.is_soft_warning:
        console.print("[yellow]Approaching the hourly limit[/]")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
