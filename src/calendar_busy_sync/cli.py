"""
Command-line interface for Calendar Busy Sync.
"""

import logging
import time
from collections.abc import Iterator
from configparser import ConfigParser
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from calendar_busy_sync.db import StateDatabase
from calendar_busy_sync.db import migrate_calendar_id
from calendar_busy_sync.db import query_recent_runs
from calendar_busy_sync.manager import SyncManager
from calendar_busy_sync.manager import apply_settings
from calendar_busy_sync.models import DEFAULT_CONFIG
from calendar_busy_sync.models import DEFAULT_STATE_DB
from calendar_busy_sync.models import CalendarEntry
from calendar_busy_sync.models import CalendarNotFound
from calendar_busy_sync.models import CalendarSyncError
from calendar_busy_sync.models import SyncConfig
from calendar_busy_sync.models import SyncResult

CONFIG_SECTION = "calendar-busy-sync"

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Mirror busy time across all your EDS calendars as private busy-blocks.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path = field(default_factory=lambda: DEFAULT_STATE_DB)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path,
        typer.Option("--state-db", help=f"State DB path (default: {DEFAULT_STATE_DB})"),
    ] = DEFAULT_STATE_DB,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def _fail(message: str) -> typer.Exit:
    console.print(f"[bold red]Error:[/] {message}")
    return typer.Exit(1)


@contextmanager
def _open_manager() -> Iterator[SyncManager]:
    """Build the manager for one command: INI defaults, then stored settings."""
    from calendar_busy_sync.eds_client import EDSCalendarBackend

    try:
        with StateDatabase(state.state_db) as db:
            config = apply_settings(
                SyncConfig(state_db_path=state.state_db),
                _load_config_file(state.config_path),
            )
            config = apply_settings(config, db.get_settings())
            backend = EDSCalendarBackend(category=config.busy_block_category)
            manager = SyncManager(config, backend, backend, db)
            manager.load()
            try:
                yield manager
            finally:
                manager.shutdown()
    except CalendarSyncError as e:
        raise _fail(str(e)) from None


def _discover(manager: SyncManager, probe_readonly: bool = False) -> list[CalendarEntry]:
    from calendar_busy_sync.eds_client import list_eds_calendars

    eds = manager.orchestrator.source
    return manager.discover(list_eds_calendars(eds.registry, probe_readonly=probe_readonly))


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise _fail(f"Invalid date: {value!r} (expected YYYY-MM-DD)") from None


def _calendar_label(entry: CalendarEntry) -> str:
    return entry.display_name + (f" ({entry.account})" if entry.account else "")


def _print_calendar_table(entries: list[CalendarEntry]) -> None:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Sync", justify="center")
    table.add_column("Display Name", style="bold")
    table.add_column("Account")
    table.add_column("Mode")
    table.add_column("UID", style="dim", overflow="fold")
    for entry in sorted(entries, key=lambda e: (e.account, e.display_name)):
        sync_cell = Text("✓", style="green") if entry.sync_enabled else Text("·", style="dim")
        mode = Text("Read-only", style="yellow") if entry.read_only else Text("Read-write")
        table.add_row(sync_cell, entry.display_name, entry.account, mode, entry.id)
    console.print(table)


def _print_result(result: SyncResult, title: str) -> None:
    prefix = "Would be " if result.dry_run else ""
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row(f"{prefix}Created", str(result.blocks_created))
    results.add_row(f"{prefix}Removed", str(result.blocks_removed))
    results.add_row("Conflicts", str(len(result.conflicts)))
    error_val = Text(str(len(result.failures)))
    if not result.failures:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)
    console.print(Panel(results, title=f"[bold]{title}[/bold]", expand=False))

    if result.conflicts:
        table = Table(show_header=True, header_style="bold yellow", box=None, padding=(0, 2))
        table.add_column("Calendar")
        table.add_column("Time")
        table.add_column("Overlaps with")
        for conflict in result.conflicts:
            table.add_row(
                conflict.calendar_id,
                f"{conflict.start:%Y-%m-%d %H:%M}-{conflict.end:%H:%M}",
                f"{conflict.with_subject or '(no subject)'} [dim]({conflict.source_calendar_id})",
            )
        console.print(Panel(table, title="[bold yellow]Conflicts[/bold yellow]", expand=False))

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/] {warning}")
    for failure in result.failures:
        console.print(
            f"[bold red]Failed[/] {failure.operation} in {failure.calendar_id}: {failure.detail}"
        )


def _print_info_panel(
    manager: SyncManager, operation: Text, target: date | None, dry_run: bool, entries
) -> None:
    config = manager.config
    info = Text()
    for entry in entries:
        info.append("  Calendar:  ", style="bold")
        info.append(f"{_calendar_label(entry)}\n")
        info.append(f"             {entry.id}\n", style="dim")
    day = target or date.today()
    info.append("  Date:      ", style="bold")
    info.append(day.isoformat())
    if config.look_behind_days or config.look_ahead_days:
        info.append(
            f" (-{config.look_behind_days}/+{config.look_ahead_days} days)", style="dim"
        )
    info.append("\n  Label:     ", style="bold")
    info.append(config.busy_block_subject)
    info.append("\n  Operation: ")
    info.append_text(operation)
    if dry_run:
        info.append("\n  Mode:      ")
        info.append("DRY RUN", style="bold magenta")
    console.print(Panel(info, title="[bold]Calendar Busy Sync[/bold]"))


_DATE = Annotated[
    str | None,
    typer.Option("--date", "-d", help="Day to synchronize, YYYY-MM-DD (default: today)"),
]
_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]
_YES = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")]
_UIDS = Annotated[list[str], typer.Argument(help="Calendar UID(s)")]


# ---------------------------------------------------------------------------
# Subcommands: calendars / enable / disable / toggle
# ---------------------------------------------------------------------------


@app.command()
def calendars(
    probe: Annotated[
        bool, typer.Option("--probe", help="Connect to each calendar to detect read-only ones")
    ] = False,
) -> None:
    """Discover EDS calendars and show which ones are synchronized."""
    with _open_manager() as manager:
        added = _discover(manager, probe_readonly=probe)
        _print_calendar_table(manager.list_calendars())
        if added:
            console.print(f"[green]{len(added)} new calendar(s) discovered.[/]")
        enabled = len(manager.registry.enabled_ids())
        if enabled < 2:
            console.print(
                f"[yellow]{enabled} calendar(s) enabled; enable at least two with[/] "
                "[cyan]calendar-busy-sync enable <UID>[/]"
            )


def _set_enabled(uids: list[str], enabled: bool) -> None:
    with _open_manager() as manager:
        if any(uid not in manager.registry for uid in uids):
            _discover(manager)
        for uid in uids:
            try:
                manager.set_enabled(uid, enabled)
            except CalendarNotFound as e:
                raise _fail(str(e)) from None
            entry = manager.registry.get(uid)
            word = "[green]enabled[/]" if enabled else "[yellow]disabled[/]"
            console.print(f"Sync {word} for [bold]{_calendar_label(entry)}[/]")


@app.command()
def enable(uids: _UIDS) -> None:
    """Include calendar(s) in busy-time synchronization."""
    _set_enabled(uids, True)


@app.command()
def disable(uids: _UIDS) -> None:
    """Exclude calendar(s) from busy-time synchronization."""
    _set_enabled(uids, False)


@app.command()
def toggle(uid: Annotated[str, typer.Argument(help="Calendar UID")]) -> None:
    """Flip the sync flag of one calendar."""
    with _open_manager() as manager:
        if uid not in manager.registry:
            _discover(manager)
        try:
            enabled = manager.toggle(uid)
        except CalendarNotFound as e:
            raise _fail(str(e)) from None
        entry = manager.registry.get(uid)
        word = "[green]enabled[/]" if enabled else "[yellow]disabled[/]"
        console.print(f"Sync {word} for [bold]{_calendar_label(entry)}[/]")


# ---------------------------------------------------------------------------
# Subcommands: sync / clear
# ---------------------------------------------------------------------------


@app.command()
def sync(
    target_date: _DATE = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
    skip_preflight: Annotated[
        bool, typer.Option("--skip-preflight", help="Do not check calendars before syncing")
    ] = False,
) -> None:
    """Mirror busy time between all enabled calendars."""
    from calendar_busy_sync.preflight import run_preflight_checks

    day = _parse_date(target_date)
    with _open_manager() as manager:
        enabled = [e for e in manager.list_calendars() if e.sync_enabled]
        if not skip_preflight and not run_preflight_checks(enabled, state.state_db, console):
            raise typer.Exit(1)

        _print_info_panel(manager, Text("SYNC", style="bold green"), day, dry_run, enabled)
        if not yes and not dry_run:
            typer.confirm("Proceed?", abort=True)

        try:
            result = manager.sync_now(day, dry_run=dry_run)
        except CalendarSyncError as e:
            console.print(f"[bold red]Sync failed:[/] {e}")
            raise typer.Exit(1) from None
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted by user[/]")
            raise typer.Exit(130) from None

        _print_result(result, "Results")
        if result.failures:
            raise typer.Exit(1)


@app.command()
def clear(target_date: _DATE = None, dry_run: _DRY_RUN = False, yes: _YES = False) -> None:
    """Remove busy-blocks created by this tool, without re-syncing.

    Clears every registered calendar, enabled or not, over the configured window.
    """
    day = _parse_date(target_date)
    with _open_manager() as manager:
        op = Text("CLEAR (remove all busy-blocks, no resync)", style="bold red")
        _print_info_panel(manager, op, day, dry_run, manager.list_calendars())
        if not yes and not dry_run:
            typer.confirm("Proceed?", abort=True)

        try:
            result = manager.clear(day, dry_run=dry_run)
        except CalendarSyncError as e:
            console.print(f"[bold red]Clear failed:[/] {e}")
            raise typer.Exit(1) from None
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted by user[/]")
            raise typer.Exit(130) from None

        _print_result(result, "Results")
        if result.failures:
            raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommands: status / configure / watch
# ---------------------------------------------------------------------------

_STATE_STYLES = {"Active": "green", "Syncing": "cyan", "Stopped": "yellow", "Error": "bold red"}


@app.command()
def status() -> None:
    """Show sync status, configuration and recent runs."""
    config_exists = state.config_path.exists()

    with _open_manager() as manager:
        summary = manager.status()
        config = manager.get_configuration()
        entries = [e for e in manager.list_calendars() if e.sync_enabled]

    info = Text()
    info.append("  Status:    ", style="bold")
    info.append(summary.state, style=_STATE_STYLES.get(summary.state, ""))
    info.append(f"  {summary.message}\n", style="dim")
    info.append("  Last sync: ", style="bold")
    info.append(f"{summary.last_sync:%Y-%m-%d %H:%M:%S}" if summary.last_sync else "never")
    info.append("\n  Config:    ", style="bold")
    info.append(str(state.config_path) + " ")
    info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "yellow"
    )
    info.append("\n  State DB:  ", style="bold")
    info.append(str(state.state_db))
    info.append("\n\n  Interval:  ", style="bold")
    info.append(f"{config.sync_interval_minutes} min")
    info.append("\n  Label:     ", style="bold")
    info.append(config.busy_block_subject)
    info.append("\n  Category:  ", style="bold")
    info.append(config.busy_block_category)
    info.append("\n  Window:    ", style="bold")
    info.append(f"-{config.look_behind_days}/+{config.look_ahead_days} days")
    for entry in entries:
        info.append("\n  Calendar:  ", style="bold")
        info.append(_calendar_label(entry))
    console.print(Panel(info, title="[bold]Calendar Busy Sync: Status[/bold]"))

    rows = query_recent_runs(state.state_db, limit=10)
    if not rows:
        console.print(
            "[yellow]No syncs recorded yet; run[/] [cyan]calendar-busy-sync sync[/]"
        )
        return

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Finished")
    table.add_column("Status")
    table.add_column("Dates")
    table.add_column("Created", justify="right")
    table.add_column("Removed", justify="right")
    table.add_column("Conflicts", justify="right")
    table.add_column("Errors", justify="right")
    for row in rows:
        ts = row["finished_at"] or row["started_at"]
        run_status = row["status"] + (" (dry run)" if row["dry_run"] else "")
        table.add_row(
            datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S"),
            Text(run_status, style="green" if row["status"] == "succeeded" else "red"),
            row["target_dates"] or row["message"],
            str(row["blocks_created"]),
            str(row["blocks_removed"]),
            str(row["conflicts"]),
            str(row["failures"]),
        )
    console.print(Panel(table, title="[bold]Recent runs[/bold]", expand=False))


@app.command()
def configure(
    interval: Annotated[
        int | None, typer.Option("--interval", min=1, help="Auto-sync interval in minutes")
    ] = None,
    subject: Annotated[
        str | None, typer.Option("--subject", help="Subject used for busy-blocks")
    ] = None,
    look_ahead: Annotated[
        int | None, typer.Option("--look-ahead", min=0, help="Extra days after the target date")
    ] = None,
    look_behind: Annotated[
        int | None, typer.Option("--look-behind", min=0, help="Extra days before the target date")
    ] = None,
    mirror_subjects: Annotated[
        bool | None,
        typer.Option(
            "--mirror-subjects/--no-mirror-subjects",
            help="Copy the subject of non-private events into busy-blocks",
        ),
    ] = None,
    auto_sync: Annotated[
        bool | None,
        typer.Option("--auto-sync/--no-auto-sync", help="Enable periodic sync under `watch`"),
    ] = None,
) -> None:
    """Change persisted settings; prints the configuration when called without options."""
    with _open_manager() as manager:
        try:
            if interval is not None:
                manager.set_sync_interval(interval)
            if subject is not None:
                manager.set_busy_block_subject(subject)
            if look_ahead is not None:
                manager.set_look_ahead_days(look_ahead)
            if look_behind is not None:
                manager.set_look_behind_days(look_behind)
            if mirror_subjects is not None:
                manager.set_mirror_subjects(mirror_subjects)
            if auto_sync is True:
                manager.start_auto_sync(start_timer=False)
            elif auto_sync is False:
                manager.stop_auto_sync()
        except CalendarSyncError as e:
            raise _fail(str(e)) from None

        config = manager.get_configuration()
        auto = manager.auto_sync_enabled

    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold")
    grid.add_column()
    grid.add_row("Auto-sync", "on" if auto else "off")
    grid.add_row("Interval", f"{config.sync_interval_minutes} min")
    grid.add_row("Label", config.busy_block_subject)
    grid.add_row("Category", config.busy_block_category)
    grid.add_row("Look-ahead", f"{config.look_ahead_days} day(s)")
    grid.add_row("Look-behind", f"{config.look_behind_days} day(s)")
    grid.add_row("Mirror subjects", "yes" if config.mirror_subjects else "no")
    console.print(Panel(grid, title="[bold]Configuration[/bold]", expand=False))


@app.command()
def watch(
    interval: Annotated[
        int | None,
        typer.Option("--interval", min=1, help="Override the interval for this session"),
    ] = None,
) -> None:
    """Sync now, then keep syncing on the configured interval until interrupted."""
    with _open_manager() as manager:
        if interval is not None:
            manager.scheduler.interval_minutes = interval
        try:
            result = manager.sync_now()
            _print_result(result, "Initial sync")
        except CalendarSyncError as e:
            console.print(f"[bold red]Sync failed:[/] {e}")

        manager.start_auto_sync()
        console.print(
            f"[green]Watching[/] {len(manager.registry.enabled_ids())} calendar(s) every "
            f"{manager.scheduler.interval_minutes} min. Press Ctrl+C to stop."
        )
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            console.print("[yellow]Stopping auto-sync[/]")
            raise typer.Exit(130) from None


# ---------------------------------------------------------------------------
# Subcommand: inspect
# ---------------------------------------------------------------------------


@app.command()
def inspect(
    calendar_uid: Annotated[str, typer.Argument(help="Calendar UID to inspect")],
    title: Annotated[
        str | None, typer.Option(help="Filter by SUMMARY substring (case-insensitive)")
    ] = None,
    managed_only: Annotated[
        bool, typer.Option("--managed-only", help="Show only busy-blocks created by this tool")
    ] = False,
    no_raw: Annotated[bool, typer.Option("--no-raw", help="Omit the raw iCal block")] = False,
) -> None:
    """Inspect / debug events in a calendar."""
    from calendar_busy_sync.debug import dump_event
    from calendar_busy_sync.eds_client import EDSCalendarClient
    from calendar_busy_sync.eds_client import connect_registry
    from calendar_busy_sync.eds_client import get_calendar_display_info
    from calendar_busy_sync.sanitizer import EventSanitizer

    config = apply_settings(
        SyncConfig(state_db_path=state.state_db), _load_config_file(state.config_path)
    )
    sanitizer = EventSanitizer(config.busy_block_category)
    try:
        registry = connect_registry()
        client = EDSCalendarClient(registry, calendar_uid)
        client.connect(timeout=30)
        events = client.get_all_events()
    except CalendarSyncError as e:
        raise _fail(str(e)) from None

    name, account, _ = get_calendar_display_info(registry, calendar_uid)
    console.print(f"[bold]Calendar:[/] {name} {account} [dim]({calendar_uid})[/dim]")
    console.print(f"[bold]Events:[/] {len(events)} total")

    title_filter = title.lower() if title else None
    count = 0
    for vevent in events:
        if title_filter and title_filter not in (vevent.get_summary() or "").lower():
            continue
        if managed_only and not sanitizer.is_managed_event(vevent):
            continue
        count += 1
        dump_event(vevent, console, sanitizer, show_raw=not no_raw)

    console.print(f"\n[bold]Matched {count} event(s)[/bold]")


# ---------------------------------------------------------------------------
# Subcommand: migrate
# ---------------------------------------------------------------------------


@app.command()
def migrate(
    old: Annotated[str, typer.Argument(help="Calendar UID to replace")],
    new: Annotated[str, typer.Argument(help="Replacement calendar UID")],
    dry_run: _DRY_RUN = False,
) -> None:
    """Move a calendar's sync setting to a new UID.

    Useful after a GOA reconnection assigns a new EDS UID to a calendar.
    """
    if not state.state_db.exists():
        raise _fail(f"State database not found: {state.state_db}")

    rows = migrate_calendar_id(state.state_db, old, new, dry_run)
    prefix = "Would update" if dry_run else "Updated"
    console.print(f"{prefix} [bold]{rows}[/bold] record(s): [dim]{old}[/dim] → [cyan]{new}[/cyan]")
    if rows == 0:
        console.print("[yellow]Warning:[/] No matching records found; verify the old UID.")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
