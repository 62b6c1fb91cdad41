"""
Preflight checks run before sync to catch common misconfigurations early.
"""

import logging
import sqlite3
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from calendar_busy_sync.models import CalendarEntry

logger = logging.getLogger(__name__)

_OFFLINE_KEYWORDS = frozenset(
    {
        "offline",
        "network",
        "transport",
        "unreachable",
        "not connected",
        "no route",
        "authentication failed",
        "connection refused",
        "temporary failure",
    }
)


def offline_hint(message: str, account_name: str = "") -> str:
    """Turn an EDS connection error into a user-facing hint."""
    if not any(kw in message.lower() for kw in _OFFLINE_KEYWORDS):
        return message
    if account_name:
        return f"Account '{account_name}' appears offline; check GNOME Online Accounts"
    return "Calendar appears offline; check GNOME Online Accounts"


def check_state_db(db_path: Path) -> tuple[str, str, str] | None:
    """Return an issue tuple if the state DB cannot be created or written."""
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create state DB directory %s: %s", db_path.parent, e)
        return ("State database", f"{db_path}: {e}", f"Check permissions on {db_path.parent}")

    if not db_path.exists():
        return None
    try:
        conn = sqlite3.connect(db_path)
        try:
            conn.execute("SELECT 1")
            # BEGIN IMMEDIATE needs a journal file next to the DB.
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("ROLLBACK")
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error("State DB not readable/writable (%s): %s", db_path, e)
        return (
            "State database",
            f"{db_path}: {e}",
            f"Check permissions on {db_path.parent} "
            f"(journal files must be creatable alongside the DB)",
        )
    return None


def run_preflight_checks(
    calendars: list[CalendarEntry], db_path: Path, console: Console
) -> bool:
    """Return True if sync may proceed; print issues and return False otherwise."""
    import gi

    gi.require_version("ECal", "2.0")
    gi.require_version("EDataServer", "1.2")
    from gi.repository import ECal
    from gi.repository import EDataServer
    from gi.repository import GLib

    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    if len(calendars) < 2:
        issues.append(
            (
                "Calendars",
                f"{len(calendars)} calendar(s) enabled for sync",
                "Enable at least two: calendar-busy-sync enable <UID>",
            )
        )

    try:
        registry = EDataServer.SourceRegistry.new_sync(None)
    except GLib.Error as e:
        logger.error("EDS registry unreachable: %s", e)
        issues.append(("EDS registry", str(e), "Is evolution-data-server running?"))
        _print_issues(issues, console)
        return False

    for entry in calendars:
        label = entry.display_name or entry.id
        source = registry.ref_source(entry.id)
        if source is None:
            logger.error("Calendar UID not found in EDS: %s", entry.id)
            issues.append((label, f"UID not found: {entry.id}", "Run: calendar-busy-sync migrate"))
            continue

        try:
            client = ECal.Client.connect_sync(source, ECal.ClientSourceType.EVENTS, 5, None)
        except GLib.Error as e:
            msg = e.message or str(e)
            logger.error("Cannot connect to %s (%s): %s", label, entry.id, msg)
            hint = offline_hint(msg, _get_parent_display_name(registry, source))
            issues.append((label, f"Connection failed: {msg}", hint))
            continue
        if client.is_readonly():
            issues.append(
                (label, "Calendar is read-only", "Busy-blocks cannot be written; disable it")
            )

    db_issue = check_state_db(db_path)
    if db_issue:
        issues.append(db_issue)

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _get_parent_display_name(registry, source) -> str:
    """Return the display name of the source's parent account, or empty string."""
    parent_uid = source.get_parent()
    if not parent_uid:
        return ""
    parent_source = registry.ref_source(parent_uid)
    if not parent_source:
        return ""
    return parent_source.get_display_name() or ""


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
