"""
Debug/inspect tools for EDS calendar events.

Importable functions:
  dump_event(vevent, console, sanitizer, show_raw=True)  render one event in a Rich Panel
"""

import gi

gi.require_version("ICalGLib", "3.0")
from gi.repository import ICalGLib

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from calendar_busy_sync.sanitizer import EventSanitizer
from calendar_busy_sync.sanitizer import is_event_cancelled
from calendar_busy_sync.sanitizer import is_free_time
from calendar_busy_sync.sanitizer import is_private_event


def fmt_prop(vevent, kind) -> str | None:
    prop = vevent.get_first_property(kind)
    if not prop:
        return None
    return prop.get_value_as_string()


def collect_multi(vevent, kind) -> list[str]:
    """Collect all values for a repeating property (e.g. EXDATE, CATEGORIES)."""
    results = []
    prop = vevent.get_first_property(kind)
    while prop:
        value = prop.get_value_as_string()
        if value:
            results.append(value)
        prop = vevent.get_next_property(kind)
    return results


def _sync_role(vevent, sanitizer: EventSanitizer) -> Text:
    if sanitizer.is_managed_event(vevent):
        source = sanitizer.get_source_calendar(vevent) or "(no source marker)"
        return Text(f"busy-block from {source}", style="magenta")
    if is_event_cancelled(vevent):
        return Text("ignored (cancelled)", style="dim")
    if is_free_time(vevent):
        return Text("ignored (free)", style="dim")
    return Text("original (mirrored as busy)", style="green")


def dump_event(
    vevent, console: Console, sanitizer: EventSanitizer, show_raw: bool = True
) -> None:
    """Render a single VEVENT as a Rich Panel."""
    uid = vevent.get_uid() or "(no UID)"
    summary = fmt_prop(vevent, ICalGLib.PropertyKind.SUMMARY_PROPERTY) or "(no summary)"

    lines = Text()

    def row(label: str, value) -> None:
        if value is None:
            return
        lines.append(f"  {label:<14}: ", style="bold cyan")
        if isinstance(value, Text):
            lines.append_text(value)
            lines.append("\n")
        else:
            lines.append(f"{value}\n")

    row("SUMMARY", summary)
    row("UID", uid)
    row("RECURRENCE-ID", fmt_prop(vevent, ICalGLib.PropertyKind.RECURRENCEID_PROPERTY))
    row("DTSTART", fmt_prop(vevent, ICalGLib.PropertyKind.DTSTART_PROPERTY))
    row("DTEND", fmt_prop(vevent, ICalGLib.PropertyKind.DTEND_PROPERTY))
    row("RRULE", fmt_prop(vevent, ICalGLib.PropertyKind.RRULE_PROPERTY))
    row("TRANSP", fmt_prop(vevent, ICalGLib.PropertyKind.TRANSP_PROPERTY))
    row("STATUS", fmt_prop(vevent, ICalGLib.PropertyKind.STATUS_PROPERTY))
    row("CLASS", fmt_prop(vevent, ICalGLib.PropertyKind.CLASS_PROPERTY))
    for category in collect_multi(vevent, ICalGLib.PropertyKind.CATEGORIES_PROPERTY):
        row("CATEGORIES", category)
    row("Private", "yes" if is_private_event(vevent) else "no")
    row("Sync role", _sync_role(vevent, sanitizer))

    console.print(Panel(lines, title=f"[bold]{summary}[/bold]", expand=False))

    if show_raw:
        raw = vevent.as_ical_string()
        console.print(
            Panel(
                Syntax(raw, "ical", theme="monokai", word_wrap=True),
                title="Raw iCal",
                expand=False,
            )
        )
