"""
Capability interfaces the sync core consumes.

EDSCalendarBackend (eds_client.py) implements both; tests use an in-memory
fake with the same shape.
"""

from datetime import datetime
from typing import Protocol
from typing import runtime_checkable

from calendar_busy_sync.models import BusyInterval


@runtime_checkable
class CalendarEventSource(Protocol):
    def list_events(
        self, calendar_id: str, window_start: datetime, window_end: datetime
    ) -> list[BusyInterval]:
        """Return every busy or tentative event intersecting the window.

        Free and cancelled events are excluded. Blocks previously created by
        this tool are returned with kind SYNTHETIC.
        """
        ...


@runtime_checkable
class CalendarEventSink(Protocol):
    def create_busy_block(self, calendar_id: str, interval: BusyInterval) -> str:
        """Create a busy-block and return the id the backend assigned."""
        ...

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Remove an event by id."""
        ...
