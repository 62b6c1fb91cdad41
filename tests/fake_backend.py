"""
In-memory fake calendar backend for testing.

Implements the CalendarEventSource and CalendarEventSink shapes that
EDSCalendarBackend provides. No EDS daemon is required: events are kept in
plain dicts keyed by calendar id and event id.
"""

import itertools
import threading
from datetime import datetime

from calendar_busy_sync.models import BackendError
from calendar_busy_sync.models import BusyInterval
from calendar_busy_sync.sync.utils import intersects_window


class FakeCalendarBackend:
    """In-memory stand-in recording every call in order."""

    def __init__(self, events: list[BusyInterval] | None = None):
        # calendar id → event id → interval
        self._events: dict[str, dict[str, BusyInterval]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

        self.calls: list[tuple[str, str]] = []  # (operation, calendar_id)
        self.creates: list[tuple[str, BusyInterval]] = []
        self.deletes: list[tuple[str, str]] = []

        self.fetch_failures: set[str] = set()
        self.create_failures: set[str] = set()
        self.delete_failures: set[str] = set()

        # Set fetch_gate to block list_events until the test releases it.
        self.fetch_gate: threading.Event | None = None
        self.fetch_started = threading.Event()

        for event in events or ():
            self.add_event(event)

    # ------------------------------------------------------------------ #
    # Test helpers                                                          #
    # ------------------------------------------------------------------ #

    def add_event(self, interval: BusyInterval) -> str:
        """Store an event directly, assigning an id when it has none."""
        with self._lock:
            event_id = interval.event_id or f"{interval.calendar_id}-ev{next(self._ids)}"
            self._events.setdefault(interval.calendar_id, {})[event_id] = (
                interval.with_event_id(event_id)
            )
        return event_id

    def remove_original(self, calendar_id: str, event_id: str) -> None:
        with self._lock:
            del self._events[calendar_id][event_id]

    def events(self, calendar_id: str) -> list[BusyInterval]:
        with self._lock:
            return sorted(
                self._events.get(calendar_id, {}).values(), key=lambda ev: (ev.start, ev.end)
            )

    def synthetic(self, calendar_id: str) -> list[BusyInterval]:
        return [ev for ev in self.events(calendar_id) if ev.is_synthetic]

    def operations(self, calendar_id: str) -> list[str]:
        return [op for op, cid in self.calls if cid == calendar_id]

    def reset_counters(self):
        """Clear the call logs between sync runs."""
        self.calls.clear()
        self.creates.clear()
        self.deletes.clear()

    # ------------------------------------------------------------------ #
    # CalendarEventSource / CalendarEventSink                               #
    # ------------------------------------------------------------------ #

    def list_events(
        self, calendar_id: str, window_start: datetime, window_end: datetime
    ) -> list[BusyInterval]:
        self.calls.append(("fetch", calendar_id))
        self.fetch_started.set()
        if self.fetch_gate is not None:
            self.fetch_gate.wait(timeout=5)
        if calendar_id in self.fetch_failures:
            raise BackendError("network unreachable")
        return [
            ev
            for ev in self.events(calendar_id)
            if intersects_window(ev, window_start, window_end)
        ]

    def create_busy_block(self, calendar_id: str, interval: BusyInterval) -> str:
        self.calls.append(("create", calendar_id))
        if calendar_id in self.create_failures:
            raise BackendError("quota exceeded")
        with self._lock:
            event_id = f"{calendar_id}-block{next(self._ids)}"
            self._events.setdefault(calendar_id, {})[event_id] = interval.with_event_id(event_id)
        self.creates.append((calendar_id, interval))
        return event_id

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self.calls.append(("delete", calendar_id))
        if calendar_id in self.delete_failures:
            raise BackendError("permission denied")
        with self._lock:
            if self._events.get(calendar_id, {}).pop(event_id, None) is None:
                raise BackendError(f"object not found: {event_id}")
        self.deletes.append((calendar_id, event_id))
