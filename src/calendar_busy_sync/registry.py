"""
In-memory calendar registry shared by the CLI, the manager and the orchestrator.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import replace

from calendar_busy_sync.models import CalendarEntry
from calendar_busy_sync.models import CalendarNotFound

logger = logging.getLogger(__name__)


class CalendarRegistry:
    """Calendar id → CalendarEntry, safe to mutate while a pass is reading it.

    Readers get copies, so a snapshot taken at pass start never changes
    underneath the orchestrator.
    """

    def __init__(self, entries: Iterable[CalendarEntry] = ()):
        self._lock = threading.Lock()
        self._entries: dict[str, CalendarEntry] = {}
        for entry in entries:
            self._entries[entry.id] = replace(entry)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, calendar_id: str) -> bool:
        with self._lock:
            return calendar_id in self._entries

    def list(self) -> list[CalendarEntry]:
        with self._lock:
            return [replace(entry) for entry in self._entries.values()]

    def get(self, calendar_id: str) -> CalendarEntry:
        with self._lock:
            entry = self._entries.get(calendar_id)
            if entry is None:
                raise CalendarNotFound(calendar_id)
            return replace(entry)

    def enabled_ids(self) -> list[str]:
        """Snapshot of the ids currently enabled for sync."""
        with self._lock:
            return [cid for cid, entry in self._entries.items() if entry.sync_enabled]

    def set_enabled(self, calendar_id: str, enabled: bool) -> bool:
        with self._lock:
            entry = self._entries.get(calendar_id)
            if entry is None:
                raise CalendarNotFound(calendar_id)
            entry.sync_enabled = enabled
        logger.info(
            "Calendar sync %s for %s", "enabled" if enabled else "disabled", entry.display_name
        )
        return enabled

    def toggle(self, calendar_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(calendar_id)
            if entry is None:
                raise CalendarNotFound(calendar_id)
            entry.sync_enabled = not entry.sync_enabled
            enabled = entry.sync_enabled
        logger.info(
            "Calendar sync %s for %s", "enabled" if enabled else "disabled", entry.display_name
        )
        return enabled

    def add(self, entry: CalendarEntry) -> None:
        with self._lock:
            self._entries[entry.id] = replace(entry)

    def remove(self, calendar_id: str) -> None:
        with self._lock:
            if self._entries.pop(calendar_id, None) is None:
                raise CalendarNotFound(calendar_id)

    def merge_discovered(self, discovered: Iterable[CalendarEntry]) -> list[CalendarEntry]:
        """Add newly discovered calendars and refresh metadata of known ones.

        The sync_enabled flag of calendars already in the registry is kept.
        Returns the entries that were new.
        """
        added = []
        with self._lock:
            for entry in discovered:
                known = self._entries.get(entry.id)
                if known is None:
                    self._entries[entry.id] = replace(entry)
                    added.append(replace(entry))
                else:
                    known.display_name = entry.display_name
                    known.account = entry.account
                    known.read_only = entry.read_only
        if added:
            logger.info("Discovered %d new calendar(s)", len(added))
        return added
