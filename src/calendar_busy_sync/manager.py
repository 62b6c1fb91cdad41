"""
SyncManager: long-lived service object owning config, registry, orchestrator,
auto-sync scheduler and the state store.

Construct one per process at the entry point and pass it to callers.
"""

import logging
import threading
from collections.abc import Iterable
from collections.abc import Mapping
from dataclasses import fields
from dataclasses import replace
from datetime import date
from datetime import datetime

from calendar_busy_sync.backend import CalendarEventSink
from calendar_busy_sync.backend import CalendarEventSource
from calendar_busy_sync.db import StateDatabase
from calendar_busy_sync.models import CalendarEntry
from calendar_busy_sync.models import CalendarSyncError
from calendar_busy_sync.models import StatusSummary
from calendar_busy_sync.models import SyncAlreadyInProgress
from calendar_busy_sync.models import SyncConfig
from calendar_busy_sync.models import SyncResult
from calendar_busy_sync.models import SyncStatus
from calendar_busy_sync.registry import CalendarRegistry
from calendar_busy_sync.sync.orchestrator import SyncOrchestrator
from calendar_busy_sync.sync.scheduler import AutoSyncScheduler

logger = logging.getLogger(__name__)

AUTO_SYNC_KEY = "auto_sync_enabled"


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


_SETTING_PARSERS = {
    "sync_interval_minutes": int,
    "busy_block_subject": str,
    "busy_block_category": str,
    "look_ahead_days": int,
    "look_behind_days": int,
    "mirror_subjects": parse_bool,
    "max_workers": int,
}


def apply_settings(config: SyncConfig, values: Mapping[str, object]) -> SyncConfig:
    """Return a copy of config with recognised keys from values applied.

    Keys may use dashes or underscores; unknown keys are ignored.
    """
    updates = {}
    for raw_key, raw_value in values.items():
        key = raw_key.replace("-", "_")
        parser = _SETTING_PARSERS.get(key)
        if parser is None:
            continue
        try:
            updates[key] = parser(raw_value)
        except ValueError as e:
            raise CalendarSyncError(f"Invalid value for {key}: {raw_value!r}") from e
    return replace(config, **updates)


class SyncManager:
    """Application-level facade over the sync core."""

    def __init__(
        self,
        config: SyncConfig,
        source: CalendarEventSource,
        sink: CalendarEventSink,
        store: StateDatabase,
        registry: CalendarRegistry | None = None,
    ):
        self.config = config
        self.store = store
        self.registry = registry if registry is not None else CalendarRegistry()
        self.orchestrator = SyncOrchestrator(self.registry, source, sink, self.config)
        self.scheduler = AutoSyncScheduler(
            self._auto_sync,
            config.sync_interval_minutes,
            is_busy=lambda: self.orchestrator.is_running,
        )
        self.auto_sync_enabled = False
        self.last_sync: datetime | None = None
        self._store_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    def load(self) -> None:
        """Load calendars, settings and last sync time from the store."""
        settings = self.store.get_settings()
        loaded = apply_settings(self.config, settings)
        # Mutate in place: the orchestrator holds the same config object.
        for f in fields(SyncConfig):
            setattr(self.config, f.name, getattr(loaded, f.name))
        self.scheduler.interval_minutes = self.config.sync_interval_minutes

        try:
            self.auto_sync_enabled = parse_bool(settings.get(AUTO_SYNC_KEY, False))
        except ValueError:
            logger.warning("Ignoring invalid %s setting", AUTO_SYNC_KEY)
            self.auto_sync_enabled = False

        for entry in self.store.load_calendars():
            self.registry.add(entry)

        ts = self.store.last_successful_sync()
        if ts:
            self.last_sync = datetime.fromtimestamp(ts).astimezone()
        logger.debug(
            "Loaded %d calendar(s), auto-sync %s",
            len(self.registry),
            "on" if self.auto_sync_enabled else "off",
        )

    def shutdown(self) -> None:
        self.scheduler.stop()
        with self._store_lock:
            self.store.commit()

    # ------------------------------------------------------------------ #
    # Calendars                                                            #
    # ------------------------------------------------------------------ #

    def discover(self, entries: Iterable[CalendarEntry]) -> list[CalendarEntry]:
        """Merge discovered calendars into the registry and persist them."""
        added = self.registry.merge_discovered(entries)
        self._persist_calendars(self.registry.list())
        return added

    def list_calendars(self) -> list[CalendarEntry]:
        return self.registry.list()

    def set_enabled(self, calendar_id: str, enabled: bool) -> bool:
        result = self.registry.set_enabled(calendar_id, enabled)
        self._persist_calendars([self.registry.get(calendar_id)])
        return result

    def toggle(self, calendar_id: str) -> bool:
        result = self.registry.toggle(calendar_id)
        self._persist_calendars([self.registry.get(calendar_id)])
        return result

    def remove_calendar(self, calendar_id: str) -> None:
        self.registry.remove(calendar_id)
        with self._store_lock:
            self.store.delete_calendar(calendar_id)
            self.store.commit()

    # ------------------------------------------------------------------ #
    # Sync                                                                 #
    # ------------------------------------------------------------------ #

    def sync_now(self, target_date: date | None = None, dry_run: bool = False) -> SyncResult:
        """Run a sync invocation and record its outcome."""
        try:
            result = self.orchestrator.run(target_date, dry_run=dry_run)
        except SyncAlreadyInProgress:
            raise
        except Exception as e:
            self._record(None, SyncStatus.FAILED, str(e))
            raise
        if not dry_run:
            self.last_sync = self.orchestrator.last_sync
        self._record(result, SyncStatus.SUCCEEDED)
        return result

    def clear(self, target_date: date | None = None, dry_run: bool = False) -> SyncResult:
        result = self.orchestrator.clear(target_date, dry_run=dry_run)
        self._record(result, SyncStatus.SUCCEEDED, f"clear: {result.summary()}")
        return result

    def _auto_sync(self) -> None:
        result = self.sync_now()
        logger.info("Auto-sync completed: %s", result.summary())

    # ------------------------------------------------------------------ #
    # Auto-sync and configuration                                          #
    # ------------------------------------------------------------------ #

    def start_auto_sync(self, start_timer: bool = True) -> None:
        """Persist auto-sync as on and, unless start_timer is False, arm the timer."""
        self.auto_sync_enabled = True
        self._save_setting(AUTO_SYNC_KEY, "true")
        if start_timer:
            self.scheduler.start()

    def stop_auto_sync(self) -> None:
        self.auto_sync_enabled = False
        self._save_setting(AUTO_SYNC_KEY, "false")
        self.scheduler.stop()

    def set_sync_interval(self, minutes: int) -> None:
        if minutes <= 0:
            raise CalendarSyncError("Sync interval must be a positive number of minutes")
        self.config.sync_interval_minutes = minutes
        self._save_setting("sync_interval_minutes", minutes)
        self.scheduler.reschedule(minutes)

    def set_busy_block_subject(self, subject: str) -> None:
        if not subject.strip():
            raise CalendarSyncError("Busy-block subject must not be empty")
        self.config.busy_block_subject = subject
        self._save_setting("busy_block_subject", subject)

    def set_look_ahead_days(self, days: int) -> None:
        if days < 0:
            raise CalendarSyncError("Look-ahead days must not be negative")
        self.config.look_ahead_days = days
        self._save_setting("look_ahead_days", days)

    def set_look_behind_days(self, days: int) -> None:
        if days < 0:
            raise CalendarSyncError("Look-behind days must not be negative")
        self.config.look_behind_days = days
        self._save_setting("look_behind_days", days)

    def set_mirror_subjects(self, enabled: bool) -> None:
        self.config.mirror_subjects = enabled
        self._save_setting("mirror_subjects", "true" if enabled else "false")

    def get_configuration(self) -> SyncConfig:
        return replace(self.config)

    def status(self) -> StatusSummary:
        if self.orchestrator.is_running:
            return StatusSummary("Syncing", "Synchronization in progress...", self.last_sync)
        if not self.auto_sync_enabled:
            return StatusSummary("Stopped", "Synchronization disabled", self.last_sync)
        enabled_count = len(self.registry.enabled_ids())
        if enabled_count < 2:
            return StatusSummary("Error", "Need at least 2 enabled calendars", self.last_sync)
        return StatusSummary("Active", f"Monitoring {enabled_count} calendars", self.last_sync)

    # ------------------------------------------------------------------ #
    # Persistence helpers                                                  #
    # ------------------------------------------------------------------ #

    def _persist_calendars(self, entries: Iterable[CalendarEntry]) -> None:
        with self._store_lock:
            self.store.save_calendars(entries)
            self.store.commit()

    def _save_setting(self, key: str, value) -> None:
        with self._store_lock:
            self.store.set_setting(key, value)
            self.store.commit()

    def _record(self, result: SyncResult | None, status: SyncStatus, message: str = "") -> None:
        with self._store_lock:
            self.store.record_run(result, status, message)
            self.store.commit()
