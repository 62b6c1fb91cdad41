"""
SyncOrchestrator drives sync passes against a source/sink backend.
"""

import logging
import threading
from collections.abc import Collection
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date
from datetime import datetime

from calendar_busy_sync.backend import CalendarEventSink
from calendar_busy_sync.backend import CalendarEventSource
from calendar_busy_sync.models import BusyInterval
from calendar_busy_sync.models import CalendarPlan
from calendar_busy_sync.models import CalendarSyncError
from calendar_busy_sync.models import InsufficientCalendars
from calendar_busy_sync.models import SinkOperationFailed
from calendar_busy_sync.models import SourceFetchFailed
from calendar_busy_sync.models import SyncAlreadyInProgress
from calendar_busy_sync.models import SyncConfig
from calendar_busy_sync.models import SyncFailure
from calendar_busy_sync.models import SyncResult
from calendar_busy_sync.models import SyncStatus
from calendar_busy_sync.registry import CalendarRegistry
from calendar_busy_sync.sync.engine import merge_calendars
from calendar_busy_sync.sync.utils import day_window
from calendar_busy_sync.sync.utils import sync_dates


class SyncOrchestrator:
    """Runs one synchronization invocation at a time.

    A pass snapshots the enabled calendars and the configuration when it
    starts; registry or config changes made while it runs apply to the next
    pass only.
    """

    def __init__(
        self,
        registry: CalendarRegistry,
        source: CalendarEventSource,
        sink: CalendarEventSink,
        config: SyncConfig,
    ):
        self.registry = registry
        self.source = source
        self.sink = sink
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.status = SyncStatus.IDLE
        self.last_status = SyncStatus.IDLE
        self.last_sync: datetime | None = None
        self._running = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    # ------------------------------------------------------------------ #
    # Public entry points                                                  #
    # ------------------------------------------------------------------ #

    def run(self, target_date: date | None = None, dry_run: bool = False) -> SyncResult:
        """Synchronize target_date plus the configured look-behind/look-ahead days.

        Raises SyncAlreadyInProgress when another invocation holds the
        running flag and InsufficientCalendars when fewer than two calendars
        are enabled. Collaborator failures are reported in the result.
        """
        if not self._running.acquire(blocking=False):
            raise SyncAlreadyInProgress()
        self.status = SyncStatus.RUNNING
        try:
            result = self._run_locked(target_date or date.today(), dry_run)
        except Exception:
            self.last_status = SyncStatus.FAILED
            raise
        else:
            self.last_status = SyncStatus.SUCCEEDED
            return result
        finally:
            self.status = SyncStatus.IDLE
            self._running.release()

    def clear(
        self,
        target_date: date | None = None,
        calendar_ids: Collection[str] | None = None,
        dry_run: bool = False,
    ) -> SyncResult:
        """Remove every busy-block this tool created in the sync window.

        Defaults to all registered calendars, enabled or not.
        """
        if not self._running.acquire(blocking=False):
            raise SyncAlreadyInProgress()
        self.status = SyncStatus.RUNNING
        try:
            config = replace(self.config)
            if calendar_ids is None:
                calendar_ids = [entry.id for entry in self.registry.list()]
            result = SyncResult(dry_run=dry_run, started_at=datetime.now().astimezone())
            result.target_dates = sync_dates(
                target_date or date.today(), config.look_behind_days, config.look_ahead_days
            )
            for day in result.target_dates:
                window_start, window_end = day_window(day)
                events, _ = self._fetch_all(
                    list(calendar_ids), window_start, window_end, config, result
                )
                plans = {
                    cid: CalendarPlan(
                        calendar_id=cid,
                        to_delete=[ev for ev in evs if ev.is_synthetic],
                    )
                    for cid, evs in events.items()
                }
                self._apply_all(plans, config, result)
            result.finished_at = datetime.now().astimezone()
            self.logger.info("Clear completed: %s", result.summary())
        except Exception:
            self.last_status = SyncStatus.FAILED
            raise
        else:
            self.last_status = SyncStatus.SUCCEEDED
            return result
        finally:
            self.status = SyncStatus.IDLE
            self._running.release()

    # ------------------------------------------------------------------ #
    # Pass internals                                                       #
    # ------------------------------------------------------------------ #

    def _run_locked(self, target_date: date, dry_run: bool) -> SyncResult:
        enabled = self.registry.enabled_ids()
        if len(enabled) < 2:
            raise InsufficientCalendars(len(enabled))

        config = replace(self.config)
        result = SyncResult(dry_run=dry_run, started_at=datetime.now().astimezone())
        result.target_dates = sync_dates(
            target_date, config.look_behind_days, config.look_ahead_days
        )

        for day in result.target_dates:
            self.logger.info(
                "Starting calendar synchronization for %s (%d calendars)",
                day.isoformat(),
                len(enabled),
            )
            self._run_day(day, enabled, config, result)

        result.finished_at = datetime.now().astimezone()
        if not dry_run:
            self.last_sync = result.finished_at
        self.logger.info("Sync completed: %s", result.summary())
        return result

    def _run_day(
        self, day: date, enabled: list[str], config: SyncConfig, result: SyncResult
    ) -> None:
        window_start, window_end = day_window(day)
        events, unavailable = self._fetch_all(enabled, window_start, window_end, config, result)

        plans = merge_calendars(
            events,
            enabled,
            window_start,
            window_end,
            label=config.busy_block_subject,
            mirror_subjects=config.mirror_subjects,
            unavailable_calendar_ids=unavailable,
        )
        for plan in plans.values():
            result.conflicts.extend(plan.conflicts)
            for conflict in plan.conflicts:
                self.logger.warning("Conflict: %s", conflict.describe())

        self._apply_all(plans, config, result)

    def _fetch_one(
        self, calendar_id: str, window_start: datetime, window_end: datetime
    ) -> list[BusyInterval]:
        try:
            events = self.source.list_events(calendar_id, window_start, window_end)
        except CalendarSyncError as e:
            raise SourceFetchFailed(calendar_id, str(e)) from e
        self.logger.debug("Fetched %d event(s) from %s", len(events), calendar_id)
        return events

    def _fetch_all(
        self,
        calendar_ids: list[str],
        window_start: datetime,
        window_end: datetime,
        config: SyncConfig,
        result: SyncResult,
    ) -> tuple[dict[str, list[BusyInterval]], set[str]]:
        """Fetch every calendar concurrently; failed calendars contribute nothing."""
        events: dict[str, list[BusyInterval]] = {}
        unavailable: set[str] = set()
        with ThreadPoolExecutor(
            max_workers=max(config.max_workers, 1), thread_name_prefix="busy-sync-fetch"
        ) as pool:
            futures = {
                cid: pool.submit(self._fetch_one, cid, window_start, window_end)
                for cid in calendar_ids
            }
            for cid, future in futures.items():
                try:
                    events[cid] = future.result()
                except SourceFetchFailed as e:
                    self.logger.warning("%s; continuing without it", e)
                    result.warnings.append(str(e))
                    events[cid] = []
                    unavailable.add(cid)
        return events, unavailable

    def _apply_all(
        self, plans: dict[str, CalendarPlan], config: SyncConfig, result: SyncResult
    ) -> None:
        if result.dry_run:
            for plan in plans.values():
                for block in plan.to_delete:
                    self.logger.info(
                        "[DRY RUN] Would DELETE busy-block %s in %s",
                        block.event_id,
                        plan.calendar_id,
                    )
                for block in plan.to_create:
                    self.logger.info(
                        "[DRY RUN] Would CREATE busy-block %s-%s in %s (from %s)",
                        block.start.strftime("%H:%M"),
                        block.end.strftime("%H:%M"),
                        plan.calendar_id,
                        block.source_calendar_id,
                    )
                result.blocks_removed += len(plan.to_delete)
                result.blocks_created += len(plan.to_create)
            return

        pending = [plan for plan in plans.values() if not plan.is_empty]
        if not pending:
            return
        with ThreadPoolExecutor(
            max_workers=max(config.max_workers, 1), thread_name_prefix="busy-sync-apply"
        ) as pool:
            futures = [pool.submit(self._apply_plan, plan) for plan in pending]
            for future in futures:
                created, removed, failures = future.result()
                result.blocks_created += created
                result.blocks_removed += removed
                result.failures.extend(failures)

    def _apply_plan(self, plan: CalendarPlan) -> tuple[int, int, list[SyncFailure]]:
        """Apply one calendar's plan: every delete finishes before any create."""
        cid = plan.calendar_id
        created = removed = 0
        failures: list[SyncFailure] = []

        for block in plan.to_delete:
            try:
                if not block.event_id:
                    raise CalendarSyncError("busy-block has no event id")
                self.sink.delete_event(cid, block.event_id)
                removed += 1
                self.logger.debug("Removed busy-block %s from %s", block.event_id, cid)
            except CalendarSyncError as e:
                failure = SinkOperationFailed(cid, "delete", str(e))
                self.logger.error("%s", failure)
                failures.append(SyncFailure(cid, failure.operation, failure.detail))

        for block in plan.to_create:
            try:
                event_id = self.sink.create_busy_block(cid, block)
                created += 1
                self.logger.debug(
                    "Created busy-block %s in %s (%s-%s from %s)",
                    event_id,
                    cid,
                    block.start.strftime("%H:%M"),
                    block.end.strftime("%H:%M"),
                    block.source_calendar_id,
                )
            except CalendarSyncError as e:
                failure = SinkOperationFailed(cid, "create", str(e))
                self.logger.error("%s", failure)
                failures.append(SyncFailure(cid, failure.operation, failure.detail))

        return created, removed, failures
