"""
Periodic auto-sync trigger backed by an APScheduler background scheduler.
"""

import logging
import threading
from collections.abc import Callable

from apscheduler.events import EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from calendar_busy_sync.models import CalendarSyncError
from calendar_busy_sync.models import SyncAlreadyInProgress

logger = logging.getLogger(__name__)

JOB_ID = "auto-sync"

_SKIPPED = "Auto-sync tick skipped: a sync is already running"


class AutoSyncScheduler:
    """Calls ``trigger`` every ``interval_minutes`` on a background thread.

    A tick that lands while a pass is running is dropped, never queued: the
    job allows a single running instance, and ``is_busy`` catches passes
    started outside the scheduler. After stop() returns no further tick will
    start a pass; a pass already in flight is waited for.
    """

    def __init__(
        self,
        trigger: Callable[[], object],
        interval_minutes: float,
        is_busy: Callable[[], bool] | None = None,
    ):
        self._trigger = trigger
        self._is_busy = is_busy or (lambda: False)
        self.interval_minutes = interval_minutes
        self._lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        """Start, or restart with the current interval."""
        with self._lock:
            self._shutdown()
            scheduler = BackgroundScheduler(daemon=True)
            scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
            scheduler.add_job(
                self._tick,
                trigger=self._interval_trigger(),
                id=JOB_ID,
                name="Calendar busy-time auto-sync",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
                replace_existing=True,
            )
            self._active = True
            scheduler.start()
            self._scheduler = scheduler
        logger.info("Auto-sync started with %s minute interval", self.interval_minutes)

    def stop(self) -> None:
        with self._lock:
            was_active = self._active
            self._shutdown()
        if was_active:
            logger.info("Auto-sync stopped")

    def reschedule(self, interval_minutes: float) -> None:
        """Change the interval; a running schedule restarts its countdown."""
        with self._lock:
            self.interval_minutes = interval_minutes
            if self._scheduler is not None:
                self._scheduler.reschedule_job(JOB_ID, trigger=self._interval_trigger())
                logger.info("Auto-sync interval changed to %s minutes", interval_minutes)

    def _interval_trigger(self) -> IntervalTrigger:
        return IntervalTrigger(minutes=self.interval_minutes)

    def _shutdown(self) -> None:
        # Caller holds _lock. Clearing _active first turns late ticks into no-ops.
        self._active = False
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=True)
            self._scheduler = None

    def _on_max_instances(self, event) -> None:
        if event.job_id == JOB_ID:
            logger.info(_SKIPPED)

    def _tick(self) -> None:
        if not self._active:
            return
        if self._is_busy():
            logger.info(_SKIPPED)
            return
        try:
            self._trigger()
        except SyncAlreadyInProgress:
            logger.info(_SKIPPED)
        except CalendarSyncError as e:
            logger.error("Auto-sync failed: %s", e)
        except Exception:
            logger.exception("Auto-sync failed with an unexpected error")
