"""
Sync core: merge engine, pass orchestrator and auto-sync scheduler.
"""

from calendar_busy_sync.sync.engine import merge_calendars
from calendar_busy_sync.sync.engine import plan_calendar
from calendar_busy_sync.sync.orchestrator import SyncOrchestrator
from calendar_busy_sync.sync.scheduler import AutoSyncScheduler

__all__ = ["AutoSyncScheduler", "SyncOrchestrator", "merge_calendars", "plan_calendar"]
