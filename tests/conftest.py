"""
Shared pytest fixtures and interval helpers.
"""

from datetime import date
from datetime import datetime
from datetime import time

import pytest

from calendar_busy_sync.db import StateDatabase
from calendar_busy_sync.models import BusyInterval
from calendar_busy_sync.models import CalendarEntry
from calendar_busy_sync.models import IntervalKind
from calendar_busy_sync.models import SyncConfig
from calendar_busy_sync.registry import CalendarRegistry
from calendar_busy_sync.sync.orchestrator import SyncOrchestrator
from calendar_busy_sync.sync.utils import day_window
from tests.fake_backend import FakeCalendarBackend

CAL_A = "calendar-a"
CAL_B = "calendar-b"
CAL_C = "calendar-c"

TEST_DAY = date(2026, 3, 2)


def at(hour: int, minute: int = 0, day: date = TEST_DAY) -> datetime:
    """Aware local datetime on the test day."""
    return datetime.combine(day, time(hour, minute)).astimezone()


def window(day: date = TEST_DAY) -> tuple[datetime, datetime]:
    return day_window(day)


def make_event(
    calendar_id: str,
    start: datetime,
    end: datetime,
    subject: str = "Meeting",
    private: bool = False,
    event_id: str | None = None,
) -> BusyInterval:
    """Return a real (ORIGINAL) event."""
    return BusyInterval(
        calendar_id=calendar_id,
        start=start,
        end=end,
        subject=subject,
        is_private=private,
        event_id=event_id,
    )


def make_block(
    calendar_id: str,
    source_calendar_id: str,
    start: datetime,
    end: datetime,
    event_id: str | None = None,
) -> BusyInterval:
    """Return a busy-block previously written by the tool."""
    return BusyInterval(
        calendar_id=calendar_id,
        start=start,
        end=end,
        subject="[Auto-Sync] Busy",
        kind=IntervalKind.SYNTHETIC,
        is_private=True,
        source_calendar_id=source_calendar_id,
        event_id=event_id,
    )


def make_registry(*enabled: str, disabled: tuple[str, ...] = ()) -> CalendarRegistry:
    entries = [CalendarEntry(cid, cid.title(), sync_enabled=True) for cid in enabled]
    entries += [CalendarEntry(cid, cid.title(), sync_enabled=False) for cid in disabled]
    return CalendarRegistry(entries)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def state_db(db_path):
    with StateDatabase(db_path) as db:
        yield db


@pytest.fixture
def sync_config(db_path):
    return SyncConfig(state_db_path=db_path, max_workers=2)


@pytest.fixture
def backend():
    return FakeCalendarBackend()


@pytest.fixture
def registry():
    return make_registry(CAL_A, CAL_B)


@pytest.fixture
def orchestrator(registry, backend, sync_config):
    return SyncOrchestrator(registry, backend, backend, sync_config)
