"""
Integration tests: SyncManager with a real SQLite StateDatabase and the
in-memory FakeCalendarBackend.
"""

import pytest

from calendar_busy_sync.db import StateDatabase
from calendar_busy_sync.manager import SyncManager
from calendar_busy_sync.manager import apply_settings
from calendar_busy_sync.manager import parse_bool
from calendar_busy_sync.models import CalendarEntry
from calendar_busy_sync.models import CalendarSyncError
from calendar_busy_sync.models import InsufficientCalendars
from calendar_busy_sync.models import SyncConfig
from tests.conftest import CAL_A
from tests.conftest import CAL_B
from tests.conftest import CAL_C
from tests.conftest import TEST_DAY
from tests.conftest import at
from tests.conftest import make_event

DISCOVERED = [
    CalendarEntry(CAL_A, "Work", account="work@example.com"),
    CalendarEntry(CAL_B, "Personal"),
    CalendarEntry(CAL_C, "Family"),
]


def _manager(db: StateDatabase, backend, **config) -> SyncManager:
    manager = SyncManager(SyncConfig(state_db_path=db.db_path, **config), backend, backend, db)
    manager.load()
    return manager


@pytest.fixture
def manager(state_db, backend):
    manager = _manager(state_db, backend)
    yield manager
    manager.shutdown()


class TestPersistence:
    def test_enabled_flags_survive_reload(self, db_path, backend):
        with StateDatabase(db_path) as db:
            manager = _manager(db, backend)
            manager.discover(DISCOVERED)
            manager.set_enabled(CAL_A, True)
            manager.toggle(CAL_B)
            manager.shutdown()

        with StateDatabase(db_path) as db:
            reloaded = _manager(db, backend)
            assert sorted(reloaded.registry.enabled_ids()) == [CAL_A, CAL_B]
            assert reloaded.registry.get(CAL_A).account == "work@example.com"

    def test_settings_survive_reload(self, db_path, backend):
        with StateDatabase(db_path) as db:
            manager = _manager(db, backend)
            manager.set_sync_interval(30)
            manager.set_busy_block_subject("Blocked")
            manager.set_look_ahead_days(3)
            manager.set_look_behind_days(1)
            manager.set_mirror_subjects(True)
            manager.start_auto_sync(start_timer=False)
            manager.shutdown()

        with StateDatabase(db_path) as db:
            reloaded = _manager(db, backend)
            config = reloaded.get_configuration()
            assert config.sync_interval_minutes == 30
            assert config.busy_block_subject == "Blocked"
            assert (config.look_ahead_days, config.look_behind_days) == (3, 1)
            assert config.mirror_subjects is True
            assert reloaded.auto_sync_enabled is True
            assert reloaded.scheduler.interval_minutes == 30

    def test_stored_settings_override_defaults(self, state_db, backend):
        state_db.set_setting("busy_block_subject", "From DB")
        manager = _manager(state_db, backend, busy_block_subject="From INI", look_ahead_days=2)
        assert manager.config.busy_block_subject == "From DB"
        assert manager.config.look_ahead_days == 2

    def test_discover_keeps_existing_flags(self, manager):
        manager.discover(DISCOVERED)
        manager.set_enabled(CAL_C, True)
        added = manager.discover(DISCOVERED)
        assert added == []
        assert manager.registry.get(CAL_C).sync_enabled is True

    def test_remove_calendar(self, manager, state_db):
        manager.discover(DISCOVERED)
        manager.remove_calendar(CAL_C)
        assert CAL_C not in [e.id for e in state_db.load_calendars()]


class TestSync:
    def test_sync_now_records_history(self, manager, backend, state_db):
        manager.discover(DISCOVERED[:2])
        manager.set_enabled(CAL_A, True)
        manager.set_enabled(CAL_B, True)
        backend.add_event(make_event(CAL_A, at(9), at(10)))

        result = manager.sync_now(TEST_DAY)

        assert result.blocks_created == 1
        assert manager.last_sync == result.finished_at
        [row] = state_db.recent_runs()
        assert row["status"] == "succeeded"
        assert row["blocks_created"] == 1

    def test_dry_run_does_not_touch_last_sync(self, manager, backend):
        manager.discover(DISCOVERED[:2])
        manager.set_enabled(CAL_A, True)
        manager.set_enabled(CAL_B, True)
        backend.add_event(make_event(CAL_A, at(9), at(10)))

        manager.sync_now(TEST_DAY, dry_run=True)

        assert manager.last_sync is None
        assert backend.creates == []

    def test_failed_precondition_is_recorded_and_raised(self, manager, state_db):
        manager.discover(DISCOVERED)
        manager.set_enabled(CAL_A, True)

        with pytest.raises(InsufficientCalendars):
            manager.sync_now(TEST_DAY)

        [row] = state_db.recent_runs()
        assert row["status"] == "failed"
        assert "At least 2 calendars" in row["message"]

    def test_clear_is_recorded(self, manager, state_db):
        manager.discover(DISCOVERED[:2])
        result = manager.clear(TEST_DAY)
        assert result.blocks_removed == 0
        assert state_db.recent_runs()[0]["message"].startswith("clear:")


class TestConfiguration:
    @pytest.mark.parametrize(
        "setter, value",
        [
            ("set_sync_interval", 0),
            ("set_busy_block_subject", "   "),
            ("set_look_ahead_days", -1),
            ("set_look_behind_days", -2),
        ],
    )
    def test_invalid_values_are_rejected(self, manager, setter, value):
        with pytest.raises(CalendarSyncError):
            getattr(manager, setter)(value)

    def test_interval_change_restarts_running_timer(self, manager):
        manager.start_auto_sync()
        manager.set_sync_interval(5)
        assert manager.scheduler.is_active
        assert manager.scheduler.interval_minutes == 5
        manager.stop_auto_sync()
        assert not manager.scheduler.is_active

    def test_get_configuration_returns_a_copy(self, manager):
        config = manager.get_configuration()
        config.busy_block_subject = "changed"
        assert manager.config.busy_block_subject == "[Auto-Sync] Busy"

    def test_apply_settings_parses_ini_strings(self):
        config = apply_settings(
            SyncConfig(),
            {
                "sync-interval-minutes": "20",
                "look_ahead_days": "2",
                "mirror_subjects": "yes",
                "unrelated": "ignored",
            },
        )
        assert config.sync_interval_minutes == 20
        assert config.look_ahead_days == 2
        assert config.mirror_subjects is True

    def test_apply_settings_rejects_bad_numbers(self):
        with pytest.raises(CalendarSyncError, match="sync_interval_minutes"):
            apply_settings(SyncConfig(), {"sync_interval_minutes": "soon"})

    @pytest.mark.parametrize("raw, expected", [("on", True), ("0", False), (True, True)])
    def test_parse_bool(self, raw, expected):
        assert parse_bool(raw) is expected


class TestStatus:
    def test_stopped_when_auto_sync_is_off(self, manager):
        status = manager.status()
        assert (status.state, status.message) == ("Stopped", "Synchronization disabled")

    def test_error_when_too_few_calendars(self, manager):
        manager.discover(DISCOVERED)
        manager.set_enabled(CAL_A, True)
        manager.start_auto_sync(start_timer=False)
        status = manager.status()
        assert (status.state, status.message) == ("Error", "Need at least 2 enabled calendars")

    def test_active_counts_enabled_calendars(self, manager):
        manager.discover(DISCOVERED)
        for cid in (CAL_A, CAL_B, CAL_C):
            manager.set_enabled(cid, True)
        manager.start_auto_sync(start_timer=False)
        status = manager.status()
        assert (status.state, status.message) == ("Active", "Monitoring 3 calendars")
