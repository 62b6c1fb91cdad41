"""
Unit tests for CalendarRegistry.
"""

import pytest

from calendar_busy_sync.models import CalendarEntry
from calendar_busy_sync.models import CalendarNotFound
from calendar_busy_sync.registry import CalendarRegistry
from tests.conftest import CAL_A
from tests.conftest import CAL_B
from tests.conftest import CAL_C
from tests.conftest import make_registry


def test_unknown_calendar_raises_not_found():
    registry = make_registry(CAL_A)
    with pytest.raises(CalendarNotFound):
        registry.get("missing")
    with pytest.raises(CalendarNotFound):
        registry.set_enabled("missing", True)
    with pytest.raises(CalendarNotFound):
        registry.toggle("missing")
    with pytest.raises(CalendarNotFound):
        registry.remove("missing")


def test_set_enabled_and_toggle():
    registry = make_registry(disabled=(CAL_A, CAL_B))
    assert registry.enabled_ids() == []

    assert registry.set_enabled(CAL_A, True) is True
    assert registry.toggle(CAL_B) is True
    assert sorted(registry.enabled_ids()) == [CAL_A, CAL_B]

    assert registry.toggle(CAL_B) is False
    assert registry.enabled_ids() == [CAL_A]


def test_readers_get_copies():
    """Mutating a returned entry must not change the registry."""
    registry = make_registry(CAL_A)
    entry = registry.get(CAL_A)
    entry.sync_enabled = False
    registry.list()[0].display_name = "changed"

    assert registry.get(CAL_A).sync_enabled is True
    assert registry.get(CAL_A).display_name == "Calendar-A"


def test_enabled_ids_is_a_snapshot():
    registry = make_registry(CAL_A, CAL_B)
    snapshot = registry.enabled_ids()
    registry.set_enabled(CAL_B, False)
    assert snapshot == [CAL_A, CAL_B]


def test_merge_discovered_keeps_sync_flags():
    registry = make_registry(CAL_A, disabled=(CAL_B,))
    added = registry.merge_discovered(
        [
            CalendarEntry(CAL_A, "Work", account="work@example.com"),
            CalendarEntry(CAL_B, "Home"),
            CalendarEntry(CAL_C, "Family", read_only=True),
        ]
    )

    assert [e.id for e in added] == [CAL_C]
    assert registry.get(CAL_A).sync_enabled is True
    assert registry.get(CAL_A).display_name == "Work"
    assert registry.get(CAL_A).account == "work@example.com"
    assert registry.get(CAL_C).read_only is True
    assert registry.get(CAL_C).sync_enabled is False
    assert len(registry) == 3


def test_remove():
    registry = CalendarRegistry([CalendarEntry(CAL_A, "A", sync_enabled=True)])
    registry.remove(CAL_A)
    assert CAL_A not in registry
    assert registry.enabled_ids() == []


def test_list_and_enabled_ids_return_plain_lists():
    registry = make_registry(CAL_A, disabled=(CAL_B,))
    assert type(registry.list()) is list
    assert type(registry.enabled_ids()) is list
    assert CalendarRegistry.enabled_ids.__annotations__["return"] == "list[str]"
