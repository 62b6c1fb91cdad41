"""
Unit tests for busy-block iCal conversion. Skipped when the ICalGLib
GObject typelib is not installed.
"""

from datetime import datetime
from datetime import timezone

import pytest

gi = pytest.importorskip("gi")
try:
    gi.require_version("ICalGLib", "3.0")
    from gi.repository import ICalGLib
except (ValueError, ImportError):
    pytest.skip("ICalGLib typelib not available", allow_module_level=True)

from calendar_busy_sync.models import BusyInterval  # noqa: E402
from calendar_busy_sync.models import IntervalKind  # noqa: E402
from calendar_busy_sync.sanitizer import EventSanitizer  # noqa: E402
from calendar_busy_sync.sanitizer import ical_time_to_datetime  # noqa: E402
from calendar_busy_sync.sanitizer import is_event_cancelled  # noqa: E402
from calendar_busy_sync.sanitizer import is_free_time  # noqa: E402
from calendar_busy_sync.sanitizer import is_private_event  # noqa: E402
from calendar_busy_sync.sanitizer import parse_component  # noqa: E402
from tests.conftest import CAL_A  # noqa: E402
from tests.conftest import CAL_B  # noqa: E402
from tests.conftest import at  # noqa: E402
from tests.conftest import make_event  # noqa: E402


def make_vevent(uid: str, *extra: str, summary: str = "Test Event") -> str:
    """Return a minimal VEVENT iCal string with optional extra property lines."""
    lines = [
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SUMMARY:{summary}",
        "DTSTART:20260302T100000Z",
        "DTEND:20260302T110000Z",
        "DTSTAMP:20260224T000000Z",
        *extra,
        "END:VEVENT",
    ]
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def sanitizer():
    return EventSanitizer("Auto-Sync")


class TestBuildBusyBlock:
    def test_block_carries_marker_and_source(self, sanitizer):
        source = make_event(CAL_A, at(9), at(10), subject="Therapy")
        block = BusyInterval(
            calendar_id=CAL_B,
            start=source.start,
            end=source.end,
            subject="[Auto-Sync] Busy",
            kind=IntervalKind.SYNTHETIC,
            is_private=True,
            source_calendar_id=CAL_A,
        )

        comp = sanitizer.build_busy_block(block, "new-uid")

        assert comp.get_uid() == "new-uid"
        assert comp.get_summary() == "[Auto-Sync] Busy"
        assert sanitizer.is_managed_event(comp)
        assert sanitizer.get_source_calendar(comp) == CAL_A
        assert is_private_event(comp)
        assert not is_free_time(comp)
        assert comp.get_first_property(ICalGLib.PropertyKind.DESCRIPTION_PROPERTY) is None
        assert comp.get_first_property(ICalGLib.PropertyKind.LOCATION_PROPERTY) is None
        assert comp.get_first_component(ICalGLib.ComponentKind.VALARM_COMPONENT) is None

    def test_times_are_written_in_utc(self, sanitizer):
        block = make_event(CAL_B, at(9), at(10))
        comp = sanitizer.build_busy_block(block, "uid")
        raw = comp.as_ical_string()
        expected = at(9).astimezone(timezone.utc).strftime("DTSTART:%Y%m%dT%H%M%SZ")
        assert expected in raw


class TestRecognition:
    def test_user_event_is_not_managed(self, sanitizer):
        comp = parse_component(make_vevent("U1", "CATEGORIES:Work"))
        assert not sanitizer.is_managed_event(comp)
        assert sanitizer.get_source_calendar(comp) is None

    def test_other_category_prefix_is_not_ours(self):
        comp = parse_component(make_vevent("U1", "CATEGORIES:Auto-Sync,Auto-Sync:cal-a"))
        assert not EventSanitizer("Mirror").is_managed_event(comp)
        assert EventSanitizer("Auto-Sync").get_source_calendar(comp) == "cal-a"

    def test_cancelled_and_free_events(self):
        assert is_event_cancelled(parse_component(make_vevent("C", "STATUS:CANCELLED")))
        assert is_free_time(parse_component(make_vevent("F", "TRANSP:TRANSPARENT")))
        assert not is_free_time(parse_component(make_vevent("T", "STATUS:TENTATIVE")))

    @pytest.mark.parametrize("klass", ["PRIVATE", "CONFIDENTIAL"])
    def test_private_classes(self, klass):
        assert is_private_event(parse_component(make_vevent("P", f"CLASS:{klass}")))
        assert not is_private_event(parse_component(make_vevent("P", "CLASS:PUBLIC")))


class TestToInterval:
    def test_original_event(self, sanitizer):
        comp = parse_component(make_vevent("U1", "CLASS:PRIVATE", summary="Dentist"))
        interval = sanitizer.to_interval(comp, CAL_A, at(10), at(11))

        assert interval.kind == IntervalKind.ORIGINAL
        assert interval.source_calendar_id == CAL_A
        assert interval.subject == "Dentist"
        assert interval.is_private
        assert interval.event_id == "U1"

    def test_managed_event_is_synthetic(self, sanitizer):
        comp = parse_component(make_vevent("B1", f"CATEGORIES:Auto-Sync,Auto-Sync:{CAL_B}"))
        interval = sanitizer.to_interval(comp, CAL_A, at(10), at(11))
        assert interval.kind == IntervalKind.SYNTHETIC
        assert interval.source_calendar_id == CAL_B

    @pytest.mark.parametrize("extra", ["STATUS:CANCELLED", "TRANSP:TRANSPARENT"])
    def test_non_blocking_events_are_dropped(self, sanitizer, extra):
        comp = parse_component(make_vevent("X", extra))
        assert sanitizer.to_interval(comp, CAL_A, at(10), at(11)) is None

    def test_zero_length_event_is_dropped(self, sanitizer):
        comp = parse_component(make_vevent("Z"))
        assert sanitizer.to_interval(comp, CAL_A, at(10), at(10)) is None


def test_ical_time_to_datetime_utc():
    t = ICalGLib.Time.new_from_string("20260302T100000Z")
    assert ical_time_to_datetime(t) == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def test_ical_time_to_datetime_all_day_is_local_midnight():
    t = ICalGLib.Time.new_from_string("20260302")
    result = ical_time_to_datetime(t)
    assert (result.year, result.month, result.day, result.hour) == (2026, 3, 2, 0)
    assert result.tzinfo is not None
