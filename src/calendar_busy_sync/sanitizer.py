"""
iCal conversion for busy-blocks: builds sanitized VEVENTs and reads events back.
"""

import logging
from datetime import datetime
from datetime import timezone

import gi

gi.require_version("ICalGLib", "3.0")
from gi.repository import ICalGLib

from calendar_busy_sync.models import DEFAULT_BUSY_CATEGORY
from calendar_busy_sync.models import BusyInterval
from calendar_busy_sync.models import IntervalKind
from calendar_busy_sync.models import InvalidInterval

logger = logging.getLogger(__name__)

_PRIVATE_CLASSES = ("PRIVATE", "CONFIDENTIAL")


def parse_component(obj) -> ICalGLib.Component:
    """Handle both string and native Component objects from EDS API."""
    if isinstance(obj, str):
        return ICalGLib.Component.new_from_string(obj)
    return obj


def _vevent(comp: ICalGLib.Component) -> ICalGLib.Component | None:
    if comp.isa() == ICalGLib.ComponentKind.VCALENDAR_COMPONENT:
        return comp.get_first_component(ICalGLib.ComponentKind.VEVENT_COMPONENT)
    return comp


def _property_value(comp: ICalGLib.Component, kind: ICalGLib.PropertyKind) -> str:
    prop = comp.get_first_property(kind)
    if not prop:
        return ""
    return (prop.get_value_as_string() or "").strip().upper()


def is_event_cancelled(comp: ICalGLib.Component) -> bool:
    """Return True if the event's STATUS is CANCELLED."""
    event = _vevent(comp)
    if not event:
        return False
    return _property_value(event, ICalGLib.PropertyKind.STATUS_PROPERTY) == "CANCELLED"


def is_free_time(comp: ICalGLib.Component) -> bool:
    """Return True if the event is transparent (does not block time).

    The iCal default (no TRANSP property) is OPAQUE, which blocks time.
    Tentative events are OPAQUE and therefore count as busy.
    """
    event = _vevent(comp)
    if not event:
        return False
    return _property_value(event, ICalGLib.PropertyKind.TRANSP_PROPERTY) == "TRANSPARENT"


def is_private_event(comp: ICalGLib.Component) -> bool:
    event = _vevent(comp)
    if not event:
        return False
    return _property_value(event, ICalGLib.PropertyKind.CLASS_PROPERTY) in _PRIVATE_CLASSES


def ical_time_to_datetime(t: ICalGLib.Time) -> datetime:
    """Convert an ICalGLib.Time to an aware datetime in local time.

    All-day values map to local midnight; floating times are read as local.
    """
    if t.is_date():
        return datetime(t.get_year(), t.get_month(), t.get_day()).astimezone()
    zone = t.get_timezone()
    if t.is_utc():
        zone = ICalGLib.Timezone.get_utc_timezone()
    if zone is None:
        return datetime(
            t.get_year(), t.get_month(), t.get_day(),
            t.get_hour(), t.get_minute(), t.get_second(),
        ).astimezone()
    return datetime.fromtimestamp(t.as_timet_with_zone(zone), tz=timezone.utc).astimezone()


def _utc_stamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


class EventSanitizer:
    """Builds and recognises the busy-blocks this tool writes.

    A busy-block carries two CATEGORIES values: the configured marker
    category and ``<category>:<source calendar id>``.
    """

    def __init__(self, category: str = DEFAULT_BUSY_CATEGORY):
        self.category = category

    def _categories(self, comp: ICalGLib.Component) -> list[str]:
        # X-properties and COMMENT are stripped by Microsoft 365, so provenance
        # lives in CATEGORIES.
        values = []
        prop = comp.get_first_property(ICalGLib.PropertyKind.CATEGORIES_PROPERTY)
        while prop:
            categories = prop.get_categories()
            if categories:
                values.extend(c.strip() for c in categories.split(","))
            prop = comp.get_next_property(ICalGLib.PropertyKind.CATEGORIES_PROPERTY)
        return values

    def is_managed_event(self, comp: ICalGLib.Component) -> bool:
        """Check if an event was created by this tool."""
        event = _vevent(comp)
        return bool(event) and self.category in self._categories(event)

    def get_source_calendar(self, comp: ICalGLib.Component) -> str | None:
        event = _vevent(comp)
        if not event:
            return None
        prefix = f"{self.category}:"
        for value in self._categories(event):
            if value.startswith(prefix) and len(value) > len(prefix):
                return value[len(prefix):]
        return None

    def build_busy_block(self, interval: BusyInterval, uid: str) -> ICalGLib.Component:
        """
        Build a standalone VEVENT for a busy-block.

        Only time bounds and the subject are carried over: no description,
        location, attendees, organizer or alarms. The block is marked
        CLASS:PRIVATE and TRANSP:OPAQUE.
        """
        event = ICalGLib.Component.new_vevent()
        event.add_property(ICalGLib.Property.new_uid(uid))
        event.add_property(ICalGLib.Property.new_summary(interval.subject))
        event.add_property(ICalGLib.Property.new_from_string(
            f"DTSTAMP:{_utc_stamp(datetime.now(timezone.utc))}"
        ))
        event.add_property(ICalGLib.Property.new_from_string(
            f"DTSTART:{_utc_stamp(interval.start)}"
        ))
        event.add_property(ICalGLib.Property.new_from_string(
            f"DTEND:{_utc_stamp(interval.end)}"
        ))
        event.add_property(ICalGLib.Property.new_from_string("TRANSP:OPAQUE"))
        event.add_property(ICalGLib.Property.new_from_string("CLASS:PRIVATE"))
        event.add_property(ICalGLib.Property.new_categories(self.category))
        event.add_property(ICalGLib.Property.new_categories(
            f"{self.category}:{interval.source_calendar_id}"
        ))
        return event

    def to_interval(
        self,
        comp: ICalGLib.Component,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> BusyInterval | None:
        """
        Convert one event instance to a BusyInterval.

        Returns None for free, cancelled and zero-length events.
        """
        event = _vevent(comp)
        if not event or is_event_cancelled(event) or is_free_time(event):
            return None

        uid = event.get_uid()
        kind = IntervalKind.ORIGINAL
        source_calendar_id = None
        if self.is_managed_event(event):
            kind = IntervalKind.SYNTHETIC
            source_calendar_id = self.get_source_calendar(event)
            if source_calendar_id is None:
                logger.warning("Busy-block %s in %s has no source marker", uid, calendar_id)
                source_calendar_id = calendar_id

        try:
            return BusyInterval(
                calendar_id=calendar_id,
                start=start,
                end=end,
                subject=event.get_summary() or "",
                kind=kind,
                is_private=is_private_event(event),
                source_calendar_id=source_calendar_id,
                event_id=uid,
            )
        except InvalidInterval as e:
            logger.debug("Skipping event %s: %s", uid, e)
            return None
