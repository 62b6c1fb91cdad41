"""
Evolution Data Server calendar connectivity wrapper.
"""

import logging
import threading
import uuid
from datetime import datetime
from datetime import timezone

import gi

gi.require_version("EDataServer", "1.2")
gi.require_version("ECal", "2.0")
gi.require_version("ICalGLib", "3.0")
from gi.repository import ECal
from gi.repository import EDataServer
from gi.repository import GLib
from gi.repository import ICalGLib

from calendar_busy_sync.models import DEFAULT_BUSY_CATEGORY
from calendar_busy_sync.models import BackendError
from calendar_busy_sync.models import BusyInterval
from calendar_busy_sync.models import CalendarEntry
from calendar_busy_sync.models import CalendarSyncError
from calendar_busy_sync.sanitizer import EventSanitizer
from calendar_busy_sync.sanitizer import ical_time_to_datetime
from calendar_busy_sync.sanitizer import parse_component

logger = logging.getLogger(__name__)


def _parent_display_name(registry: EDataServer.SourceRegistry, source) -> str:
    parent_uid = source.get_parent()
    if not parent_uid:
        return ""
    parent_source = registry.ref_source(parent_uid)
    if not parent_source:
        return ""
    return parent_source.get_display_name() or ""


def get_calendar_display_info(
    registry: EDataServer.SourceRegistry, calendar_uid: str
) -> tuple[str, str, str]:
    """
    Get human-readable information about a calendar.

    Returns:
        Tuple of (display_name, account_name, uid)
    """
    source = registry.ref_source(calendar_uid)
    if not source:
        return ("Unknown Calendar", "", calendar_uid)
    display_name = source.get_display_name() or "Unnamed Calendar"
    return (display_name, _parent_display_name(registry, source), calendar_uid)


def list_eds_calendars(
    registry: EDataServer.SourceRegistry, probe_readonly: bool = False
) -> list[CalendarEntry]:
    """Enumerate every enabled EDS calendar source as a CalendarEntry.

    With probe_readonly each calendar is connected to find out whether it
    accepts writes; calendars that fail to connect are reported as read-only.
    """
    entries = []
    for source in registry.list_sources(EDataServer.SOURCE_EXTENSION_CALENDAR):
        if not source.get_enabled():
            continue
        read_only = False
        if probe_readonly:
            try:
                client = ECal.Client.connect_sync(source, ECal.ClientSourceType.EVENTS, 5, None)
                read_only = client.is_readonly()
            except GLib.Error as e:
                logger.debug("Cannot probe %s: %s", source.get_uid(), e.message)
                read_only = True
        entries.append(
            CalendarEntry(
                id=source.get_uid(),
                display_name=source.get_display_name() or "(unnamed)",
                account=_parent_display_name(registry, source),
                read_only=read_only,
            )
        )
    return entries


def _sexp_time(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def connect_registry() -> EDataServer.SourceRegistry:
    try:
        return EDataServer.SourceRegistry.new_sync(None)
    except GLib.Error as e:
        raise BackendError(f"EDS registry unreachable: {e.message}") from e


class EDSCalendarClient:
    """Wrapper for Evolution Data Server calendar operations."""

    def __init__(self, registry: EDataServer.SourceRegistry, calendar_uid: str):
        self.registry = registry
        self.calendar_uid = calendar_uid
        self.client: ECal.Client | None = None

    def connect(self, timeout: int = 10):
        """Connect to the specified calendar in EDS."""
        source = self.registry.ref_source(self.calendar_uid)
        if not source:
            raise CalendarSyncError(f"Calendar with UID '{self.calendar_uid}' not found in EDS")

        try:
            self.client = ECal.Client.connect_sync(
                source, ECal.ClientSourceType.EVENTS, timeout, None
            )
        except GLib.Error as e:
            raise BackendError(
                f"Failed to connect to calendar {self.calendar_uid}: {e.message}"
            ) from e

    def _require_client(self) -> ECal.Client:
        if not self.client:
            raise CalendarSyncError("Client not connected")
        return self.client

    def get_events_in_range(
        self, window_start: datetime, window_end: datetime
    ) -> list[tuple[ICalGLib.Component, datetime, datetime]]:
        """
        Return (component, start, end) for every event instance in the window.

        Recurring events are expanded by EDS into one entry per occurrence,
        detached exceptions included.
        """
        client = self._require_client()
        sexp = (
            f'(occur-in-time-range? (make-time "{_sexp_time(window_start)}") '
            f'(make-time "{_sexp_time(window_end)}"))'
        )
        try:
            _, comps = client.get_object_list_as_comps_sync(sexp, None)
        except GLib.Error as e:
            raise BackendError(f"Failed to fetch events: {e.message}") from e

        instances = []

        def collect(icomp, instance_start, instance_end, *args):
            instances.append(
                (
                    icomp.clone(),
                    ical_time_to_datetime(instance_start),
                    ical_time_to_datetime(instance_end),
                )
            )
            return True

        # The end bound is exclusive; the window end is the last millisecond of the day.
        start_t = int(window_start.timestamp())
        end_t = int(window_end.timestamp()) + 1
        for comp in comps:
            comp = parse_component(comp)
            # Detached instances are expanded together with their master.
            if comp.get_first_property(ICalGLib.PropertyKind.RECURRENCEID_PROPERTY):
                continue
            try:
                client.generate_instances_for_object_sync(
                    comp, start_t, end_t, None, collect, None
                )
            except GLib.Error as e:
                raise BackendError(
                    f"Failed to expand event {comp.get_uid()}: {e.message}"
                ) from e
        return instances

    def get_all_events(self) -> list[ICalGLib.Component]:
        """Retrieve all events from the calendar."""
        client = self._require_client()
        try:
            # "#t" (boolean true) is the correct sexp for "all events".
            _, objects = client.get_object_list_sync("#t", None)
        except GLib.Error as e:
            raise BackendError(f"Failed to fetch events: {e.message}") from e
        return [parse_component(obj) for obj in objects]

    def create_event(self, component: ICalGLib.Component) -> str:
        """Create a new event in the calendar."""
        client = self._require_client()
        try:
            success, out_uid = client.create_object_sync(
                component, ECal.OperationFlags.NONE, None
            )
        except GLib.Error as e:
            raise BackendError(f"Failed to create event: {e.message}") from e
        if not success:
            raise BackendError("Failed to create event")
        return out_uid or component.get_uid()

    def remove_event(self, uid: str):
        """Remove an event from the calendar."""
        client = self._require_client()
        try:
            success = client.remove_object_sync(
                uid,
                None,  # rid (recurrence-id)
                ECal.ObjModType.THIS,
                ECal.OperationFlags.NONE,
                None,  # cancellable
            )
        except GLib.Error as e:
            raise BackendError(f"Failed to remove event {uid}: {e.message}") from e
        if not success:
            raise BackendError(f"Failed to remove event {uid}")


class EDSCalendarBackend:
    """Event source and sink over EDS, one lazily connected client per calendar."""

    def __init__(
        self,
        registry: EDataServer.SourceRegistry | None = None,
        category: str = DEFAULT_BUSY_CATEGORY,
        timeout: int = 10,
    ):
        self._registry = registry
        self.sanitizer = EventSanitizer(category)
        self.timeout = timeout
        self._clients: dict[str, EDSCalendarClient] = {}
        self._lock = threading.Lock()

    @property
    def registry(self) -> EDataServer.SourceRegistry:
        """The EDS source registry, connected on first use."""
        if self._registry is None:
            self._registry = connect_registry()
        return self._registry

    def client_for(self, calendar_id: str) -> EDSCalendarClient:
        with self._lock:
            client = self._clients.get(calendar_id)
            if client is None:
                client = EDSCalendarClient(self.registry, calendar_id)
                client.connect(self.timeout)
                self._clients[calendar_id] = client
                logger.debug("Connected to calendar %s", calendar_id)
            return client

    def list_events(
        self, calendar_id: str, window_start: datetime, window_end: datetime
    ) -> list[BusyInterval]:
        client = self.client_for(calendar_id)
        events = []
        for comp, start, end in client.get_events_in_range(window_start, window_end):
            interval = self.sanitizer.to_interval(comp, calendar_id, start, end)
            if interval is not None:
                events.append(interval)
        return events

    def create_busy_block(self, calendar_id: str, interval: BusyInterval) -> str:
        client = self.client_for(calendar_id)
        comp = self.sanitizer.build_busy_block(interval, str(uuid.uuid4()))
        return client.create_event(comp)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self.client_for(calendar_id).remove_event(event_id)
