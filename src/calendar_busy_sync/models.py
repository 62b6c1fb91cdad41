"""
Pure data models, no EDS or sqlite imports.
"""

from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import date
from datetime import datetime
from enum import Enum
from pathlib import Path

DEFAULT_STATE_DB = Path.home() / ".local/share/calendar-busy-sync-state.db"
DEFAULT_CONFIG = Path.home() / ".config/calendar-busy-sync.conf"

DEFAULT_BUSY_SUBJECT = "[Auto-Sync] Busy"
DEFAULT_BUSY_CATEGORY = "Auto-Sync"
DEFAULT_SYNC_INTERVAL_MINUTES = 15


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class InvalidInterval(CalendarSyncError):
    """An interval whose start is not strictly before its end."""

    pass


class InsufficientCalendars(CalendarSyncError):
    """Fewer than two calendars are enabled for synchronization."""

    def __init__(self, enabled_count: int):
        super().__init__(
            f"At least 2 calendars must be enabled for synchronization "
            f"({enabled_count} enabled)"
        )
        self.enabled_count = enabled_count


class SyncAlreadyInProgress(CalendarSyncError):
    """A pass was requested while another one is running."""

    def __init__(self):
        super().__init__("Sync already in progress")


class CalendarNotFound(CalendarSyncError):
    """The calendar id is not known to the registry."""

    def __init__(self, calendar_id: str):
        super().__init__(f"Calendar not found: {calendar_id}")
        self.calendar_id = calendar_id


class BackendError(CalendarSyncError):
    """Network, authentication or server failure reported by a calendar backend."""

    pass


class SourceFetchFailed(CalendarSyncError):
    """Events could not be read from a calendar."""

    def __init__(self, calendar_id: str, detail: str):
        super().__init__(f"Failed to fetch events from {calendar_id}: {detail}")
        self.calendar_id = calendar_id
        self.detail = detail


class SinkOperationFailed(CalendarSyncError):
    """A create or delete request against a calendar failed."""

    def __init__(self, calendar_id: str, operation: str, detail: str):
        super().__init__(f"Failed to {operation} in {calendar_id}: {detail}")
        self.calendar_id = calendar_id
        self.operation = operation
        self.detail = detail


class IntervalKind(str, Enum):
    ORIGINAL = "original"
    SYNTHETIC = "synthetic"


class SyncStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class BusyInterval:
    """A time-bounded busy interval and where it came from.

    ``source_calendar_id`` is the calendar whose event the interval mirrors.
    For original events it is the owning calendar itself.
    """

    calendar_id: str
    start: datetime
    end: datetime
    subject: str = ""
    kind: IntervalKind = IntervalKind.ORIGINAL
    is_private: bool = False
    source_calendar_id: str | None = None
    event_id: str | None = None

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidInterval(
                f"Interval times must be timezone-aware (calendar {self.calendar_id})"
            )
        if self.start >= self.end:
            raise InvalidInterval(
                f"Interval start {self.start.isoformat()} is not before "
                f"end {self.end.isoformat()} (calendar {self.calendar_id})"
            )
        if self.source_calendar_id is None:
            object.__setattr__(self, "source_calendar_id", self.calendar_id)

    @property
    def is_synthetic(self) -> bool:
        return self.kind == IntervalKind.SYNTHETIC

    @property
    def bounds(self) -> tuple[datetime, datetime]:
        return (self.start, self.end)

    @property
    def provenance(self) -> tuple[str, datetime, datetime]:
        """(source calendar, start, end): the identity of a busy-block."""
        return (self.source_calendar_id, self.start, self.end)

    def with_event_id(self, event_id: str | None) -> "BusyInterval":
        return replace(self, event_id=event_id)


@dataclass
class CalendarEntry:
    """Registry record for one calendar."""

    id: str
    display_name: str
    sync_enabled: bool = False
    account: str = ""
    read_only: bool = False


@dataclass(frozen=True)
class ConflictReport:
    """An overlap between a mirrored interval and a real event in the target."""

    calendar_id: str
    start: datetime
    end: datetime
    with_subject: str
    source_calendar_id: str

    def describe(self) -> str:
        return (
            f"{self.start:%H:%M}-{self.end:%H:%M} conflict in {self.calendar_id} "
            f"with '{self.with_subject}' (busy in {self.source_calendar_id})"
        )


@dataclass
class CalendarPlan:
    """Merge engine output for one target calendar."""

    calendar_id: str
    to_create: list[BusyInterval] = field(default_factory=list)
    to_delete: list[BusyInterval] = field(default_factory=list)
    conflicts: list[ConflictReport] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_delete


@dataclass
class SyncConfig:
    """Configuration for the sync manager."""

    state_db_path: Path = field(default_factory=lambda: DEFAULT_STATE_DB)
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    busy_block_subject: str = DEFAULT_BUSY_SUBJECT
    busy_block_category: str = DEFAULT_BUSY_CATEGORY
    look_ahead_days: int = 0
    look_behind_days: int = 0
    mirror_subjects: bool = False  # copy non-private subjects instead of the label
    max_workers: int = 4


@dataclass
class SyncFailure:
    """One failed collaborator operation inside a pass."""

    calendar_id: str
    operation: str  # 'fetch', 'create', 'delete'
    detail: str


@dataclass
class SyncResult:
    """Result of a sync invocation (one or more daily passes)."""

    blocks_created: int = 0
    blocks_removed: int = 0
    conflicts: list[ConflictReport] = field(default_factory=list)
    failures: list[SyncFailure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    target_dates: list[date] = field(default_factory=list)
    dry_run: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def summary(self) -> str:
        verb = "would be " if self.dry_run else ""
        parts = [
            f"{self.blocks_created} blocks {verb}created",
            f"{self.blocks_removed} blocks {verb}removed",
        ]
        if self.conflicts:
            parts.append(f"{len(self.conflicts)} conflicts")
        if self.failures:
            parts.append(f"{len(self.failures)} failures")
        return ", ".join(parts)


@dataclass
class StatusSummary:
    state: str  # 'Syncing', 'Stopped', 'Error', 'Active'
    message: str
    last_sync: datetime | None = None
