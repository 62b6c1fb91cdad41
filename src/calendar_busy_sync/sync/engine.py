"""
Merge engine: computes busy-block changes for every enabled calendar.

Pure functions only: the orchestrator fetches events, calls
merge_calendars() and applies the returned plans.

For each target calendar T the engine mirrors every ORIGINAL event of every
other enabled calendar S as a SYNTHETIC block in T, unless:

  * the event overlaps a real (ORIGINAL) event already in T; that is a
    conflict and is reported, never covered;
  * T already holds a synthetic block with exactly the same bounds.

Events reaching past the window are mirrored only for the part inside it, so
a block never extends over time whose real events in T were not examined.

Synthetic blocks in T whose (source calendar, start, end) no longer matches
a mirrorable event are scheduled for deletion.
"""

import logging
from collections.abc import Collection
from collections.abc import Iterable
from collections.abc import Mapping
from datetime import datetime

from calendar_busy_sync.models import DEFAULT_BUSY_SUBJECT
from calendar_busy_sync.models import BusyInterval
from calendar_busy_sync.models import CalendarPlan
from calendar_busy_sync.models import ConflictReport
from calendar_busy_sync.models import IntervalKind
from calendar_busy_sync.sync.utils import busy_block_subject
from calendar_busy_sync.sync.utils import clip_to_window
from calendar_busy_sync.sync.utils import intersection
from calendar_busy_sync.sync.utils import intersects_window
from calendar_busy_sync.sync.utils import overlaps

_logger = logging.getLogger(__name__)


def _in_window(events: Iterable[BusyInterval], window_start: datetime, window_end: datetime):
    return [ev for ev in events if intersects_window(ev, window_start, window_end)]


def plan_calendar(
    target_id: str,
    per_calendar_events: Mapping[str, list[BusyInterval]],
    enabled_calendar_ids: Collection[str],
    window_start: datetime,
    window_end: datetime,
    label: str = DEFAULT_BUSY_SUBJECT,
    mirror_subjects: bool = False,
    unavailable_calendar_ids: Collection[str] = frozenset(),
) -> CalendarPlan:
    """Compute the create/delete/conflict plan for a single target calendar."""
    plan = CalendarPlan(calendar_id=target_id)

    existing = _in_window(per_calendar_events.get(target_id, ()), window_start, window_end)
    originals = [ev for ev in existing if not ev.is_synthetic]
    synthetics = [ev for ev in existing if ev.is_synthetic]

    # 1-3. Collect candidates from every other calendar, split off conflicts.
    coverable: dict[tuple, BusyInterval] = {}
    for source_id in sorted(set(enabled_calendar_ids)):
        if source_id == target_id:
            continue
        source_events = _in_window(per_calendar_events.get(source_id, ()), window_start, window_end)
        for event in source_events:
            if event.is_synthetic:
                continue
            # Only the part inside this window is checked against T and mirrored.
            candidate = clip_to_window(event, window_start, window_end)
            clashes = [ev for ev in originals if overlaps(candidate, ev)]
            if clashes:
                for clash in clashes:
                    start, end = intersection(candidate, clash)
                    plan.conflicts.append(
                        ConflictReport(
                            calendar_id=target_id,
                            start=start,
                            end=end,
                            with_subject=clash.subject,
                            source_calendar_id=source_id,
                        )
                    )
                continue
            coverable.setdefault((source_id, candidate.start, candidate.end), candidate)

    # 5. Existing blocks survive only when their provenance is still mirrorable.
    retained_bounds: set[tuple[datetime, datetime]] = set()
    retained_keys: set[tuple] = set()
    for block in synthetics:
        if block.source_calendar_id in unavailable_calendar_ids:
            # Source unreadable this pass; leave its blocks alone.
            retained_bounds.add(block.bounds)
            continue
        key = block.provenance
        if key in coverable and key not in retained_keys:
            retained_keys.add(key)
            retained_bounds.add(block.bounds)
        else:
            plan.to_delete.append(block)

    # 4. Create blocks for candidates without identical coverage.
    for (source_id, start, end), candidate in coverable.items():
        if (start, end) in retained_bounds:
            continue
        plan.to_create.append(
            BusyInterval(
                calendar_id=target_id,
                start=start,
                end=end,
                subject=busy_block_subject(candidate, label, mirror_subjects),
                kind=IntervalKind.SYNTHETIC,
                is_private=True,
                source_calendar_id=source_id,
            )
        )
        retained_bounds.add((start, end))

    _logger.debug(
        "Plan for %s: %d to create, %d to delete, %d conflicts",
        target_id,
        len(plan.to_create),
        len(plan.to_delete),
        len(plan.conflicts),
    )
    return plan


def merge_calendars(
    per_calendar_events: Mapping[str, list[BusyInterval]],
    enabled_calendar_ids: Collection[str],
    window_start: datetime,
    window_end: datetime,
    label: str = DEFAULT_BUSY_SUBJECT,
    mirror_subjects: bool = False,
    unavailable_calendar_ids: Collection[str] = frozenset(),
) -> dict[str, CalendarPlan]:
    """Compute plans for every enabled calendar.

    The caller guarantees at least two enabled calendars. Calendars listed in
    ``unavailable_calendar_ids`` (their events could not be fetched) get no
    plan: nothing is written to a calendar whose contents are unknown.
    """
    plans = {}
    for target_id in sorted(set(enabled_calendar_ids)):
        if target_id in unavailable_calendar_ids:
            continue
        plans[target_id] = plan_calendar(
            target_id,
            per_calendar_events,
            enabled_calendar_ids,
            window_start,
            window_end,
            label=label,
            mirror_subjects=mirror_subjects,
            unavailable_calendar_ids=unavailable_calendar_ids,
        )
    return plans
