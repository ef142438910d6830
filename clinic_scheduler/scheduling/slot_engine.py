"""Slot Generation Engine.

Finds time windows in which every named practitioner and every required
resource is simultaneously free. Pure read: nothing is written to the store.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from clinic_scheduler.core import config
from clinic_scheduler.core.errors import SchedulingValidationError
from clinic_scheduler.scheduling.intervals import (
    Interval,
    collides,
    day_envelope,
    intersect_envelopes,
    iterate_days,
    iterate_steps,
)
from clinic_scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateSlot:
    start_time: datetime
    end_time: datetime
    practitioner_ids: tuple[int, ...]
    duration_minutes: int


@dataclass
class SlotSearchResult:
    slots: list[CandidateSlot] = field(default_factory=list)
    total_found: int = 0


def unique_ids(ids) -> list[int]:
    seen: list[int] = []
    for value in ids or []:
        if value not in seen:
            seen.append(value)
    return seen


def validate_search(
    practitioner_ids,
    start_date: date | None,
    end_date: date | None,
    duration_minutes: int | None,
) -> list[int]:
    normalized = unique_ids(practitioner_ids)
    if not normalized:
        raise SchedulingValidationError('At least one practitioner id is required.')

    if duration_minutes is None:
        raise SchedulingValidationError('Slot duration is required.')
    if duration_minutes <= 0:
        raise SchedulingValidationError('Slot duration must be a positive number of minutes.')
    if start_date is None or end_date is None:
        raise SchedulingValidationError('Both start date and end date are required.')
    if end_date < start_date:
        raise SchedulingValidationError('End date must not be before start date.')
    if (end_date - start_date).days + 1 > config.MAX_SLOT_RANGE_DAYS:
        raise SchedulingValidationError(
            f'Date range cannot exceed {config.MAX_SLOT_RANGE_DAYS} days.'
        )

    return normalized


def generate_slots(
    store: ScheduleStore,
    practitioner_ids,
    start_date: date,
    end_date: date,
    duration_minutes: int,
    resource_ids=None,
    limit: int | None = None,
) -> SlotSearchResult:
    """Return chronologically ordered windows where all constraints hold at once.

    The envelope for a day is the intersection of every named practitioner's
    merged availability; each duration-sized step inside it must avoid every
    practitioner's non-terminal appointments and every required resource's
    reservations.
    """
    practitioner_ids = validate_search(practitioner_ids, start_date, end_date, duration_minutes)
    resource_ids = unique_ids(resource_ids)
    limit = min(limit or config.SLOT_RESULT_LIMIT, config.SLOT_RESULT_LIMIT)

    range_start = datetime.combine(start_date, datetime.min.time())
    range_end = datetime.combine(end_date + timedelta(days=1), datetime.min.time())
    duration = timedelta(minutes=duration_minutes)

    windows_by_day: dict[tuple[int, int], list] = defaultdict(list)
    for window in store.active_windows(practitioner_ids):
        if window.start_time < window.end_time:
            windows_by_day[(window.practitioner_id, window.day_of_week)].append(
                (window.start_time, window.end_time)
            )

    busy: list[Interval] = [
        (appointment.scheduled_at, appointment.ends_at)
        for appointment in store.busy_appointments(practitioner_ids, range_start, range_end)
    ]
    busy.extend(
        (reservation.start_time, reservation.end_time)
        for reservation in store.resource_reservations(resource_ids, range_start, range_end)
    )
    busy.sort()

    result = SlotSearchResult()
    subset = tuple(practitioner_ids)

    for day in iterate_days(start_date, end_date):
        weekday = day.weekday()
        envelopes = [day_envelope(day, windows_by_day.get((pid, weekday), [])) for pid in practitioner_ids]
        if any(not envelope for envelope in envelopes):
            continue

        day_start = datetime.combine(day, datetime.min.time())
        day_busy = [
            interval for interval in busy
            if interval[0] < day_start + timedelta(days=1) and interval[1] > day_start
        ]

        for interval in intersect_envelopes(envelopes):
            for slot_start, slot_end in iterate_steps(interval, duration):
                if collides(slot_start, slot_end, day_busy):
                    continue
                result.total_found += 1
                if len(result.slots) < limit:
                    result.slots.append(
                        CandidateSlot(
                            start_time=slot_start,
                            end_time=slot_end,
                            practitioner_ids=subset,
                            duration_minutes=duration_minutes,
                        )
                    )

    logger.debug(
        'Generated %d slots (%d found) for practitioners %s between %s and %s',
        len(result.slots),
        result.total_found,
        practitioner_ids,
        start_date,
        end_date,
    )
    return result
