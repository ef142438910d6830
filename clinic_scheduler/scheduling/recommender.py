"""Alternative-Slot Recommender.

When a requested slot is taken, suggest nearby times with the same
practitioner and, failing enough of those, other practitioners of the same
specialty at the exact requested time. Results are cached in the store for a
short while per (practitioner, requested time).
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from clinic_scheduler.core import config
from clinic_scheduler.core.errors import RecordNotFound, SchedulingValidationError
from clinic_scheduler.models.practitioner import Practitioner
from clinic_scheduler.scheduling.intervals import as_naive, collides, day_envelope, iterate_steps
from clinic_scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

SAME_PRACTITIONER = 'same_practitioner'
EQUIVALENT_SPECIALIST = 'equivalent_specialist'


@dataclass
class AlternativeSlot:
    time: datetime
    practitioner_id: int
    practitioner_name: str
    rating: float | None
    reason: str
    time_diff_minutes: int

    def to_cache(self) -> dict:
        payload = asdict(self)
        payload['time'] = self.time.isoformat()
        return payload

    @classmethod
    def from_cache(cls, payload: dict) -> 'AlternativeSlot':
        return cls(**{**payload, 'time': datetime.fromisoformat(payload['time'])})


def rank_alternatives(candidates: list[AlternativeSlot], limit: int) -> list[AlternativeSlot]:
    """Closest in time first; higher rating breaks ties."""
    ordered = sorted(candidates, key=lambda candidate: (candidate.time_diff_minutes, -(candidate.rating or 0)))
    return ordered[:limit]


def _envelope(store: ScheduleStore, practitioner_id: int, day) -> list[tuple[datetime, datetime]]:
    windows = [
        (window.start_time, window.end_time)
        for window in store.active_windows([practitioner_id])
        if window.day_of_week == day.weekday() and window.start_time < window.end_time
    ]
    return day_envelope(day, windows)


def _busy(store: ScheduleStore, practitioner_id: int, range_start: datetime, range_end: datetime):
    return [
        (appointment.scheduled_at, appointment.ends_at)
        for appointment in store.busy_appointments([practitioner_id], range_start, range_end)
    ]


def _nearby_for_practitioner(
    store: ScheduleStore,
    practitioner: Practitioner,
    requested: datetime,
    duration: timedelta,
) -> list[AlternativeSlot]:
    window = timedelta(minutes=config.ALTERNATIVE_WINDOW_MINUTES)
    earliest, latest = requested - window, requested + window
    day = requested.date()
    day_start = datetime.combine(day, datetime.min.time())
    busy = _busy(store, practitioner.id, day_start, day_start + timedelta(days=1))

    candidates = []
    for interval in _envelope(store, practitioner.id, day):
        for slot_start, slot_end in iterate_steps(interval, duration):
            if slot_start < earliest or slot_start > latest:
                continue
            if collides(slot_start, slot_end, busy):
                continue
            candidates.append(
                AlternativeSlot(
                    time=slot_start,
                    practitioner_id=practitioner.id,
                    practitioner_name=practitioner.name,
                    rating=practitioner.rating,
                    reason=SAME_PRACTITIONER,
                    time_diff_minutes=int(abs((slot_start - requested).total_seconds()) // 60),
                )
            )
    return candidates


def _is_free_at(store: ScheduleStore, practitioner_id: int, start: datetime, end: datetime) -> bool:
    covered = any(
        interval_start <= start and end <= interval_end
        for interval_start, interval_end in _envelope(store, practitioner_id, start.date())
    )
    return covered and store.find_practitioner_conflict(practitioner_id, start, end) is None


def _equivalent_specialists(
    store: ScheduleStore,
    practitioner_id: int,
    specialty: str,
    requested: datetime,
    duration: timedelta,
) -> list[AlternativeSlot]:
    candidates = []
    for other in store.equivalent_practitioners(specialty, practitioner_id, config.EQUIVALENT_PRACTITIONER_SCAN_LIMIT):
        if _is_free_at(store, other.id, requested, requested + duration):
            candidates.append(
                AlternativeSlot(
                    time=requested,
                    practitioner_id=other.id,
                    practitioner_name=other.name,
                    rating=other.rating,
                    reason=EQUIVALENT_SPECIALIST,
                    time_diff_minutes=0,
                )
            )
    return candidates


def recommend_alternatives(
    store: ScheduleStore,
    practitioner_id: int,
    requested_time: datetime,
    specialty: str | None = None,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> list[AlternativeSlot]:
    duration_minutes = duration_minutes or config.DEFAULT_ALTERNATIVE_DURATION_MINUTES
    if duration_minutes <= 0:
        raise SchedulingValidationError('Duration must be a positive number of minutes.')

    specialty = (specialty or '').strip().lower() or None
    now = now or datetime.now()
    requested = as_naive(requested_time).replace(second=0, microsecond=0)

    cached = store.cached_alternatives(practitioner_id, requested, now)
    if cached is not None:
        logger.debug('Serving cached alternatives for practitioner %s at %s', practitioner_id, requested)
        return [AlternativeSlot.from_cache(payload) for payload in cached]

    practitioner = store.get_practitioner(practitioner_id)
    if practitioner is None:
        raise RecordNotFound('Practitioner', practitioner_id)

    duration = timedelta(minutes=duration_minutes)
    candidates = _nearby_for_practitioner(store, practitioner, requested, duration)

    if specialty and len(candidates) < config.ALTERNATIVE_LIMIT:
        candidates.extend(_equivalent_specialists(store, practitioner_id, specialty, requested, duration))

    alternatives = rank_alternatives(candidates, config.ALTERNATIVE_LIMIT)
    store.cache_alternatives(
        practitioner_id,
        requested,
        [alternative.to_cache() for alternative in alternatives],
        now + timedelta(minutes=config.ALTERNATIVE_CACHE_TTL_MINUTES),
    )

    logger.info(
        'Found %d alternatives for practitioner %s at %s',
        len(alternatives),
        practitioner_id,
        requested,
    )
    return alternatives
