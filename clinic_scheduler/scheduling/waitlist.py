"""Waitlist Matcher.

Offers freed capacity to queued patients strictly in arrival order. Each
freed slot goes to the earliest waiting entry whose preferences it satisfies;
an entry is claimed (``waiting`` to ``notified``) before its notification is
sent, so concurrent matchers can never notify it twice.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.core.errors import RecordNotFound, SchedulingValidationError
from clinic_scheduler.models.notification import WAITLIST_NOTIFICATION, NotificationFailure
from clinic_scheduler.models.waitlist import (
    EXPIRED,
    NOTIFIED,
    OPEN_WAITLIST_STATUSES,
    TIME_OF_DAY_BUCKETS,
    WAITING,
    WaitlistEntry,
)
from clinic_scheduler.notifications import Notifier, get_notifier
from clinic_scheduler.scheduling.intervals import as_naive
from clinic_scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreedSlot:
    start_time: datetime
    end_time: datetime | None = None


@dataclass
class WaitlistMatch:
    entry_id: int
    patient_id: int
    slot_start: datetime | None
    notification_sent: bool


@dataclass
class WaitlistMatchResult:
    practitioner_id: int
    matches: list[WaitlistMatch] = field(default_factory=list)

    @property
    def notified_count(self) -> int:
        return len(self.matches)

    @property
    def matched_entry_ids(self) -> list[int]:
        return [match.entry_id for match in self.matches]


def in_time_of_day(bucket: str, moment: datetime) -> bool:
    start_hour, end_hour = TIME_OF_DAY_BUCKETS[bucket]
    return start_hour <= moment.hour < end_hour


def entry_matches_slot(entry: WaitlistEntry, slot: FreedSlot) -> bool:
    if entry.preferred_date is not None and slot.start_time.date() != entry.preferred_date:
        return False
    if entry.preferred_time_of_day and not in_time_of_day(entry.preferred_time_of_day, slot.start_time):
        return False
    return True


def _send(store: ScheduleStore, notifier: Notifier, entry: WaitlistEntry, slot_start: datetime | None) -> bool:
    try:
        notifier.notify_waitlist_match(entry.id, entry.patient_id, entry.practitioner_id, slot_start)
        return True
    except Exception as exc:
        logger.exception('Waitlist notification failed for entry %s', entry.id)
        try:
            store.record_notification_failure(
                NotificationFailure(
                    kind=WAITLIST_NOTIFICATION,
                    waitlist_entry_id=entry.id,
                    patient_id=entry.patient_id,
                    error=f'{type(exc).__name__}: {exc}',
                )
            )
        except SQLAlchemyError:
            logger.exception('Could not record notification failure for waitlist entry %s', entry.id)
        return False


def match_waitlist(
    store: ScheduleStore,
    practitioner_id: int,
    freed_slots: list[FreedSlot] | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> WaitlistMatchResult:
    """Notify waiting patients of a practitioner whose preferences the freed capacity satisfies.

    Without freed slots, general availability increased and every entry without
    a preferred date is notified. Time-of-day preferences are not checked in
    that mode: a new weekly window carries no single slot to test them against,
    so the patient is told to look and the preference applies when they book.
    """
    notifier = notifier or get_notifier()
    now = now or datetime.now()
    result = WaitlistMatchResult(practitioner_id=practitioner_id)

    entries = store.waiting_entries(practitioner_id)
    if not entries:
        logger.debug('No waiting entries for practitioner %s', practitioner_id)
        return result

    remaining = sorted(
        (FreedSlot(as_naive(slot.start_time), slot.end_time) for slot in freed_slots or []),
        key=lambda slot: slot.start_time,
    )
    general = not remaining

    for entry in entries:
        if general:
            if entry.preferred_date is not None:
                continue
            slot = None
        else:
            slot = next((candidate for candidate in remaining if entry_matches_slot(entry, candidate)), None)
            if slot is None:
                continue

        slot_start = slot.start_time if slot else None
        if not store.claim_waitlist_entry(entry.id, now, slot_start):
            logger.info('Waitlist entry %s was already claimed by another matcher', entry.id)
            continue

        if slot is not None:
            remaining.remove(slot)

        sent = _send(store, notifier, entry, slot_start)
        result.matches.append(
            WaitlistMatch(entry_id=entry.id, patient_id=entry.patient_id, slot_start=slot_start, notification_sent=sent)
        )

        if not general and not remaining:
            break

    logger.info(
        'Waitlist match for practitioner %s notified %d entries: %s',
        practitioner_id,
        result.notified_count,
        result.matched_entry_ids,
    )
    return result


def join_waitlist(
    store: ScheduleStore,
    patient_id: int,
    practitioner_id: int,
    preferred_date: date | None = None,
    preferred_time_of_day: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> WaitlistEntry:
    if preferred_time_of_day is not None and preferred_time_of_day not in TIME_OF_DAY_BUCKETS:
        raise SchedulingValidationError(
            f'Preferred time of day must be one of: {", ".join(TIME_OF_DAY_BUCKETS)}.'
        )
    if store.get_practitioner(practitioner_id) is None:
        raise RecordNotFound('Practitioner', practitioner_id)
    if store.open_waitlist_entry(patient_id, practitioner_id) is not None:
        raise SchedulingValidationError('Patient is already on this practitioner\'s waitlist.')

    entry = WaitlistEntry(
        patient_id=patient_id,
        practitioner_id=practitioner_id,
        preferred_date=preferred_date,
        preferred_time_of_day=preferred_time_of_day,
        notes=notes,
        status=WAITING,
        created_at=now or datetime.now(),
    )
    return store.add_waitlist_entry(entry)


def _get_entry(store: ScheduleStore, entry_id: int) -> WaitlistEntry:
    entry = store.get_waitlist_entry(entry_id)
    if entry is None:
        raise RecordNotFound('Waitlist entry', entry_id)
    return entry


def requeue_entry(store: ScheduleStore, entry_id: int) -> WaitlistEntry:
    """Put a notified entry back in line at its original position."""
    entry = _get_entry(store, entry_id)
    if entry.status != NOTIFIED:
        raise SchedulingValidationError(f'Only notified entries can be re-queued, not {entry.status}.')

    entry.status = WAITING
    entry.notified_at = None
    entry.offered_slot_start = None
    return store.save_waitlist_entry(entry)


def expire_entry(store: ScheduleStore, entry_id: int) -> WaitlistEntry:
    entry = _get_entry(store, entry_id)
    if entry.status not in OPEN_WAITLIST_STATUSES:
        raise SchedulingValidationError(f'Cannot expire an entry that is {entry.status}.')

    entry.status = EXPIRED
    return store.save_waitlist_entry(entry)
