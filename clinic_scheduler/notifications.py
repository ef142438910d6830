"""Outbound notification interface.

The scheduling core only knows the narrow ``Notifier`` interface; the
concrete channel (email, SMS, chat) belongs to an external notification
service reached through ``WebhookNotifier``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from clinic_scheduler.core import config
from clinic_scheduler.models.notification import BOOKING_NOTIFICATION, NotificationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingNotice:
    appointment_id: int
    patient_id: int
    practitioner_id: int
    start_time: datetime


class Notifier:
    def notify(self, appointment_id: int, patient_id: int, practitioner_id: int, start_time: datetime) -> None:
        raise NotImplementedError

    def notify_waitlist_match(
        self,
        entry_id: int,
        patient_id: int,
        practitioner_id: int,
        slot_start: datetime | None,
    ) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Development notifier that only writes to the log."""

    def notify(self, appointment_id, patient_id, practitioner_id, start_time):
        logger.info(
            'Booking notification: appointment %s for patient %s with practitioner %s at %s',
            appointment_id,
            patient_id,
            practitioner_id,
            start_time.isoformat(),
        )

    def notify_waitlist_match(self, entry_id, patient_id, practitioner_id, slot_start):
        logger.info(
            'Waitlist notification: entry %s for patient %s with practitioner %s (slot %s)',
            entry_id,
            patient_id,
            practitioner_id,
            slot_start.isoformat() if slot_start else 'any',
        )


class WebhookNotifier(Notifier):
    """POSTs notification events as JSON to the external notification service."""

    def __init__(self, url: str, timeout: float = 10.0, client: httpx.Client | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    def _post(self, payload: dict) -> None:
        if self._client is not None:
            response = self._client.post(self.url, json=payload, timeout=self.timeout)
        else:
            with httpx.Client() as client:
                response = client.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()

    def notify(self, appointment_id, patient_id, practitioner_id, start_time):
        self._post(
            {
                'event': 'appointment_booked',
                'appointment_id': appointment_id,
                'patient_id': patient_id,
                'practitioner_id': practitioner_id,
                'start_time': start_time.isoformat(),
            }
        )

    def notify_waitlist_match(self, entry_id, patient_id, practitioner_id, slot_start):
        self._post(
            {
                'event': 'waitlist_slot_available',
                'waitlist_entry_id': entry_id,
                'patient_id': patient_id,
                'practitioner_id': practitioner_id,
                'slot_start': slot_start.isoformat() if slot_start else None,
            }
        )


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _notifier

    if _notifier is None:
        if config.NOTIFICATION_WEBHOOK_URL:
            _notifier = WebhookNotifier(config.NOTIFICATION_WEBHOOK_URL, timeout=config.NOTIFICATION_TIMEOUT_SECONDS)
        else:
            _notifier = LoggingNotifier()
    return _notifier


def deliver_booking_notice(notifier: Notifier, notice: BookingNotice, session_factory: sessionmaker) -> bool:
    """Send a booking notice, recording any failure instead of raising it."""
    try:
        notifier.notify(notice.appointment_id, notice.patient_id, notice.practitioner_id, notice.start_time)
        return True
    except Exception as exc:
        logger.exception('Booking notification failed for appointment %s', notice.appointment_id)
        _record_failure(session_factory, notice, exc)
        return False


def _record_failure(session_factory: sessionmaker, notice: BookingNotice, exc: Exception) -> None:
    db = session_factory()
    try:
        db.add(
            NotificationFailure(
                kind=BOOKING_NOTIFICATION,
                appointment_id=notice.appointment_id,
                patient_id=notice.patient_id,
                error=f'{type(exc).__name__}: {exc}',
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Could not record notification failure: %s', asdict(notice))
    finally:
        db.close()


Dispatch = Callable[..., None]

_executor: ThreadPoolExecutor | None = None


def dispatch_in_background(func, *args) -> None:
    global _executor

    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=config.NOTIFICATION_WORKERS, thread_name_prefix='notify')
    _executor.submit(func, *args)


def dispatch_inline(func, *args) -> None:
    func(*args)


def shutdown_dispatcher() -> None:
    global _executor

    if _executor is not None:
        _executor.shutdown(wait=True)
        _executor = None
