import json
from datetime import datetime

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from clinic_scheduler import notifications
from clinic_scheduler.models.notification import BOOKING_NOTIFICATION, NotificationFailure
from clinic_scheduler.notifications import (
    BookingNotice,
    LoggingNotifier,
    WebhookNotifier,
    deliver_booking_notice,
    dispatch_inline,
    get_notifier,
)


def make_client(status_code: int, captured: list) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(status_code, json={'ok': status_code < 400})

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_webhook_notifier_posts_booking_event() -> None:
    captured = []
    notifier = WebhookNotifier('https://notify.example.test/hooks', client=make_client(200, captured))

    notifier.notify(10, 20, 30, datetime(2030, 1, 8, 10, 0))

    assert captured == [
        {
            'event': 'appointment_booked',
            'appointment_id': 10,
            'patient_id': 20,
            'practitioner_id': 30,
            'start_time': '2030-01-08T10:00:00',
        }
    ]


def test_webhook_notifier_posts_waitlist_event_without_slot() -> None:
    captured = []
    notifier = WebhookNotifier('https://notify.example.test/hooks', client=make_client(202, captured))

    notifier.notify_waitlist_match(4, 5, 6, None)

    assert captured[0]['event'] == 'waitlist_slot_available'
    assert captured[0]['waitlist_entry_id'] == 4
    assert captured[0]['slot_start'] is None


def test_webhook_notifier_raises_on_error_status() -> None:
    notifier = WebhookNotifier('https://notify.example.test/hooks', client=make_client(500, []))

    with pytest.raises(httpx.HTTPStatusError):
        notifier.notify(1, 2, 3, datetime(2030, 1, 8, 10, 0))


def test_deliver_booking_notice_records_failure(engine) -> None:
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    notifier = WebhookNotifier('https://notify.example.test/hooks', client=make_client(503, []))
    notice = BookingNotice(appointment_id=11, patient_id=22, practitioner_id=33, start_time=datetime(2030, 1, 8, 9, 0))

    delivered = deliver_booking_notice(notifier, notice, session_factory)

    assert delivered is False
    db = session_factory()
    try:
        failure = db.query(NotificationFailure).one()
        assert failure.kind == BOOKING_NOTIFICATION
        assert failure.appointment_id == 11
        assert failure.patient_id == 22
        assert 'HTTPStatusError' in failure.error
        assert failure.retried is False
    finally:
        db.close()


def test_deliver_booking_notice_succeeds(engine, notifier) -> None:
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    notice = BookingNotice(appointment_id=1, patient_id=2, practitioner_id=3, start_time=datetime(2030, 1, 8, 9, 0))

    assert deliver_booking_notice(notifier, notice, session_factory) is True
    assert notifier.bookings == [(1, 2, 3, datetime(2030, 1, 8, 9, 0))]


def test_dispatch_inline_calls_immediately() -> None:
    calls = []

    dispatch_inline(calls.append, 'sent')

    assert calls == ['sent']


def test_get_notifier_uses_webhook_when_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notifications, '_notifier', None)
    monkeypatch.setattr(notifications.config, 'NOTIFICATION_WEBHOOK_URL', 'https://notify.example.test/hooks')

    notifier = get_notifier()

    assert isinstance(notifier, WebhookNotifier)
    assert notifier.url == 'https://notify.example.test/hooks'
    assert get_notifier() is notifier


def test_get_notifier_falls_back_to_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notifications, '_notifier', None)
    monkeypatch.setattr(notifications.config, 'NOTIFICATION_WEBHOOK_URL', '')

    assert isinstance(get_notifier(), LoggingNotifier)
