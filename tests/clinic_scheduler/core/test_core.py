import logging

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError

from clinic_scheduler.core import config
from clinic_scheduler.core.cancellation import CancellationToken
from clinic_scheduler.core.errors import (
    PRACTITIONER_CONFLICT,
    BookingConflict,
    OperationCancelled,
    RecordNotFound,
    SchedulingError,
    SchedulingValidationError,
    StoreUnavailable,
)
from clinic_scheduler.core.logging_context import RequestIdFilter, get_request_id, reset_request_id, set_request_id
from clinic_scheduler.routes.dependencies import (
    CLIENT_CLOSED_REQUEST,
    DATABASE_UNAVAILABLE,
    ensure_database_ready,
    to_http_exception,
)


def test_cancellation_token_raises_once_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel()

    assert token.cancelled is True
    with pytest.raises(OperationCancelled):
        token.raise_if_cancelled()


@pytest.mark.parametrize(
    ('error', 'status_code'),
    [
        (RecordNotFound('Appointment', 3), 404),
        (SchedulingValidationError('bad input'), 400),
        (OperationCancelled('gone'), CLIENT_CLOSED_REQUEST),
        (StoreUnavailable('down'), 503),
        (SchedulingError('unexpected'), 500),
    ],
)
def test_to_http_exception_maps_error_taxonomy(error, status_code) -> None:
    assert to_http_exception(error).status_code == status_code


def test_to_http_exception_keeps_conflict_detail() -> None:
    conflict = BookingConflict(PRACTITIONER_CONFLICT, 'Taken.', practitioner_id=8)

    exception = to_http_exception(conflict)

    assert exception.status_code == 409
    assert exception.detail == {'error': PRACTITIONER_CONFLICT, 'message': 'Taken.', 'practitioner_id': 8}


def test_to_http_exception_hides_database_errors() -> None:
    exception = to_http_exception(OperationalError('SELECT 1', {}, Exception('password authentication failed')))

    assert exception.status_code == 503
    assert exception.detail == DATABASE_UNAVAILABLE


def test_to_http_exception_refuses_unknown_errors() -> None:
    with pytest.raises(TypeError):
        to_http_exception(ValueError('nope'))


def test_ensure_database_ready_maps_failures_to_503(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_schema():
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr('clinic_scheduler.routes.dependencies.ensure_booking_schema', broken_schema)

    with pytest.raises(HTTPException) as exception_info:
        ensure_database_ready()

    assert exception_info.value.status_code == 503
    assert exception_info.value.detail == DATABASE_UNAVAILABLE


def test_request_id_filter_tags_records() -> None:
    record = logging.LogRecord('clinic_scheduler', logging.INFO, __file__, 1, 'hello', None, None)
    token = set_request_id('abc123')
    try:
        RequestIdFilter().filter(record)
        assert get_request_id() == 'abc123'
    finally:
        reset_request_id(token)

    assert record.request_id == 'abc123'
    assert get_request_id() == '-'


def test_validate_runtime_config_rejects_bad_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'SLOT_RESULT_LIMIT', 0)

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()


def test_validate_runtime_config_requires_webhook_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'NOTIFICATION_WEBHOOK_URL', '')

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()


def test_get_int_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv('CLINIC_TEST_LIMIT', '12')
    monkeypatch.setenv('CLINIC_TEST_BAD', 'twelve')

    assert config._get_int('CLINIC_TEST_LIMIT', 5) == 12
    assert config._get_int('CLINIC_TEST_MISSING', 5) == 5
    with pytest.raises(ValueError):
        config._get_int('CLINIC_TEST_BAD', 5)


def test_get_list_splits_and_strips() -> None:
    assert config._get_list(' http://a.test , ,http://b.test', []) == ['http://a.test', 'http://b.test']
    assert config._get_list(None, ['fallback']) == ['fallback']
