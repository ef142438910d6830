from datetime import datetime

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from clinic_scheduler.models.appointment import COMPLETED, CONFIRMED, PENDING
from clinic_scheduler.routes.appointment_routes import (
    CreateAppointmentRequest,
    UpdateStatusRequest,
    change_status,
    list_appointments,
)


def test_create_appointment_request_normalizes_fields() -> None:
    request = CreateAppointmentRequest(
        patient_id=1,
        practitioner_id=2,
        start_time=datetime(2030, 1, 8, 10, 0),
        duration_minutes=30,
        consultation_type=' Video ',
        chief_complaint='   ',
        currency=' usd ',
    )

    assert request.consultation_type == 'video'
    assert request.chief_complaint is None
    assert request.currency == 'USD'


@pytest.mark.parametrize(
    'fields',
    [
        {'duration_minutes': 0},
        {'currency': 'dollars'},
        {'consultation_type': '  '},
        {'chief_complaint': 'x' * 601},
    ],
)
def test_create_appointment_request_rejects_bad_fields(fields) -> None:
    payload = {
        'patient_id': 1,
        'practitioner_id': 2,
        'start_time': datetime(2030, 1, 8, 10, 0),
        'duration_minutes': 30,
        **fields,
    }

    with pytest.raises(ValidationError):
        CreateAppointmentRequest(**payload)


def test_update_status_request_rejects_unknown_status() -> None:
    with pytest.raises(ValidationError):
        UpdateStatusRequest(status='rescheduled')


def test_book_appointment_route_returns_created_booking(client, seed, ready_routes) -> None:
    practitioner = seed.practitioner()
    room = seed.room()

    response = client.post(
        '/appointments',
        json={
            'patient_id': 1,
            'practitioner_id': practitioner.id,
            'start_time': '2030-01-08T10:00:00',
            'duration_minutes': 30,
            'room_id': room.id,
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body['status'] == PENDING
    assert body['start_time'] == '2030-01-08T10:00:00'
    assert body['end_time'] == '2030-01-08T10:30:00'
    assert body['room_id'] == room.id
    assert [booking[0] for booking in ready_routes.bookings] == [body['appointment_id']]


def test_book_appointment_route_reports_conflict_detail(client, seed) -> None:
    practitioner = seed.practitioner()
    payload = {
        'patient_id': 1,
        'practitioner_id': practitioner.id,
        'start_time': '2030-01-08T10:00:00',
        'duration_minutes': 30,
    }
    assert client.post('/appointments', json=payload).status_code == 201

    response = client.post('/appointments', json={**payload, 'patient_id': 2})

    assert response.status_code == 409
    assert response.json()['detail'] == {
        'error': 'practitioner_conflict',
        'message': 'Practitioner is no longer available at this time.',
        'practitioner_id': practitioner.id,
    }


def test_book_appointment_route_maps_missing_practitioner_to_404(client) -> None:
    response = client.post(
        '/appointments',
        json={'patient_id': 1, 'practitioner_id': 999, 'start_time': '2030-01-08T10:00:00', 'duration_minutes': 30},
    )

    assert response.status_code == 404
    assert response.json()['detail'] == 'Practitioner 999 not found.'


def test_book_appointment_route_rejects_past_start(client, seed) -> None:
    practitioner = seed.practitioner()

    response = client.post(
        '/appointments',
        json={'patient_id': 1, 'practitioner_id': practitioner.id, 'start_time': '2001-01-08T10:00:00', 'duration_minutes': 30},
    )

    assert response.status_code == 400
    assert response.json()['detail'] == 'Appointments must be scheduled in the future.'


def test_cancel_route_frees_slot_and_reports_waitlist(client, seed, ready_routes) -> None:
    practitioner = seed.practitioner()
    appointment = seed.appointment(practitioner, datetime(2030, 1, 8, 10, 0), status=PENDING)
    entry = seed.waitlist(practitioner, 50, datetime(2030, 1, 1, 7, 0))

    response = client.post(f'/appointments/{appointment.id}/cancel', json={'reason': 'Feeling better'})

    assert response.status_code == 200
    body = response.json()
    assert body['appointment']['status'] == 'cancelled'
    assert body['appointment']['cancellation_reason'] == 'Feeling better'
    assert body['waitlist_notified'] == 1
    assert body['matched_entry_ids'] == [entry.id]
    assert ready_routes.waitlist[0][0] == entry.id


def test_cancel_route_without_body(client, seed) -> None:
    practitioner = seed.practitioner()
    appointment = seed.appointment(practitioner, datetime(2030, 1, 8, 10, 0))

    response = client.post(f'/appointments/{appointment.id}/cancel')

    assert response.status_code == 200
    assert response.json()['appointment']['cancellation_reason'] is None


def test_cancel_route_returns_not_found(client) -> None:
    response = client.post('/appointments/404/cancel')

    assert response.status_code == 404


def test_alternatives_route_lists_ranked_suggestions(client, seed) -> None:
    practitioner = seed.practitioner(name='Dr. Ada')
    seed.window(practitioner, 0, (13, 0), (13, 30))
    seed.window(practitioner, 0, (15, 30), (16, 0))

    response = client.post(
        '/appointments/alternatives',
        json={'practitioner_id': practitioner.id, 'requested_time': '2030-01-07T14:00:00'},
    )

    assert response.status_code == 200
    assert [(item['time'], item['time_diff_minutes']) for item in response.json()] == [
        ('2030-01-07T13:00:00', 60),
        ('2030-01-07T15:30:00', 90),
    ]
    assert response.json()[0]['practitioner_name'] == 'Dr. Ada'


def test_alternatives_route_finds_specialists_created_with_mixed_case(client, seed) -> None:
    booked = client.post('/practitioners', json={'name': 'Dr. Booked', 'specialty': 'Cardiology', 'rating': 4.0})
    other = client.post('/practitioners', json={'name': 'Dr. Other', 'specialty': 'Cardiology', 'rating': 4.8})
    created = client.post(
        '/availability/windows',
        json={'practitioner_id': other.json()['id'], 'day_of_week': 0, 'start_time': '09:00', 'end_time': '17:00'},
    )
    assert created.status_code == 201

    response = client.post(
        '/appointments/alternatives',
        json={
            'practitioner_id': booked.json()['id'],
            'requested_time': '2030-01-07T14:00:00',
            'specialty': 'Cardiology',
        },
    )

    assert response.status_code == 200
    assert [(item['practitioner_id'], item['reason']) for item in response.json()] == [
        (other.json()['id'], 'equivalent_specialist'),
    ]


def test_list_appointments_filters_by_range(db, seed, ready_routes) -> None:
    practitioner = seed.practitioner()
    inside = seed.appointment(practitioner, datetime(2030, 1, 8, 10, 0))
    seed.appointment(practitioner, datetime(2030, 1, 9, 10, 0))

    appointments = list_appointments(
        practitioner_id=practitioner.id,
        start=datetime(2030, 1, 8, 0, 0),
        end=datetime(2030, 1, 9, 0, 0),
        db=db,
    )

    assert [appointment.id for appointment in appointments] == [inside.id]


def test_change_status_route_confirms_pending(db, seed, ready_routes) -> None:
    practitioner = seed.practitioner()
    appointment = seed.appointment(practitioner, datetime(2030, 1, 8, 10, 0), status=PENDING)

    updated = change_status(appointment.id, UpdateStatusRequest(status='Confirmed'), db=db)

    assert updated.status == CONFIRMED


def test_change_status_route_rejects_illegal_transition(db, seed, ready_routes) -> None:
    practitioner = seed.practitioner()
    appointment = seed.appointment(practitioner, datetime(2030, 1, 8, 10, 0), status=COMPLETED)

    with pytest.raises(HTTPException) as exception_info:
        change_status(appointment.id, UpdateStatusRequest(status='confirmed'), db=db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Cannot move an appointment from completed to confirmed.'


def test_request_id_is_echoed(client) -> None:
    response = client.get('/', headers={'X-Request-ID': 'req-123'})

    assert response.status_code == 200
    assert response.headers['X-Request-ID'] == 'req-123'
