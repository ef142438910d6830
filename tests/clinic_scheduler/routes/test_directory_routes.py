import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from clinic_scheduler.models.resource import EQUIPMENT, ROOM
from clinic_scheduler.routes.directory_routes import (
    CreatePractitionerRequest,
    CreateResourceRequest,
    create_practitioner,
    create_resource,
    list_practitioners,
    list_resources,
)


def test_create_practitioner_request_normalizes_specialty() -> None:
    request = CreatePractitionerRequest(name=' Dr. Grace Hopper ', specialty=' Cardiology ', rating=4.7)

    assert request.name == 'Dr. Grace Hopper'
    assert request.specialty == 'cardiology'


@pytest.mark.parametrize('fields', [{'name': '   '}, {'name': 'Dr. X', 'rating': 5.5}])
def test_create_practitioner_request_rejects_bad_fields(fields) -> None:
    with pytest.raises(ValidationError):
        CreatePractitionerRequest(**fields)


def test_create_resource_request_rejects_unknown_kind() -> None:
    with pytest.raises(ValidationError):
        CreateResourceRequest(name='Bed 4', kind='bed')


def test_practitioner_routes_create_and_filter(db, ready_routes) -> None:
    cardiologist = create_practitioner(CreatePractitionerRequest(name='Dr. Heart', specialty='cardiology'), db=db)
    create_practitioner(CreatePractitionerRequest(name='Dr. Skin', specialty='dermatology'), db=db)

    cardiologists = list_practitioners(specialty=' Cardiology', db=db)

    assert [practitioner.id for practitioner in cardiologists] == [cardiologist.id]
    assert len(list_practitioners(specialty=None, db=db)) == 2


def test_resource_routes_create_and_filter(db, ready_routes) -> None:
    room = create_resource(CreateResourceRequest(name='Room 3', kind=' Room '), db=db)
    create_resource(CreateResourceRequest(name='ECG', kind=EQUIPMENT), db=db)

    rooms = list_resources(kind=ROOM, db=db)

    assert [resource.id for resource in rooms] == [room.id]
    assert room.is_active is True


def test_list_resources_rejects_unknown_kind(db, ready_routes) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_resources(kind='bed', db=db)

    assert exception_info.value.status_code == 400


def test_directory_routes_are_mounted(client) -> None:
    created = client.post('/practitioners', json={'name': 'Dr. Mounted', 'specialty': 'neurology', 'rating': 4.1})

    assert created.status_code == 201
    assert client.get('/practitioners', params={'specialty': 'neurology'}).json()[0]['name'] == 'Dr. Mounted'
