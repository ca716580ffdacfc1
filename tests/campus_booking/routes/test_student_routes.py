from datetime import datetime, timezone

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from campus_booking.auth.guard import AuthContext
from campus_booking.routes.student_routes import (
    MAX_PURPOSE_LENGTH,
    CreateAppointmentRequest,
    TeacherSummaryResponse,
    create_appointment,
    filter_teachers,
    get_booking_page,
    list_my_appointments,
    list_teachers,
)
from campus_booking.services import schedules
from campus_booking.services.documents import APPOINTMENTS, USERS

STUDENT = AuthContext(uid='s1', profile={'role': 'student', 'name': 'Sam', 'is_approved': True})
SLOT = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _seed_teachers(store) -> None:
    store.set(USERS, 't1', {'name': 'Ada Lovelace', 'role': 'teacher', 'department': 'Mathematics', 'subject': 'Analysis'})
    store.set(USERS, 't2', {'name': 'Grace Hopper', 'role': 'teacher', 'department': 'Computing', 'subject': 'Compilers'})
    store.set(USERS, 's2', {'name': 'Kim', 'role': 'student', 'is_approved': True})


def test_create_appointment_request_validation() -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(teacher_id='  ')

    with pytest.raises(ValidationError):
        CreateAppointmentRequest(teacher_id='t1', purpose='x' * (MAX_PURPOSE_LENGTH + 1))

    request = CreateAppointmentRequest(teacher_id=' t1 ', purpose='  Thesis review  ')
    assert request.teacher_id == 't1'
    assert request.purpose == 'Thesis review'
    assert request.slot is None


@pytest.mark.parametrize(
    ('search', 'expected'),
    [
        (None, ['t1', 't2']),
        ('', ['t1', 't2']),
        ('ada', ['t1']),
        ('COMPUTING', ['t2']),
        ('compil', ['t2']),
        ('history', []),
    ],
)
def test_filter_teachers_matches_name_department_or_subject(search, expected: list[str]) -> None:
    teachers = [
        TeacherSummaryResponse(id='t1', name='Ada Lovelace', department='Mathematics', subject='Analysis'),
        TeacherSummaryResponse(id='t2', name='Grace Hopper', department='Computing', subject='Compilers'),
    ]

    assert [teacher.id for teacher in filter_teachers(teachers, search)] == expected


def test_list_teachers_returns_only_teachers(store) -> None:
    _seed_teachers(store)

    teachers = list_teachers(search='hopper', context=STUDENT, store=store)

    assert [teacher.id for teacher in teachers] == ['t2']
    assert {teacher.id for teacher in list_teachers(search=None, context=STUDENT, store=store)} == {'t1', 't2'}


def test_get_booking_page_lists_sorted_slots(store) -> None:
    _seed_teachers(store)
    later = datetime(2026, 1, 6, 9, 0, tzinfo=timezone.utc)
    schedules.add_slot(store, 't1', later)
    schedules.add_slot(store, 't1', SLOT)

    page = get_booking_page('t1', context=STUDENT, store=store)

    assert page.teacher_name == 'Ada Lovelace'
    assert page.slots == [SLOT, later]


def test_get_booking_page_for_unknown_teacher(store) -> None:
    _seed_teachers(store)

    with pytest.raises(HTTPException) as exception_info:
        get_booking_page('s2', context=STUDENT, store=store)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Teacher not found.'


def test_create_appointment_requires_slot(store) -> None:
    _seed_teachers(store)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(CreateAppointmentRequest(teacher_id='t1'), context=STUDENT, store=store)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Please select a time slot.'


def test_create_appointment_rejects_slot_outside_schedule(store) -> None:
    _seed_teachers(store)
    schedules.add_slot(store, 't1', SLOT)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            CreateAppointmentRequest(teacher_id='t1', slot=datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)),
            context=STUDENT,
            store=store,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'This time slot is not available.'
    assert store.query(APPOINTMENTS) == []


def test_create_appointment_stores_pending_booking(store) -> None:
    _seed_teachers(store)
    schedules.add_slot(store, 't1', SLOT)

    appointment = create_appointment(
        CreateAppointmentRequest(teacher_id='t1', slot=SLOT, purpose='Thesis review'),
        context=STUDENT,
        store=store,
    )

    assert appointment.status == 'pending'
    assert appointment.student_name == 'Sam'
    assert appointment.teacher_name == 'Ada Lovelace'
    assert appointment.date_time == SLOT
    assert store.get(APPOINTMENTS, appointment.id).data == {
        'student_id': 's1',
        'student_name': 'Sam',
        'teacher_id': 't1',
        'teacher_name': 'Ada Lovelace',
        'date_time': '2026-01-05T09:00:00+00:00',
        'purpose': 'Thesis review',
        'status': 'pending',
    }


def test_create_appointment_allows_repeat_booking_of_a_slot(store) -> None:
    _seed_teachers(store)
    schedules.add_slot(store, 't1', SLOT)
    other_student = AuthContext(uid='s2', profile={'role': 'student', 'name': 'Kim', 'is_approved': True})

    create_appointment(CreateAppointmentRequest(teacher_id='t1', slot=SLOT), context=STUDENT, store=store)
    create_appointment(CreateAppointmentRequest(teacher_id='t1', slot=SLOT), context=other_student, store=store)

    assert len(store.query(APPOINTMENTS, teacher_id='t1')) == 2
    assert schedules.has_slot(store, 't1', SLOT) is True


def test_list_my_appointments_returns_own_bookings_in_time_order(store) -> None:
    _seed_teachers(store)
    later = datetime(2026, 1, 6, 9, 0, tzinfo=timezone.utc)
    schedules.add_slot(store, 't1', later)
    schedules.add_slot(store, 't1', SLOT)
    other_student = AuthContext(uid='s2', profile={'role': 'student', 'name': 'Kim', 'is_approved': True})

    late = create_appointment(CreateAppointmentRequest(teacher_id='t1', slot=later), context=STUDENT, store=store)
    early = create_appointment(CreateAppointmentRequest(teacher_id='t1', slot=SLOT), context=STUDENT, store=store)
    create_appointment(CreateAppointmentRequest(teacher_id='t1', slot=SLOT), context=other_student, store=store)

    appointments = list_my_appointments(context=STUDENT, store=store)

    assert [appointment.id for appointment in appointments] == [early.id, late.id]
