from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError

from campus_booking.auth.dependencies import require_roles
from campus_booking.auth.guard import AuthContext
from campus_booking.core.activity import log_activity
from campus_booking.core.roles import PENDING, STUDENT, TEACHER
from campus_booking.routes.appointments import (
    AppointmentResponse,
    appointment_response,
    appointment_stream,
    sorted_appointments,
)
from campus_booking.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_change_feed,
    get_document_store,
)
from campus_booking.services import schedules
from campus_booking.services.documents import APPOINTMENTS, USERS, ChangeFeed, DocumentStore, Snapshot

router = APIRouter(tags=['student'])

student_only = require_roles(STUDENT)

MAX_PURPOSE_LENGTH = 600


class TeacherSummaryResponse(BaseModel):
    id: str
    name: str
    department: str
    subject: str


class BookingPageResponse(BaseModel):
    teacher_id: str
    teacher_name: str
    slots: list[datetime]


class CreateAppointmentRequest(BaseModel):
    teacher_id: str
    slot: datetime | None = None
    purpose: str = ''

    @field_validator('teacher_id')
    @classmethod
    def validate_teacher_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('No teacher selected.')
        return normalized

    @field_validator('purpose')
    @classmethod
    def validate_purpose(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) > MAX_PURPOSE_LENGTH:
            raise ValueError(f'Purpose must be {MAX_PURPOSE_LENGTH} characters or fewer.')
        return normalized


def teacher_summary(snapshot: Snapshot) -> TeacherSummaryResponse:
    return TeacherSummaryResponse(
        id=snapshot.id,
        name=snapshot.data.get('name', ''),
        department=snapshot.data.get('department', ''),
        subject=snapshot.data.get('subject', ''),
    )


def filter_teachers(teachers: list[TeacherSummaryResponse], search: str | None) -> list[TeacherSummaryResponse]:
    term = (search or '').strip().lower()
    if not term:
        return teachers
    return [
        teacher for teacher in teachers
        if term in teacher.name.lower()
        or term in teacher.department.lower()
        or term in teacher.subject.lower()
    ]


def get_teacher_or_404(store: DocumentStore, teacher_id: str) -> Snapshot:
    snapshot = store.get(USERS, teacher_id)
    if not snapshot.exists or snapshot.data.get('role') != TEACHER:
        log_activity('error', 'Teacher not found for booking', teacher_id=teacher_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Teacher not found.')
    return snapshot


@router.get('/teachers', response_model=list[TeacherSummaryResponse])
def list_teachers(
    search: str | None = Query(default=None),
    context: AuthContext = Depends(student_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        teachers = [teacher_summary(snapshot) for snapshot in store.query(USERS, role=TEACHER)]
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to load teachers list for student', error=str(exc), student_id=context.uid)
        raise database_unavailable() from exc

    return filter_teachers(teachers, search)


@router.get('/teachers/{teacher_id}/booking', response_model=BookingPageResponse)
def get_booking_page(
    teacher_id: str,
    context: AuthContext = Depends(student_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        teacher = get_teacher_or_404(store, teacher_id)
        slots = schedules.list_slots(store, teacher_id)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to load booking page details', error=str(exc), teacher_id=teacher_id)
        raise database_unavailable() from exc

    return BookingPageResponse(teacher_id=teacher_id, teacher_name=teacher.data.get('name', ''), slots=slots)


@router.post('/appointments', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    context: AuthContext = Depends(student_only),
    store: DocumentStore = Depends(get_document_store),
):
    if data.slot is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Please select a time slot.')

    ensure_database_ready()

    try:
        teacher = get_teacher_or_404(store, data.teacher_id)
        if not schedules.has_slot(store, data.teacher_id, data.slot):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This time slot is not available.')

        slot = schedules.slot_key(data.slot)
        log_activity(
            'info',
            'New appointment booking attempt',
            student_id=context.uid,
            teacher_id=data.teacher_id,
            slot=slot,
        )
        # The slot stays in the schedule; two students may book the same instant.
        appointment_id = store.add(APPOINTMENTS, {
            'student_id': context.uid,
            'student_name': context.name,
            'teacher_id': data.teacher_id,
            'teacher_name': teacher.data.get('name', ''),
            'date_time': slot,
            'purpose': data.purpose,
            'status': PENDING,
        })
        snapshot = store.get(APPOINTMENTS, appointment_id)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to book appointment', error=str(exc), student_id=context.uid)
        raise database_unavailable() from exc

    log_activity('info', 'Appointment booked successfully', student_id=context.uid, teacher_id=data.teacher_id)
    return appointment_response(snapshot)


@router.get('/appointments', response_model=list[AppointmentResponse])
def list_my_appointments(
    context: AuthContext = Depends(student_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        appointments = store.query(APPOINTMENTS, student_id=context.uid)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to load student appointments', error=str(exc), student_id=context.uid)
        raise database_unavailable() from exc

    return sorted_appointments(appointments)


@router.get('/appointments/stream')
def stream_my_appointments(
    request: Request,
    context: AuthContext = Depends(student_only),
    feed: ChangeFeed = Depends(get_change_feed),
):
    ensure_database_ready()
    return appointment_stream(request, feed, student_id=context.uid)
