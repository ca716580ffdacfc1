from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from campus_booking.auth.dependencies import require_roles
from campus_booking.auth.guard import AuthContext
from campus_booking.core.activity import log_activity
from campus_booking.core.roles import APPROVED, CANCELLED, PENDING, TEACHER
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
from campus_booking.services.documents import APPOINTMENTS, ChangeFeed, DocumentStore

router = APIRouter(tags=['teacher'])

teacher_only = require_roles(TEACHER)


class AddSlotRequest(BaseModel):
    slot: datetime


class ScheduleResponse(BaseModel):
    teacher_id: str
    slots: list[datetime]


@router.get('/schedule', response_model=ScheduleResponse)
def get_schedule(
    context: AuthContext = Depends(teacher_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        slots = schedules.list_slots(store, context.uid)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to load teacher schedule', error=str(exc), teacher_id=context.uid)
        raise database_unavailable() from exc

    return ScheduleResponse(teacher_id=context.uid, slots=slots)


@router.post('/schedule/slots', response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
def add_schedule_slot(
    data: AddSlotRequest,
    context: AuthContext = Depends(teacher_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        created = schedules.add_slot(store, context.uid, data.slot)
        slots = schedules.list_slots(store, context.uid)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to add schedule slot', error=str(exc), teacher_id=context.uid)
        raise database_unavailable() from exc

    if created:
        log_activity('info', 'Availability slot added (new schedule created)', teacher_id=context.uid, slot=schedules.slot_key(data.slot))
    else:
        log_activity('info', 'Availability slot added', teacher_id=context.uid, slot=schedules.slot_key(data.slot))
    return ScheduleResponse(teacher_id=context.uid, slots=slots)


@router.get('/appointments', response_model=list[AppointmentResponse])
def list_appointments(
    context: AuthContext = Depends(teacher_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        appointments = store.query(APPOINTMENTS, teacher_id=context.uid)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to load teacher appointments', error=str(exc), teacher_id=context.uid)
        raise database_unavailable() from exc

    return sorted_appointments(appointments)


def update_appointment_status(
    appointment_id: str,
    new_status: str,
    context: AuthContext,
    store: DocumentStore,
) -> AppointmentResponse:
    ensure_database_ready()

    try:
        snapshot = store.get(APPOINTMENTS, appointment_id)
        if not snapshot.exists:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')

        if snapshot.data.get('teacher_id') != context.uid:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the teacher of this appointment can change its status.',
            )

        if snapshot.data.get('status') != PENDING:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f'Appointment is already {snapshot.data.get("status")}.',
            )

        updated = store.update(APPOINTMENTS, appointment_id, {'status': new_status})
    except SQLAlchemyError as exc:
        log_activity(
            'error',
            'Failed to update appointment status',
            error=str(exc),
            appointment_id=appointment_id,
            new_status=new_status,
        )
        raise database_unavailable() from exc

    log_activity(
        'info',
        'Appointment status updated',
        teacher_id=context.uid,
        appointment_id=appointment_id,
        new_status=new_status,
    )
    return appointment_response(updated)


@router.post('/appointments/{appointment_id}/approve', response_model=AppointmentResponse)
def approve_appointment(
    appointment_id: str,
    context: AuthContext = Depends(teacher_only),
    store: DocumentStore = Depends(get_document_store),
):
    return update_appointment_status(appointment_id, APPROVED, context, store)


@router.post('/appointments/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    context: AuthContext = Depends(teacher_only),
    store: DocumentStore = Depends(get_document_store),
):
    return update_appointment_status(appointment_id, CANCELLED, context, store)


@router.get('/appointments/stream')
def stream_appointments(
    request: Request,
    context: AuthContext = Depends(teacher_only),
    feed: ChangeFeed = Depends(get_change_feed),
):
    ensure_database_ready()
    return appointment_stream(request, feed, teacher_id=context.uid)
