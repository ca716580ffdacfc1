"""Appointment document shape shared by the teacher and student areas.

Both areas also expose their appointment lists as Server-Sent Events:

    event: appointments
    data: [{"id": "...", "status": "pending", ...}, ...]

    event: error
    data: {"error": "message"}

The first ``appointments`` event carries the current list; a new one follows
every committed write to the ``appointments`` collection. An ``error`` event
ends the stream.
"""

import asyncio
import json
from datetime import datetime

from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from campus_booking.core.activity import log_activity
from campus_booking.database import SessionLocal
from campus_booking.routes.common import DATABASE_UNAVAILABLE
from campus_booking.services.documents import APPOINTMENTS, ChangeFeed, DocumentStore, Snapshot

KEEPALIVE_SECONDS = 15.0


class AppointmentResponse(BaseModel):
    id: str
    student_id: str
    student_name: str
    teacher_id: str
    teacher_name: str
    date_time: datetime
    purpose: str
    status: str


def appointment_response(snapshot: Snapshot) -> AppointmentResponse:
    return AppointmentResponse(id=snapshot.id, **snapshot.data)


def sorted_appointments(snapshots: list[Snapshot]) -> list[AppointmentResponse]:
    return sorted((appointment_response(snapshot) for snapshot in snapshots), key=lambda item: item.date_time)


def appointment_stream(
    request: Request,
    feed: ChangeFeed,
    session_factory=SessionLocal,
    keepalive_seconds: float = KEEPALIVE_SECONDS,
    **filters,
) -> StreamingResponse:
    return StreamingResponse(
        _appointment_events(request, feed, session_factory, keepalive_seconds, filters),
        media_type='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no',
        },
    )


async def _appointment_events(request: Request, feed: ChangeFeed, session_factory, keepalive_seconds: float, filters: dict):
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # Writers publish from whichever thread committed, so hand over to the loop.
    def on_change(snapshots: list[Snapshot]) -> None:
        payload = jsonable_encoder(sorted_appointments(snapshots))
        loop.call_soon_threadsafe(queue.put_nowait, ('appointments', payload))

    def on_error(exc: Exception) -> None:
        log_activity('error', 'Appointment stream query failed', error=str(exc), **filters)
        loop.call_soon_threadsafe(queue.put_nowait, ('error', {'error': DATABASE_UNAVAILABLE}))

    def subscribe():
        db = session_factory()
        try:
            return DocumentStore(db, feed=feed).subscribe(APPOINTMENTS, on_change, on_error, **filters)
        finally:
            db.close()

    subscription = await run_in_threadpool(subscribe)
    log_activity('info', 'Appointment stream opened', **filters)
    try:
        while not await request.is_disconnected():
            try:
                event, data = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ': keep-alive\n\n'
                continue
            yield _sse_event(event, data)
            if event == 'error':
                break
    finally:
        subscription.cancel()
        log_activity('info', 'Appointment stream closed', **filters)


def _sse_event(event: str, data) -> str:
    return f'event: {event}\ndata: {json.dumps(data)}\n\n'
