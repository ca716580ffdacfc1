from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_booking.auth.dependencies import require_roles
from campus_booking.auth.guard import AuthContext
from campus_booking.core import config
from campus_booking.core.activity import log_activity
from campus_booking.core.roles import ADMIN, STUDENT, TEACHER
from campus_booking.routes.common import database_unavailable, ensure_database_ready, get_db, get_document_store
from campus_booking.services.documents import USERS, DocumentStore, Snapshot
from campus_booking.services.identity import EMAIL_PATTERN, IdentityError, IdentityService

router = APIRouter(tags=['admin'])

admin_only = require_roles(ADMIN)


class CreateTeacherRequest(BaseModel):
    name: str = ''
    email: str = ''
    password: str = ''
    department: str = ''
    subject: str = ''


class UpdateTeacherRequest(BaseModel):
    name: str
    department: str
    subject: str

    @field_validator('name', 'department', 'subject')
    @classmethod
    def validate_required(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('All fields are required.')
        return normalized


class StudentResponse(BaseModel):
    id: str
    name: str
    email: str
    is_approved: bool


class TeacherResponse(BaseModel):
    id: str
    name: str
    email: str
    department: str
    subject: str


def student_response(snapshot: Snapshot) -> StudentResponse:
    return StudentResponse(
        id=snapshot.id,
        name=snapshot.data.get('name', ''),
        email=snapshot.data.get('email', ''),
        is_approved=bool(snapshot.data.get('is_approved')),
    )


def teacher_response(snapshot: Snapshot) -> TeacherResponse:
    return TeacherResponse(
        id=snapshot.id,
        name=snapshot.data.get('name', ''),
        email=snapshot.data.get('email', ''),
        department=snapshot.data.get('department', ''),
        subject=snapshot.data.get('subject', ''),
    )


def validate_teacher_fields(data: CreateTeacherRequest) -> None:
    fields = (data.name, data.email, data.password, data.department, data.subject)
    if any(not value.strip() for value in fields):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='All fields are required.')

    if len(data.password) < config.MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Password must be at least {config.MIN_PASSWORD_LENGTH} characters long.',
        )

    if not EMAIL_PATTERN.match(data.email.strip()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Please enter a valid email address.')


def get_teacher_or_404(store: DocumentStore, teacher_id: str) -> Snapshot:
    snapshot = store.get(USERS, teacher_id)
    if not snapshot.exists or snapshot.data.get('role') != TEACHER:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Teacher not found.')
    return snapshot


@router.get('/students/pending', response_model=list[StudentResponse])
def list_pending_students(
    context: AuthContext = Depends(admin_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        students = store.query(USERS, role=STUDENT, is_approved=False)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to load unapproved students', error=str(exc), admin_uid=context.uid)
        raise database_unavailable() from exc

    return [student_response(snapshot) for snapshot in students]


@router.post('/students/{student_id}/approve', response_model=StudentResponse)
def approve_student(
    student_id: str,
    context: AuthContext = Depends(admin_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        snapshot = store.get(USERS, student_id)
        if not snapshot.exists or snapshot.data.get('role') != STUDENT:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found.')

        updated = store.update(USERS, student_id, {'is_approved': True})
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to approve student', error=str(exc), student_id=student_id)
        raise database_unavailable() from exc

    log_activity('info', 'Student approved', student_id=student_id, admin_uid=context.uid)
    return student_response(updated)


@router.post('/teachers', response_model=TeacherResponse, status_code=status.HTTP_201_CREATED)
def add_teacher(
    data: CreateTeacherRequest,
    context: AuthContext = Depends(admin_only),
    db: Session = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
):
    validate_teacher_fields(data)
    ensure_database_ready()

    # Creating the account does not sign anybody in, so the admin's own
    # session is untouched.
    try:
        account = IdentityService(db).create_account(data.email, data.password)
    except IdentityError as exc:
        log_activity('error', 'Failed to add teacher', error=exc.message, admin_uid=context.uid)
        status_code = status.HTTP_409_CONFLICT if exc.code == 'email-already-in-use' else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=status_code, detail=exc.message) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
    log_activity('info', 'Teacher created in Auth', teacher_email=account.email, admin_uid=context.uid)

    try:
        snapshot = store.set(USERS, account.uid, {
            'name': data.name.strip(),
            'email': account.email,
            'role': TEACHER,
            'department': data.department.strip(),
            'subject': data.subject.strip(),
        })
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to add teacher', error=str(exc), admin_uid=context.uid)
        raise database_unavailable() from exc
    log_activity('info', 'Teacher document created', teacher_uid=account.uid, admin_uid=context.uid)

    return teacher_response(snapshot)


@router.get('/teachers', response_model=list[TeacherResponse])
def list_teachers(
    context: AuthContext = Depends(admin_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        teachers = store.query(USERS, role=TEACHER)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to load teachers list', error=str(exc), admin_uid=context.uid)
        raise database_unavailable() from exc

    return [teacher_response(snapshot) for snapshot in teachers]


@router.get('/teachers/{teacher_id}', response_model=TeacherResponse)
def get_teacher(
    teacher_id: str,
    context: AuthContext = Depends(admin_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        snapshot = get_teacher_or_404(store, teacher_id)
    except HTTPException:
        log_activity('error', 'Attempted to load non-existent teacher', teacher_id=teacher_id)
        raise
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return teacher_response(snapshot)


@router.patch('/teachers/{teacher_id}', response_model=TeacherResponse)
def update_teacher(
    teacher_id: str,
    data: UpdateTeacherRequest,
    context: AuthContext = Depends(admin_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        get_teacher_or_404(store, teacher_id)
        updated = store.update(USERS, teacher_id, {
            'name': data.name,
            'department': data.department,
            'subject': data.subject,
        })
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to update teacher', error=str(exc), teacher_id=teacher_id)
        raise database_unavailable() from exc

    log_activity('info', 'Teacher details updated', teacher_id=teacher_id, admin_uid=context.uid)
    return teacher_response(updated)


@router.delete('/teachers/{teacher_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_teacher(
    teacher_id: str,
    context: AuthContext = Depends(admin_only),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    # Only the profile goes; the teacher's account is left in place and any
    # session it still holds is signed out by the page guard.
    try:
        get_teacher_or_404(store, teacher_id)
        store.delete(USERS, teacher_id)
    except SQLAlchemyError as exc:
        log_activity('error', 'Failed to delete teacher', error=str(exc), teacher_id=teacher_id)
        raise database_unavailable() from exc

    log_activity('warn', 'Teacher deleted', teacher_id=teacher_id, admin_uid=context.uid)
