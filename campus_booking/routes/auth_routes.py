from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_booking.auth.dependencies import get_identity_client, get_profile_reader
from campus_booking.auth.guard import login_entry_point
from campus_booking.core import config
from campus_booking.core.activity import log_activity
from campus_booking.core.roles import ADMIN, STUDENT, TEACHER
from campus_booking.routes.common import database_unavailable, ensure_database_ready, get_db, get_document_store
from campus_booking.services.documents import USERS, AsyncDocumentReader, DocumentStore
from campus_booking.services.identity import IdentityClient, IdentityError, IdentityService

router = APIRouter(tags=['auth'])

REGISTRATION_MESSAGE = 'Registration successful. Please wait for admin approval.'
DASHBOARD_PAGES = {
    ADMIN: 'admin/dashboard.html',
    TEACHER: 'teacher/dashboard.html',
    STUDENT: 'student/dashboard.html',
}


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Email is required.')
        return normalized


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    uid: str
    role: str
    redirect: str


class NavigationResponse(BaseModel):
    redirect: str
    message: str | None = None


@router.post('/register', response_model=NavigationResponse, status_code=status.HTTP_201_CREATED)
def register(
    data: RegisterRequest,
    db: Session = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
):
    ensure_database_ready()

    try:
        account = IdentityService(db).create_account(data.email, data.password)
    except IdentityError as exc:
        log_activity('error', 'Registration failed', error=exc.message)
        status_code = status.HTTP_409_CONFLICT if exc.code == 'email-already-in-use' else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=status_code, detail=exc.message) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
    log_activity('info', 'New user registered in Auth', email=account.email)

    try:
        store.set(USERS, account.uid, {
            'name': data.name,
            'email': account.email,
            'role': STUDENT,
            'is_approved': False,
        })
    except SQLAlchemyError as exc:
        # The account stays behind; the page guard signs such sessions out.
        log_activity('error', 'User document write failed after registration', uid=account.uid)
        raise database_unavailable() from exc
    log_activity('info', 'User document created', uid=account.uid)

    return NavigationResponse(
        redirect=f'{config.LOGIN_ENTRY_POINT}?{urlencode({"message": REGISTRATION_MESSAGE})}',
        message=REGISTRATION_MESSAGE,
    )


@router.post('/login', response_model=LoginResponse)
async def login(
    data: LoginRequest,
    identity: IdentityClient = Depends(get_identity_client),
    profiles: AsyncDocumentReader = Depends(get_profile_reader),
):
    try:
        session, token = await identity.sign_in(data.email, data.password)
    except IdentityError as exc:
        log_activity('error', 'Login failed', error=exc.message)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid email or password.') from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
    log_activity('info', 'User login attempt', email=session.email)

    try:
        snapshot = await profiles.get_record(USERS, session.uid)
    except SQLAlchemyError as exc:
        await identity.sign_out()
        raise database_unavailable() from exc

    if not snapshot.exists:
        log_activity('error', 'User data not found in database.', uid=session.uid)
        await identity.sign_out()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='User data not found in database.')

    role = snapshot.data.get('role')
    if role == STUDENT and not snapshot.data.get('is_approved'):
        log_activity('warn', 'Unapproved student login attempt', email=session.email)
        await identity.sign_out()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Your account is not yet approved by an admin.',
        )

    if role not in DASHBOARD_PAGES:
        log_activity('error', 'Login with unknown role', uid=session.uid, role=role)
        await identity.sign_out()
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Unknown role.')

    log_activity('info', 'Login successful, redirecting', role=role)
    return LoginResponse(access_token=token, uid=session.uid, role=role, redirect=DASHBOARD_PAGES[role])


@router.post('/logout', response_model=NavigationResponse)
async def logout(
    page: str = Query(default='/'),
    identity: IdentityClient = Depends(get_identity_client),
):
    try:
        await identity.sign_out()
    except SQLAlchemyError as exc:
        log_activity('error', 'Logout failed', error=str(exc))
        raise database_unavailable() from exc
    log_activity('info', 'User logged out')
    return NavigationResponse(redirect=login_entry_point(page))
