"""Credential-based identity service.

``IdentityService`` owns accounts and sessions and is used from synchronous
code with a database session. ``IdentityClient`` is the per-client view the
page guard consumes: it holds one bearer token, restores the session behind
it and notifies subscribers whenever that session changes.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import jwt
from fastapi.concurrency import run_in_threadpool
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from campus_booking.auth import jwt_handler
from campus_booking.core import config
from campus_booking.database import SessionLocal
from campus_booking.models.account import Account
from campus_booking.models.auth_session import AuthSession
from campus_booking.services.subscriptions import Subscription

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class IdentityError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class IdentitySession:
    uid: str
    email: str
    session_id: str


def normalize_email(email: str) -> str:
    return email.strip().lower()


class IdentityService:
    def __init__(self, db: Session):
        self.db = db

    def create_account(self, email: str, password: str) -> Account:
        normalized = normalize_email(email)
        if not EMAIL_PATTERN.match(normalized):
            raise IdentityError("invalid-email", "The email address is badly formatted.")
        if len(password) < config.MIN_PASSWORD_LENGTH:
            raise IdentityError(
                "weak-password",
                f"Password should be at least {config.MIN_PASSWORD_LENGTH} characters.",
            )
        if self.db.query(Account).filter(Account.email == normalized).first():
            raise IdentityError("email-already-in-use", "The email address is already in use.")

        account = Account(
            uid=uuid.uuid4().hex,
            email=normalized,
            hashed_password=pwd_context.hash(password),
        )
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise IdentityError("email-already-in-use", "The email address is already in use.") from exc
        self.db.refresh(account)
        return account

    def sign_in(self, email: str, password: str) -> tuple[IdentitySession, str]:
        account = self.db.query(Account).filter(Account.email == normalize_email(email)).first()
        if account is None or not pwd_context.verify(password, account.hashed_password):
            raise IdentityError("invalid-credential", "Invalid email or password.")

        auth_session = AuthSession(id=uuid.uuid4().hex, uid=account.uid)
        self.db.add(auth_session)
        self.db.commit()

        token = jwt_handler.create_access_token(subject=account.uid, session_id=auth_session.id)
        return IdentitySession(uid=account.uid, email=account.email, session_id=auth_session.id), token

    def resolve(self, token: str | None) -> IdentitySession | None:
        if not token:
            return None
        try:
            payload = jwt_handler.decode_access_token(token)
        except jwt.PyJWTError:
            return None

        uid = payload.get("sub")
        session_id = payload.get("jti")
        if not uid or not session_id:
            return None

        auth_session = self.db.get(AuthSession, session_id)
        if auth_session is None or auth_session.revoked_at is not None or auth_session.uid != uid:
            return None

        account = self.db.get(Account, uid)
        if account is None:
            return None
        return IdentitySession(uid=account.uid, email=account.email, session_id=session_id)

    def revoke(self, session_id: str) -> None:
        auth_session = self.db.get(AuthSession, session_id)
        if auth_session is None or auth_session.revoked_at is not None:
            return
        auth_session.revoked_at = datetime.now(timezone.utc)
        self.db.commit()


class IdentityClient:
    def __init__(self, token: str | None = None, session_factory=SessionLocal):
        self._token = token
        self._session_factory = session_factory
        self._current: IdentitySession | None = None
        self._restored = False
        self._subscribers: list[tuple[Subscription, Callable[[IdentitySession | None], None]]] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def token(self) -> str | None:
        return self._token

    def _call(self, method: str, *args):
        db = self._session_factory()
        try:
            return getattr(IdentityService(db), method)(*args)
        finally:
            db.close()

    async def current_session(self) -> IdentitySession | None:
        if not self._restored:
            self._current = await run_in_threadpool(self._call, "resolve", self._token)
            self._restored = True
        return self._current

    def subscribe(
        self,
        on_change: Callable[[IdentitySession | None], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        """Register ``on_change``; it first fires with the restored session.

        When restoring the session fails, ``on_error`` receives the exception
        instead and ``on_change`` is not called for the initial state.
        """
        subscription = Subscription(on_cancel=self._remove)
        self._subscribers.append((subscription, on_change))

        task = asyncio.get_running_loop().create_task(self._emit_initial(subscription, on_change, on_error))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        self._subscribers = [entry for entry in self._subscribers if entry[0] is not subscription]

    async def _emit_initial(self, subscription: Subscription, on_change, on_error) -> None:
        try:
            session = await self.current_session()
        except SQLAlchemyError as exc:
            if not subscription.active:
                return
            if on_error is None:
                logger.exception("Session restore failed")
            else:
                on_error(exc)
            return
        if subscription.active:
            on_change(session)

    def _emit(self, session: IdentitySession | None) -> None:
        for subscription, on_change in list(self._subscribers):
            if subscription.active:
                on_change(session)

    async def sign_in(self, email: str, password: str) -> tuple[IdentitySession, str]:
        session, token = await run_in_threadpool(self._call, "sign_in", email, password)
        self._token = token
        self._current = session
        self._restored = True
        self._emit(session)
        return session, token

    async def sign_out(self) -> None:
        session = await self.current_session()
        if session is None:
            return
        await run_in_threadpool(self._call, "revoke", session.session_id)
        logger.info("Session %s signed out", session.session_id)
        self._token = None
        self._current = None
        self._emit(None)
