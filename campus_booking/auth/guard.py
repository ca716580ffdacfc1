"""Page authorization guard.

A guard is created once per page load with the roles the page admits. It
listens to the identity client's session stream and, for every event,
decides between three states:

* no session: redirect to the login entry point on role-area pages, do
  nothing on public pages;
* session without a ``users`` profile: force a sign-out, then redirect;
* session with a profile: authorize when the profile role is admitted,
  otherwise redirect and leave the session alone.

Authorization resolves a one-shot *ready* future with an ``AuthContext``.
Page loaders wait on it and receive the context explicitly. A newer session
event cancels the evaluation of an older one, so a slow profile lookup can
never redirect or authorize on behalf of a session that is already gone.

If the session itself cannot be restored, the guard stops and
``settled`` raises the error; nothing is navigated.

Approval of students is checked at sign-in only, never here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Protocol

from campus_booking.core import config
from campus_booking.core.activity import log_activity
from campus_booking.services.documents import USERS, Snapshot
from campus_booking.services.identity import IdentitySession
from campus_booking.services.subscriptions import Subscription

logger = logging.getLogger(__name__)


class SessionSource(Protocol):
    def subscribe(
        self,
        on_change: Callable[[IdentitySession | None], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription: ...

    async def sign_out(self) -> None: ...


class ProfileSource(Protocol):
    async def get_record(self, collection: str, doc_id: str) -> Snapshot: ...


class GuardOutcome(str, Enum):
    AUTHORIZED = 'authorized'
    PUBLIC = 'public'
    NO_SESSION = 'no_session'
    PROFILE_MISSING = 'profile_missing'
    LOOKUP_FAILED = 'lookup_failed'
    ROLE_MISMATCH = 'role_mismatch'
    RELOAD = 'reload'


FORCED_SIGN_OUT_OUTCOMES = {GuardOutcome.PROFILE_MISSING, GuardOutcome.LOOKUP_FAILED}


@dataclass(frozen=True)
class AuthContext:
    uid: str
    profile: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'profile', MappingProxyType(dict(self.profile)))

    @property
    def role(self) -> str | None:
        return self.profile.get('role')

    @property
    def name(self) -> str:
        return self.profile.get('name') or ''


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    redirect_to: str | None = None
    context: AuthContext | None = None


def is_role_area(page_path: str, role_areas: Iterable[str] | None = None) -> bool:
    areas = config.ROLE_AREAS if role_areas is None else role_areas
    return any(f'/{area}/' in page_path for area in areas)


def login_entry_point(page_path: str, entry_point: str | None = None) -> str:
    entry = config.LOGIN_ENTRY_POINT if entry_point is None else entry_point
    if entry.startswith('/') or '://' in entry:
        return entry
    if is_role_area(page_path):
        return f'../{entry}'
    return entry


class PageGuard:
    def __init__(
        self,
        allowed_roles: Iterable[str],
        identity: SessionSource,
        profiles: ProfileSource,
        page_path: str,
        navigate: Callable[[str], None],
        entry_point: str | None = None,
    ):
        self.allowed_roles = frozenset(allowed_roles)
        self.identity = identity
        self.profiles = profiles
        self.page_path = page_path
        self.navigate = navigate
        self.login_url = login_entry_point(page_path, entry_point)

        self._subscription: Subscription | None = None
        self._task: asyncio.Task | None = None
        self._generation = 0
        self._finished = False
        self._context: AuthContext | None = None
        self._ready: asyncio.Future | None = None
        self._decision: asyncio.Future | None = None

    @property
    def context(self) -> AuthContext | None:
        return self._context

    def start(self) -> Subscription:
        if self._subscription is not None:
            return self._subscription

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._decision = loop.create_future()
        self._subscription = self.identity.subscribe(self._on_session_change, self._on_session_error)
        return self._subscription

    def stop(self) -> None:
        self._finished = True
        if self._subscription is not None:
            self._subscription.cancel()
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    async def ready(self) -> AuthContext:
        if self._ready is None:
            raise RuntimeError('PageGuard.start() must be called before waiting on it.')
        return await asyncio.shield(self._ready)

    async def settled(self) -> GuardDecision:
        """Wait for the first decision that was not superseded."""
        if self._decision is None:
            raise RuntimeError('PageGuard.start() must be called before waiting on it.')
        return await asyncio.shield(self._decision)

    def _on_session_change(self, session: IdentitySession | None) -> None:
        if self._finished:
            return
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._generation += 1
        self._task = asyncio.get_running_loop().create_task(self._run(session, self._generation))

    def _on_session_error(self, exc: Exception) -> None:
        # No session state to decide on; the page load ends with the error.
        if self._finished:
            return
        logger.error('Session restore failed for page %s: %s', self.page_path, exc)
        self.stop()
        if not self._decision.done():
            self._decision.set_exception(exc)

    async def _run(self, session: IdentitySession | None, generation: int) -> None:
        try:
            decision = await self.evaluate(session)
            if generation != self._generation or self._finished:
                return
            await self._apply(decision)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._decision.done():
                self._decision.set_exception(exc)

    async def evaluate(self, session: IdentitySession | None) -> GuardDecision:
        if session is None:
            if not is_role_area(self.page_path):
                return GuardDecision(GuardOutcome.PUBLIC)
            return GuardDecision(GuardOutcome.NO_SESSION, redirect_to=self.login_url)

        try:
            snapshot = await self.profiles.get_record(USERS, session.uid)
        except Exception:
            logger.exception('Profile lookup failed for %s', session.uid)
            return GuardDecision(GuardOutcome.LOOKUP_FAILED, redirect_to=self.login_url)

        if not snapshot.exists:
            return GuardDecision(GuardOutcome.PROFILE_MISSING, redirect_to=self.login_url)

        role = snapshot.data.get('role')
        if role not in self.allowed_roles:
            return GuardDecision(GuardOutcome.ROLE_MISMATCH, redirect_to=self.login_url)

        if self._context is not None and self._context.uid != session.uid:
            return GuardDecision(GuardOutcome.RELOAD, redirect_to=self.page_path)

        return GuardDecision(
            GuardOutcome.AUTHORIZED,
            context=AuthContext(uid=session.uid, profile=dict(snapshot.data)),
        )

    async def _apply(self, decision: GuardDecision) -> None:
        outcome = decision.outcome

        if outcome is GuardOutcome.AUTHORIZED:
            if self._context is None:
                self._context = decision.context
                log_activity(
                    'info',
                    'User authorized for page',
                    uid=decision.context.uid,
                    role=decision.context.role,
                    page=self.page_path,
                )
                self._ready.set_result(decision.context)
            self._settle(decision)
            return

        if outcome is GuardOutcome.PUBLIC:
            self._settle(decision)
            return

        # Every other outcome leaves the page; later session events are moot.
        self._finished = True
        if self._subscription is not None:
            self._subscription.cancel()

        if outcome in FORCED_SIGN_OUT_OUTCOMES:
            log_activity('error', 'User doc not found. Logging out.', outcome=outcome.value, page=self.page_path)
            try:
                await self.identity.sign_out()
            except Exception:
                logger.exception('Forced sign-out failed')
        elif outcome is GuardOutcome.ROLE_MISMATCH:
            log_activity('warn', 'Role mismatch. Redirecting.', page=self.page_path)
        elif outcome is GuardOutcome.NO_SESSION:
            log_activity('info', 'No user logged in. Redirecting to login.', page=self.page_path)
        else:
            log_activity('info', 'Session changed after authorization. Reloading page.', page=self.page_path)

        self.navigate(decision.redirect_to)
        self._settle(decision)

    def _settle(self, decision: GuardDecision) -> None:
        if not self._decision.done():
            self._decision.set_result(decision)
