from urllib.parse import urljoin

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError

from campus_booking.auth.guard import AuthContext, GuardOutcome, PageGuard
from campus_booking.core import config
from campus_booking.core.activity import log_activity
from campus_booking.routes.common import database_unavailable
from campus_booking.services.documents import AsyncDocumentReader
from campus_booking.services.identity import IdentityClient

security = HTTPBearer(auto_error=False)


class PageRedirect(Exception):
    def __init__(self, location: str, outcome: GuardOutcome):
        super().__init__(location)
        self.location = location
        self.outcome = outcome


def get_identity_client(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> IdentityClient:
    token = credentials.credentials if credentials else None
    return IdentityClient(token=token)


def get_profile_reader() -> AsyncDocumentReader:
    return AsyncDocumentReader()


def page_for_request(path: str) -> str:
    """Collapse an API path to the page it stands for.

    Role-area pages sit one level below the entry point, so
    ``/student/teachers/42/booking`` is the ``/student/teachers`` page.
    """
    segments = [segment for segment in path.split('/') if segment]
    if segments and segments[0] in config.ROLE_AREAS:
        return '/' + '/'.join(segments[:2])
    return '/' + '/'.join(segments)


def require_roles(*roles: str):
    async def guard_page(
        request: Request,
        identity: IdentityClient = Depends(get_identity_client),
        profiles: AsyncDocumentReader = Depends(get_profile_reader),
    ) -> AuthContext:
        page_path = page_for_request(request.url.path)
        guard = PageGuard(roles, identity, profiles, page_path, navigate=lambda _target: None)
        guard.start()
        try:
            decision = await guard.settled()
            if decision.outcome is GuardOutcome.AUTHORIZED:
                return await guard.ready()
        except SQLAlchemyError as exc:
            log_activity('error', 'Session restore failed', error=str(exc), page=page_path)
            raise database_unavailable() from exc
        finally:
            guard.stop()

        if decision.outcome is GuardOutcome.PUBLIC:
            raise HTTPException(status_code=401, detail="Not authenticated")
        raise PageRedirect(urljoin(page_path, decision.redirect_to), decision.outcome)

    return guard_page
