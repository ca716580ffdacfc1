import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from campus_booking.auth.dependencies import PageRedirect, require_roles
from campus_booking.auth.guard import AuthContext
from campus_booking.core import config
from campus_booking.core.roles import ROLES
from campus_booking.database import Base, engine, ensure_document_schema, ensure_identity_schema
from campus_booking.models import account, auth_session, document
from campus_booking.routes import admin_routes, auth_routes, student_routes, teacher_routes
from campus_booking.services.documents import ChangeFeed

logging.basicConfig(level=config.LOG_LEVEL)
config.validate_runtime_config()

app = FastAPI(title='Campus Booking')
app.state.change_feed = ChangeFeed()

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(config.CORS_ALLOW_ORIGINS),
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(
            bind=engine,
            tables=[account.Account.__table__, auth_session.AuthSession.__table__, document.Document.__table__],
        )
        ensure_document_schema()
        ensure_identity_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.exception_handler(PageRedirect)
async def page_redirect_handler(request: Request, exc: PageRedirect):
    return RedirectResponse(url=exc.location, status_code=303)


@app.get('/')
def root():
    return {'status': 'Campus Booking API Running'}


@app.get('/me')
def me(context: AuthContext = Depends(require_roles(*ROLES))):
    return {'uid': context.uid, 'profile': dict(context.profile)}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(admin_routes.router, prefix='/admin')
app.include_router(teacher_routes.router, prefix='/teacher')
app.include_router(student_routes.router, prefix='/student')
