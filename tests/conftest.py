import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-that-is-long-enough-for-hs256')

from campus_booking.database import Base  # noqa: E402
from campus_booking.models.account import Account  # noqa: E402
from campus_booking.models.auth_session import AuthSession  # noqa: E402
from campus_booking.models.document import Document  # noqa: E402
from campus_booking.services.documents import ChangeFeed, DocumentStore  # noqa: E402

TABLES = [Account.__table__, AuthSession.__table__, Document.__table__]
ROUTE_MODULES = ('admin_routes', 'auth_routes', 'student_routes', 'teacher_routes')


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return DocumentStore(db, feed=ChangeFeed())


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    for module in ROUTE_MODULES:
        monkeypatch.setattr(f'campus_booking.routes.{module}.ensure_database_ready', lambda: None)
