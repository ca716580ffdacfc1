from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_booking.database import SessionLocal, ensure_document_schema, ensure_identity_schema
from campus_booking.services.documents import ChangeFeed, DocumentStore

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE,
    )


def ensure_database_ready() -> None:
    try:
        ensure_document_schema()
        ensure_identity_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_change_feed(request: Request) -> ChangeFeed:
    feed = getattr(request.app.state, 'change_feed', None)
    if feed is None:
        feed = request.app.state.change_feed = ChangeFeed()
    return feed


def get_document_store(
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> DocumentStore:
    return DocumentStore(db, feed=feed)
