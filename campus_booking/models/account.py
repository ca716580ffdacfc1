"""Identity account model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
from campus_booking.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    """Credential record owned by the identity service."""
    __tablename__ = "accounts"

    uid = Column(String(32), primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
