"""Auth session model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, String
from campus_booking.database import Base
from campus_booking.models.account import _utcnow


class AuthSession(Base):
    """A signed-in session. Revoked sessions stay for auditing."""
    __tablename__ = "auth_sessions"

    id = Column(String(32), primary_key=True)
    uid = Column(String(32), ForeignKey("accounts.uid"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
