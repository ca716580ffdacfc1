"""Document store model definitions."""

from sqlalchemy import JSON, Column, DateTime, String
from campus_booking.database import Base
from campus_booking.models.account import _utcnow


class Document(Base):
    """One JSON document, addressed by (collection, doc_id)."""
    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    doc_id = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
