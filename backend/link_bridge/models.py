"""SQLAlchemy models for link tickets and application users."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, String
from sqlalchemy.sql import func

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a stored timestamp; SQLite hands back naive datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class User(Base):
    """Application account; the external_* columns mirror the linked chat profile."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    # Unique when present; NULL for accounts that never linked.
    external_id = Column(String(32), nullable=True, unique=True, index=True)
    external_display_name = Column(String(255), nullable=True)
    external_avatar_url = Column(String(512), nullable=True)
    external_linked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class LinkTicket(Base):
    """Single-use authorization ticket; its id travels as the OAuth state."""
    __tablename__ = "link_tickets"

    id = Column(String(128), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    issuer_user_id = Column(String(64), nullable=True, index=True)

    __table_args__ = (
        Index("idx_link_tickets_created_unused", "created_at", postgresql_where=(used == False)),  # noqa: E712
    )

    def is_expired(self, now: datetime, ttl_minutes: int) -> bool:
        age = as_utc(now) - as_utc(self.created_at)
        return age.total_seconds() > ttl_minutes * 60
