"""SQLAlchemy-backed application user repository and unit of work."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models import User
from ..repositories import ExternalIdentity
from .link_tickets import SqlAlchemyLinkTicketRepository


class SqlAlchemyApplicationUserRepository:
    def __init__(self, db: Session):
        self._db = db

    def get(self, user_id: str) -> Optional[User]:
        return self._db.get(User, user_id)

    def find_by_external_id(self, external_id: str) -> Optional[User]:
        return self._db.query(User).filter(User.external_id == external_id).first()

    def create_linked(self, identity: ExternalIdentity, linked_at: datetime) -> User:
        user = User(name=identity.display_name)
        self.apply_external_profile(user, identity, linked_at)
        self._db.add(user)
        # Flush now so a unique-constraint conflict is raised to the caller.
        self._db.flush()
        return user

    def apply_external_profile(self, user: User, identity: ExternalIdentity, linked_at: datetime) -> None:
        user.external_id = identity.id
        user.external_display_name = identity.display_name
        user.external_avatar_url = identity.avatar_url
        user.external_linked_at = linked_at


class SqlAlchemyLinkStore:
    """Ticket and user repositories over one session, committed together."""

    def __init__(self, db: Session):
        self._db = db
        self.tickets = SqlAlchemyLinkTicketRepository(db)
        self.users = SqlAlchemyApplicationUserRepository(db)

    def commit(self) -> None:
        self._db.commit()

    def rollback(self) -> None:
        self._db.rollback()
