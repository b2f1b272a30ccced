"""SQLAlchemy-backed link-state store and ticket format checks."""
from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain_errors import LinkErrorKind, link_error
from ..models import LinkTicket, utcnow
from ..repositories import MarkUsedResult

logger = logging.getLogger(__name__)

NONCE_TICKET_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")
EXTERNAL_ID_TICKET_PATTERN = re.compile(r"^\d{17,20}$")


def generate_ticket_id() -> str:
    return secrets.token_urlsafe(32)  # 43 chars base64url


def is_well_formed_nonce(value: str) -> bool:
    return bool(NONCE_TICKET_PATTERN.match(value))


def is_well_formed_external_id(value: str) -> bool:
    return bool(EXTERNAL_ID_TICKET_PATTERN.match(value))


def ticket_log_id(ticket_id: str) -> str:
    """Shortened ticket id for log lines."""
    return f"{ticket_id[:10]}..." if len(ticket_id) > 10 else ticket_id


class SqlAlchemyLinkTicketRepository:
    def __init__(self, db: Session):
        self._db = db

    def get(self, ticket_id: str) -> Optional[LinkTicket]:
        try:
            return self._db.get(LinkTicket, ticket_id, populate_existing=True)
        except SQLAlchemyError as e:
            logger.error(f"Ticket lookup failed for {ticket_log_id(ticket_id)}: {e}")
            raise link_error(LinkErrorKind.PERSISTENCE_ERROR, "Link ticket store unavailable") from e

    def create(
        self,
        *,
        issuer_user_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        ticket_id: Optional[str] = None,
    ) -> LinkTicket:
        ticket = LinkTicket(
            id=ticket_id or generate_ticket_id(),
            created_at=created_at or utcnow(),
            used=False,
            issuer_user_id=issuer_user_id,
        )
        try:
            self._db.add(ticket)
            self._db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Ticket insert failed: {e}")
            raise link_error(LinkErrorKind.PERSISTENCE_ERROR, "Link ticket store unavailable") from e
        return ticket

    def mark_used(self, ticket_id: str) -> MarkUsedResult:
        try:
            # Single conditional UPDATE: the database serializes racing callers
            # so only one of them can match used = false.
            updated = self._db.query(LinkTicket).filter(
                LinkTicket.id == ticket_id,
                LinkTicket.used.is_(False),
            ).update({"used": True, "used_at": utcnow()}, synchronize_session=False)

            if updated == 1:
                return MarkUsedResult.MARKED

            exists = self._db.query(LinkTicket.id).filter(LinkTicket.id == ticket_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Ticket update failed for {ticket_log_id(ticket_id)}: {e}")
            raise link_error(LinkErrorKind.PERSISTENCE_ERROR, "Link ticket store unavailable") from e

        if exists is None:
            return MarkUsedResult.NOT_FOUND
        logger.warning(f"Ticket {ticket_log_id(ticket_id)} was already used")
        return MarkUsedResult.ALREADY_USED
