"""Find-or-create of the application user for an external identity."""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..domain_errors import DomainError, LinkErrorKind, link_error
from ..models import LinkTicket, User, utcnow
from ..repositories import (
    ExternalIdentity,
    LinkMapping,
    LinkMappingStore,
    LinkStore,
    MarkUsedResult,
)
from ..services.link_tickets import ticket_log_id

logger = logging.getLogger(__name__)


class IdentityReconciler:
    """
    Links an external identity to exactly one application user.

    - A user already carrying the external id is updated in place.
    - Otherwise the ticket issuer's account is linked, if the ticket names one.
    - Otherwise a new user is created.

    The user write and the ticket's used flag are committed in one
    transaction; the mapping entry is written only after that commit.
    """

    def __init__(
        self,
        store: LinkStore,
        mappings: LinkMappingStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._mappings = mappings
        self._clock = clock

    def reconcile(self, identity: ExternalIdentity, ticket: Optional[LinkTicket] = None) -> str:
        """Return the internal user id linked to ``identity``."""
        linked_at = self._clock()
        ticket_id = ticket.id if ticket is not None else None
        issuer_user_id = ticket.issuer_user_id if ticket is not None else None

        try:
            user, replaced_external_id = self._find_or_create(identity, issuer_user_id, linked_at)
            user_id = user.id
            if ticket_id is not None:
                self._claim_ticket(ticket_id)
            self._store.commit()
        except DomainError:
            self._store.rollback()
            raise
        except SQLAlchemyError as e:
            self._store.rollback()
            logger.error(f"Reconcile write failed for external id {identity.id}: {e}")
            raise link_error(LinkErrorKind.PERSISTENCE_ERROR, "Could not save linked account") from e

        if replaced_external_id:
            self._mappings.delete(replaced_external_id)
        self._mappings.upsert(
            LinkMapping(external_id=identity.id, internal_id=user_id, linked_at=linked_at)
        )

        logger.info(f"✅ Linked external id {identity.id} to user {user_id}")
        return user_id

    def _find_or_create(
        self,
        identity: ExternalIdentity,
        issuer_user_id: Optional[str],
        linked_at: datetime,
    ) -> tuple[User, Optional[str]]:
        users = self._store.users

        existing = users.find_by_external_id(identity.id)
        if existing is not None:
            users.apply_external_profile(existing, identity, linked_at)
            return existing, None

        if issuer_user_id:
            issuer = users.get(issuer_user_id)
            if issuer is not None:
                previous = issuer.external_id
                users.apply_external_profile(issuer, identity, linked_at)
                return issuer, previous
            logger.warning(f"Ticket issuer {issuer_user_id} not found, creating a new user")

        try:
            return users.create_linked(identity, linked_at), None
        except IntegrityError:
            # Lost a race against another callback for the same identity:
            # converge on the record the other request created.
            self._store.rollback()
            winner = users.find_by_external_id(identity.id)
            if winner is None:
                raise
            logger.warning(f"Concurrent link for external id {identity.id}, reusing user {winner.id}")
            users.apply_external_profile(winner, identity, linked_at)
            return winner, None

    def _claim_ticket(self, ticket_id: str) -> None:
        result = self._store.tickets.mark_used(ticket_id)
        if result is MarkUsedResult.MARKED:
            return
        if result is MarkUsedResult.ALREADY_USED:
            raise link_error(
                LinkErrorKind.TICKET_ALREADY_USED,
                "Link ticket was already used",
                ticket=ticket_log_id(ticket_id),
            )
        raise link_error(
            LinkErrorKind.TICKET_NOT_FOUND,
            "Link ticket not found",
            ticket=ticket_log_id(ticket_id),
        )
