"""Ports used by the linking use cases.

Use cases depend only on these protocols; SQLAlchemy, Redis and the
provider HTTP client live behind them in ``services/``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from .models import LinkTicket, User


@dataclass(frozen=True)
class ExternalIdentity:
    """Profile returned by the chat provider for the duration of one callback."""

    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class LinkMapping:
    """Fast-lookup entry read by the chat bot."""

    external_id: str
    internal_id: str
    linked_at: datetime


class MarkUsedResult(str, Enum):
    MARKED = "marked"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"


class LinkTicketRepository(Protocol):
    """Read path of the link-state store plus the single-use transition."""

    def get(self, ticket_id: str) -> Optional[LinkTicket]:
        """Return the ticket, or None if it does not exist."""
        ...

    def create(
        self,
        *,
        issuer_user_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        ticket_id: Optional[str] = None,
    ) -> LinkTicket:
        """Persist a new unused ticket (random nonce id unless given)."""
        ...

    def mark_used(self, ticket_id: str) -> MarkUsedResult:
        """
        Flip ``used`` false -> true as one conditional write.

        Exactly one concurrent caller gets MARKED for a given ticket; every
        other caller gets ALREADY_USED.
        """
        ...


class ApplicationUserRepository(Protocol):
    def get(self, user_id: str) -> Optional[User]:
        ...

    def find_by_external_id(self, external_id: str) -> Optional[User]:
        ...

    def create_linked(self, identity: ExternalIdentity, linked_at: datetime) -> User:
        """Insert a new user carrying the external id; flushes so conflicts surface here."""
        ...

    def apply_external_profile(self, user: User, identity: ExternalIdentity, linked_at: datetime) -> None:
        """Overwrite the mirrored profile fields on an existing user."""
        ...


class LinkStore(Protocol):
    """Tickets and users sharing one transaction."""

    tickets: LinkTicketRepository
    users: ApplicationUserRepository

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class LinkMappingStore(Protocol):
    """externalId -> internalId store kept outside the primary database."""

    def get(self, external_id: str) -> Optional[LinkMapping]:
        ...

    def upsert(self, mapping: LinkMapping) -> None:
        """Last write wins."""
        ...

    def delete(self, external_id: str) -> None:
        ...


class IdentityProvider(Protocol):
    """Chat provider OAuth endpoints."""

    def authorization_url(self, state: str) -> str:
        """Authorize URL carrying ``state`` verbatim."""
        ...

    def exchange_code(self, code: str) -> str:
        """Return an access token, or raise TOKEN_EXCHANGE_FAILED."""
        ...

    def fetch_identity(self, access_token: str) -> ExternalIdentity:
        """Return the caller's profile, or raise IDENTITY_FETCH_FAILED."""
        ...


class CredentialIssuer(Protocol):
    def issue(self, user_id: str, claims: Optional[dict] = None) -> str:
        """Signed opaque token for ``user_id``, or raise CREDENTIAL_ISSUANCE_FAILED."""
        ...
