"""Start and callback steps of the account-linking OAuth flow."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, TypeVar

from ..config import Settings, append_query_param
from ..domain_errors import DomainError, LinkErrorKind, link_error
from ..models import LinkTicket, utcnow
from ..repositories import CredentialIssuer, IdentityProvider, LinkTicketRepository
from ..services.link_tickets import (
    is_well_formed_external_id,
    is_well_formed_nonce,
    ticket_log_id,
)
from .identity_reconciler import IdentityReconciler

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FlowState(str, Enum):
    STARTED = "started"
    TOKEN_EXCHANGED = "token_exchanged"
    IDENTITY_FETCHED = "identity_fetched"
    RECONCILED = "reconciled"
    CREDENTIAL_ISSUED = "credential_issued"
    FAILED = "failed"


@dataclass
class AuthorizationOutcome:
    """Result of one flow step: a redirect target or a tagged failure."""

    state: FlowState
    redirect_url: Optional[str] = None
    failure: Optional[DomainError] = None
    failed_after: Optional[FlowState] = None
    user_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class AuthorizationFlowCoordinator:
    """
    Validates tickets, redirects to the provider and completes the callback.

    Steps run strictly in order: ticket check, code exchange, identity
    fetch, reconciliation, credential issuance. No step is retried; any
    failure ends the attempt and the user restarts from the initiating link.
    """

    def __init__(
        self,
        settings: Settings,
        tickets: LinkTicketRepository,
        provider: IdentityProvider,
        reconciler: IdentityReconciler,
        issuer: CredentialIssuer,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings
        self._tickets = tickets
        self._provider = provider
        self._reconciler = reconciler
        self._issuer = issuer
        self._clock = clock

    def begin_authorization(self, ticket_id: Optional[str]) -> AuthorizationOutcome:
        ticket_id = (ticket_id or "").strip()
        if not ticket_id:
            return self._fail(FlowState.STARTED, link_error(LinkErrorKind.MISSING_PARAMETER, "Missing state"), "")

        _, failure = self._attempt(LinkErrorKind.PERSISTENCE_ERROR, self._validate_ticket, ticket_id)
        if failure:
            return self._fail(FlowState.STARTED, failure, ticket_id)

        return AuthorizationOutcome(
            state=FlowState.STARTED,
            redirect_url=self._provider.authorization_url(ticket_id),
        )

    def complete_authorization(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> AuthorizationOutcome:
        ticket_id = (state or "").strip()
        if error:
            return self._fail(
                FlowState.STARTED,
                link_error(LinkErrorKind.AUTHORIZATION_DENIED, "Authorization was not granted", provider_error=error),
                ticket_id,
            )
        if not code or not ticket_id:
            return self._fail(
                FlowState.STARTED,
                link_error(LinkErrorKind.MISSING_PARAMETER, "Missing code or state"),
                ticket_id,
            )

        # Re-check before spending the code, so replays stop here.
        ticket, failure = self._attempt(LinkErrorKind.PERSISTENCE_ERROR, self._validate_ticket, ticket_id)
        if failure:
            return self._fail(FlowState.STARTED, failure, ticket_id)

        access_token, failure = self._attempt(LinkErrorKind.TOKEN_EXCHANGE_FAILED, self._provider.exchange_code, code)
        if failure:
            return self._fail(FlowState.STARTED, failure, ticket_id)

        identity, failure = self._attempt(
            LinkErrorKind.IDENTITY_FETCH_FAILED, self._provider.fetch_identity, access_token
        )
        if failure:
            return self._fail(FlowState.TOKEN_EXCHANGED, failure, ticket_id)

        # Format-only tickets name the account that asked for the link.
        if not self._settings.uses_ticket_store and identity.id != ticket_id:
            return self._fail(
                FlowState.IDENTITY_FETCHED,
                link_error(LinkErrorKind.MALFORMED_TICKET, "State does not match the authorized account"),
                ticket_id,
            )

        user_id, failure = self._attempt(
            LinkErrorKind.PERSISTENCE_ERROR, self._reconciler.reconcile, identity, ticket
        )
        if failure:
            return self._fail(FlowState.IDENTITY_FETCHED, failure, ticket_id)

        claims = None
        if self._settings.CREDENTIAL_EXTERNAL_ID_CLAIM:
            claims = {self._settings.CREDENTIAL_EXTERNAL_ID_CLAIM: identity.id}
        credential, failure = self._attempt(
            LinkErrorKind.CREDENTIAL_ISSUANCE_FAILED, self._issuer.issue, user_id, claims
        )
        if failure:
            return self._fail(FlowState.RECONCILED, failure, ticket_id)

        logger.info(f"Issued credential for user {user_id} (ticket {ticket_log_id(ticket_id)})")
        return AuthorizationOutcome(
            state=FlowState.CREDENTIAL_ISSUED,
            redirect_url=append_query_param(
                self._settings.PUBLIC_WEB_SUCCESS_URL,
                self._settings.SUCCESS_TOKEN_PARAM,
                credential,
            ),
            user_id=user_id,
        )

    def _validate_ticket(self, ticket_id: str) -> Optional[LinkTicket]:
        """Apply the configured ticket policy; the store-backed ticket is returned."""
        if not self._settings.uses_ticket_store:
            # Format-only policy: no store record, so no replay protection.
            if not is_well_formed_external_id(ticket_id):
                raise link_error(LinkErrorKind.MALFORMED_TICKET, "Bad state")
            return None

        if not is_well_formed_nonce(ticket_id):
            raise link_error(LinkErrorKind.MALFORMED_TICKET, "Bad state")

        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise link_error(LinkErrorKind.TICKET_NOT_FOUND, "Unknown link ticket")
        if ticket.used:
            raise link_error(LinkErrorKind.TICKET_ALREADY_USED, "Link ticket was already used")
        if ticket.is_expired(self._clock(), self._settings.LINK_TICKET_TTL_MINUTES):
            raise link_error(LinkErrorKind.TICKET_EXPIRED, "Link ticket has expired")
        return ticket

    def _attempt(
        self,
        kind: LinkErrorKind,
        step: Callable[..., T],
        *args,
    ) -> tuple[Optional[T], Optional[DomainError]]:
        """Run one step, turning any exception into a tagged failure of ``kind``."""
        try:
            return step(*args), None
        except DomainError as e:
            return None, e
        except Exception:
            logger.exception(f"❌ Unexpected error during {kind.value.lower()} step")
            return None, link_error(kind, "Unexpected failure")

    def _fail(self, reached: FlowState, failure: DomainError, ticket_id: str) -> AuthorizationOutcome:
        logger.warning(
            "❌ Link flow failed: code=%s, after=%s, ticket=%s",
            failure.code,
            reached.value,
            ticket_log_id(ticket_id) if ticket_id else "-",
        )
        return AuthorizationOutcome(
            state=FlowState.FAILED,
            failure=failure,
            failed_after=reached,
        )
