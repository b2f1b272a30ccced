"""
OAuth account-linking routes.
- /start validates the link ticket and redirects to the provider
- /callback completes the exchange and redirects to the app with a credential
- /tickets issues link tickets for the initiating bot or web action
"""
import hmac
import logging
from datetime import timedelta

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..domain_errors import DomainError, LinkErrorKind
from ..models import as_utc
from ..schemas import LinkTicketCreate, LinkTicketResponse
from ..services.application_users import SqlAlchemyLinkStore
from ..services.link_tickets import ticket_log_id
from ..use_cases.authorization_flow import AuthorizationFlowCoordinator, AuthorizationOutcome
from ..use_cases.identity_reconciler import IdentityReconciler

router = APIRouter(prefix="/oauth", tags=["oauth"])
logger = logging.getLogger(__name__)


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def require_provider(provider: str, settings: Settings = Depends(get_settings_from_app)) -> str:
    if provider != settings.OAUTH_PROVIDER:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return provider


def get_link_store(db: Session = Depends(get_db)) -> SqlAlchemyLinkStore:
    return SqlAlchemyLinkStore(db)


def get_coordinator(
    request: Request,
    store: SqlAlchemyLinkStore = Depends(get_link_store),
) -> AuthorizationFlowCoordinator:
    state = request.app.state
    reconciler = IdentityReconciler(store=store, mappings=state.mapping_store)
    return AuthorizationFlowCoordinator(
        settings=state.settings,
        tickets=store.tickets,
        provider=state.identity_provider,
        reconciler=reconciler,
        issuer=state.credential_issuer,
    )


def outcome_to_response(
    outcome: AuthorizationOutcome,
    *,
    error_url: str,
    redirect_failures: bool,
) -> Response:
    """
    Single translation point from flow outcome to HTTP response.

    Missing parameters are always a plain 400. Other failures are either a
    plain status (machine-facing start link) or a bare redirect to the error
    page carrying no failure detail (human-facing callback).
    """
    if outcome.ok:
        return RedirectResponse(outcome.redirect_url, status_code=status.HTTP_302_FOUND)

    failure = outcome.failure
    if redirect_failures and failure.code != LinkErrorKind.MISSING_PARAMETER.value:
        return RedirectResponse(error_url, status_code=status.HTTP_302_FOUND)
    return PlainTextResponse(failure.message, status_code=failure.http_status)


@router.get("/{provider}/start", dependencies=[Depends(require_provider)])
def start_authorization(
    state: str | None = None,
    settings: Settings = Depends(get_settings_from_app),
    coordinator: AuthorizationFlowCoordinator = Depends(get_coordinator),
):
    """Validate the ticket carried in ``state`` and send the user to the provider."""
    outcome = coordinator.begin_authorization(state)
    return outcome_to_response(outcome, error_url=settings.PUBLIC_WEB_ERROR_URL, redirect_failures=False)


@router.get("/{provider}/callback", dependencies=[Depends(require_provider)])
def authorization_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    settings: Settings = Depends(get_settings_from_app),
    coordinator: AuthorizationFlowCoordinator = Depends(get_coordinator),
):
    """Provider redirect target: exchange the code, link the account, hand over a credential."""
    outcome = coordinator.complete_authorization(code, state, error=error)
    return outcome_to_response(outcome, error_url=settings.PUBLIC_WEB_ERROR_URL, redirect_failures=True)


@router.post(
    "/{provider}/tickets",
    response_model=LinkTicketResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_provider)],
)
def issue_link_ticket(
    payload: LinkTicketCreate | None = Body(default=None),
    x_link_api_key: str | None = Header(default=None),
    settings: Settings = Depends(get_settings_from_app),
    store: SqlAlchemyLinkStore = Depends(get_link_store),
):
    """
    Issue a single-use link ticket (store-backed policy only).

    Called by the chat bot or the web app, authenticated with the shared
    X-Link-Api-Key header. The returned start_url is what the user opens.
    """
    if not settings.LINK_TICKET_API_KEY or not settings.uses_ticket_store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    if not x_link_api_key or not hmac.compare_digest(x_link_api_key, settings.LINK_TICKET_API_KEY):
        logger.warning("❌ Ticket issuance rejected: bad api key")
        raise DomainError(
            code="LINK_API_KEY_INVALID",
            http_status=status.HTTP_401_UNAUTHORIZED,
            message="Invalid API key",
        )

    issuer_user_id = payload.issuer_user_id if payload else None
    ticket = store.tickets.create(issuer_user_id=issuer_user_id)
    store.commit()

    expires_at = as_utc(ticket.created_at) + timedelta(minutes=settings.LINK_TICKET_TTL_MINUTES)
    logger.info(f"✅ Issued link ticket {ticket_log_id(ticket.id)}, expires at {expires_at}")

    return LinkTicketResponse(
        state=ticket.id,
        start_url=settings.start_url(ticket.id),
        expires_at=expires_at,
    )
