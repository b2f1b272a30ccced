"""FastAPI application factory.

Run with ``uvicorn --factory link_bridge.main:create_app``.
"""
import logging

from fastapi import FastAPI

from .config import Settings, get_settings, validate_production_settings
from .database import Base, create_db_engine, create_session_factory
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .repositories import CredentialIssuer, IdentityProvider, LinkMappingStore
from .routers import oauth, pages
from .schemas import HealthResponse
from .services.credentials import JwtCredentialIssuer
from .services.discord_oauth import DiscordIdentityProvider
from .services.link_mappings import RedisLinkMappingStore

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    *,
    identity_provider: IdentityProvider | None = None,
    mapping_store: LinkMappingStore | None = None,
    credential_issuer: CredentialIssuer | None = None,
) -> FastAPI:
    """Build the app; collaborators default to the Discord/Redis/JWT implementations."""
    settings = settings or get_settings()
    configure_logging(settings)
    validate_production_settings(settings)

    engine = create_db_engine(settings)
    if settings.DATABASE_AUTO_CREATE:
        Base.metadata.create_all(bind=engine)

    app = FastAPI(
        title=settings.APP_NAME,
        version=VERSION,
        description="Links chat provider accounts to application accounts via OAuth",
        debug=settings.DEBUG,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.identity_provider = identity_provider or DiscordIdentityProvider(settings)
    app.state.mapping_store = mapping_store or RedisLinkMappingStore.from_settings(settings)
    app.state.credential_issuer = credential_issuer or JwtCredentialIssuer(settings)

    app.add_exception_handler(DomainError, domain_error_handler)

    app.include_router(oauth.router)
    app.include_router(pages.router)

    @app.get("/system/health", response_model=HealthResponse)
    def health_check():
        """Health check endpoint."""
        return HealthResponse(status="ok", version=VERSION, ticket_policy=settings.LINK_TICKET_POLICY)

    logger.info(f"Link bridge ready (provider={settings.OAUTH_PROVIDER}, ticket policy={settings.LINK_TICKET_POLICY})")
    return app
