"""Application configuration."""
from functools import lru_cache
from typing import Literal
from urllib.parse import urlencode

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Bridge settings, built once and handed to every collaborator."""

    # App
    APP_NAME: str = "Discord Link Bridge"
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database (tickets + application users)
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    # Only for local runs and tests; production schema comes from alembic.
    DATABASE_AUTO_CREATE: bool = False

    # Mapping store read by the chat bot (externalId -> internal uid)
    LINK_MAPPING_REDIS_URL: str = "redis://localhost:6379/0"
    LINK_MAPPING_KEY_PREFIX: str = "discordLinks"
    LINK_MAPPING_SOCKET_TIMEOUT_SECONDS: float = 5.0

    # OAuth provider
    OAUTH_PROVIDER: str = "discord"
    DISCORD_CLIENT_ID: str
    DISCORD_CLIENT_SECRET: str
    DISCORD_REDIRECT_URI: str
    DISCORD_AUTHORIZE_URL: str = "https://discord.com/oauth2/authorize"
    DISCORD_API_BASE_URL: str = "https://discord.com/api"
    DISCORD_CDN_BASE_URL: str = "https://cdn.discordapp.com"
    DISCORD_SCOPE: str = "identify"
    DISCORD_PROMPT: str | None = None
    OAUTH_HTTP_TIMEOUT_SECONDS: float = 10.0

    # Redirect destinations
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    PUBLIC_WEB_SUCCESS_URL: str = "/discord-login-success"
    PUBLIC_WEB_ERROR_URL: str = "/discord-login-error"
    SUCCESS_TOKEN_PARAM: str = "customToken"

    # Static pages
    APP_DISPLAY_NAME: str = "KC Events"
    APP_LOGIN_URL: str = "https://kcevents.uk/#loginpage"

    # Link tickets
    # "nonce": server-issued ticket checked against the store (anti-replay).
    # "external_id": state is the raw external id, format check only.
    LINK_TICKET_POLICY: Literal["nonce", "external_id"] = "nonce"
    LINK_TICKET_TTL_MINUTES: int = 15
    LINK_TICKET_API_KEY: str | None = None

    # Issued credential
    CREDENTIAL_SECRET_KEY: str
    CREDENTIAL_ALGORITHM: str = "HS256"
    CREDENTIAL_EXPIRE_MINUTES: int = 60
    CREDENTIAL_ISSUER: str = "link-bridge"
    CREDENTIAL_AUDIENCE: str = "app"
    CREDENTIAL_EXTERNAL_ID_CLAIM: str = "discord_id"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def uses_ticket_store(self) -> bool:
        """Whether tickets are server-issued nonces backed by the store."""
        return self.LINK_TICKET_POLICY == "nonce"

    def start_url(self, state: str) -> str:
        """Public URL the initiator hands to the user for a given ticket."""
        base = self.PUBLIC_BASE_URL.rstrip("/")
        return append_query_param(f"{base}/oauth/{self.OAUTH_PROVIDER}/start", "state", state)


def append_query_param(url: str, name: str, value: str) -> str:
    """Append one query parameter, keeping any fragment-style routing intact."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode({name: value})}"


def validate_production_settings(settings: Settings) -> None:
    """Fail closed on insecure production configuration."""
    if not settings.is_production:
        return
    if not settings.DISCORD_REDIRECT_URI.startswith("https://"):
        raise RuntimeError("DISCORD_REDIRECT_URI must use https in production.")
    if len(settings.CREDENTIAL_SECRET_KEY) < 32:
        raise RuntimeError("CREDENTIAL_SECRET_KEY must be at least 32 characters in production.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
