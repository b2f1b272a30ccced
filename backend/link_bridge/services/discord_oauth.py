"""Discord OAuth2 client: authorize URL, code exchange, profile fetch."""
from __future__ import annotations

import logging
from urllib.parse import urlencode

import requests

from ..config import Settings
from ..domain_errors import LinkErrorKind, link_error
from ..repositories import ExternalIdentity

logger = logging.getLogger(__name__)


def build_display_name(profile: dict) -> str:
    """``username#discriminator`` for legacy accounts, else global name or username."""
    username = profile.get("username") or ""
    discriminator = profile.get("discriminator")
    if discriminator and discriminator != "0":
        return f"{username}#{discriminator}"
    return profile.get("global_name") or username


def build_avatar_url(cdn_base_url: str, user_id: str, avatar_hash: str | None) -> str | None:
    if not avatar_hash:
        return None
    return f"{cdn_base_url.rstrip('/')}/avatars/{user_id}/{avatar_hash}.png"


class DiscordIdentityProvider:
    """IdentityProvider backed by the Discord HTTP API."""

    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self._settings = settings
        self._http = session or requests.Session()

    @property
    def _api_base(self) -> str:
        return self._settings.DISCORD_API_BASE_URL.rstrip("/")

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._settings.DISCORD_CLIENT_ID,
            "redirect_uri": self._settings.DISCORD_REDIRECT_URI,
            "response_type": "code",
            "scope": self._settings.DISCORD_SCOPE,
            "state": state,
        }
        if self._settings.DISCORD_PROMPT:
            params["prompt"] = self._settings.DISCORD_PROMPT
        return f"{self._settings.DISCORD_AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> str:
        data = {
            "client_id": self._settings.DISCORD_CLIENT_ID,
            "client_secret": self._settings.DISCORD_CLIENT_SECRET,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._settings.DISCORD_REDIRECT_URI,
        }
        try:
            response = self._http.post(
                f"{self._api_base}/oauth2/token",
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._settings.OAUTH_HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Token exchange request failed: {e}")
            raise link_error(LinkErrorKind.TOKEN_EXCHANGE_FAILED, "Token exchange failed") from e

        if response.status_code != 200:
            logger.error(
                "Token exchange failed: status=%d, body=%s",
                response.status_code,
                response.text[:200],
            )
            raise link_error(
                LinkErrorKind.TOKEN_EXCHANGE_FAILED,
                "Token exchange failed",
                provider_status=response.status_code,
            )

        try:
            access_token = response.json().get("access_token")
        except ValueError:
            access_token = None
        if not access_token:
            logger.error("Token exchange response has no access_token")
            raise link_error(LinkErrorKind.TOKEN_EXCHANGE_FAILED, "Token exchange failed")
        return access_token

    def fetch_identity(self, access_token: str) -> ExternalIdentity:
        try:
            response = self._http.get(
                f"{self._api_base}/users/@me",
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._settings.OAUTH_HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Identity fetch request failed: {e}")
            raise link_error(LinkErrorKind.IDENTITY_FETCH_FAILED, "Identity fetch failed") from e

        if response.status_code != 200:
            logger.error(
                "Identity fetch failed: status=%d, body=%s",
                response.status_code,
                response.text[:200],
            )
            raise link_error(
                LinkErrorKind.IDENTITY_FETCH_FAILED,
                "Identity fetch failed",
                provider_status=response.status_code,
            )

        try:
            profile = response.json()
        except ValueError:
            profile = None
        user_id = str(profile.get("id") or "") if isinstance(profile, dict) else ""
        if not user_id.isdigit():
            logger.error("Identity response has no usable id")
            raise link_error(LinkErrorKind.IDENTITY_FETCH_FAILED, "Identity fetch failed")

        return ExternalIdentity(
            id=user_id,
            username=profile.get("username") or "",
            display_name=build_display_name(profile),
            avatar_url=build_avatar_url(
                self._settings.DISCORD_CDN_BASE_URL, user_id, profile.get("avatar")
            ),
        )
