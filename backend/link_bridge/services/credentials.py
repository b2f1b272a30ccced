"""Signed credential the application client exchanges for a session."""
from __future__ import annotations

import logging
import time
from typing import Optional

from jose import JWTError, jwt

from ..config import Settings
from ..domain_errors import LinkErrorKind, link_error

logger = logging.getLogger(__name__)


class JwtCredentialIssuer:
    """Issues short-lived JWTs whose subject is the internal user id."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def issue(self, user_id: str, claims: Optional[dict] = None) -> str:
        """Create a credential for ``user_id`` with optional extra claims."""
        now = int(time.time())
        to_encode = {
            "sub": user_id,
            "uid": user_id,
            "iss": self._settings.CREDENTIAL_ISSUER,
            "aud": self._settings.CREDENTIAL_AUDIENCE,
            "iat": now,
            "exp": now + int(self._settings.CREDENTIAL_EXPIRE_MINUTES) * 60,
        }
        if claims:
            to_encode["claims"] = dict(claims)
        try:
            return jwt.encode(
                to_encode,
                self._settings.CREDENTIAL_SECRET_KEY,
                algorithm=self._settings.CREDENTIAL_ALGORITHM,
            )
        except JWTError as e:
            logger.error(f"Credential signing failed for user {user_id}: {e}")
            raise link_error(LinkErrorKind.CREDENTIAL_ISSUANCE_FAILED, "Could not issue credential") from e

    def decode(self, token: str) -> dict:
        """Verify signature, audience and expiry; used by consumers and tests."""
        return jwt.decode(
            token,
            self._settings.CREDENTIAL_SECRET_KEY,
            algorithms=[self._settings.CREDENTIAL_ALGORITHM],
            audience=self._settings.CREDENTIAL_AUDIENCE,
            issuer=self._settings.CREDENTIAL_ISSUER,
        )
