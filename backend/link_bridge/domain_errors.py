"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class LinkErrorKind(str, Enum):
    """Failure kinds of the linking flow. Every kind is terminal for its request."""

    MISSING_PARAMETER = "MISSING_PARAMETER"
    MALFORMED_TICKET = "MALFORMED_TICKET"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    TICKET_EXPIRED = "TICKET_EXPIRED"
    TICKET_ALREADY_USED = "TICKET_ALREADY_USED"
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
    IDENTITY_FETCH_FAILED = "IDENTITY_FETCH_FAILED"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    CREDENTIAL_ISSUANCE_FAILED = "CREDENTIAL_ISSUANCE_FAILED"

    @property
    def http_status(self) -> int:
        return _KIND_HTTP_STATUS[self]


_KIND_HTTP_STATUS = {
    LinkErrorKind.MISSING_PARAMETER: 400,
    LinkErrorKind.MALFORMED_TICKET: 400,
    LinkErrorKind.AUTHORIZATION_DENIED: 400,
    LinkErrorKind.TICKET_NOT_FOUND: 400,
    LinkErrorKind.TICKET_EXPIRED: 400,
    LinkErrorKind.TICKET_ALREADY_USED: 400,
    LinkErrorKind.TOKEN_EXCHANGE_FAILED: 502,
    LinkErrorKind.IDENTITY_FETCH_FAILED: 502,
    LinkErrorKind.PERSISTENCE_ERROR: 500,
    LinkErrorKind.CREDENTIAL_ISSUANCE_FAILED: 500,
}


def link_error(kind: LinkErrorKind, message: str, **details: Any) -> DomainError:
    """Build a DomainError for one of the linking failure kinds."""
    return DomainError(
        code=kind.value,
        http_status=kind.http_status,
        message=message,
        details=details or None,
    )
