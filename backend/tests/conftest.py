from __future__ import annotations

from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient

from link_bridge import models  # noqa: F401
from link_bridge.config import Settings
from link_bridge.database import Base, create_db_engine, create_session_factory
from link_bridge.main import create_app
from link_bridge.repositories import ExternalIdentity, LinkMapping
from link_bridge.services.application_users import SqlAlchemyLinkStore
from link_bridge.services.credentials import JwtCredentialIssuer

ALICE_ID = "123456789012345678"


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite://",
        "DATABASE_AUTO_CREATE": True,
        "DISCORD_CLIENT_ID": "client-123",
        "DISCORD_CLIENT_SECRET": "client-secret-xyz",
        "DISCORD_REDIRECT_URI": "https://bridge.test/oauth/discord/callback",
        "CREDENTIAL_SECRET_KEY": "test-credential-secret-key-0123456789",
        "LINK_TICKET_API_KEY": "bot-api-key",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def alice(**overrides) -> ExternalIdentity:
    values = {
        "id": ALICE_ID,
        "username": "alice",
        "display_name": "alice",
        "avatar_url": None,
    }
    values.update(overrides)
    return ExternalIdentity(**values)


class FakeIdentityProvider:
    """Provider double recording every call."""

    def __init__(
        self,
        identity: Optional[ExternalIdentity] = None,
        exchange_error: Optional[Exception] = None,
        fetch_error: Optional[Exception] = None,
    ):
        self.identity = identity or alice()
        self.exchange_error = exchange_error
        self.fetch_error = fetch_error
        self.exchange_calls: list[str] = []
        self.fetch_calls: list[str] = []

    def authorization_url(self, state: str) -> str:
        return f"https://provider.test/authorize?{urlencode({'state': state})}"

    def exchange_code(self, code: str) -> str:
        self.exchange_calls.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return f"access-{code}"

    def fetch_identity(self, access_token: str) -> ExternalIdentity:
        self.fetch_calls.append(access_token)
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.identity


class InMemoryLinkMappingStore:
    def __init__(self):
        self.entries: dict[str, LinkMapping] = {}
        self.deleted: list[str] = []

    def get(self, external_id: str) -> Optional[LinkMapping]:
        return self.entries.get(external_id)

    def upsert(self, mapping: LinkMapping) -> None:
        self.entries[mapping.external_id] = mapping

    def delete(self, external_id: str) -> None:
        self.deleted.append(external_id)
        self.entries.pop(external_id, None)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def session_factory(settings):
    engine = create_db_engine(settings)
    Base.metadata.create_all(bind=engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db) -> SqlAlchemyLinkStore:
    return SqlAlchemyLinkStore(db)


@pytest.fixture
def mapping_store() -> InMemoryLinkMappingStore:
    return InMemoryLinkMappingStore()


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def issuer(settings) -> JwtCredentialIssuer:
    return JwtCredentialIssuer(settings)


@pytest.fixture
def app(settings, provider, mapping_store):
    return create_app(settings, identity_provider=provider, mapping_store=mapping_store)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def issue_ticket(session_factory, *, created_at: Optional[datetime] = None, issuer_user_id: Optional[str] = None) -> str:
    """Write a ticket the way an external initiator would."""
    session = session_factory()
    try:
        link_store = SqlAlchemyLinkStore(session)
        ticket = link_store.tickets.create(created_at=created_at, issuer_user_id=issuer_user_id)
        link_store.commit()
        return ticket.id
    finally:
        session.close()
