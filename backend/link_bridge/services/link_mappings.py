"""Redis-backed externalId -> internalId mapping read by the chat bot."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

import redis

from ..config import Settings
from ..domain_errors import LinkErrorKind, link_error
from ..repositories import LinkMapping

logger = logging.getLogger(__name__)


class RedisLinkMappingStore:
    """
    One key per external id: ``<prefix>:<externalId>`` -> ``{"uid", "linkedAt"}``.

    The bot resolves identities with a plain GET, no access to the main database.
    """

    def __init__(self, client: "redis.Redis", key_prefix: str = "discordLinks"):
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisLinkMappingStore":
        client = redis.Redis.from_url(
            settings.LINK_MAPPING_REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.LINK_MAPPING_SOCKET_TIMEOUT_SECONDS,
        )
        return cls(client, key_prefix=settings.LINK_MAPPING_KEY_PREFIX)

    def _key(self, external_id: str) -> str:
        return f"{self._prefix}:{external_id}"

    def get(self, external_id: str) -> Optional[LinkMapping]:
        try:
            raw = self._client.get(self._key(external_id))
        except redis.RedisError as e:
            logger.error(f"Mapping lookup failed for {external_id}: {e}")
            raise link_error(LinkErrorKind.PERSISTENCE_ERROR, "Mapping store unavailable") from e

        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
            return LinkMapping(
                external_id=external_id,
                internal_id=data["uid"],
                linked_at=datetime.fromisoformat(data["linkedAt"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Malformed mapping entry for {external_id}: {e!r}")
            raise link_error(LinkErrorKind.PERSISTENCE_ERROR, "Mapping entry is unreadable") from e

    def upsert(self, mapping: LinkMapping) -> None:
        payload = json.dumps({"uid": mapping.internal_id, "linkedAt": mapping.linked_at.isoformat()})
        try:
            self._client.set(self._key(mapping.external_id), payload)
        except redis.RedisError as e:
            logger.error(f"Mapping write failed for {mapping.external_id}: {e}")
            raise link_error(LinkErrorKind.PERSISTENCE_ERROR, "Mapping store unavailable") from e

    def delete(self, external_id: str) -> None:
        try:
            self._client.delete(self._key(external_id))
        except redis.RedisError as e:
            logger.error(f"Mapping delete failed for {external_id}: {e}")
            raise link_error(LinkErrorKind.PERSISTENCE_ERROR, "Mapping store unavailable") from e
