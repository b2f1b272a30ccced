from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
import redis

from link_bridge.domain_errors import DomainError, LinkErrorKind
from link_bridge.repositories import LinkMapping
from link_bridge.services.link_mappings import RedisLinkMappingStore

from conftest import ALICE_ID, make_settings


class _RedisStub:
    def __init__(self, fail: bool = False):
        self.data: dict[str, str] = {}
        self.fail = fail

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("down")
        return self.data.get(key)

    def set(self, key, value):
        if self.fail:
            raise redis.ConnectionError("down")
        self.data[key] = value

    def delete(self, key):
        if self.fail:
            raise redis.ConnectionError("down")
        self.data.pop(key, None)


LINKED_AT = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)


def test_upsert_writes_bot_readable_key() -> None:
    client = _RedisStub()
    store = RedisLinkMappingStore(client, key_prefix="discordLinks")

    store.upsert(LinkMapping(external_id=ALICE_ID, internal_id="uid-1", linked_at=LINKED_AT))

    assert json.loads(client.data[f"discordLinks:{ALICE_ID}"]) == {
        "uid": "uid-1",
        "linkedAt": "2026-10-16T12:00:00+00:00",
    }


def test_upsert_is_last_write_wins() -> None:
    store = RedisLinkMappingStore(_RedisStub())
    store.upsert(LinkMapping(external_id=ALICE_ID, internal_id="uid-1", linked_at=LINKED_AT))
    store.upsert(LinkMapping(external_id=ALICE_ID, internal_id="uid-2", linked_at=LINKED_AT))

    assert store.get(ALICE_ID) == LinkMapping(external_id=ALICE_ID, internal_id="uid-2", linked_at=LINKED_AT)


def test_get_decodes_bytes_and_missing_keys() -> None:
    client = _RedisStub()
    client.data[f"discordLinks:{ALICE_ID}"] = json.dumps({"uid": "uid-1", "linkedAt": LINKED_AT.isoformat()}).encode()
    store = RedisLinkMappingStore(client)

    assert store.get(ALICE_ID).internal_id == "uid-1"
    assert store.get("1" * 18) is None


def test_delete_removes_entry() -> None:
    store = RedisLinkMappingStore(_RedisStub())
    store.upsert(LinkMapping(external_id=ALICE_ID, internal_id="uid-1", linked_at=LINKED_AT))
    store.delete(ALICE_ID)
    assert store.get(ALICE_ID) is None


@pytest.mark.parametrize("operation", ["get", "upsert", "delete"])
def test_redis_errors_become_persistence_errors(operation: str) -> None:
    store = RedisLinkMappingStore(_RedisStub(fail=True))
    args = {
        "get": (ALICE_ID,),
        "upsert": (LinkMapping(external_id=ALICE_ID, internal_id="uid-1", linked_at=LINKED_AT),),
        "delete": (ALICE_ID,),
    }[operation]

    with pytest.raises(DomainError) as exc:
        getattr(store, operation)(*args)

    assert exc.value.code == LinkErrorKind.PERSISTENCE_ERROR.value
    assert exc.value.http_status == 500


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps({"linkedAt": "2026-10-16T12:00:00+00:00"}),
        json.dumps({"uid": "uid-1", "linkedAt": "yesterday"}),
        json.dumps(["uid-1"]),
    ],
)
def test_unreadable_entry_becomes_persistence_error(raw: str) -> None:
    client = _RedisStub()
    client.data[f"discordLinks:{ALICE_ID}"] = raw
    store = RedisLinkMappingStore(client)

    with pytest.raises(DomainError) as exc:
        store.get(ALICE_ID)

    assert exc.value.code == LinkErrorKind.PERSISTENCE_ERROR.value


def test_from_settings_uses_mapping_socket_timeout(monkeypatch) -> None:
    captured = {}

    def fake_from_url(url, **kwargs):
        captured["url"] = url
        captured.update(kwargs)
        return _RedisStub()

    monkeypatch.setattr(redis.Redis, "from_url", fake_from_url)
    settings = make_settings(
        LINK_MAPPING_REDIS_URL="redis://cache:6379/2",
        LINK_MAPPING_SOCKET_TIMEOUT_SECONDS=1.5,
        OAUTH_HTTP_TIMEOUT_SECONDS=30.0,
    )

    RedisLinkMappingStore.from_settings(settings)

    assert captured["url"] == "redis://cache:6379/2"
    assert captured["socket_timeout"] == 1.5
