from __future__ import annotations

import pytest

from link_bridge.domain_errors import DomainError, LinkErrorKind
from link_bridge.models import User
from link_bridge.use_cases.identity_reconciler import IdentityReconciler

from conftest import ALICE_ID, alice


def _users_with_external_id(db, external_id: str) -> list[User]:
    return db.query(User).filter(User.external_id == external_id).all()


def test_new_identity_creates_one_user_and_one_mapping(db, store, mapping_store) -> None:
    ticket = store.tickets.create()
    store.commit()

    user_id = IdentityReconciler(store, mapping_store).reconcile(
        alice(avatar_url="https://cdn.test/a.png"), ticket
    )

    users = _users_with_external_id(db, ALICE_ID)
    assert [u.id for u in users] == [user_id]
    assert users[0].external_display_name == "alice"
    assert users[0].external_avatar_url == "https://cdn.test/a.png"
    assert users[0].external_linked_at is not None
    assert list(mapping_store.entries) == [ALICE_ID]
    assert mapping_store.get(ALICE_ID).internal_id == user_id
    assert store.tickets.get(ticket.id).used is True


def test_known_identity_updates_same_user_without_duplicate(db, store, mapping_store) -> None:
    reconciler = IdentityReconciler(store, mapping_store)
    first_ticket = store.tickets.create()
    store.commit()
    first_id = reconciler.reconcile(alice(display_name="alice#0001"), first_ticket)

    second_ticket = store.tickets.create()
    store.commit()
    second_id = reconciler.reconcile(alice(display_name="alice_renamed", avatar_url="https://cdn.test/b.png"), second_ticket)

    assert second_id == first_id
    users = _users_with_external_id(db, ALICE_ID)
    assert len(users) == 1
    assert users[0].external_display_name == "alice_renamed"
    assert users[0].external_avatar_url == "https://cdn.test/b.png"
    assert db.query(User).count() == 1
    assert mapping_store.get(ALICE_ID).internal_id == first_id


def test_untouched_application_fields_survive_relink(db, store, mapping_store) -> None:
    db.add(User(id="existing", email="alice@example.com", name="Alice A.", external_id=ALICE_ID))
    db.commit()

    user_id = IdentityReconciler(store, mapping_store).reconcile(alice(), None)

    user = db.get(User, user_id)
    assert user_id == "existing"
    assert user.email == "alice@example.com"
    assert user.name == "Alice A."


def test_issuer_ticket_links_existing_account(db, store, mapping_store) -> None:
    db.add(User(id="issuer", email="issuer@example.com"))
    db.commit()
    ticket = store.tickets.create(issuer_user_id="issuer")
    store.commit()

    user_id = IdentityReconciler(store, mapping_store).reconcile(alice(), ticket)

    assert user_id == "issuer"
    assert db.query(User).count() == 1
    assert db.get(User, "issuer").external_id == ALICE_ID


def test_issuer_relink_drops_stale_mapping(db, store, mapping_store) -> None:
    db.add(User(id="issuer", external_id="999999999999999999"))
    db.commit()
    ticket = store.tickets.create(issuer_user_id="issuer")
    store.commit()

    IdentityReconciler(store, mapping_store).reconcile(alice(), ticket)

    assert mapping_store.deleted == ["999999999999999999"]
    assert mapping_store.get(ALICE_ID).internal_id == "issuer"


def test_unknown_issuer_falls_back_to_new_user(db, store, mapping_store) -> None:
    ticket = store.tickets.create(issuer_user_id="ghost")
    store.commit()

    user_id = IdentityReconciler(store, mapping_store).reconcile(alice(), ticket)

    assert user_id != "ghost"
    assert db.query(User).count() == 1


def test_used_ticket_rolls_back_user_creation(db, store, mapping_store) -> None:
    ticket = store.tickets.create()
    store.commit()
    store.tickets.mark_used(ticket.id)
    store.commit()

    with pytest.raises(DomainError) as exc:
        IdentityReconciler(store, mapping_store).reconcile(alice(), ticket)

    assert exc.value.code == LinkErrorKind.TICKET_ALREADY_USED.value
    assert db.query(User).count() == 0
    assert mapping_store.entries == {}


def test_concurrent_create_converges_on_single_record(db, store, mapping_store, monkeypatch) -> None:
    # Another callback for the same identity committed between our lookup and our insert.
    db.add(User(id="winner", external_id=ALICE_ID))
    db.commit()
    ticket = store.tickets.create()
    store.commit()

    real_find = store.users.find_by_external_id
    lookups: list[str] = []

    def stale_then_real(external_id: str):
        lookups.append(external_id)
        if len(lookups) == 1:
            return None
        return real_find(external_id)

    monkeypatch.setattr(store.users, "find_by_external_id", stale_then_real)

    user_id = IdentityReconciler(store, mapping_store).reconcile(alice(display_name="alice2"), ticket)

    assert user_id == "winner"
    assert len(lookups) == 2
    users = _users_with_external_id(db, ALICE_ID)
    assert len(users) == 1
    assert users[0].external_display_name == "alice2"
    assert store.tickets.get(ticket.id).used is True
    assert mapping_store.get(ALICE_ID).internal_id == "winner"


def test_mapping_write_failure_is_persistence_error(store) -> None:
    class BrokenMappings:
        def get(self, external_id):
            return None

        def upsert(self, mapping):
            raise DomainError(code="PERSISTENCE_ERROR", http_status=500, message="Mapping store unavailable")

        def delete(self, external_id):
            return None

    with pytest.raises(DomainError) as exc:
        IdentityReconciler(store, BrokenMappings()).reconcile(alice(), None)

    assert exc.value.code == LinkErrorKind.PERSISTENCE_ERROR.value
