from datetime import timedelta

from library_app.core.security import utcnow
from library_app.models.session import UserSession
from library_app.services.session_registry import session_registry


def test_created_session_is_active(db, make_user):
    user = make_user("alice")
    session_registry.create(db, user.id, "token-a", utcnow() + timedelta(hours=1))
    db.commit()

    assert session_registry.is_active(db, "token-a", user.id)


def test_session_of_other_user_is_not_active(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    session_registry.create(db, alice.id, "token-a", utcnow() + timedelta(hours=1))
    db.commit()

    assert not session_registry.is_active(db, "token-a", bob.id)


def test_expired_session_is_not_active(db, make_user):
    user = make_user("alice")
    session_registry.create(db, user.id, "token-a", utcnow() - timedelta(seconds=1))
    db.commit()

    assert not session_registry.is_active(db, "token-a", user.id)


def test_revoke_removes_only_that_token(db, make_user):
    user = make_user("alice")
    expires = utcnow() + timedelta(hours=1)
    session_registry.create(db, user.id, "phone", expires)
    session_registry.create(db, user.id, "laptop", expires)
    db.commit()

    assert session_registry.revoke(db, "phone") == 1
    db.commit()

    assert not session_registry.is_active(db, "phone", user.id)
    assert session_registry.is_active(db, "laptop", user.id)
    # Already gone: nothing to delete, no error
    assert session_registry.revoke(db, "phone") == 0


def test_revoke_all_ends_every_session_of_user(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    expires = utcnow() + timedelta(hours=1)
    session_registry.create(db, alice.id, "alice-1", expires)
    session_registry.create(db, alice.id, "alice-2", expires)
    session_registry.create(db, bob.id, "bob-1", expires)
    db.commit()

    assert session_registry.revoke_all(db, alice.id) == 2
    db.commit()

    assert not session_registry.is_active(db, "alice-1", alice.id)
    assert not session_registry.is_active(db, "alice-2", alice.id)
    assert session_registry.is_active(db, "bob-1", bob.id)


def test_purge_expired_keeps_live_sessions(db, make_user):
    user = make_user("alice")
    session_registry.create(db, user.id, "old", utcnow() - timedelta(minutes=1))
    session_registry.create(db, user.id, "new", utcnow() + timedelta(hours=1))
    db.commit()

    assert session_registry.purge_expired(db) == 1
    db.commit()

    assert [row.token for row in db.query(UserSession).all()] == ["new"]
