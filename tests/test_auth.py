from datetime import datetime, timedelta, timezone

import pytest

from auth import SIGNED_IN, SIGNED_OUT, IdentityProvider, decode_token
from config import settings
from errors import AuthenticationError, NotFound, ValidationError
from schemas import SignupRequest, UserRole
from session import SessionRegistry


@pytest.fixture
def identity(store):
    return IdentityProvider(store)


@pytest.fixture
def sessions(identity, store):
    return SessionRegistry(identity, store)


def signup(**overrides):
    data = {
        "name": "Mbuso",
        "email": "mbuso@ubuntu.co.za",
        "password": "secret123",
        "phone": "0680998913",
        "address": "123 Main Street, Durban",
    }
    data.update(overrides)
    return SignupRequest(**data)


def test_sign_up_and_in(identity):
    created = identity.sign_up("Chef@Ubuntu.co.za", "secret123")
    assert decode_token(created.token) == created.user_id

    again = identity.sign_in("chef@ubuntu.co.za", "secret123")
    assert again.user_id == created.user_id
    assert again.token != created.token
    assert identity.current_session(again.token) == again


def test_duplicate_email(identity):
    identity.sign_up("a@b.co", "secret123")
    with pytest.raises(ValidationError):
        identity.sign_up("A@b.co", "other456")


def test_bad_credentials(identity):
    identity.sign_up("a@b.co", "secret123")
    with pytest.raises(AuthenticationError):
        identity.sign_in("a@b.co", "wrong")
    with pytest.raises(AuthenticationError):
        identity.sign_in("nobody@b.co", "secret123")


def test_password_is_hashed(identity, store):
    identity.sign_up("a@b.co", "secret123")
    [row] = store.select("credentials")
    assert row["password_hash"] != "secret123"


def test_listeners_hear_sign_in_and_out(identity):
    events = []
    unsubscribe = identity.on_auth_state_change(lambda event, s: events.append((event, s.user_id)))

    session = identity.sign_up("a@b.co", "secret123")
    identity.sign_out(session.token)
    identity.sign_out(session.token)

    assert events == [(SIGNED_IN, session.user_id), (SIGNED_OUT, session.user_id)]
    assert identity.current_session(session.token) is None

    unsubscribe()
    identity.sign_in("a@b.co", "secret123")
    assert len(events) == 2


def test_register_creates_profile_and_context(sessions, store):
    ctx = sessions.register(signup(role=UserRole.DELIVERY))

    assert ctx.user.role == UserRole.DELIVERY
    assert ctx.cart.is_empty
    assert sessions.get(ctx.token) is ctx
    [row] = store.select("users")
    assert row["id"] == ctx.user.id
    assert row["role"] == "delivery"


def test_login_loads_profile(sessions):
    registered = sessions.register(signup())

    ctx = sessions.login("mbuso@ubuntu.co.za", "secret123")

    assert ctx.token != registered.token
    assert ctx.user == registered.user


def test_login_without_profile(identity, sessions):
    identity.sign_up("ghost@b.co", "secret123")
    with pytest.raises(NotFound):
        sessions.login("ghost@b.co", "secret123")


def test_logout_tears_down_context(sessions):
    ctx = sessions.register(signup())
    sessions.logout(ctx.token)
    with pytest.raises(AuthenticationError):
        sessions.get(ctx.token)
    assert len(sessions) == 0


def test_expired_sessions_are_pruned(identity):
    events = []
    identity.on_auth_state_change(lambda event, s: events.append((event, s.user_id)))
    session = identity.sign_up("a@b.co", "secret123")

    assert identity.prune_expired() == 0
    assert identity.prune_expired(datetime.now(timezone.utc) + timedelta(days=2)) == 1
    assert events[-1] == (SIGNED_OUT, session.user_id)
    assert identity.current_session(session.token) is None


def test_new_sign_in_drops_abandoned_contexts(sessions, monkeypatch):
    monkeypatch.setattr(settings, "jwt_expire_minutes", -1)
    abandoned = sessions.register(signup())
    monkeypatch.setattr(settings, "jwt_expire_minutes", 60)

    fresh = sessions.login("mbuso@ubuntu.co.za", "secret123")

    assert len(sessions) == 1
    assert sessions.get(fresh.token) is fresh
    with pytest.raises(AuthenticationError):
        sessions.get(abandoned.token)
