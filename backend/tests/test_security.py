from datetime import timedelta

import pytest

from library_app.core.config import INSECURE_DEFAULT_SECRET_KEY, Settings
from library_app.core.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    issue_session_token,
    utcnow,
    verify_password,
)
from library_app.models.user import User, UserRole


def test_password_hash_is_salted_and_verifies():
    first = get_password_hash("secret1")
    second = get_password_hash("secret1")

    assert first != second
    assert "secret1" not in first
    assert verify_password("secret1", first)
    assert verify_password("secret1", second)
    assert not verify_password("secret2", first)


def test_verify_password_rejects_corrupt_digest():
    assert verify_password("secret1", "not-a-bcrypt-hash") is False


def test_token_round_trip_carries_claims():
    user = User(id="user-1", username="alice", full_name="Alice A", role=UserRole.STUDENT)
    token, expires_at = issue_session_token(user)

    payload = decode_access_token(token)
    assert payload["sub"] == "user-1"
    assert payload["username"] == "alice"
    assert payload["role"] == "student"
    # 24 hour TTL
    assert timedelta(hours=23, minutes=59) < expires_at - utcnow() <= timedelta(hours=24)


def test_tokens_for_same_user_are_distinct():
    user = User(id="user-1", username="alice", full_name="Alice A", role=UserRole.STUDENT)
    first, _ = issue_session_token(user)
    second, _ = issue_session_token(user)
    assert first != second


def test_expired_token_is_invalid():
    token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-5))
    assert decode_access_token(token) is None


def test_tampered_token_is_invalid():
    token = create_access_token({"sub": "user-1", "role": "student"})
    elevated = create_access_token({"sub": "user-1", "role": "supervisor"})
    header, _, signature = token.split(".")
    # Supervisor claims under the student token's signature
    forged = ".".join([header, elevated.split(".")[1], signature])
    assert decode_access_token(forged) is None


def test_token_signed_with_other_secret_is_invalid():
    from jose import jwt

    foreign = jwt.encode({"sub": "user-1"}, "some-other-secret", algorithm="HS256")
    assert decode_access_token(foreign) is None


@pytest.mark.parametrize("garbage", ["", "abc", "a.b.c"])
def test_malformed_token_is_invalid(garbage):
    assert decode_access_token(garbage) is None


def test_production_refuses_default_secret():
    with pytest.raises(ValueError):
        Settings(ENVIRONMENT="production", SECRET_KEY=INSECURE_DEFAULT_SECRET_KEY)


def test_production_accepts_configured_secret():
    configured = Settings(ENVIRONMENT="production", SECRET_KEY="a-real-deployment-secret")
    assert configured.is_production


def test_development_falls_back_to_default_secret():
    dev = Settings(ENVIRONMENT="development", SECRET_KEY=INSECURE_DEFAULT_SECRET_KEY)
    assert dev.SECRET_KEY == INSECURE_DEFAULT_SECRET_KEY
