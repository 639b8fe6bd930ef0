"""Tests for password hashing and bearer token handling."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from passlib.hash import pbkdf2_sha256

from tally.config import Settings
from tally.errors import UnauthorizedError
from tally.models import User
from tally.security import JWT_ALGORITHM, decode_token, hash_password, issue_token, verify_password

SECRET = "tests-secret-key-with-enough-entropy-0123456789"
USER = User(id=7, username="admin", created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))


def test_hash_and_verify_password() -> None:
    hashed = hash_password("supersecurepassword")
    assert hashed.startswith("$2")
    assert verify_password("supersecurepassword", hashed)
    assert not verify_password("incorrect", hashed)


def test_pbkdf2_hashes_remain_verifiable() -> None:
    hashed = pbkdf2_sha256.hash("anothersecurepassword")
    assert verify_password("anothersecurepassword", hashed)
    assert not verify_password("incorrect", hashed)


def test_unrecognised_hash_does_not_verify() -> None:
    assert not verify_password("anything", "not-a-hash")


def test_issued_token_resolves_to_user_id() -> None:
    token = issue_token(USER, Settings(jwt_secret=SECRET))

    assert decode_token(token, SECRET) == USER.id
    claims = jwt.decode(token, SECRET, algorithms=[JWT_ALGORITHM])
    assert claims["username"] == "admin"
    assert claims["exp"] - claims["iat"] == 7 * 24 * 3600


def test_token_signed_with_other_secret_is_rejected() -> None:
    token = issue_token(USER, Settings(jwt_secret="another-secret-key-with-enough-entropy-987"))
    with pytest.raises(UnauthorizedError):
        decode_token(token, SECRET)


def test_expired_token_is_rejected() -> None:
    issued = datetime.now(timezone.utc) - timedelta(hours=3)
    token = issue_token(USER, Settings(jwt_secret=SECRET, jwt_expire_hours=1), now=issued)
    with pytest.raises(UnauthorizedError) as excinfo:
        decode_token(token, SECRET)
    assert "expired" in excinfo.value.message


def test_token_without_subject_is_rejected() -> None:
    token = jwt.encode(
        {"exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        SECRET,
        algorithm=JWT_ALGORITHM,
    )
    with pytest.raises(UnauthorizedError):
        decode_token(token, SECRET)


def test_garbage_token_is_rejected() -> None:
    with pytest.raises(UnauthorizedError):
        decode_token("not.a.token", SECRET)
