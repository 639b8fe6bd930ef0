"""Password hashing and bearer token helpers for the tally API."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from .config import Settings
from .errors import UnauthorizedError
from .models import User

JWT_ALGORITHM = "HS256"

# pbkdf2_sha256 stays verifiable for hashes created by older installs.
_pwd_context = CryptContext(schemes=["bcrypt", "pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def issue_token(user: User, settings: Settings, *, now: datetime | None = None) -> str:
    """Sign a bearer token for ``user`` valid for the configured lifetime."""

    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "iat": issued_at,
        "exp": issued_at + timedelta(hours=settings.jwt_expire_hours),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: str) -> int:
    """Return the user id encoded in ``token`` or raise :class:`UnauthorizedError`."""

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError("Invalid token") from exc

    try:
        return int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise UnauthorizedError("Invalid token") from exc


class TokenAuth:
    """Bearer JWT authentication resolving requests to a user id.

    Verification only inspects the token; the store is never consulted.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("A JWT secret must be provided")
        self._secret = secret
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> int:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise UnauthorizedError("Authorization header required")

        token = credentials.credentials.strip()
        if not token:
            raise UnauthorizedError("Authorization header required")
        return decode_token(token, self._secret)


__all__ = [
    "JWT_ALGORITHM",
    "TokenAuth",
    "decode_token",
    "hash_password",
    "issue_token",
    "verify_password",
]
