from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt

from app.core.settings import settings


class JWTKeyError(RuntimeError):
    pass


@lru_cache(maxsize=1)
def _load_private_key() -> str:
    if settings.jwt_private_key:
        return settings.jwt_private_key
    if settings.jwt_private_key_path:
        return _read_key(settings.jwt_private_key_path)
    raise JWTKeyError("JWT private key not configured")


@lru_cache(maxsize=1)
def _load_public_key() -> str:
    if settings.jwt_public_key:
        return settings.jwt_public_key
    if settings.jwt_public_key_path:
        return _read_key(settings.jwt_public_key_path)
    raise JWTKeyError("JWT public key not configured")


def _read_key(path: str) -> str:
    with open(path, "r", encoding="utf-8") as key_file:
        return key_file.read()


def create_access_token(
    subject: str,
    *,
    org_id: str,
    expires_delta: timedelta | None = None,
    token_version: int | None = None,
) -> str:
    """Issue a staff access token bound to one tenant.

    Staff sign-in lives in the identity provider; this is kept for operators
    and tests.
    """
    issued_at = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": subject,
        "org": org_id,
        "type": "access",
        "iat": issued_at,
        "exp": issued_at + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes)),
        "jti": uuid4().hex,
    }
    if token_version is not None:
        claims["tv"] = token_version
    return jwt.encode(claims, _load_private_key(), algorithm=settings.jwt_algorithm)


def decode_token(token: str, expected_type: str | None = None, *, org_id: str | None = None) -> dict[str, Any]:
    """Verify ``token`` and return its claims.

    With ``org_id`` set, a token minted for another tenant is refused; tokens
    without a tenant claim are accepted for single-tenant deployments.
    """
    try:
        payload = jwt.decode(token, _load_public_key(), algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if expected_type and payload.get("type") != expected_type:
        raise ValueError(f"Unexpected token type: {payload.get('type')}")
    if org_id and payload.get("org") not in (None, org_id):
        raise ValueError("Token issued for another tenant")
    return payload
