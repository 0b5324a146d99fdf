from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))

REQUIRED_CLAIMS = ["sub", "tenant_id", "exp"]


def create_access_token(
    *,
    user_id: str,
    tenant_id: str,
    permissions: list[str] | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Mint a bearer token in the identity provider's format.

    The engine only decodes tokens when serving requests; minting exists for
    tests and local tooling.
    """
    issued_at = datetime.now(UTC)
    lifetime = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    claims: dict[str, Any] = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "permissions": permissions or [],
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    claims = jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )
    if not isinstance(claims.get("tenant_id"), str) or not claims["tenant_id"]:
        raise jwt.InvalidTokenError("tenant_id claim must be a non-empty string")
    return claims
