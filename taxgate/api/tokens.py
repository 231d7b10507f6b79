"""
taxgate.api.tokens — Admin API bearer tokens
==============================================

Admin JWTs are minted by the bot (``/taxconfig apitoken``) for members who
already hold the configured admin role, and verified by the API.  Both
processes read the same ``JWT_SECRET``.
"""

from __future__ import annotations

import os
from datetime import timedelta

import jwt

from taxgate.constants import utcnow

_WEAK_SECRETS = frozenset({
    "taxgate-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(hours=12)


def load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError if the secret is missing, blank, too short
    (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


def issue_admin_token(secret: str, user_id: int, username: str) -> str:
    now = utcnow()
    payload = {
        "sub": str(user_id),
        "username": username,
        "is_admin": True,
        "iat": now,
        "exp": now + TOKEN_LIFETIME,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)
