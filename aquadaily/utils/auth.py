"""Authentication helpers for AquaDaily sessions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt


@dataclass
class AuthError(Exception):
    """Raised when a session cannot be established or verified."""

    message: str
    status_code: int = 401

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message


class DuplicateUserError(AuthError):
    """Raised when registering an email that already has an account."""

    def __init__(self, message: str = "User already exists") -> None:
        super().__init__(message, 409)


class InvalidCredentialsError(AuthError):
    """Raised when no account matches the supplied email and password."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message, 401)


def issue_session_token(
    user_id: str,
    secret: str,
    lifetime: timedelta = timedelta(days=14),
    now: Optional[datetime] = None,
) -> str:
    """Return a signed HS256 token identifying ``user_id``.

    The token is opaque to clients; only :func:`decode_session_token` needs to
    understand it.
    """

    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_session_token(token: str, secret: str) -> Dict[str, Any]:
    """Validate and decode a session token from the ``Authorization`` header.

    Parameters
    ----------
    token:
        The encoded JWT string issued at register or login.
    secret:
        Shared secret used to sign session tokens (``SESSION_TOKEN_SECRET``).

    Returns
    -------
    dict
        The decoded token payload.

    Raises
    ------
    AuthError
        If the token is missing, invalid, expired, or no secret is configured.
    """

    if not secret:
        raise AuthError("Session tokens are not configured on this server.", 503)

    if not token:
        raise AuthError("Authorization token missing.")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Authorization token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Authorization token is invalid.") from exc

    return payload


def bearer_token(header_value: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer ...`` header."""

    if not header_value:
        return ""
    scheme, _, value = header_value.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return value.strip()
