"""Bearer token handling.

Tokens are issued by the identity provider. This service only verifies them
and maps the claims to an ``Actor``. ``create_access_token`` exists for the
flow scripts and tests, which need to mint tokens against a shared secret.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from rentflow.config import settings
from rentflow.core.exceptions import AuthenticationError
from rentflow.core.permissions import Actor, UserRole


def create_access_token(
    subject: str | UUID,
    role: str = UserRole.USER.value,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "role": role,
        "exp": datetime.now(UTC) + (expires_delta or timedelta(minutes=30)),
        "type": "access",
    }
    if settings.jwt_audience:
        to_encode["aud"] = settings.jwt_audience
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """Verify and decode a JWT token."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": bool(settings.jwt_audience)},
        )
    except JWTError as e:
        raise AuthenticationError(f"Token validation failed: {str(e)}")


def actor_from_claims(payload: dict[str, Any]) -> Actor:
    """Map verified token claims to an actor."""
    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Invalid token payload")
    try:
        actor_id = UUID(str(subject))
    except ValueError:
        raise AuthenticationError("Invalid token subject")

    role = UserRole.ADMIN if payload.get("role") == UserRole.ADMIN.value else UserRole.USER
    return Actor(id=actor_id, role=role)
