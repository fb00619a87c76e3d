"""API dependencies for authentication and common operations."""

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.core.exceptions import AuthenticationError, Forbidden
from rentflow.core.permissions import Actor
from rentflow.core.security import actor_from_claims, verify_token
from rentflow.database import get_db

# Security scheme
security = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Actor:
    """Get the calling actor from the bearer token."""
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    payload = verify_token(credentials.credentials)
    if payload.get("type", "access") != "access":
        raise AuthenticationError("Invalid token type")
    return actor_from_claims(payload)


async def get_current_admin(
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> Actor:
    """Get current actor and verify they are an admin."""
    if not actor.is_admin:
        raise Forbidden("Admin access required", required_role="admin")
    return actor


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
CurrentAdmin = Annotated[Actor, Depends(get_current_admin)]
