"""
FastAPI dependencies for authentication and authorization.

This module resolves the calling actor from the bearer token, gates routes
on roles and hands routes the process-wide services stored on
``app.state`` by the application lifespan.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from printease.core.logging import bind_actor, get_logger
from printease.core.security import TokenError, actor_from_token
from printease.schemas.auth import Actor, Role
from printease.services.container import Services

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """
    Validate the bearer token and resolve the calling actor.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        actor = actor_from_token(credentials.credentials)
    except TokenError as e:
        logger.warning(
            "Authentication failed: Token rejected",
            code=e.code,
            error=str(e),
        )
        raise credentials_exception from e

    bind_actor(actor.user_id, actor.role.value)
    return actor


def require_role(*allowed_roles: Role):
    """
    Create a dependency that requires specific actor roles.

    Example:
        @router.get("/stats", dependencies=[Depends(require_role(Role.ADMIN))])
        async def stats():
            ...
    """

    async def role_checker(
        actor: Annotated[Actor, Depends(get_current_actor)],
    ) -> Actor:
        if actor.role not in allowed_roles:
            logger.warning(
                "Access denied: Insufficient permissions",
                user_id=actor.user_id,
                user_role=actor.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return actor

    return role_checker


def get_dealer_id(actor: Actor) -> str:
    """Dealer id of a dealer actor; admins must address a dealer explicitly."""
    if actor.dealer_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No dealer associated with this identity",
        )
    return actor.dealer_id


# Type aliases for cleaner route signatures
ServicesDep = Annotated[Services, Depends(get_services)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminActor = Annotated[Actor, Depends(require_role(Role.ADMIN))]
DealerActor = Annotated[Actor, Depends(require_role(Role.DEALER))]
CustomerOrAdmin = Annotated[Actor, Depends(require_role(Role.CUSTOMER, Role.ADMIN))]
