"""
Authentication API endpoints.

Identity is established upstream; this service only verifies signed
bearer tokens. Outside production a token can be issued here for local
development and the test suite.
"""

from fastapi import APIRouter, HTTPException, status

from printease.api.deps import CurrentActor
from printease.core.config import get_settings
from printease.core.logging import get_logger
from printease.core.security import create_access_token
from printease.schemas.auth import Actor, TokenRequest, TokenResponse

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post(
    "/token",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a development token",
    description="Issue a signed access token for the given identity. Disabled in production.",
)
async def issue_token(request: TokenRequest) -> TokenResponse:
    """
    Issue an access token.

    Raises:
        HTTPException: 404 in production, 422 if the identity is inconsistent
    """
    settings = get_settings()
    if settings.is_production:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    try:
        actor = Actor(
            user_id=request.user_id,
            role=request.role,
            dealer_id=request.dealer_id,
            name=request.name,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    logger.info("Development token issued", user_id=actor.user_id, role=actor.role.value)
    return TokenResponse(
        access_token=create_access_token(actor),
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


@router.get(
    "/me",
    response_model=Actor,
    summary="Current identity",
)
async def read_current_actor(actor: CurrentActor) -> Actor:
    return actor
