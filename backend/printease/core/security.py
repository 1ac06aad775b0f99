"""
Bearer token handling for actor identity.

Tokens are signed JWTs carrying the user id (``sub``), the role and, for
dealers, the dealer id. The API layer resolves every request's actor from
such a token; roles sent in request bodies are never trusted.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from pydantic import ValidationError

from printease.core.config import get_settings
from printease.core.logging import get_logger
from printease.schemas.auth import Actor

logger = get_logger(__name__)


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""


def create_access_token(
    actor: Actor,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token for an actor.

    Args:
        actor: Identity to encode
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta
        or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )

    claims: Dict[str, Any] = {
        "sub": actor.user_id,
        "role": actor.role.value,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    if actor.dealer_id:
        claims["dealer_id"] = actor.dealer_id
    if actor.name:
        claims["name"] = actor.name

    token = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)

    logger.info(
        "Access token created",
        subject=actor.user_id,
        role=actor.role.value,
        expires_at=expire.isoformat(),
    )
    return token


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Raises:
        TokenError: If token is empty, expired, or malformed
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e), error_type=type(e).__name__)
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e


def actor_from_token(token: str) -> Actor:
    """
    Resolve the actor identity carried by a token.

    Raises:
        TokenError: If the token is invalid or lacks identity claims
    """
    payload = decode_token(token)

    if payload.get("type") != "access":
        raise TokenError("Token is not an access token", code="TOKEN_TYPE_INVALID")

    try:
        return Actor(
            user_id=payload.get("sub") or "",
            role=payload.get("role"),
            dealer_id=payload.get("dealer_id"),
            name=payload.get("name"),
        )
    except ValidationError as e:
        raise TokenError(
            "Token is missing identity claims",
            code="TOKEN_CLAIMS_INVALID",
            errors=e.errors(),
        ) from e
