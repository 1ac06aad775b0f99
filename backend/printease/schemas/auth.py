"""
Actor identity schemas.

An ``Actor`` is the resolved identity of whoever invokes a service
operation. Services gate every mutation on ``Actor.role``; the API layer
builds actors from signed tokens only.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Role(str, Enum):
    """Roles recognised by the order core."""

    CUSTOMER = "customer"
    DEALER = "dealer"
    ADMIN = "admin"
    GUEST = "guest"


class Actor(BaseModel):
    """Identity of the caller of a service operation."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    role: Role
    dealer_id: Optional[str] = None
    name: Optional[str] = None

    @model_validator(mode="after")
    def check_dealer_id(self) -> "Actor":
        if self.role == Role.DEALER and not self.dealer_id:
            raise ValueError("Dealer actors must carry a dealer_id")
        return self

    @classmethod
    def system(cls) -> "Actor":
        """Actor used for maintenance tasks running without a request."""
        return cls(user_id="system", role=Role.ADMIN, name="System")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_dealer(self) -> bool:
        return self.role == Role.DEALER

    @property
    def is_customer(self) -> bool:
        return self.role == Role.CUSTOMER

    @property
    def inbox_id(self) -> str:
        """User id that notifications for this actor are addressed to."""
        if self.is_dealer:
            return f"dealer_{self.dealer_id}"
        return self.user_id


class TokenRequest(BaseModel):
    """Claims to embed in an issued access token."""

    user_id: str = Field(..., min_length=1, max_length=100)
    role: Role
    dealer_id: Optional[str] = Field(None, max_length=50)
    name: Optional[str] = Field(None, max_length=100)


class TokenResponse(BaseModel):
    """Issued access token."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
