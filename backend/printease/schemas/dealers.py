"""Dealer, user and delivery preference schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import ConfigDict, Field, field_validator

from printease.schemas.orders import CamelModel, coerce_identifier


class DealerStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DeliveryPreferences(CamelModel):
    """How a dealer hands finished orders over to customers."""

    pickup: bool = True
    delivery: bool = True
    delivery_radius: Union[int, float] = Field(5, ge=0, description="Kilometres")
    delivery_fee: Union[int, float] = Field(50, ge=0)
    free_delivery_threshold: Union[int, float] = Field(500, ge=0)


class DealerServices(CamelModel):
    model_config = ConfigDict(extra="allow")

    color: bool = False
    black_white: bool = True
    binding: bool = False
    lamination: bool = False
    bulk: bool = False


class Dealer(CamelModel):
    """Print shop registered on the marketplace."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    rating: float = 0
    distance: Optional[str] = None
    eta: Optional[str] = None
    price_range: Optional[str] = None
    badges: list[str] = Field(default_factory=list)
    status: DealerStatus = DealerStatus.PENDING
    services: DealerServices = Field(default_factory=DealerServices)
    contact: dict[str, Any] = Field(default_factory=dict)
    coordinates: Optional[dict[str, float]] = None
    delivery_preferences: Optional[DeliveryPreferences] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return coerce_identifier(v)

    @property
    def user_id(self) -> str:
        return f"dealer_{self.id}"


class User(CamelModel):
    """Marketplace customer."""

    model_config = ConfigDict(extra="allow")

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    role: str = "customer"
    created_at: Optional[datetime] = None
    last_order_id: Optional[str] = None


# Request schemas


class DealerRejectRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=500)


class DealerInfoUpdate(CamelModel):
    """Editable dealer profile fields; unset fields are left untouched."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    distance: Optional[str] = None
    eta: Optional[str] = None
    price_range: Optional[str] = None
    badges: Optional[list[str]] = None
    contact: Optional[dict[str, Any]] = None
    coordinates: Optional[dict[str, float]] = None


class DeliveryPreferencesUpdate(CamelModel):
    pickup: Optional[bool] = None
    delivery: Optional[bool] = None
    delivery_radius: Optional[Union[int, float]] = Field(None, ge=0)
    delivery_fee: Optional[Union[int, float]] = Field(None, ge=0)
    free_delivery_threshold: Optional[Union[int, float]] = Field(None, ge=0)
