"""
Order schemas shared by the persistence, service and API layers.

Documents are stored with camelCase keys; Python code uses snake_case
attributes through pydantic aliases. ``Order.to_document()`` produces the
stored and wire shape.
"""

from datetime import datetime
from typing import Annotated, Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from printease.services.orders.enums import (
    MessageStatus,
    OrderStatus,
    PaymentStatus,
    normalize_status_key,
)

# Fields whose changes are recorded in the audit log. Bookkeeping
# timestamps are not audited.
AUDITED_FIELDS: tuple[str, ...] = (
    "status",
    "statusKey",
    "eta",
    "etaOverridden",
    "cost",
    "price",
    "pricingOverridden",
    "pricingOverrideReason",
    "dealer",
    "dealerId",
    "paymentStatus",
    "rejectionReason",
)


def format_price(cost: Union[int, float]) -> str:
    """Render a cost as the display price, e.g. ``999`` -> ``₹999``."""
    if float(cost).is_integer():
        return f"₹{int(cost)}"
    return f"₹{cost}"


def coerce_identifier(value: Any) -> Any:
    # Older records store numeric dealer ids.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class CamelModel(BaseModel):
    """Base model serializing attributes with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class StatusHistoryEntry(CamelModel):
    """One step of an order's status timeline."""

    status: str
    status_key: OrderStatus
    label: str
    timestamp: datetime

    @field_validator("status_key", mode="before")
    @classmethod
    def normalize_key(cls, v: Any) -> Any:
        return normalize_status_key(v) if isinstance(v, str) else v


class ChangeLogEntry(CamelModel):
    """Coarse record of an action performed on an order."""

    timestamp: datetime
    role: str
    action: str
    previous_state: dict[str, Any] = Field(default_factory=dict)


class AuditChange(CamelModel):
    """Previous and current value of one audited field."""

    model_config = ConfigDict(frozen=True)

    field: str
    previous: Any = None
    current: Any = None


class AuditEntry(CamelModel):
    """Field-level audit record of one logical change operation."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    role: str
    user_id: Optional[str] = None
    changed_fields: list[str]
    changes: list[AuditChange]
    reason: str = ""

    def change_for(self, field: str) -> Optional[AuditChange]:
        for change in self.changes:
            if change.field == field:
                return change
        return None


class ChatMessage(CamelModel):
    """Message in an order's chat thread."""

    id: str
    text: str
    sender_id: str
    sender_role: str
    sender_name: Optional[str] = None
    timestamp: datetime
    status: MessageStatus = MessageStatus.SENT
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None


class Order(CamelModel):
    """
    Print order document.

    Unknown keys written by other clients are preserved on round-trip.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    dealer_id: Optional[str] = None
    dealer: Optional[str] = None

    title: Optional[str] = None
    file_metadata: Optional[dict[str, Any]] = None
    print_options: Optional[dict[str, Any]] = None
    date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    batch_id: Optional[str] = None
    batch_index: Optional[int] = None

    status: str = OrderStatus.PENDING.display_name
    status_key: OrderStatus = OrderStatus.PENDING
    eta: Optional[str] = None
    cost: Union[int, float] = 0
    price: Optional[str] = None

    payment_method: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_date: Optional[datetime] = None
    transaction_id: Optional[str] = None

    eta_overridden: bool = False
    eta_overridden_at: Optional[datetime] = None
    eta_updated_at: Optional[datetime] = None
    pricing_overridden: bool = False
    pricing_overridden_at: Optional[datetime] = None
    pricing_override_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    dealer_reassigned_at: Optional[datetime] = None

    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    printing_started_at: Optional[datetime] = None
    printing_completed_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    out_for_delivery_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    change_log: list[ChangeLogEntry] = Field(default_factory=list)
    audit_log: list[AuditEntry] = Field(default_factory=list)
    messages: list[ChatMessage] = Field(default_factory=list)

    @field_validator("dealer_id", mode="before")
    @classmethod
    def coerce_dealer_id(cls, v: Any) -> Any:
        return coerce_identifier(v)

    @field_validator("status_key", mode="before")
    @classmethod
    def normalize_key(cls, v: Any) -> Any:
        return normalize_status_key(v) if isinstance(v, str) else v

    @property
    def dealer_user_id(self) -> Optional[str]:
        """User id under which the assigned dealer receives notifications."""
        return f"dealer_{self.dealer_id}" if self.dealer_id else None

    @property
    def placed_at(self) -> Optional[datetime]:
        return self.date or self.created_at

    def audit_snapshot(self) -> dict[str, Any]:
        document = self.to_document()
        return {field: document.get(field) for field in AUDITED_FIELDS}


# Request schemas


class OrderDraft(CamelModel):
    """Checkout payload for a new order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, max_length=200)
    user_id: Optional[str] = Field(
        None,
        description="Customer placing the order; only honored for admin callers",
    )
    dealer_id: Optional[str] = None
    dealer: Optional[str] = Field(None, max_length=100)
    file_metadata: Optional[dict[str, Any]] = None
    print_options: Optional[dict[str, Any]] = None
    cost: Union[int, float] = Field(0, ge=0)
    eta: Optional[str] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    batch_id: Optional[str] = None
    batch_index: Optional[int] = Field(None, ge=0)

    @field_validator("dealer_id", mode="before")
    @classmethod
    def coerce_dealer_id(cls, v: Any) -> Any:
        return coerce_identifier(v)


class RejectOrderRequest(CamelModel):
    reason: str


class StatusUpdateRequest(CamelModel):
    """Requested status change; ``status`` defaults to the canonical label."""

    status_key: str = Field(..., min_length=1)
    status: Optional[str] = None


class EtaUpdateRequest(CamelModel):
    eta: str


class ReassignDealerRequest(CamelModel):
    dealer_id: str = Field(..., min_length=1)
    dealer_name: str = Field(..., min_length=1)

    @field_validator("dealer_id", mode="before")
    @classmethod
    def coerce_dealer_id(cls, v: Any) -> Any:
        return coerce_identifier(v)


# Strictly positive and finite; NaN and infinity never reach the engine.
PositiveAmount = Union[
    Annotated[int, Field(gt=0)],
    Annotated[float, Field(gt=0, allow_inf_nan=False)],
]


class PricingOverrideRequest(CamelModel):
    new_cost: PositiveAmount
    reason: Optional[str] = None


class PaymentResultRequest(CamelModel):
    """Outcome reported by the payment-gateway collaborator."""

    success: bool
    transaction_id: Optional[str] = Field(None, max_length=100)


class SendMessageRequest(CamelModel):
    text: str
    sender_name: Optional[str] = Field(None, max_length=100)


class MessageStatusRequest(CamelModel):
    status: MessageStatus
