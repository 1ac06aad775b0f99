"""Order batch schemas."""

from datetime import datetime
from typing import Optional, Union

from pydantic import Field

from printease.schemas.orders import CamelModel


class Batch(CamelModel):
    """Group of orders checked out together."""

    id: str
    user_id: Optional[str] = None
    orders: list[str] = Field(default_factory=list)
    status: str = "pending"
    total_cost: Union[int, float] = 0
    total_orders: int = 0
    created_at: datetime
    updated_at: datetime


class BatchStats(CamelModel):
    total_orders: int
    total_cost: Union[int, float]
    by_status: dict[str, int]
    average_eta: str


class CreateBatchRequest(CamelModel):
    order_ids: list[str] = Field(..., min_length=1)


class BatchStatusRequest(CamelModel):
    status: str = Field(..., min_length=1, max_length=50)
