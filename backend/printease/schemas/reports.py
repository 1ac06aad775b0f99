"""Aggregated order views returned to the admin and dealer dashboards."""

from datetime import datetime
from typing import Union

from pydantic import Field

from printease.schemas.orders import CamelModel

Amount = Union[int, float]


class DashboardStats(CamelModel):
    total_orders: int = 0
    revenue: Amount = 0
    pending_orders: int = 0
    avg_eta: int = Field(0, description="Average ETA in minutes")
    total_dealers: int = 0
    approved_dealers: int = 0
    pending_dealers: int = 0
    total_users: int = 0
    orders_by_status: dict[str, int] = Field(default_factory=dict)


class DealerStats(CamelModel):
    total_orders: int = 0
    pending_orders: int = 0
    processing_orders: int = 0
    ready_orders: int = 0
    completed_orders: int = 0


class EarningsSummary(CamelModel):
    total_earnings: Amount = 0
    pending_earnings: Amount = 0
    total_orders: int = 0
    completed_orders: int = 0
    average_order_value: float = 0


class RevenueReport(CamelModel):
    start_date: datetime
    end_date: datetime
    order_count: int = 0
    revenue: Amount = 0
