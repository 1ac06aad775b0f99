"""
Read-only aggregations over orders for the admin and dealer dashboards.

Views are recomputed from the store on every call and take no locks, so a
view may mix orders read before and after a concurrent commit.
"""

import re
from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

from printease.core.logging import get_logger
from printease.core.timeutils import as_utc, end_of_day
from printease.schemas.dealers import DealerStatus
from printease.schemas.orders import Order
from printease.schemas.reports import (
    DashboardStats,
    DealerStats,
    EarningsSummary,
    RevenueReport,
)
from printease.services.orders.enums import (
    EARNING_STATUSES,
    PROCESSING_STATUSES,
    OrderStatus,
    PaymentStatus,
)
from printease.services.orders.store import OrderStore

logger = get_logger(__name__)

DEFAULT_ETA_MINUTES = 60
_DIGITS = re.compile(r"\d+")


def eta_minutes(eta: str) -> int:
    """Parse ``"45 mins"`` style ETAs; anything else counts as an hour."""
    text = eta.lower()
    if "mins" in text:
        match = _DIGITS.search(text)
        if match:
            return int(match.group())
    return DEFAULT_ETA_MINUTES


def filter_orders(orders: Iterable[Order], status_key: Optional[str] = "all") -> list[Order]:
    """Keep orders with the given status key; ``"all"`` keeps everything."""
    if not status_key or status_key == "all":
        return list(orders)
    target = OrderStatus.from_string(status_key)
    return [order for order in orders if order.status_key == target]


def paid_total(orders: Iterable[Order]) -> float:
    return sum(order.cost or 0 for order in orders if order.payment_status == PaymentStatus.PAID)


def _in_range(order: Order, start: datetime, end: datetime) -> bool:
    placed_at = order.placed_at
    if placed_at is None:
        return False
    return as_utc(start) <= as_utc(placed_at) <= as_utc(end)


class OrderViews:
    """Dashboard statistics, dealer earnings and date-range reports."""

    def __init__(self, store: OrderStore):
        self.store = store

    async def dashboard_stats(self) -> DashboardStats:
        orders = await self.store.get_orders()
        dealers = await self.store.get_dealers()
        users = await self.store.get_users()

        with_eta = [order for order in orders if order.eta]
        avg_eta = (
            sum(eta_minutes(order.eta) for order in with_eta) / len(with_eta)
            if with_eta
            else 0
        )
        by_status = Counter(order.status_key.value for order in orders)

        return DashboardStats(
            total_orders=len(orders),
            revenue=paid_total(orders),
            pending_orders=by_status.get(OrderStatus.PENDING.value, 0),
            avg_eta=round(avg_eta),
            total_dealers=len(dealers),
            approved_dealers=sum(1 for d in dealers if d.status == DealerStatus.APPROVED),
            pending_dealers=sum(1 for d in dealers if d.status == DealerStatus.PENDING),
            total_users=len(users),
            orders_by_status=dict(by_status),
        )

    async def dealer_orders(self, dealer_id: str) -> list[Order]:
        dealer_id = str(dealer_id)
        return [order for order in await self.store.get_orders() if order.dealer_id == dealer_id]

    async def dealer_stats(self, dealer_id: str) -> DealerStats:
        orders = await self.dealer_orders(dealer_id)
        return DealerStats(
            total_orders=len(orders),
            pending_orders=sum(1 for o in orders if o.status_key == OrderStatus.PENDING),
            processing_orders=sum(1 for o in orders if o.status_key in PROCESSING_STATUSES),
            ready_orders=sum(1 for o in orders if o.status_key == OrderStatus.READY_FOR_PICKUP),
            completed_orders=sum(1 for o in orders if o.status_key == OrderStatus.DELIVERED),
        )

    async def earnings_summary(
        self,
        dealer_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> EarningsSummary:
        """
        Summarize a dealer's earnings.

        The date filter applies only when both bounds are given; the end
        date includes its whole day.

        Args:
            dealer_id: Dealer whose orders are summarized
            start_date: First day to include
            end_date: Last day to include

        Returns:
            Earned totals over completed orders and paid in-progress orders
        """
        orders = await self.dealer_orders(dealer_id)
        if start_date is not None and end_date is not None:
            end = end_of_day(end_date)
            orders = [order for order in orders if _in_range(order, start_date, end)]

        completed = [order for order in orders if order.status_key in EARNING_STATUSES]
        total_earnings = sum(order.cost or 0 for order in completed)
        pending_earnings = sum(
            order.cost or 0
            for order in orders
            if order.status_key in PROCESSING_STATUSES
            and order.payment_status == PaymentStatus.PAID
        )

        return EarningsSummary(
            total_earnings=total_earnings,
            pending_earnings=pending_earnings,
            total_orders=len(orders),
            completed_orders=len(completed),
            average_order_value=total_earnings / len(completed) if completed else 0,
        )

    async def orders_by_date_range(self, start: datetime, end: datetime) -> list[Order]:
        """Orders placed between ``start`` and ``end``, both inclusive."""
        return [order for order in await self.store.get_orders() if _in_range(order, start, end)]

    async def revenue_by_date_range(self, start: datetime, end: datetime) -> RevenueReport:
        orders = await self.orders_by_date_range(start, end)
        report = RevenueReport(
            start_date=as_utc(start),
            end_date=as_utc(end),
            order_count=len(orders),
            revenue=paid_total(orders),
        )
        logger.debug(
            "Revenue report computed",
            order_count=report.order_count,
            revenue=report.revenue,
        )
        return report
