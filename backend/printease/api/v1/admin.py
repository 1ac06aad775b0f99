"""
Admin API endpoints: order overrides, dealer review, reports and announcements.

Every route requires the admin role; the services check it again.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, status

from printease.api.deps import AdminActor, ServicesDep
from printease.core.logging import get_logger
from printease.schemas.dealers import Dealer, DealerRejectRequest, DealerStatus, User
from printease.schemas.notifications import AnnouncementRequest, Notification
from printease.schemas.orders import (
    EtaUpdateRequest,
    Order,
    PricingOverrideRequest,
    ReassignDealerRequest,
)
from printease.schemas.reports import DashboardStats, RevenueReport

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# Order overrides


@router.post(
    "/orders/{order_id}/reassign",
    response_model=Order,
    summary="Reassign dealer",
    description="Hand an open order to another dealer; customer and new dealer are notified",
)
async def reassign_dealer(
    order_id: str,
    request: ReassignDealerRequest,
    actor: AdminActor,
    services: ServicesDep,
) -> Order:
    logger.info(
        "Reassigning dealer",
        order_id=order_id,
        dealer_id=request.dealer_id,
    )
    return await services.orders.admin_reassign_dealer(
        actor, order_id, request.dealer_id, request.dealer_name
    )


@router.put("/orders/{order_id}/eta", response_model=Order, summary="Override ETA")
async def override_eta(
    order_id: str,
    request: EtaUpdateRequest,
    actor: AdminActor,
    services: ServicesDep,
) -> Order:
    return await services.orders.admin_override_eta(actor, order_id, request.eta)


@router.put("/orders/{order_id}/pricing", response_model=Order, summary="Override pricing")
async def override_pricing(
    order_id: str,
    request: PricingOverrideRequest,
    actor: AdminActor,
    services: ServicesDep,
) -> Order:
    return await services.orders.admin_override_pricing(
        actor, order_id, request.new_cost, request.reason
    )


# Reports


@router.get("/dashboard", response_model=DashboardStats, summary="Dashboard statistics")
async def dashboard(actor: AdminActor, services: ServicesDep) -> DashboardStats:
    return await services.views.dashboard_stats()


@router.get(
    "/reports/orders",
    response_model=list[Order],
    summary="Orders by date range",
)
async def orders_by_date_range(
    actor: AdminActor,
    services: ServicesDep,
    start: datetime = Query(..., description="Inclusive lower bound"),
    end: datetime = Query(..., description="Inclusive upper bound"),
) -> list[Order]:
    return await services.views.orders_by_date_range(start, end)


@router.get(
    "/reports/revenue",
    response_model=RevenueReport,
    summary="Revenue by date range",
)
async def revenue_by_date_range(
    actor: AdminActor,
    services: ServicesDep,
    start: datetime = Query(..., description="Inclusive lower bound"),
    end: datetime = Query(..., description="Inclusive upper bound"),
) -> RevenueReport:
    return await services.views.revenue_by_date_range(start, end)


@router.get("/users", response_model=list[User], summary="List users")
async def list_users(actor: AdminActor, services: ServicesDep) -> list[User]:
    return await services.store.get_users()


# Dealer review


@router.get("/dealers", response_model=list[Dealer], summary="List dealers")
async def list_dealers(
    actor: AdminActor,
    services: ServicesDep,
    dealer_status: Optional[DealerStatus] = Query(None, alias="status"),
) -> list[Dealer]:
    return await services.dealers.list_dealers(dealer_status)


@router.post("/dealers/{dealer_id}/approve", response_model=Dealer, summary="Approve dealer")
async def approve_dealer(dealer_id: str, actor: AdminActor, services: ServicesDep) -> Dealer:
    return await services.dealers.approve_dealer(actor, dealer_id)


@router.post("/dealers/{dealer_id}/reject", response_model=Dealer, summary="Reject dealer")
async def reject_dealer(
    dealer_id: str,
    actor: AdminActor,
    services: ServicesDep,
    request: Optional[DealerRejectRequest] = None,
) -> Dealer:
    reason = request.reason if request else None
    return await services.dealers.reject_dealer(actor, dealer_id, reason)


# Announcements


@router.post(
    "/announcements",
    response_model=Notification,
    status_code=status.HTTP_201_CREATED,
    summary="Broadcast announcement",
)
async def broadcast_announcement(
    request: AnnouncementRequest,
    actor: AdminActor,
    services: ServicesDep,
) -> Notification:
    return await services.dealers.broadcast_announcement(actor, request.title, request.message)
