"""
Order lifecycle API endpoints.

Routes resolve the calling actor from the bearer token and delegate to the
order lifecycle engine, which enforces role rules and transition rules.
Service errors are translated to HTTP responses by the application-wide
exception handler.
"""

from typing import Optional

from fastapi import APIRouter, Query, status

from printease.api.deps import CurrentActor, CustomerOrAdmin, ServicesDep
from printease.core.logging import get_logger
from printease.schemas.orders import (
    AuditEntry,
    ChangeLogEntry,
    EtaUpdateRequest,
    Order,
    OrderDraft,
    PaymentResultRequest,
    RejectOrderRequest,
    StatusUpdateRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=Order,
    status_code=status.HTTP_201_CREATED,
    summary="Place order",
    description="Check out a new print order; the chosen dealer is notified",
)
async def place_order(
    draft: OrderDraft,
    actor: CustomerOrAdmin,
    services: ServicesDep,
) -> Order:
    logger.info(
        "Placing order",
        user_id=actor.user_id,
        dealer_id=draft.dealer_id,
    )
    return await services.orders.place_order(actor, draft)


@router.get(
    "",
    response_model=list[Order],
    summary="List orders",
    description="Orders visible to the caller, newest first",
)
async def list_orders(
    actor: CurrentActor,
    services: ServicesDep,
    status_key: Optional[str] = Query(
        None,
        alias="statusKey",
        description="Filter by status key; 'all' disables the filter",
    ),
) -> list[Order]:
    return await services.orders.list_orders(actor, status_key)


@router.get("/{order_id}", response_model=Order, summary="Get order")
async def get_order(order_id: str, actor: CurrentActor, services: ServicesDep) -> Order:
    return await services.orders.get_order(actor, order_id)


@router.post(
    "/{order_id}/accept",
    response_model=Order,
    summary="Accept order",
    description="Assigned dealer accepts a pending order",
)
async def accept_order(order_id: str, actor: CurrentActor, services: ServicesDep) -> Order:
    return await services.orders.accept_order(actor, order_id)


@router.post(
    "/{order_id}/reject",
    response_model=Order,
    summary="Reject order",
    description="Assigned dealer rejects a pending order with a reason",
)
async def reject_order(
    order_id: str,
    request: RejectOrderRequest,
    actor: CurrentActor,
    services: ServicesDep,
) -> Order:
    return await services.orders.reject_order(actor, order_id, request.reason)


@router.put(
    "/{order_id}/status",
    response_model=Order,
    summary="Update order status",
    description="Move an order one step forward along its lifecycle",
)
async def update_order_status(
    order_id: str,
    request: StatusUpdateRequest,
    actor: CurrentActor,
    services: ServicesDep,
) -> Order:
    logger.info(
        "Updating order status",
        order_id=order_id,
        user_id=actor.user_id,
        status_key=request.status_key,
    )
    return await services.orders.update_order_status(
        actor, order_id, request.status, request.status_key
    )


@router.put("/{order_id}/eta", response_model=Order, summary="Update order ETA")
async def update_order_eta(
    order_id: str,
    request: EtaUpdateRequest,
    actor: CurrentActor,
    services: ServicesDep,
) -> Order:
    return await services.orders.update_order_eta(actor, order_id, request.eta)


@router.post(
    "/{order_id}/cancel",
    response_model=Order,
    summary="Cancel order",
    description="Admins cancel any open order; customers only their own pending orders",
)
async def cancel_order(order_id: str, actor: CurrentActor, services: ServicesDep) -> Order:
    return await services.orders.cancel_order(actor, order_id)


@router.post(
    "/{order_id}/payment",
    response_model=Order,
    summary="Record payment result",
    description="Record the outcome reported by the payment gateway",
)
async def record_payment(
    order_id: str,
    request: PaymentResultRequest,
    actor: CurrentActor,
    services: ServicesDep,
) -> Order:
    return await services.orders.record_payment(
        actor, order_id, request.success, request.transaction_id
    )


@router.get(
    "/{order_id}/audit",
    response_model=list[AuditEntry],
    summary="Order audit log",
)
async def get_audit_log(
    order_id: str,
    actor: CurrentActor,
    services: ServicesDep,
    field: Optional[str] = Query(None, description="Only entries that changed this field"),
) -> list[AuditEntry]:
    return await services.orders.get_audit_log(actor, order_id, field)


@router.get(
    "/{order_id}/changes",
    response_model=list[ChangeLogEntry],
    summary="Order change log",
)
async def get_change_log(
    order_id: str,
    actor: CurrentActor,
    services: ServicesDep,
) -> list[ChangeLogEntry]:
    return await services.orders.get_change_log(actor, order_id)
