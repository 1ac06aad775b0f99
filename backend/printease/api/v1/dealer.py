"""
Dealer API endpoints for the signed-in dealer's own shop.

The dealer id always comes from the token, never from the path.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Query

from printease.api.deps import DealerActor, ServicesDep, get_dealer_id
from printease.core.logging import get_logger
from printease.schemas.dealers import (
    Dealer,
    DealerInfoUpdate,
    DeliveryPreferences,
    DeliveryPreferencesUpdate,
)
from printease.schemas.reports import DealerStats, EarningsSummary

logger = get_logger(__name__)

router = APIRouter(prefix="/dealer", tags=["dealer"])


@router.get("/stats", response_model=DealerStats, summary="Order counts by stage")
async def dealer_stats(actor: DealerActor, services: ServicesDep) -> DealerStats:
    return await services.views.dealer_stats(get_dealer_id(actor))


@router.get(
    "/earnings",
    response_model=EarningsSummary,
    summary="Earnings summary",
    description="Date filter applies when both bounds are given; the end date covers its whole day",
)
async def earnings_summary(
    actor: DealerActor,
    services: ServicesDep,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
) -> EarningsSummary:
    return await services.views.earnings_summary(get_dealer_id(actor), start_date, end_date)


@router.get("/profile", response_model=Dealer, summary="Dealer profile")
async def get_profile(actor: DealerActor, services: ServicesDep) -> Dealer:
    return await services.dealers.get_dealer(get_dealer_id(actor))


@router.put("/profile", response_model=Dealer, summary="Update dealer profile")
async def update_profile(
    updates: DealerInfoUpdate,
    actor: DealerActor,
    services: ServicesDep,
) -> Dealer:
    return await services.dealers.update_dealer_info(actor, get_dealer_id(actor), updates)


@router.put("/services", response_model=Dealer, summary="Update offered services")
async def update_services(
    actor: DealerActor,
    services: ServicesDep,
    offered: dict[str, bool] = Body(..., description="Service flags to merge, e.g. {\"binding\": true}"),
) -> Dealer:
    logger.info("Updating dealer services", dealer_id=actor.dealer_id, services=offered)
    return await services.dealers.update_dealer_services(actor, get_dealer_id(actor), offered)


@router.get(
    "/delivery-preferences",
    response_model=DeliveryPreferences,
    summary="Pickup and delivery preferences",
)
async def get_delivery_preferences(actor: DealerActor, services: ServicesDep) -> DeliveryPreferences:
    return await services.dealers.get_delivery_preferences(get_dealer_id(actor))


@router.put(
    "/delivery-preferences",
    response_model=DeliveryPreferences,
    summary="Update pickup and delivery preferences",
)
async def update_delivery_preferences(
    updates: DeliveryPreferencesUpdate,
    actor: DealerActor,
    services: ServicesDep,
) -> DeliveryPreferences:
    return await services.dealers.update_delivery_preferences(
        actor, get_dealer_id(actor), updates
    )
