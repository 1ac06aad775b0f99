"""Order batch endpoints."""

from fastapi import APIRouter, status

from printease.api.deps import CurrentActor, CustomerOrAdmin, ServicesDep
from printease.core.errors import AuthorizationError
from printease.schemas.auth import Actor
from printease.schemas.batches import Batch, BatchStats, BatchStatusRequest, CreateBatchRequest
from printease.schemas.orders import Order
from printease.services.container import Services

router = APIRouter(prefix="/batches", tags=["batches"])


async def _readable_batch(services: Services, actor: Actor, batch_id: str) -> Batch:
    batch = await services.batches.get_batch(batch_id)
    if actor.is_admin or batch.user_id == actor.user_id:
        return batch
    raise AuthorizationError("Not allowed to view this batch", batch_id=batch_id)


@router.post(
    "",
    response_model=Batch,
    status_code=status.HTTP_201_CREATED,
    summary="Create batch",
)
async def create_batch(
    request: CreateBatchRequest,
    actor: CustomerOrAdmin,
    services: ServicesDep,
) -> Batch:
    return await services.batches.create_batch(actor, request.order_ids)


@router.get("", response_model=list[Batch], summary="Caller's batches")
async def list_batches(actor: CurrentActor, services: ServicesDep) -> list[Batch]:
    return await services.batches.get_user_batches(actor.user_id)


@router.get("/{batch_id}", response_model=Batch, summary="Get batch")
async def get_batch(batch_id: str, actor: CurrentActor, services: ServicesDep) -> Batch:
    return await _readable_batch(services, actor, batch_id)


@router.get("/{batch_id}/orders", response_model=list[Order], summary="Orders in batch order")
async def get_batch_orders(batch_id: str, actor: CurrentActor, services: ServicesDep) -> list[Order]:
    await _readable_batch(services, actor, batch_id)
    return await services.batches.get_batch_orders(batch_id)


@router.get("/{batch_id}/stats", response_model=BatchStats, summary="Batch statistics")
async def get_batch_stats(batch_id: str, actor: CurrentActor, services: ServicesDep) -> BatchStats:
    await _readable_batch(services, actor, batch_id)
    return await services.batches.get_batch_stats(batch_id)


@router.put("/{batch_id}/status", response_model=Batch, summary="Update batch status")
async def update_batch_status(
    batch_id: str,
    request: BatchStatusRequest,
    actor: CurrentActor,
    services: ServicesDep,
) -> Batch:
    return await services.batches.update_batch_status(batch_id, request.status, actor=actor)
