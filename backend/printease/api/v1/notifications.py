"""
Notification feed endpoints and live WebSocket stream.

Feeds are addressed by inbox id: the user id for customers and admins,
``dealer_<id>`` for dealers. Broadcast announcements appear in every feed.
"""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Query, Response, WebSocket, WebSocketDisconnect, status

from printease.api.deps import CurrentActor, ServicesDep
from printease.core.errors import NotificationNotFoundError
from printease.core.logging import get_logger
from printease.core.security import TokenError, actor_from_token
from printease.schemas.auth import Actor
from printease.schemas.notifications import Notification, UnreadCountResponse
from printease.services.container import Services

logger = get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _visible_notification(services: Services, actor: Actor, notification_id: str) -> Notification:
    notification = services.bus.get_notification(notification_id)
    if not actor.is_admin and not notification.visible_to(actor.inbox_id):
        raise NotificationNotFoundError(notification_id)
    return notification


@router.get("", response_model=list[Notification], summary="Notification feed")
async def list_notifications(actor: CurrentActor, services: ServicesDep) -> list[Notification]:
    return services.bus.get_notifications(actor.inbox_id)


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread count")
async def unread_count(actor: CurrentActor, services: ServicesDep) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=services.bus.get_unread_count(actor.inbox_id))


@router.post("/read-all", summary="Mark the whole feed read")
async def mark_all_as_read(actor: CurrentActor, services: ServicesDep) -> dict[str, int]:
    updated = await services.bus.mark_all_as_read(actor.inbox_id)
    return {"updated": updated}


@router.post(
    "/{notification_id}/read",
    response_model=Notification,
    summary="Mark one notification read",
)
async def mark_as_read(
    notification_id: str,
    actor: CurrentActor,
    services: ServicesDep,
) -> Notification:
    _visible_notification(services, actor, notification_id)
    return await services.bus.mark_as_read(notification_id)


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete notification",
)
async def delete_notification(
    notification_id: str,
    actor: CurrentActor,
    services: ServicesDep,
) -> Response:
    _visible_notification(services, actor, notification_id)
    await services.bus.delete(notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", summary="Clear the caller's notifications")
async def clear_notifications(actor: CurrentActor, services: ServicesDep) -> dict[str, int]:
    removed = await services.bus.clear(actor.inbox_id)
    return {"removed": removed}


@router.websocket("/stream")
async def notification_stream(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
) -> None:
    """
    Push the caller's feed on connect and after every change.

    Browsers cannot set headers on WebSocket requests, so the access token
    travels in the ``token`` query parameter.
    """
    try:
        actor = actor_from_token(token or "")
    except TokenError as e:
        logger.warning("WebSocket authentication failed", code=e.code)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    services: Services = websocket.app.state.services
    await websocket.accept()
    logger.info("Notification stream opened", user_id=actor.user_id, inbox_id=actor.inbox_id)

    # Each push carries the whole feed, so only the newest one needs sending.
    outbox: asyncio.Queue[list[dict[str, Any]]] = asyncio.Queue(maxsize=1)

    def push(notifications: list[Notification]) -> None:
        feed = [n.to_document() for n in notifications if n.visible_to(actor.inbox_id)]
        if outbox.full():
            outbox.get_nowait()
        outbox.put_nowait(feed)

    async def write() -> None:
        while True:
            feed = await outbox.get()
            await websocket.send_json({"type": "notifications", "notifications": feed})

    unsubscribe = await services.bus.subscribe(push)
    writer = asyncio.create_task(write())
    try:
        while True:
            # Client messages only keep the connection alive.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Notification stream closed", user_id=actor.user_id)
    finally:
        unsubscribe()
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
