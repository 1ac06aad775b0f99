"""Order chat endpoints."""

from fastapi import APIRouter, status

from printease.api.deps import CurrentActor, ServicesDep
from printease.schemas.orders import ChatMessage, MessageStatusRequest, SendMessageRequest
from printease.services.orders.access import require_order_access

router = APIRouter(prefix="/orders/{order_id}/messages", tags=["chat"])


@router.get(
    "",
    response_model=list[ChatMessage],
    summary="Read order messages",
    description="Reading marks messages from other participants as delivered",
)
async def get_messages(order_id: str, actor: CurrentActor, services: ServicesDep) -> list[ChatMessage]:
    return await services.chat.get_messages(actor, order_id)


@router.post(
    "",
    response_model=ChatMessage,
    status_code=status.HTTP_201_CREATED,
    summary="Send message",
)
async def send_message(
    order_id: str,
    request: SendMessageRequest,
    actor: CurrentActor,
    services: ServicesDep,
) -> ChatMessage:
    return await services.chat.send_message(actor, order_id, request.text, request.sender_name)


@router.post("/read", summary="Mark messages read")
async def mark_messages_as_read(
    order_id: str,
    actor: CurrentActor,
    services: ServicesDep,
) -> dict[str, int]:
    updated = await services.chat.mark_messages_as_read(actor, order_id)
    return {"updated": updated}


@router.get("/unread-count", summary="Unread message count")
async def get_unread_count(
    order_id: str,
    actor: CurrentActor,
    services: ServicesDep,
) -> dict[str, int]:
    order = await services.store.get_order(order_id)
    require_order_access(actor, order, "read messages of")
    return {"unreadCount": await services.chat.get_unread_count(order_id, actor.user_id)}


@router.put(
    "/{message_id}/status",
    response_model=ChatMessage,
    summary="Update message status",
    description="Statuses only move forward; backward requests return the message unchanged",
)
async def update_message_status(
    order_id: str,
    message_id: str,
    request: MessageStatusRequest,
    actor: CurrentActor,
    services: ServicesDep,
) -> ChatMessage:
    return await services.chat.update_message_status(
        order_id, message_id, request.status, actor=actor
    )
