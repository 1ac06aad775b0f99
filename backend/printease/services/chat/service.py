"""
Per-order chat between the customer, the assigned dealer and admins.

Messages are embedded in the order document, so every chat write goes
through the order store under the per-order lock, like lifecycle commits.
"""

from typing import Optional

from printease.core.errors import (
    MessageNotFoundError,
    OrderValidationError,
    PrintEaseError,
)
from printease.core.ids import timestamped_id
from printease.core.logging import get_logger
from printease.core.timeutils import utcnow
from printease.schemas.auth import Actor
from printease.schemas.notifications import NotificationEvent
from printease.schemas.orders import ChatMessage, Order
from printease.services.notifications.bus import NotificationBus
from printease.services.notifications.types import NotificationType
from printease.services.orders.access import require_order_access
from printease.services.orders.enums import MessageStatus
from printease.services.orders.store import OrderStore

logger = get_logger(__name__)

PREVIEW_LENGTH = 50


def message_preview(text: str) -> str:
    if len(text) > PREVIEW_LENGTH:
        return f"{text[:PREVIEW_LENGTH]}..."
    return text


class ChatService:
    """Order chat threads with delivery and read receipts."""

    def __init__(self, store: OrderStore, bus: NotificationBus):
        self.store = store
        self.bus = bus

    async def get_messages(self, actor: Actor, order_id: str) -> list[ChatMessage]:
        """
        Read an order's thread.

        Reading acknowledges delivery of every message written by someone
        else that is still only ``sent``.

        Raises:
            OrderNotFoundError: If the order does not exist
            AuthorizationError: If the actor is not a participant
        """
        async with self.store.lock(order_id):
            order = await self.store.get_order(order_id)
            require_order_access(actor, order, "read messages of")

            now = utcnow()
            delivered = 0
            for message in order.messages:
                if message.sender_id != actor.user_id and message.status == MessageStatus.SENT:
                    message.status = MessageStatus.DELIVERED
                    message.delivered_at = now
                    delivered += 1

            if delivered:
                await self.store.save_order(order)
                logger.debug(
                    "Chat messages delivered",
                    order_id=order_id,
                    reader_id=actor.user_id,
                    count=delivered,
                )

        return list(order.messages)

    async def send_message(
        self,
        actor: Actor,
        order_id: str,
        text: str,
        sender_name: Optional[str] = None,
    ) -> ChatMessage:
        """
        Append a message to an order's thread and notify the counterpart.

        Raises:
            OrderValidationError: If the text is blank
            AuthorizationError: If the actor is not a participant
        """
        if not text or not text.strip():
            raise OrderValidationError("Message text is required", order_id=order_id)

        async with self.store.lock(order_id):
            order = await self.store.get_order(order_id)
            require_order_access(actor, order, "send messages on")

            message = ChatMessage(
                id=timestamped_id("msg"),
                text=text,
                sender_id=actor.user_id,
                sender_role=actor.role.value,
                sender_name=sender_name or actor.name,
                timestamp=utcnow(),
            )
            order.messages.append(message)
            order.updated_at = message.timestamp
            await self.store.save_order(order)

        logger.info(
            "Chat message sent",
            order_id=order_id,
            message_id=message.id,
            sender_role=message.sender_role,
        )

        recipient_id = self._recipient_for(actor, order)
        if recipient_id:
            await self._notify(order, message, recipient_id)
        return message

    async def mark_messages_as_read(self, actor: Actor, order_id: str) -> int:
        """
        Mark every message written by someone else read.

        Returns:
            Number of messages that changed
        """
        async with self.store.lock(order_id):
            order = await self.store.get_order(order_id)
            require_order_access(actor, order, "read messages of")

            now = utcnow()
            changed = 0
            for message in order.messages:
                if message.sender_id != actor.user_id and message.status != MessageStatus.READ:
                    message.status = MessageStatus.READ
                    message.read_at = now
                    if message.delivered_at is None:
                        message.delivered_at = now
                    changed += 1

            if changed:
                await self.store.save_order(order)

        return changed

    async def get_unread_count(self, order_id: str, user_id: str) -> int:
        order = await self.store.get_order(order_id)
        return sum(
            1
            for message in order.messages
            if message.sender_id != user_id and message.status != MessageStatus.READ
        )

    async def update_message_status(
        self,
        order_id: str,
        message_id: str,
        status: MessageStatus,
        actor: Optional[Actor] = None,
    ) -> ChatMessage:
        """
        Move a message's status forward.

        Requests that would move a message backwards are ignored and the
        unchanged message is returned.

        Raises:
            MessageNotFoundError: If the message is not in the order's thread
        """
        async with self.store.lock(order_id):
            order = await self.store.get_order(order_id)
            if actor is not None:
                require_order_access(actor, order, "update messages of")

            message = self._find_message(order, message_id)
            if not status.is_after(message.status):
                return message

            now = utcnow()
            message.status = status
            if message.delivered_at is None:
                message.delivered_at = now
            if status == MessageStatus.READ:
                message.read_at = now
            await self.store.save_order(order)

        return message

    @staticmethod
    def _find_message(order: Order, message_id: str) -> ChatMessage:
        for message in order.messages:
            if message.id == message_id:
                return message
        raise MessageNotFoundError(order.id, message_id)

    @staticmethod
    def _recipient_for(actor: Actor, order: Order) -> Optional[str]:
        if actor.is_customer:
            return order.dealer_user_id
        return order.user_id

    async def _notify(self, order: Order, message: ChatMessage, recipient_id: str) -> None:
        try:
            await self.bus.publish(
                NotificationEvent(
                    type=NotificationType.NEW_MESSAGE,
                    message=f"New message in order {order.id}: {message_preview(message.text)}",
                    user_id=recipient_id,
                    order_id=order.id,
                    data={"senderName": message.sender_name, "messageId": message.id},
                )
            )
        except PrintEaseError as e:
            logger.error(
                "Failed to publish chat notification",
                order_id=order.id,
                message_id=message.id,
                error=e.message,
            )
