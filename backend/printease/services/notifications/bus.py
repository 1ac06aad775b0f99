"""
Notification bus: bounded notification list with publish/subscribe fan-out.

One bus is created per process in the application lifespan and handed to
every service that publishes or reads notifications. The list lives in
memory as a cache of the ``notifications`` collection, which is rewritten
on every mutation. Other processes learn about changes through the
broadcast channel and reload the whole list from storage.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

from printease.core.errors import NotificationNotFoundError, PrintEaseError
from printease.core.ids import timestamped_id
from printease.core.logging import get_logger
from printease.core.timeutils import utcnow
from printease.schemas.notifications import Notification, NotificationEvent
from printease.services.notifications.channel import BroadcastChannel, Envelope
from printease.services.notifications.types import EnvelopeType
from printease.storage.base import Collection, DocumentStore

logger = get_logger(__name__)

Subscriber = Callable[[list[Notification]], Union[None, Awaitable[None]]]


class NotificationBus:
    """
    Process-wide notification service.

    Attributes:
        store: Document store holding the notifications collection
        channel: Broadcast channel shared with other bus instances
        capacity: Maximum number of notifications kept; oldest are evicted first
        origin: Identifier stamped on outgoing envelopes
    """

    def __init__(
        self,
        store: DocumentStore,
        channel: BroadcastChannel,
        capacity: int = 100,
        origin: Optional[str] = None,
    ):
        self.store = store
        self.channel = channel
        self.capacity = capacity
        self.origin = origin or uuid4().hex
        self._notifications: list[Notification] = []
        self._subscribers: list[Subscriber] = []
        self._deliveries: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Load the stored list and start listening to other instances."""
        await self.reload()
        await self.channel.start(self._on_envelope)
        logger.info(
            "Notification bus started",
            origin=self.origin,
            notification_count=len(self._notifications),
        )

    async def close(self) -> None:
        await self.channel.close()
        self._subscribers.clear()
        for task in self._deliveries:
            task.cancel()
        await asyncio.gather(*self._deliveries, return_exceptions=True)
        logger.info("Notification bus closed", origin=self.origin)

    async def reload(self) -> None:
        """Replace the in-memory list with the stored one."""
        async with self._lock:
            documents = await self.store.load(Collection.NOTIFICATIONS)
            notifications = [Notification.model_validate(d) for d in documents]
            self._notifications = notifications[-self.capacity:]

    # Subscriptions

    async def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback invoked with the full list on every change.

        The callback is invoked once immediately with the current list.
        Later changes call plain callbacks inline and run coroutine
        callbacks as background tasks; publishers never wait on them.

        Returns:
            Function removing the subscription
        """
        self._subscribers.append(callback)
        await self._invoke(callback, self._snapshot())

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def pending_deliveries(self) -> int:
        return len(self._deliveries)

    async def flush(self) -> None:
        """Wait for the subscriber deliveries started so far."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    # Mutations

    async def publish(self, event: NotificationEvent) -> Notification:
        """
        Store a new notification and fan it out.

        Args:
            event: Notification content and recipient

        Returns:
            The stored notification
        """
        notification = Notification(
            id=timestamped_id("notif"),
            type=event.type,
            title=event.resolved_title,
            message=event.message,
            user_id=event.user_id,
            order_id=event.order_id,
            timestamp=utcnow(),
            read=False,
            data=dict(event.data),
        )

        async with self._lock:
            updated = [*self._notifications, notification]
            evicted = len(updated) - self.capacity
            if evicted > 0:
                updated = updated[evicted:]
            await self._persist(updated)

        logger.info(
            "Notification published",
            notification_id=notification.id,
            notification_type=notification.type.value,
            user_id=notification.user_id,
            order_id=notification.order_id,
            evicted=max(evicted, 0),
        )

        await self._broadcast(
            EnvelopeType.NOTIFICATION,
            notification=notification.to_document(),
        )
        await self._notify_subscribers()
        return notification

    async def mark_as_read(self, notification_id: str) -> Notification:
        """
        Mark one notification read.

        Raises:
            NotificationNotFoundError: If the id is unknown
        """
        async with self._lock:
            index = self._index_of(notification_id)
            updated = list(self._notifications)
            updated[index] = updated[index].model_copy(update={"read": True})
            await self._persist(updated)
            notification = updated[index]

        await self._broadcast(EnvelopeType.NOTIFICATION_READ, notificationId=notification_id)
        await self._notify_subscribers()
        return notification

    async def mark_all_as_read(self, user_id: Optional[str] = None) -> int:
        """
        Mark every notification visible to ``user_id`` read (all when None).

        Returns:
            Number of notifications that changed
        """
        async with self._lock:
            changed = 0
            updated = []
            for notification in self._notifications:
                if not notification.read and notification.visible_to(user_id):
                    notification = notification.model_copy(update={"read": True})
                    changed += 1
                updated.append(notification)
            await self._persist(updated)

        await self._broadcast(EnvelopeType.NOTIFICATIONS_ALL_READ, userId=user_id)
        await self._notify_subscribers()
        return changed

    async def delete(self, notification_id: str) -> None:
        """
        Remove one notification.

        Raises:
            NotificationNotFoundError: If the id is unknown
        """
        async with self._lock:
            index = self._index_of(notification_id)
            updated = [n for i, n in enumerate(self._notifications) if i != index]
            await self._persist(updated)

        await self._broadcast(EnvelopeType.NOTIFICATION_DELETED, notificationId=notification_id)
        await self._notify_subscribers()

    async def clear(self, user_id: Optional[str] = None) -> int:
        """
        Remove the notifications addressed to ``user_id``, or every one when None.

        Broadcast notifications are only removed by a full clear.

        Returns:
            Number of notifications removed
        """
        async with self._lock:
            if user_id is None:
                updated: list[Notification] = []
            else:
                updated = [n for n in self._notifications if n.user_id != user_id]
            removed = len(self._notifications) - len(updated)
            await self._persist(updated)

        await self._broadcast(EnvelopeType.NOTIFICATIONS_CLEARED, userId=user_id)
        await self._notify_subscribers()
        return removed

    # Queries

    def get_notifications(self, user_id: Optional[str] = None) -> list[Notification]:
        """Notifications visible to ``user_id`` (all when None), oldest first."""
        return [n.model_copy() for n in self._notifications if n.visible_to(user_id)]

    def get_unread_count(self, user_id: Optional[str] = None) -> int:
        return sum(
            1 for n in self._notifications if not n.read and n.visible_to(user_id)
        )

    def get_notification(self, notification_id: str) -> Notification:
        return self._notifications[self._index_of(notification_id)].model_copy()

    # Internals

    def _index_of(self, notification_id: str) -> int:
        for index, notification in enumerate(self._notifications):
            if notification.id == notification_id:
                return index
        raise NotificationNotFoundError(notification_id)

    def _snapshot(self) -> list[Notification]:
        return [n.model_copy() for n in self._notifications]

    async def _persist(self, notifications: list[Notification]) -> None:
        # Storage first, then memory: a failed write leaves the cache untouched.
        await self.store.save(
            Collection.NOTIFICATIONS,
            [n.to_document() for n in notifications],
        )
        self._notifications = notifications

    async def _broadcast(self, envelope_type: EnvelopeType, **payload: Any) -> None:
        envelope: Envelope = {"type": envelope_type.value, "origin": self.origin, **payload}
        try:
            await self.channel.publish(envelope)
        except PrintEaseError as e:
            # Other instances catch up on their next reload.
            logger.error(
                "Failed to broadcast notification change",
                envelope_type=envelope_type.value,
                error=e.message,
            )

    async def _on_envelope(self, envelope: Envelope) -> None:
        if envelope.get("origin") == self.origin:
            return
        logger.debug(
            "Notification change received",
            envelope_type=envelope.get("type"),
            origin=envelope.get("origin"),
        )
        await self.reload()
        await self._notify_subscribers()

    async def _notify_subscribers(self) -> None:
        # Async subscribers run as background tasks so a slow one never
        # holds up the publisher or the other subscribers.
        snapshot = self._snapshot()
        for callback in list(self._subscribers):
            result = self._call(callback, snapshot)
            if result is not None:
                task = asyncio.ensure_future(self._await_delivery(result))
                self._deliveries.add(task)
                task.add_done_callback(self._deliveries.discard)

    async def _invoke(self, callback: Subscriber, snapshot: list[Notification]) -> None:
        result = self._call(callback, snapshot)
        if result is not None:
            await self._await_delivery(result)

    def _call(self, callback: Subscriber, snapshot: list[Notification]) -> Optional[Awaitable[None]]:
        try:
            result = callback(list(snapshot))
        except Exception as e:
            self._log_subscriber_failure(e)
            return None
        return result if inspect.isawaitable(result) else None

    async def _await_delivery(self, result: Awaitable[None]) -> None:
        try:
            await result
        except Exception as e:
            self._log_subscriber_failure(e)

    @staticmethod
    def _log_subscriber_failure(error: Exception) -> None:
        logger.error(
            "Notification subscriber failed",
            error=str(error),
            error_type=type(error).__name__,
            exc_info=True,
        )
