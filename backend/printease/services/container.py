"""
Process-wide service wiring.

``create_services`` builds the document store, notification bus and every
service on top of them once, in the application lifespan. The API layer
reads the resulting ``Services`` from ``app.state``.
"""

from dataclasses import dataclass
from typing import Optional

from printease.core.config import Settings, get_settings
from printease.core.logging import get_logger, log_performance
from printease.services.batches.service import BatchService
from printease.services.chat.service import ChatService
from printease.services.dealers.service import DealerService
from printease.services.notifications.bus import NotificationBus
from printease.services.notifications.channel import (
    BroadcastChannel,
    build_broadcast_channel,
)
from printease.services.orders.audit import AuditLog
from printease.services.orders.lifecycle import OrderLifecycleEngine
from printease.services.orders.store import OrderStore
from printease.services.orders.views import OrderViews
from printease.storage import DocumentStore, build_document_store

logger = get_logger(__name__)


@dataclass
class Services:
    documents: DocumentStore
    store: OrderStore
    bus: NotificationBus
    orders: OrderLifecycleEngine
    audit: AuditLog
    views: OrderViews
    chat: ChatService
    batches: BatchService
    dealers: DealerService

    async def close(self) -> None:
        await self.bus.close()
        await self.documents.close()
        logger.info("Services closed")


async def create_services(
    settings: Optional[Settings] = None,
    documents: Optional[DocumentStore] = None,
    channel: Optional[BroadcastChannel] = None,
) -> Services:
    """
    Build and start every service.

    Args:
        settings: Application settings
        documents: Document store to use instead of the configured one
        channel: Broadcast channel to use instead of the configured one

    Returns:
        Started services
    """
    settings = settings or get_settings()

    with log_performance(logger, "services_startup"):
        documents = documents or await build_document_store(settings)
        store = OrderStore(documents)
        if settings.seed_defaults:
            await store.seed_defaults()

        channel = channel or build_broadcast_channel(
            settings.broadcast_backend,
            settings.redis_url,
            settings.notification_channel,
        )
        bus = NotificationBus(documents, channel, capacity=settings.notification_capacity)
        await bus.start()

    return Services(
        documents=documents,
        store=store,
        bus=bus,
        orders=OrderLifecycleEngine(store, bus),
        audit=AuditLog(store),
        views=OrderViews(store),
        chat=ChatService(store, bus),
        batches=BatchService(store),
        dealers=DealerService(store, bus),
    )
