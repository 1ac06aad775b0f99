"""
Pytest configuration and shared test fixtures.

Services are wired against the in-memory document store and an in-process
broadcast hub, so every test runs without external infrastructure. Async
tests and fixtures run under pytest-asyncio's auto mode.
"""

from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable, Generator, Optional

import pytest
from fastapi.testclient import TestClient

from printease.core.config import Settings
from printease.core.security import create_access_token
from printease.main import create_app
from printease.schemas.auth import Actor, Role
from printease.schemas.notifications import Notification
from printease.schemas.orders import Order, StatusHistoryEntry, format_price
from printease.services.batches.service import BatchService
from printease.services.chat.service import ChatService
from printease.services.dealers.service import DealerService
from printease.services.notifications.bus import NotificationBus
from printease.services.notifications.channel import LocalBroadcastHub
from printease.services.orders.enums import OrderStatus
from printease.services.orders.lifecycle import OrderLifecycleEngine
from printease.services.orders.store import OrderStore
from printease.services.orders.views import OrderViews
from printease.storage.memory import MemoryDocumentStore

OrderFactory = Callable[..., Awaitable[Order]]


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings for the test environment.

    Values are passed explicitly so the suite never depends on the
    developer's environment variables or ``.env`` file.
    """
    return Settings(
        environment="test",
        storage_backend="memory",
        broadcast_backend="local",
        seed_defaults=True,
        log_level="DEBUG",
        secret_key="test-secret-key-with-at-least-32-characters",
    )


@pytest.fixture
def documents() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
async def store(documents: MemoryDocumentStore) -> OrderStore:
    """Order store seeded with the default dealers and users."""
    order_store = OrderStore(documents)
    await order_store.seed_defaults()
    return order_store


@pytest.fixture
def hub() -> LocalBroadcastHub:
    return LocalBroadcastHub()


@pytest.fixture
async def bus(
    documents: MemoryDocumentStore, hub: LocalBroadcastHub
) -> AsyncGenerator[NotificationBus, None]:
    """
    Started notification bus attached to the shared hub.

    Yields:
        NotificationBus: Bus persisting to the test document store
    """
    notification_bus = NotificationBus(documents, hub.channel(), capacity=100, origin="test-bus")
    await notification_bus.start()
    yield notification_bus
    await notification_bus.close()


@pytest.fixture
def engine(store: OrderStore, bus: NotificationBus) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(store, bus)


@pytest.fixture
def views(store: OrderStore) -> OrderViews:
    return OrderViews(store)


@pytest.fixture
def chat(store: OrderStore, bus: NotificationBus) -> ChatService:
    return ChatService(store, bus)


@pytest.fixture
def batches(store: OrderStore) -> BatchService:
    return BatchService(store)


@pytest.fixture
def dealers(store: OrderStore, bus: NotificationBus) -> DealerService:
    return DealerService(store, bus)


# ============================================================================
# Actors
# ============================================================================


@pytest.fixture
def customer() -> Actor:
    return Actor(user_id="U1", role=Role.CUSTOMER, name="John Doe")


@pytest.fixture
def other_customer() -> Actor:
    return Actor(user_id="U2", role=Role.CUSTOMER, name="Jane Smith")


@pytest.fixture
def dealer() -> Actor:
    """Actor for dealer 1, PixelPrint Hub."""
    return Actor(user_id="dealer_1", role=Role.DEALER, dealer_id="1", name="PixelPrint Hub")


@pytest.fixture
def other_dealer() -> Actor:
    return Actor(user_id="dealer_2", role=Role.DEALER, dealer_id="2", name="Express Xerox")


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin_1", role=Role.ADMIN, name="Admin")


# ============================================================================
# Orders
# ============================================================================


@pytest.fixture
def make_order(store: OrderStore) -> OrderFactory:
    """
    Factory persisting an order directly through the store.

    Example:
        order = await make_order("PE-1", cost=250, payment_method="COD")
    """

    async def factory(
        order_id: str = "PE-1",
        user_id: str = "U1",
        dealer_id: Optional[str] = "1",
        status_key: OrderStatus = OrderStatus.PENDING,
        cost: float = 100,
        placed_at: Optional[datetime] = None,
        **fields: Any,
    ) -> Order:
        placed_at = placed_at or datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        order = Order(
            id=order_id,
            user_id=user_id,
            dealer_id=dealer_id,
            dealer="PixelPrint Hub" if dealer_id == "1" else None,
            status=status_key.display_name,
            status_key=status_key,
            cost=cost,
            price=format_price(cost),
            date=placed_at,
            created_at=placed_at,
            status_history=[
                StatusHistoryEntry(
                    status=status_key.display_name,
                    status_key=status_key,
                    label=status_key.display_name,
                    timestamp=placed_at,
                )
            ],
            **fields,
        )
        return await store.create_order(order)

    return factory


@pytest.fixture
async def received(bus: NotificationBus) -> list[Notification]:
    """
    Notifications published on the bus after the fixture is requested.

    Returns:
        Live list appended to by a bus subscriber
    """
    captured: list[Notification] = []
    seen: set[str] = {n.id for n in bus.get_notifications()}

    def record(notifications: list[Notification]) -> None:
        for notification in notifications:
            if notification.id not in seen:
                seen.add(notification.id)
                captured.append(notification)

    await bus.subscribe(record)
    return captured


# ============================================================================
# HTTP Client
# ============================================================================


@pytest.fixture
def client(test_settings: Settings) -> Generator[TestClient, None, None]:
    """
    Test client running the application lifespan.

    The lifespan builds in-memory services seeded with the default dealers
    and users, so every test starts from a clean store.

    Yields:
        TestClient: Client bound to a fresh application
    """
    app = create_app(test_settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[Actor], dict[str, str]]:
    """
    Build bearer headers for an actor.

    Example:
        response = client.get("/api/v1/orders", headers=auth_headers(customer))
    """

    def build(actor: Actor) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(actor)}"}

    return build
