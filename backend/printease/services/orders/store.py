"""
Order store: typed access to the order, user, dealer and batch collections.

The store is the only component that writes order documents. Each write is
a single ``upsert`` so an order and its embedded history, audit log, change
log and chat thread are committed together. ``lock(order_id)`` serializes
read-modify-write sequences on one order within the process.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from printease.core.errors import (
    BatchNotFoundError,
    DealerNotFoundError,
    NotFoundError,
    OrderNotFoundError,
)
from printease.core.logging import get_logger
from printease.schemas.batches import Batch
from printease.schemas.dealers import Dealer, User
from printease.schemas.orders import Order
from printease.storage.base import Collection, DocumentStore

logger = get_logger(__name__)


def _seed_date(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


DEFAULT_USERS: list[dict] = [
    {
        "id": "user_1",
        "email": "john@example.com",
        "name": "John Doe",
        "phone": "+91 98765 43210",
        "role": "customer",
        "createdAt": _seed_date("2024-01-15"),
        "lastOrderId": None,
    },
    {
        "id": "user_2",
        "email": "jane@example.com",
        "name": "Jane Smith",
        "phone": "+91 98765 43211",
        "role": "customer",
        "createdAt": _seed_date("2024-02-20"),
        "lastOrderId": None,
    },
]

DEFAULT_DEALERS: list[dict] = [
    {
        "id": "1",
        "name": "PixelPrint Hub",
        "rating": 4.9,
        "distance": "1.2 km",
        "eta": "45 mins",
        "priceRange": "₹0.80 - ₹5 / page",
        "badges": ["Same-day", "Bulk ready"],
        "status": "approved",
        "services": {"color": True, "blackWhite": True, "binding": True, "lamination": True, "bulk": True},
        "contact": {"phone": "+91 98765 43220", "email": "pixelprint@example.com"},
        "coordinates": {"lat": 19.0820, "lon": 72.8810},
        "createdAt": _seed_date("2024-01-10"),
    },
    {
        "id": "2",
        "name": "Express Xerox",
        "rating": 4.7,
        "distance": "2.4 km",
        "eta": "60 mins",
        "priceRange": "₹1 - ₹6 / page",
        "badges": ["Color expert"],
        "status": "approved",
        "services": {"color": True, "blackWhite": True, "binding": False, "lamination": True, "bulk": False},
        "contact": {"phone": "+91 98765 43221", "email": "express@example.com"},
        "coordinates": {"lat": 19.0700, "lon": 72.8700},
        "createdAt": _seed_date("2024-01-12"),
    },
    {
        "id": "3",
        "name": "Print Studio 9",
        "rating": 4.8,
        "distance": "3.0 km",
        "eta": "75 mins",
        "priceRange": "₹0.70 - ₹4 / page",
        "badges": ["Corporate", "Lamination"],
        "status": "approved",
        "services": {"color": True, "blackWhite": True, "binding": True, "lamination": True, "bulk": True},
        "contact": {"phone": "+91 98765 43222", "email": "studio9@example.com"},
        "coordinates": {"lat": 19.0900, "lon": 72.8900},
        "createdAt": _seed_date("2024-01-14"),
    },
    {
        "id": "4",
        "name": "DocuCraft India",
        "rating": 4.6,
        "distance": "4.2 km",
        "eta": "90 mins",
        "priceRange": "₹1.2 - ₹6.5 / page",
        "badges": ["Hard binding"],
        "status": "approved",
        "services": {"color": True, "blackWhite": True, "binding": True, "lamination": False, "bulk": False},
        "contact": {"phone": "+91 98765 43223", "email": "docucraft@example.com"},
        "coordinates": {"lat": 19.0600, "lon": 72.8600},
        "createdAt": _seed_date("2024-01-16"),
    },
    {
        "id": "5",
        "name": "New Print Shop",
        "rating": 0,
        "distance": "5.0 km",
        "eta": "120 mins",
        "priceRange": "₹0.90 - ₹5.5 / page",
        "badges": [],
        "status": "pending",
        "services": {"color": True, "blackWhite": True, "binding": False, "lamination": False, "bulk": False},
        "contact": {"phone": "+91 98765 43224", "email": "newprint@example.com"},
        "createdAt": None,
    },
]


class OrderStore:
    """
    Repository over the document store collections used by the order core.

    Reads return validated pydantic models. Legacy status keys are
    normalized while parsing, so every reader sees canonical keys.
    """

    def __init__(self, documents: DocumentStore):
        self.documents = documents
        # order id -> (lock, holders and waiters); dropped when nobody uses it
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def lock(self, order_id: str) -> AsyncIterator[None]:
        """Serialize read-modify-write sequences on one order."""
        order_lock, users = self._locks.get(order_id, (None, 0))
        if order_lock is None:
            order_lock = asyncio.Lock()
        self._locks[order_id] = (order_lock, users + 1)
        try:
            async with order_lock:
                yield
        finally:
            order_lock, users = self._locks[order_id]
            if users <= 1:
                del self._locks[order_id]
            else:
                self._locks[order_id] = (order_lock, users - 1)

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    # Orders

    async def get_orders(self) -> list[Order]:
        documents = await self.documents.load(Collection.ORDERS)
        return [Order.model_validate(document) for document in documents]

    async def find_order(self, order_id: str) -> Optional[Order]:
        document = await self.documents.get(Collection.ORDERS, order_id)
        return Order.model_validate(document) if document is not None else None

    async def get_order(self, order_id: str) -> Order:
        """
        Get an order by id.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.find_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def save_order(self, order: Order) -> Order:
        """Upsert an order by id. This is the commit point of every order mutation."""
        await self.documents.upsert(Collection.ORDERS, order.to_document())
        logger.debug(
            "Order saved",
            order_id=order.id,
            status_key=order.status_key.value,
        )
        return order

    async def create_order(self, order: Order) -> Order:
        """Persist a new order, honoring the id it already carries."""
        now = datetime.now(timezone.utc)
        if order.created_at is None:
            order.created_at = now
        if order.date is None:
            order.date = order.created_at
        order.updated_at = now
        await self.save_order(order)

        logger.info(
            "Order created",
            order_id=order.id,
            user_id=order.user_id,
            dealer_id=order.dealer_id,
        )
        return order

    # Users

    async def get_users(self) -> list[User]:
        documents = await self.documents.load(Collection.USERS)
        return [User.model_validate(document) for document in documents]

    async def get_user(self, user_id: str) -> User:
        document = await self.documents.get(Collection.USERS, user_id)
        if document is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        return User.model_validate(document)

    async def save_user(self, user: User) -> User:
        await self.documents.upsert(Collection.USERS, user.to_document())
        return user

    # Dealers

    async def get_dealers(self) -> list[Dealer]:
        documents = await self.documents.load(Collection.DEALERS)
        return [Dealer.model_validate(document) for document in documents]

    async def get_dealer(self, dealer_id: str) -> Dealer:
        """
        Get a dealer by id.

        Raises:
            DealerNotFoundError: If the dealer does not exist
        """
        document = await self.documents.get(Collection.DEALERS, str(dealer_id))
        if document is None:
            raise DealerNotFoundError(str(dealer_id))
        return Dealer.model_validate(document)

    async def save_dealer(self, dealer: Dealer) -> Dealer:
        await self.documents.upsert(Collection.DEALERS, dealer.to_document())
        return dealer

    # Batches

    async def get_batches(self) -> list[Batch]:
        documents = await self.documents.load(Collection.BATCHES)
        return [Batch.model_validate(document) for document in documents]

    async def get_batch(self, batch_id: str) -> Batch:
        document = await self.documents.get(Collection.BATCHES, batch_id)
        if document is None:
            raise BatchNotFoundError(batch_id)
        return Batch.model_validate(document)

    async def save_batch(self, batch: Batch) -> Batch:
        await self.documents.upsert(Collection.BATCHES, batch.to_document())
        return batch

    async def seed_defaults(self) -> None:
        """Install the default dealers and sample users into empty collections."""
        if not await self.documents.load(Collection.DEALERS):
            now = datetime.now(timezone.utc)
            dealers = [
                Dealer.model_validate({**dealer, "createdAt": dealer["createdAt"] or now})
                for dealer in DEFAULT_DEALERS
            ]
            await self.documents.save(
                Collection.DEALERS, [dealer.to_document() for dealer in dealers]
            )
            logger.info("Default dealers seeded", count=len(dealers))

        if not await self.documents.load(Collection.USERS):
            users = [User.model_validate(user) for user in DEFAULT_USERS]
            await self.documents.save(
                Collection.USERS, [user.to_document() for user in users]
            )
            logger.info("Default users seeded", count=len(users))
