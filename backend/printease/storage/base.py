"""
Persistence collaborator interface.

The order core persists plain JSON documents grouped in named collections.
Implementations must make each call atomic: a reader never observes a
partially written ``save`` or ``upsert``.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class Collection(str, Enum):
    """Document collections used by the order core."""

    ORDERS = "orders"
    NOTIFICATIONS = "notifications"
    DEALERS = "dealers"
    USERS = "users"
    BATCHES = "batches"
    FILES = "files"


Document = dict[str, Any]


class DocumentStore(ABC):
    """Durable store of ordered document collections."""

    @abstractmethod
    async def load(self, collection: Collection) -> list[Document]:
        """Return every document of a collection in insertion order."""

    @abstractmethod
    async def save(self, collection: Collection, items: list[Document]) -> None:
        """Replace the whole collection with ``items``."""

    @abstractmethod
    async def upsert(
        self, collection: Collection, item: Document, key: str = "id"
    ) -> None:
        """Replace the document whose ``key`` matches, or append it."""

    async def get(
        self, collection: Collection, value: Any, key: str = "id"
    ) -> Document | None:
        """Return the first document whose ``key`` equals ``value``."""
        for item in await self.load(collection):
            if item.get(key) == value:
                return item
        return None

    async def close(self) -> None:
        """Release any resources held by the store."""
