"""In-process document store used for tests and single-process deployments."""

import asyncio
import copy
from collections import defaultdict
from typing import Any

from printease.core.logging import get_logger
from printease.storage.base import Collection, Document, DocumentStore

logger = get_logger(__name__)


class MemoryDocumentStore(DocumentStore):
    """
    Document store keeping collections in a dictionary of lists.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state without going through ``save``/``upsert``.
    """

    def __init__(self) -> None:
        self._collections: dict[Collection, list[Document]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def load(self, collection: Collection) -> list[Document]:
        async with self._lock:
            return copy.deepcopy(self._collections[collection])

    async def save(self, collection: Collection, items: list[Document]) -> None:
        async with self._lock:
            self._collections[collection] = copy.deepcopy(list(items))

        logger.debug(
            "Collection saved",
            collection=collection.value,
            count=len(items),
        )

    async def upsert(
        self, collection: Collection, item: Document, key: str = "id"
    ) -> None:
        async with self._lock:
            items = self._collections[collection]
            stored = copy.deepcopy(item)
            for index, existing in enumerate(items):
                if existing.get(key) == item.get(key):
                    items[index] = stored
                    break
            else:
                items.append(stored)

    async def get(
        self, collection: Collection, value: Any, key: str = "id"
    ) -> Document | None:
        async with self._lock:
            for item in self._collections[collection]:
                if item.get(key) == value:
                    return copy.deepcopy(item)
        return None
