"""Document store implementations and the factory selecting one from settings."""

from typing import Optional

from printease.core.config import Settings, get_settings
from printease.core.logging import get_logger
from printease.storage.base import Collection, Document, DocumentStore
from printease.storage.memory import MemoryDocumentStore

logger = get_logger(__name__)


async def build_document_store(settings: Optional[Settings] = None) -> DocumentStore:
    """
    Create and connect the configured document store.

    Raises:
        StorageError: If the SQL backend cannot be reached
    """
    settings = settings or get_settings()

    if settings.storage_backend == "sql":
        from printease.database.connection import create_engine
        from printease.storage.sql import SqlDocumentStore

        store = SqlDocumentStore(create_engine(settings.database_url))
        await store.connect()
    else:
        store = MemoryDocumentStore()

    logger.info("Document store ready", backend=settings.storage_backend)
    return store


__all__ = [
    "Collection",
    "Document",
    "DocumentStore",
    "MemoryDocumentStore",
    "build_document_store",
]
