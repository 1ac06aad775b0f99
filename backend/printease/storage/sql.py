"""
SQL document store built on the SQLAlchemy async engine.

Each collection is a set of rows in the ``documents`` table. ``save``
rewrites a collection inside one transaction; ``upsert`` touches a single
row, so an order write (with its history, audit and change log embedded)
commits atomically.
"""

from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from printease.core.errors import StorageError
from printease.core.logging import get_logger
from printease.database.connection import (
    check_database_health,
    create_engine,
    create_session_factory,
    create_tables,
    session_scope,
)
from printease.database.models import DocumentRecord
from printease.storage.base import Collection, Document, DocumentStore

logger = get_logger(__name__)


class SqlDocumentStore(DocumentStore):
    """Document store persisting collections as JSON rows."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self.engine = engine or create_engine()
        self._session_factory = create_session_factory(self.engine)

    async def connect(self) -> None:
        """Ensure the schema exists and the database answers."""
        await create_tables(self.engine)
        if not await check_database_health(self.engine):
            raise StorageError("Database is not reachable")

    async def health_check(self) -> bool:
        return await check_database_health(self.engine, max_retries=1)

    async def load(self, collection: Collection) -> list[Document]:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(DocumentRecord.payload)
                    .where(DocumentRecord.collection == collection.value)
                    .order_by(DocumentRecord.position, DocumentRecord.id)
                )
                return [dict(payload) for payload in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to load collection",
                collection=collection.value,
                error=str(e),
            ) from e

    async def save(self, collection: Collection, items: list[Document]) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                await session.execute(
                    delete(DocumentRecord).where(
                        DocumentRecord.collection == collection.value
                    )
                )
                session.add_all(
                    DocumentRecord(
                        collection=collection.value,
                        key=str(item["id"]),
                        position=position,
                        payload=item,
                    )
                    for position, item in enumerate(items)
                )
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to save collection",
                collection=collection.value,
                error=str(e),
            ) from e

        logger.debug("Collection saved", collection=collection.value, count=len(items))

    async def upsert(
        self, collection: Collection, item: Document, key: str = "id"
    ) -> None:
        record_key = str(item[key])
        try:
            async with session_scope(self._session_factory) as session:
                record = await session.scalar(
                    select(DocumentRecord).where(
                        DocumentRecord.collection == collection.value,
                        DocumentRecord.key == record_key,
                    )
                )
                if record is not None:
                    record.payload = item
                    return

                last_position = await session.scalar(
                    select(func.max(DocumentRecord.position)).where(
                        DocumentRecord.collection == collection.value
                    )
                )
                session.add(
                    DocumentRecord(
                        collection=collection.value,
                        key=record_key,
                        position=(last_position + 1) if last_position is not None else 0,
                        payload=item,
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to upsert document",
                collection=collection.value,
                key=record_key,
                error=str(e),
            ) from e

    async def get(
        self, collection: Collection, value: Any, key: str = "id"
    ) -> Document | None:
        if key != "id":
            return await super().get(collection, value, key)

        try:
            async with session_scope(self._session_factory) as session:
                payload = await session.scalar(
                    select(DocumentRecord.payload).where(
                        DocumentRecord.collection == collection.value,
                        DocumentRecord.key == str(value),
                    )
                )
                return dict(payload) if payload is not None else None
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to read document",
                collection=collection.value,
                key=str(value),
                error=str(e),
            ) from e

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database connections closed and engine disposed")
