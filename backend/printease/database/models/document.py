"""
Document record model backing the SQL document store.

Each row holds one JSON document of a named collection. ``position`` keeps
collection order stable across reloads so list-shaped collections such as
notifications come back oldest first.
"""

from typing import Any

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from printease.database.base import Base, TimestampMixin


class DocumentRecord(Base, TimestampMixin):
    """One JSON document within a collection."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "key", name="uq_documents_collection_key"),
        Index("ix_documents_collection_position", "collection", "position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Collection name (orders, notifications, ...)",
    )
    key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Document identity within the collection",
    )
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Ordering of the document within the collection",
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Document body",
    )
