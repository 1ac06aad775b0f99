"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata
before tables are created.
"""

from printease.database.base import Base, TimestampMixin
from printease.database.models.document import DocumentRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "DocumentRecord",
]
