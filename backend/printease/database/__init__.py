"""
Database package initialization.

Engine and session helpers plus the ORM models backing the SQL document
store. Import submodules explicitly when needed.
"""

__all__ = []
