"""SQLite persistence for user and post records."""

from classifieds.infrastructure.sqlite.client import SQLiteEntityRepository

__all__ = [
    "SQLiteEntityRepository",
]
