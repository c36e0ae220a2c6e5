"""SQLite repository for user and post records."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Generator, Optional

from loguru import logger

from classifieds.domain.entities.attachment import AttachmentSet
from classifieds.domain.entities.record import EntityKind, EntityRecord
from classifieds.domain.errors import NotFound, PersistenceError


class SQLiteEntityRepository:
    """Entity repository storing each record's attachment set as JSON.

    Writes are compare-and-swap on ``version`` so concurrent writers from
    other processes cannot silently overwrite each other.
    """

    def __init__(self, db_path: str | Path = "/app/data/classifieds.db"):
        self.db_path = Path(db_path)
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS entities (
                    kind TEXT NOT NULL CHECK(kind IN ('user','post')),
                    id TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    attachments TEXT NOT NULL DEFAULT '[]',
                    fields TEXT NOT NULL DEFAULT '{}',
                    version INTEGER NOT NULL DEFAULT 0,

                    PRIMARY KEY(kind, id)
                );

                CREATE INDEX IF NOT EXISTS idx_entities_owner
                    ON entities(kind, owner_id);
            """)
            logger.info(f"SQLite database initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"SQLite operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _to_record(row: sqlite3.Row) -> EntityRecord:
        return EntityRecord(
            kind=EntityKind(row["kind"]),
            entity_id=row["id"],
            owner_id=row["owner_id"],
            attachments=AttachmentSet.from_json(row["attachments"]),
            version=row["version"],
            fields=json.loads(row["fields"] or "{}"),
        )

    # -- blocking implementations -------------------------------------------

    def _find_by_id(self, kind: EntityKind, entity_id: str) -> Optional[EntityRecord]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM entities WHERE kind = ? AND id = ?",
                (kind.value, entity_id),
            ).fetchone()
        return self._to_record(row) if row else None

    def _create(self, record: EntityRecord) -> EntityRecord:
        with self._connection() as conn:
            try:
                conn.execute(
                    """INSERT INTO entities (kind, id, owner_id, attachments, fields, version)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        record.kind.value,
                        record.entity_id,
                        record.owner_id,
                        record.attachments.to_json(),
                        json.dumps(dict(record.fields)),
                        record.version,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise PersistenceError(f"{record.kind.value} {record.entity_id} already exists") from e
        logger.info(f"Created {record.kind.value} {record.entity_id}")
        return record

    def _save(self, record: EntityRecord, expected_version: int) -> EntityRecord:
        new_version = expected_version + 1
        with self._connection() as conn:
            cursor = conn.execute(
                """UPDATE entities
                   SET attachments = ?, fields = ?, version = ?
                   WHERE kind = ? AND id = ? AND version = ?""",
                (
                    record.attachments.to_json(),
                    json.dumps(dict(record.fields)),
                    new_version,
                    record.kind.value,
                    record.entity_id,
                    expected_version,
                ),
            )
            if cursor.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM entities WHERE kind = ? AND id = ?",
                    (record.kind.value, record.entity_id),
                ).fetchone()
                if not exists:
                    raise NotFound(f"No {record.kind.value} found with id {record.entity_id}")
                raise PersistenceError(
                    f"{record.kind.value} {record.entity_id} was modified concurrently "
                    f"(expected version {expected_version})"
                )
        return replace(record, version=new_version)

    def _delete_by_id(self, kind: EntityKind, entity_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM entities WHERE kind = ? AND id = ?",
                (kind.value, entity_id),
            )
            return cursor.rowcount > 0

    def _delete_many_by_owner(self, kind: EntityKind, owner_id: str) -> list[EntityRecord]:
        with self._connection() as conn:
            # Take the write lock before reading so the returned rows are exactly the deleted ones
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                "SELECT * FROM entities WHERE kind = ? AND owner_id = ?",
                (kind.value, owner_id),
            ).fetchall()
            conn.execute(
                "DELETE FROM entities WHERE kind = ? AND owner_id = ?",
                (kind.value, owner_id),
            )
        return [self._to_record(row) for row in rows]

    # -- async interface ------------------------------------------------------

    async def find_by_id(self, kind: EntityKind, entity_id: str) -> Optional[EntityRecord]:
        return await asyncio.to_thread(self._find_by_id, kind, entity_id)

    async def create(self, record: EntityRecord) -> EntityRecord:
        return await asyncio.to_thread(self._create, record)

    async def save(self, record: EntityRecord, expected_version: int) -> EntityRecord:
        return await asyncio.to_thread(self._save, record, expected_version)

    async def delete_by_id(self, kind: EntityKind, entity_id: str) -> bool:
        return await asyncio.to_thread(self._delete_by_id, kind, entity_id)

    async def delete_many_by_owner(self, kind: EntityKind, owner_id: str) -> list[EntityRecord]:
        return await asyncio.to_thread(self._delete_many_by_owner, kind, owner_id)
