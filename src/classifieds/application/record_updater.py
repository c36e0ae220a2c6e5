"""Writes attachment sets into entity records, one writer per entity at a time."""

from __future__ import annotations

import asyncio
import weakref

from loguru import logger

from classifieds.application.ports.entity_repository import EntityRepository
from classifieds.domain.entities.attachment import AttachmentSet
from classifieds.domain.entities.record import EntityKind, EntityRecord
from classifieds.domain.errors import ClassifiedsError, Forbidden, NotFound, PersistenceError


class EntityRecordUpdater:
    """Sole writer of attachment sets into persisted records.

    A per-entity lock serializes writers in this process; the repository's
    version check catches writers elsewhere. Together they make the returned
    previous set exactly the set that was overwritten.
    """

    def __init__(self, repository: EntityRepository) -> None:
        self.repository = repository
        self._locks: weakref.WeakValueDictionary[tuple[EntityKind, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock(self, kind: EntityKind, entity_id: str) -> asyncio.Lock:
        """Lock guarding every write to one entity. Not reentrant."""
        key = (kind, entity_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def load_owned(self, kind: EntityKind, entity_id: str, requester_id: str) -> EntityRecord:
        """Fetch a record, enforcing existence and (for posts) ownership."""
        try:
            record = await self.repository.find_by_id(kind, entity_id)
        except ClassifiedsError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to load {kind.value} {entity_id}: {e}") from e

        if record is None:
            raise NotFound(f"No {kind.value} found with that ID")
        if kind.checks_owner and not record.is_owned_by(requester_id):
            raise Forbidden(f"You do not have permission to edit this {kind.value}")
        return record

    async def replace_attachments(
        self,
        kind: EntityKind,
        entity_id: str,
        new_set: AttachmentSet,
        requester_id: str,
    ) -> AttachmentSet:
        """Replace the record's whole attachment set and return the one it held before."""
        async with self.lock(kind, entity_id):
            record = await self.load_owned(kind, entity_id, requester_id)
            previous = record.attachments
            try:
                await self.repository.save(record.with_attachments(new_set), expected_version=record.version)
            except ClassifiedsError:
                raise
            except Exception as e:
                raise PersistenceError(f"Failed to save {kind.value} {entity_id}: {e}") from e

        logger.info(
            f"Replaced attachments of {kind.value} {entity_id}: "
            f"{len(previous)} -> {len(new_set)} (version {record.version + 1})"
        )
        return previous
