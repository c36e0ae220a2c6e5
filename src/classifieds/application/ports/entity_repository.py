from __future__ import annotations
from typing import Optional, Protocol
from classifieds.domain.entities.record import EntityKind, EntityRecord

class EntityRepository(Protocol):
    # Failures raise PersistenceError; save raises NotFound when the record is gone
    async def find_by_id(self, kind: EntityKind, entity_id: str) -> Optional[EntityRecord]: ...
    async def create(self, record: EntityRecord) -> EntityRecord: ...
    async def save(self, record: EntityRecord, expected_version: int) -> EntityRecord: ...
    async def delete_by_id(self, kind: EntityKind, entity_id: str) -> bool: ...
    async def delete_many_by_owner(self, kind: EntityKind, owner_id: str) -> list[EntityRecord]: ...
