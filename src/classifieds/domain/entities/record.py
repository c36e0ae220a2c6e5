from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping

from classifieds.domain.entities.attachment import AttachmentSet


class EntityKind(str, Enum):
    """Entities that own attachments."""

    USER = "user"
    POST = "post"

    @property
    def field_name(self) -> str:
        # Multipart field the files arrive under
        return "photo" if self is EntityKind.USER else "images"

    @property
    def checks_owner(self) -> bool:
        # A user always updates itself; only posts carry a separate owner
        return self is EntityKind.POST


@dataclass(frozen=True)
class EntityRecord:
    kind: EntityKind
    entity_id: str
    owner_id: str
    attachments: AttachmentSet = field(default_factory=AttachmentSet.empty)
    version: int = 0
    fields: Mapping[str, Any] = field(default_factory=dict)

    def with_attachments(self, attachments: AttachmentSet) -> EntityRecord:
        return replace(self, attachments=attachments)

    def is_owned_by(self, requester_id: str) -> bool:
        return self.owner_id == requester_id
