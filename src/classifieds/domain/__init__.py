"""Domain models and entities."""

from classifieds.domain.entities.attachment import (
    AttachmentDescriptor,
    AttachmentSet,
    PendingUpload,
)
from classifieds.domain.entities.record import EntityKind, EntityRecord
from classifieds.domain.errors import (
    AssetNotFoundError,
    ClassifiedsError,
    Forbidden,
    NotFound,
    PersistenceError,
    RemoteStoreError,
    UnsupportedMediaType,
)

__all__ = [
    "AttachmentDescriptor",
    "AttachmentSet",
    "PendingUpload",
    "EntityKind",
    "EntityRecord",
    "ClassifiedsError",
    "UnsupportedMediaType",
    "RemoteStoreError",
    "AssetNotFoundError",
    "PersistenceError",
    "NotFound",
    "Forbidden",
]
