# src/classifieds/infrastructure/__init__.py
"""Infrastructure layer - remote asset store, scratch buffer, persistence and configuration."""

from classifieds.infrastructure.attachments.buffer import BufferHandle, TransientBuffer
from classifieds.infrastructure.attachments.s3_store import (
    S3AssetStore,
    S3StoreConfig,
    s3_store_from_settings,
)
from classifieds.infrastructure.settings import Settings, get_settings
from classifieds.infrastructure.sqlite import SQLiteEntityRepository

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Remote asset store
    "S3AssetStore",
    "S3StoreConfig",
    "s3_store_from_settings",
    # Transient buffer
    "BufferHandle",
    "TransientBuffer",
    # Persistence
    "SQLiteEntityRepository",
]
