"""Validation of inbound files before they reach the transient buffer."""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

from loguru import logger

from classifieds.domain.entities.attachment import PendingUpload
from classifieds.domain.entities.record import EntityKind
from classifieds.domain.errors import UnsupportedMediaType
from classifieds.infrastructure.settings import Settings

DEFAULT_LIMITS: Mapping[EntityKind, int] = {EntityKind.USER: 1, EntityKind.POST: 3}


class IntakeFilter:
    """Accepts image files up to the per-kind cardinality."""

    def __init__(
        self,
        limits: Optional[Mapping[EntityKind, int]] = None,
        max_upload_bytes: Optional[int] = None,
    ) -> None:
        self.limits = dict(limits or DEFAULT_LIMITS)
        self.max_upload_bytes = max_upload_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> IntakeFilter:
        return cls(
            limits={EntityKind.USER: settings.user_photo_limit, EntityKind.POST: settings.post_image_limit},
            max_upload_bytes=settings.max_upload_bytes,
        )

    def limit_for(self, kind: EntityKind) -> int:
        return self.limits[kind]

    def accept(self, kind: EntityKind, files: Sequence[PendingUpload]) -> list[PendingUpload]:
        """Return the files unchanged, or raise UnsupportedMediaType for the whole batch."""
        limit = self.limit_for(kind)
        if len(files) > limit:
            raise UnsupportedMediaType(
                f"Too many files for '{kind.field_name}': {len(files)} sent, at most {limit} allowed"
            )

        for upload in files:
            if upload.field_name != kind.field_name:
                raise UnsupportedMediaType(
                    f"Unexpected field '{upload.field_name}', expected '{kind.field_name}'"
                )
            if not (upload.declared_mime_type or "").lower().startswith("image/"):
                logger.info(f"Rejected {upload.filename or 'upload'} ({upload.declared_mime_type})")
                raise UnsupportedMediaType("Not an image! Please upload images only.")
            if self.max_upload_bytes is not None and upload.size_bytes > self.max_upload_bytes:
                raise UnsupportedMediaType(
                    f"{upload.filename or 'upload'} is {upload.size_bytes} bytes, "
                    f"limit is {self.max_upload_bytes}"
                )

        return list(files)
