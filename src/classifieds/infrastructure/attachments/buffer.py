"""Scratch-disk buffer for accepted uploads, scoped to one request."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from classifieds.domain.entities.attachment import PendingUpload


@dataclass(frozen=True)
class BufferHandle:
    path: Path
    field_name: str
    content_type: str
    filename: Optional[str] = None


class TransientBuffer:
    """Holds upload bytes on scratch disk until the remote commit settles.

    Used as a context manager it is also the janitor: every handle stored
    inside the block is released on exit, however the block ends.
    """

    def __init__(self, scratch_dir: str | Path) -> None:
        self.scratch_dir = Path(scratch_dir)
        self._live: dict[Path, BufferHandle] = {}
        self.acquired = 0
        self.released = 0

    def store(self, upload: PendingUpload) -> BufferHandle:
        """Write the upload to a unique scratch file."""
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        suffix = Path(upload.filename).suffix if upload.filename else ""
        fd, name = tempfile.mkstemp(prefix=f"{upload.field_name}-", suffix=suffix, dir=self.scratch_dir)
        with os.fdopen(fd, "wb") as fh:
            fh.write(upload.raw_bytes)

        handle = BufferHandle(
            path=Path(name),
            field_name=upload.field_name,
            content_type=upload.declared_mime_type,
            filename=upload.filename,
        )
        self._live[handle.path] = handle
        self.acquired += 1
        logger.debug(f"Buffered {upload.size_bytes} bytes at {handle.path}")
        return handle

    def read(self, handle: BufferHandle) -> bytes:
        return handle.path.read_bytes()

    def release(self, handle: BufferHandle) -> None:
        """Remove the scratch file. Releasing twice is a no-op."""
        if self._live.pop(handle.path, None) is None:
            return
        self.released += 1
        try:
            handle.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove scratch file {handle.path}: {e}")
            return
        logger.debug(f"Released buffer {handle.path}")

    def release_all(self) -> None:
        for handle in list(self._live.values()):
            self.release(handle)

    @property
    def live_handles(self) -> list[BufferHandle]:
        return list(self._live.values())

    def __enter__(self) -> TransientBuffer:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_all()
