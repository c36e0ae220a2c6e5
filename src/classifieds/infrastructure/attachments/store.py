from __future__ import annotations
from typing import Optional, Protocol
from classifieds.domain.entities.attachment import AttachmentDescriptor

class AssetStore(Protocol):
    # Failures raise RemoteStoreError; delete of a missing object raises AssetNotFoundError
    async def upload(self, data: bytes, content_type: str, filename: Optional[str] = None) -> AttachmentDescriptor: ...
    async def delete(self, remote_id: str) -> None: ...
    async def exists(self, remote_id: str) -> bool: ...
