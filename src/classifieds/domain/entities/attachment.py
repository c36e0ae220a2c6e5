from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Iterator, Optional


@dataclass(frozen=True)
class AttachmentDescriptor:
    # One object in the remote store; never shared between two live entities
    remote_id: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return {"remote_id": self.remote_id, "url": self.url}


@dataclass(frozen=True)
class AttachmentSet:
    """Ordered, bounded sequence of descriptors owned by one entity record."""

    descriptors: tuple[AttachmentDescriptor, ...] = ()

    @classmethod
    def empty(cls) -> AttachmentSet:
        return cls(())

    @classmethod
    def of(cls, descriptors) -> AttachmentSet:
        return cls(tuple(descriptors))

    @property
    def remote_ids(self) -> list[str]:
        return [d.remote_id for d in self.descriptors]

    @property
    def is_empty(self) -> bool:
        return not self.descriptors

    def __len__(self) -> int:
        return len(self.descriptors)

    def __iter__(self) -> Iterator[AttachmentDescriptor]:
        return iter(self.descriptors)

    def to_json(self) -> str:
        return json.dumps([d.to_dict() for d in self.descriptors])

    @classmethod
    def from_json(cls, raw: Optional[str]) -> AttachmentSet:
        if not raw:
            return cls.empty()
        return cls(tuple(AttachmentDescriptor(item["remote_id"], item["url"]) for item in json.loads(raw)))


@dataclass(frozen=True)
class PendingUpload:
    """An accepted inbound file; lives for one request only."""

    field_name: str
    raw_bytes: bytes = field(repr=False)
    declared_mime_type: str
    filename: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.raw_bytes)
