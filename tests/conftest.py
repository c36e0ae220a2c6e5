"""Shared pytest fixtures for the attachment lifecycle tests."""

import asyncio
import itertools
from dataclasses import replace
from typing import Optional

import pytest

from classifieds.application.intake import IntakeFilter
from classifieds.application.record_updater import EntityRecordUpdater
from classifieds.application.use_cases.synchronize_attachments import AttachmentSynchronizer
from classifieds.domain.entities.attachment import AttachmentDescriptor, AttachmentSet, PendingUpload
from classifieds.domain.entities.record import EntityKind, EntityRecord
from classifieds.domain.errors import AssetNotFoundError, NotFound, PersistenceError, RemoteStoreError
from classifieds.infrastructure.attachments.buffer import TransientBuffer


# ============================================================================
# Fakes
# ============================================================================


class FakeAssetStore:
    """In-memory remote store with failure injection."""

    def __init__(self, events: list):
        self.events = events
        self.objects: dict[str, bytes] = {}
        self.fail_filenames: set[str] = set()
        self.fail_deletes: set[str] = set()
        self.upload_delay = 0.0
        self.upload_calls = 0
        self.deleted: list[str] = []
        self._ids = itertools.count(1)

    def seed(self, *remote_ids: str) -> AttachmentSet:
        for remote_id in remote_ids:
            self.objects[remote_id] = b"seed"
        return AttachmentSet.of(AttachmentDescriptor(r, f"https://cdn.test/{r}") for r in remote_ids)

    async def upload(self, data: bytes, content_type: str, filename: Optional[str] = None) -> AttachmentDescriptor:
        self.upload_calls += 1
        if self.upload_delay:
            await asyncio.sleep(self.upload_delay)
        if filename in self.fail_filenames:
            raise RemoteStoreError(f"upload of {filename} rejected")
        remote_id = f"new-{next(self._ids)}"
        self.objects[remote_id] = data
        self.events.append(("upload", remote_id))
        return AttachmentDescriptor(remote_id, f"https://cdn.test/{remote_id}")

    async def delete(self, remote_id: str) -> None:
        if remote_id in self.fail_deletes:
            raise RemoteStoreError(f"delete of {remote_id} failed")
        if remote_id not in self.objects:
            raise AssetNotFoundError(f"{remote_id} not found")
        del self.objects[remote_id]
        self.deleted.append(remote_id)
        self.events.append(("delete", remote_id))

    async def exists(self, remote_id: str) -> bool:
        return remote_id in self.objects


class InMemoryEntityRepository:
    """Entity repository with compare-and-swap saves and failure injection."""

    def __init__(self, events: list):
        self.events = events
        self.records: dict[tuple[EntityKind, str], EntityRecord] = {}
        self.fail_saves = False
        self.save_delay = 0.0

    def add(self, record: EntityRecord) -> EntityRecord:
        self.records[(record.kind, record.entity_id)] = record
        return record

    def get(self, kind: EntityKind, entity_id: str) -> Optional[EntityRecord]:
        return self.records.get((kind, entity_id))

    async def find_by_id(self, kind, entity_id):
        await asyncio.sleep(0)
        return self.records.get((kind, entity_id))

    async def create(self, record):
        self.records[(record.kind, record.entity_id)] = record
        self.events.append(("create", record.entity_id))
        return record

    async def save(self, record, expected_version):
        if self.save_delay:
            await asyncio.sleep(self.save_delay)
        if self.fail_saves:
            raise PersistenceError("database unavailable")
        current = self.records.get((record.kind, record.entity_id))
        if current is None:
            raise NotFound(f"{record.entity_id} not found")
        if current.version != expected_version:
            raise PersistenceError("version conflict")
        saved = replace(record, version=expected_version + 1)
        self.records[(record.kind, record.entity_id)] = saved
        self.events.append(("save", record.entity_id))
        return saved

    async def delete_by_id(self, kind, entity_id):
        await asyncio.sleep(0)
        removed = self.records.pop((kind, entity_id), None)
        if removed is not None:
            self.events.append(("delete_record", entity_id))
        return removed is not None

    async def delete_many_by_owner(self, kind, owner_id):
        doomed = [r for r in self.records.values() if r.kind is kind and r.owner_id == owner_id]
        for record in doomed:
            del self.records[(record.kind, record.entity_id)]
            self.events.append(("delete_record", record.entity_id))
        return doomed


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def events():
    return []


@pytest.fixture
def store(events):
    return FakeAssetStore(events)


@pytest.fixture
def repository(events):
    return InMemoryEntityRepository(events)


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def buffers():
    """Every TransientBuffer the synchronizer creates."""
    return []


@pytest.fixture
def synchronizer(store, repository, scratch_dir, buffers):
    def buffer_factory():
        buffer = TransientBuffer(scratch_dir)
        buffers.append(buffer)
        return buffer

    return AttachmentSynchronizer(
        intake=IntakeFilter(),
        store=store,
        updater=EntityRecordUpdater(repository),
        buffer_factory=buffer_factory,
        remote_timeout=2.0,
    )


def image(filename: str, field_name: str = "images", mime: str = "image/png") -> PendingUpload:
    return PendingUpload(
        field_name=field_name,
        raw_bytes=f"bytes of {filename}".encode(),
        declared_mime_type=mime,
        filename=filename,
    )


def assert_buffers_released(buffers, scratch_dir):
    for buffer in buffers:
        assert buffer.live_handles == []
        assert buffer.acquired == buffer.released
    assert list(scratch_dir.iterdir()) == []
