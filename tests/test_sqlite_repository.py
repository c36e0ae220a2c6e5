"""Tests for the SQLite entity repository."""

import sqlite3

import pytest

from classifieds.domain.entities.attachment import AttachmentDescriptor, AttachmentSet
from classifieds.domain.entities.record import EntityKind, EntityRecord
from classifieds.domain.errors import NotFound, PersistenceError
from classifieds.infrastructure.sqlite import SQLiteEntityRepository


@pytest.fixture
def repo(tmp_path):
    return SQLiteEntityRepository(db_path=tmp_path / "db" / "classifieds.db")


def photos(*remote_ids):
    return AttachmentSet.of(AttachmentDescriptor(r, f"https://cdn.test/{r}") for r in remote_ids)


class TestSQLiteEntityRepository:

    @pytest.mark.asyncio
    async def test_create_and_find(self, repo):
        record = EntityRecord(
            EntityKind.POST, "p1", "u1", photos("A", "B"), fields={"content": "lamp", "price": None}
        )

        await repo.create(record)
        found = await repo.find_by_id(EntityKind.POST, "p1")

        assert found == record

    @pytest.mark.asyncio
    async def test_find_missing(self, repo):
        assert await repo.find_by_id(EntityKind.USER, "nobody") is None

    @pytest.mark.asyncio
    async def test_kinds_do_not_collide(self, repo):
        await repo.create(EntityRecord(EntityKind.USER, "x", "x"))
        await repo.create(EntityRecord(EntityKind.POST, "x", "x", photos("A")))

        assert (await repo.find_by_id(EntityKind.USER, "x")).attachments.is_empty

    @pytest.mark.asyncio
    async def test_duplicate_create_fails(self, repo):
        await repo.create(EntityRecord(EntityKind.USER, "u1", "u1"))

        with pytest.raises(PersistenceError, match="already exists"):
            await repo.create(EntityRecord(EntityKind.USER, "u1", "u1"))

    @pytest.mark.asyncio
    async def test_save_bumps_version(self, repo):
        record = await repo.create(EntityRecord(EntityKind.POST, "p1", "u1", photos("A")))

        saved = await repo.save(record.with_attachments(photos("C")), expected_version=0)

        assert saved.version == 1
        found = await repo.find_by_id(EntityKind.POST, "p1")
        assert found.attachments == photos("C")
        assert found.version == 1

    @pytest.mark.asyncio
    async def test_stale_save_is_rejected(self, repo):
        record = await repo.create(EntityRecord(EntityKind.POST, "p1", "u1", photos("A")))
        await repo.save(record.with_attachments(photos("B")), expected_version=0)

        with pytest.raises(PersistenceError, match="modified concurrently"):
            await repo.save(record.with_attachments(photos("C")), expected_version=0)

        assert (await repo.find_by_id(EntityKind.POST, "p1")).attachments == photos("B")

    @pytest.mark.asyncio
    async def test_save_missing_record(self, repo):
        with pytest.raises(NotFound):
            await repo.save(EntityRecord(EntityKind.POST, "ghost", "u1"), expected_version=0)

    @pytest.mark.asyncio
    async def test_delete_by_id(self, repo):
        await repo.create(EntityRecord(EntityKind.POST, "p1", "u1"))

        assert await repo.delete_by_id(EntityKind.POST, "p1") is True
        assert await repo.delete_by_id(EntityKind.POST, "p1") is False
        assert await repo.find_by_id(EntityKind.POST, "p1") is None

    @pytest.mark.asyncio
    async def test_delete_many_by_owner_returns_removed_records(self, repo):
        await repo.create(EntityRecord(EntityKind.POST, "p1", "u1", photos("A")))
        await repo.create(EntityRecord(EntityKind.POST, "p2", "u1", photos("B", "C")))
        await repo.create(EntityRecord(EntityKind.POST, "p3", "u2", photos("D")))

        removed = await repo.delete_many_by_owner(EntityKind.POST, "u1")

        assert sorted(r.entity_id for r in removed) == ["p1", "p2"]
        assert sorted(rid for r in removed for rid in r.attachments.remote_ids) == ["A", "B", "C"]
        assert await repo.find_by_id(EntityKind.POST, "p3") is not None
        assert await repo.delete_many_by_owner(EntityKind.POST, "u1") == []

    @pytest.mark.asyncio
    async def test_delete_many_by_owner_reads_under_write_lock(self, repo, monkeypatch):
        await repo.create(EntityRecord(EntityKind.POST, "p1", "u1", photos("A")))
        statements = []
        connect = sqlite3.connect

        def traced_connect(*args, **kwargs):
            conn = connect(*args, **kwargs)
            conn.set_trace_callback(statements.append)
            return conn

        monkeypatch.setattr(sqlite3, "connect", traced_connect)

        await repo.delete_many_by_owner(EntityKind.POST, "u1")

        normalized = [s.strip().upper() for s in statements]
        begin = normalized.index("BEGIN IMMEDIATE")
        select = next(i for i, s in enumerate(normalized) if s.startswith("SELECT"))
        delete = next(i for i, s in enumerate(normalized) if s.startswith("DELETE"))
        assert begin < select < delete
        assert not any(s.startswith("BEGIN") for s in normalized[begin + 1 : delete])
