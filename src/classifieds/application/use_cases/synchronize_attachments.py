"""Move images from an inbound request into an entity's record, and back out again."""

from __future__ import annotations

import asyncio
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from loguru import logger

from classifieds.application.intake import IntakeFilter
from classifieds.application.ports.entity_repository import EntityRepository
from classifieds.application.record_updater import EntityRecordUpdater
from classifieds.domain.entities.attachment import AttachmentDescriptor, AttachmentSet, PendingUpload
from classifieds.domain.entities.record import EntityKind, EntityRecord
from classifieds.domain.errors import (
    AssetNotFoundError,
    ClassifiedsError,
    NotFound,
    PersistenceError,
    RemoteStoreError,
)
from classifieds.infrastructure.attachments.buffer import BufferHandle, TransientBuffer
from classifieds.infrastructure.attachments.store import AssetStore

T = TypeVar("T")


class SyncState(str, Enum):
    INTAKE = "intake"
    VALIDATED = "validated"
    UPLOADING = "uploading"
    COMMITTED = "committed"
    UPLOAD_FAILED = "upload_failed"
    REAPING_OLD = "reaping_old"
    REAPED = "reaped"


class SyncRun:
    """State of one synchronizer invocation."""

    def __init__(self, kind: EntityKind, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.state = SyncState.INTAKE
        self.transitions: list[SyncState] = [SyncState.INTAKE]
        # Set when the caller was cancelled; re-raised once the run is consistent
        self.cancelled = False

    def advance(self, state: SyncState) -> None:
        logger.debug(f"{self.kind.value} {self.entity_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)


class AttachmentSynchronizer:
    """Orchestrates the attachment lifecycle of users and posts.

    Replace flow:
    1. Intake filter over every file (rejection has no side effects)
    2. Concurrent upload of every buffered file
    3. Any upload failure: compensating delete of the batch's successes
    4-5. Record write through the updater, which returns the previous set;
         a failed write compensating-deletes the whole new batch
    6. Reap the previous set, only after the write committed
    7. Release every buffer handle, on every exit path

    Compensating deletes and reaps are best effort: their failures are
    logged and never replace the primary error.
    """

    def __init__(
        self,
        intake: IntakeFilter,
        store: AssetStore,
        updater: EntityRecordUpdater,
        buffer_factory: Callable[[], TransientBuffer],
        remote_timeout: Optional[float] = 30.0,
    ) -> None:
        self.intake = intake
        self.store = store
        self.updater = updater
        self.buffer_factory = buffer_factory
        self.remote_timeout = remote_timeout
        # Most recent replace run, with its state transitions
        self.last_run: Optional[SyncRun] = None

    @property
    def repository(self) -> EntityRepository:
        return self.updater.repository

    # ------------------------------------------------------------------
    # Replace
    # ------------------------------------------------------------------

    async def synchronize_attachments(
        self,
        kind: EntityKind,
        entity_id: str,
        requester_id: str,
        files: Sequence[PendingUpload],
    ) -> AttachmentSet:
        """Replace the entity's attachment set with the uploaded files."""
        run = self.last_run = SyncRun(kind, entity_id)

        with self.buffer_factory() as buffer:
            accepted = self.intake.accept(kind, files)
            run.advance(SyncState.VALIDATED)

            # Fail fast on a missing or foreign entity before touching the store
            current = await self.updater.load_owned(kind, entity_id, requester_id)
            if not accepted:
                logger.debug(f"No files for {kind.value} {entity_id}; attachments unchanged")
                return current.attachments

            handles = [buffer.store(upload) for upload in accepted]
            run.advance(SyncState.UPLOADING)
            new_set = await self._upload_all(run, buffer, handles)

            try:
                previous = await self._settle(
                    run, self.updater.replace_attachments(kind, entity_id, new_set, requester_id)
                )
            except Exception as e:
                logger.error(f"Record write for {kind.value} {entity_id} failed: {e}")
                await self._delete_all(run, new_set, "compensating delete")
                if run.cancelled:
                    raise asyncio.CancelledError() from e
                if isinstance(e, ClassifiedsError):
                    raise
                raise PersistenceError(f"Failed to save {kind.value} {entity_id}: {e}") from e

            run.advance(SyncState.COMMITTED)
            logger.info(f"Committed {len(new_set)} attachment(s) to {kind.value} {entity_id}")

            if not previous.is_empty:
                run.advance(SyncState.REAPING_OLD)
                await self._delete_all(run, previous, "reap")
                run.advance(SyncState.REAPED)

        if run.cancelled:
            raise asyncio.CancelledError()
        return new_set

    async def _upload_all(
        self, run: SyncRun, buffer: TransientBuffer, handles: Sequence[BufferHandle]
    ) -> AttachmentSet:
        """Fan out one upload per handle and wait for all of them."""
        results = await self._settle(
            run,
            asyncio.gather(*(self._upload_one(buffer, h) for h in handles), return_exceptions=True),
        )
        uploaded = [r for r in results if isinstance(r, AttachmentDescriptor)]
        failures = [r for r in results if isinstance(r, BaseException)]

        if not failures and not run.cancelled:
            return AttachmentSet.of(uploaded)

        run.advance(SyncState.UPLOAD_FAILED)
        logger.error(
            f"{len(failures)} of {len(handles)} upload(s) failed for "
            f"{run.kind.value} {run.entity_id}; discarding {len(uploaded)}"
        )
        await self._delete_all(run, AttachmentSet.of(uploaded), "compensating delete")

        if run.cancelled:
            raise asyncio.CancelledError()
        primary = failures[0]
        if isinstance(primary, ClassifiedsError):
            raise primary
        raise RemoteStoreError(f"Upload failed: {primary!r}") from primary

    async def _upload_one(self, buffer: TransientBuffer, handle: BufferHandle) -> AttachmentDescriptor:
        data = await asyncio.to_thread(buffer.read, handle)
        return await self._bounded(
            self.store.upload(data, handle.content_type, handle.filename),
            f"upload of {handle.filename or handle.path.name}",
        )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_entity(self, kind: EntityKind, entity_id: str, requester_id: str) -> None:
        """Delete the record, then reap everything it referenced.

        Deleting a user also triggers the repository cascade over the user's
        posts; their images are reaped along with the photo.
        """
        run = SyncRun(kind, entity_id)

        async with self.updater.lock(kind, entity_id):
            record = await self.updater.load_owned(kind, entity_id, requester_id)
            try:
                deleted = await self._settle(run, self.repository.delete_by_id(kind, entity_id))
            except ClassifiedsError:
                raise
            except Exception as e:
                raise PersistenceError(f"Failed to delete {kind.value} {entity_id}: {e}") from e
            if not deleted:
                raise NotFound(f"No {kind.value} found with that ID")
        logger.info(f"Deleted {kind.value} {entity_id}")

        doomed = list(record.attachments)
        if kind is EntityKind.USER:
            cascaded = await self._cascade_posts(run, entity_id)
            for post in cascaded:
                doomed.extend(post.attachments)

        if doomed:
            run.advance(SyncState.REAPING_OLD)
            await self._delete_all(run, AttachmentSet.of(doomed), "reap")
            run.advance(SyncState.REAPED)

        if run.cancelled:
            raise asyncio.CancelledError()

    async def _cascade_posts(self, run: SyncRun, owner_id: str) -> list[EntityRecord]:
        try:
            removed = await self._settle(run, self.repository.delete_many_by_owner(EntityKind.POST, owner_id))
        except ClassifiedsError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to delete posts of user {owner_id}: {e}") from e
        if removed:
            logger.info(f"Removed {len(removed)} post(s) of user {owner_id}")
        return removed

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_post(
        self,
        owner_id: str,
        fields: Mapping[str, Any],
        files: Sequence[PendingUpload],
    ) -> EntityRecord:
        """Create a post and attach its images; a failed attach removes the post again."""
        self.intake.accept(EntityKind.POST, files)

        post_id = uuid.uuid4().hex
        await self.repository.create(
            EntityRecord(kind=EntityKind.POST, entity_id=post_id, owner_id=owner_id, fields=dict(fields))
        )
        try:
            await self.synchronize_attachments(EntityKind.POST, post_id, owner_id, files)
        except BaseException:
            await self._discard_post(post_id)
            raise

        created = await self.repository.find_by_id(EntityKind.POST, post_id)
        if created is None:
            raise NotFound(f"Post {post_id} vanished after creation")
        return created

    async def _discard_post(self, post_id: str) -> None:
        # A cancellation can land after the images committed, so reap whatever the record holds
        run = SyncRun(EntityKind.POST, post_id)
        try:
            record = await self._settle(run, self.repository.find_by_id(EntityKind.POST, post_id))
            await self._settle(run, self.repository.delete_by_id(EntityKind.POST, post_id))
        except Exception as e:
            logger.warning(f"Could not remove half-created post {post_id}: {e}")
            return
        if record is not None:
            await self._delete_all(run, record.attachments, "compensating delete")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _delete_all(self, run: SyncRun, attachments: Iterable[AttachmentDescriptor], purpose: str) -> None:
        descriptors = list(attachments)
        if not descriptors:
            return
        outcomes = await self._settle(
            run, asyncio.gather(*(self._delete_quietly(d, purpose) for d in descriptors))
        )
        failed = outcomes.count(False)
        if failed:
            logger.warning(f"{purpose}: {failed} of {len(descriptors)} remote object(s) left behind")

    async def _delete_quietly(self, descriptor: AttachmentDescriptor, purpose: str) -> bool:
        """Best-effort remote delete. A missing object counts as deleted."""
        try:
            await self._bounded(self.store.delete(descriptor.remote_id), f"{purpose} of {descriptor.remote_id}")
        except AssetNotFoundError:
            logger.debug(f"{purpose}: {descriptor.remote_id} already gone")
        except Exception as e:
            logger.warning(f"{purpose} of {descriptor.remote_id} failed: {e}")
            return False
        return True

    async def _bounded(self, aw: Awaitable[T], what: str) -> T:
        if self.remote_timeout is None:
            return await aw
        try:
            return await asyncio.wait_for(aw, timeout=self.remote_timeout)
        except asyncio.TimeoutError as e:
            raise RemoteStoreError(f"{what} timed out after {self.remote_timeout}s") from e

    async def _settle(self, run: SyncRun, aw: Awaitable[T]) -> T:
        """Await ``aw`` to completion even if the caller is cancelled meanwhile.

        A cancellation is recorded on the run and re-raised by the caller
        once compensation has run, so in-flight remote work is never
        abandoned half-way.
        """
        task = asyncio.ensure_future(aw)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise
            run.cancelled = True
            logger.warning(f"{run.kind.value} {run.entity_id}: request cancelled, letting in-flight work settle")
            while not task.done():
                try:
                    await asyncio.wait([task])
                except asyncio.CancelledError:
                    continue
            return task.result()
