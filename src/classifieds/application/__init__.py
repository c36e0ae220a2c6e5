"""Application layer - intake, record updates and the attachment synchronizer."""

from classifieds.application.intake import IntakeFilter
from classifieds.application.record_updater import EntityRecordUpdater
from classifieds.application.use_cases.synchronize_attachments import (
    AttachmentSynchronizer,
    SyncRun,
    SyncState,
)

__all__ = [
    "IntakeFilter",
    "EntityRecordUpdater",
    "AttachmentSynchronizer",
    "SyncRun",
    "SyncState",
]
