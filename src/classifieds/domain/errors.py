"""Error taxonomy for the attachment lifecycle.

Each failed operation surfaces exactly one of these to the caller. The
``status_code`` is the HTTP status the API layer reports for it.
"""

from __future__ import annotations


class ClassifiedsError(Exception):
    """Base exception for attachment lifecycle failures."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnsupportedMediaType(ClassifiedsError):
    """Raised when an inbound file is rejected at intake. No side effects."""

    status_code = 415


class RemoteStoreError(ClassifiedsError):
    """Raised when the remote object store fails (network, quota, auth, timeout)."""

    status_code = 502


class AssetNotFoundError(RemoteStoreError):
    """Raised when deleting an object the remote store does not hold."""

    status_code = 404


class PersistenceError(ClassifiedsError):
    """Raised when reading or writing an entity record fails."""

    status_code = 500


class NotFound(ClassifiedsError):
    """Raised when the entity does not exist."""

    status_code = 404


class Forbidden(ClassifiedsError):
    """Raised when the requester does not own the entity."""

    status_code = 403
