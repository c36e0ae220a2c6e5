"""
API routes for user photos and post images.

Only the attachment operations live here. The requester arrives already
authenticated in the ``X-Requester-Id`` header.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Request, Response, UploadFile
from pydantic import BaseModel, Field

from classifieds.application.use_cases.synchronize_attachments import AttachmentSynchronizer
from classifieds.domain.entities.attachment import AttachmentSet, PendingUpload
from classifieds.domain.entities.record import EntityKind, EntityRecord
from classifieds.infrastructure.settings import Settings

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class AttachmentOut(BaseModel):
    """One stored image."""

    remote_id: str
    url: str


class PhotoResponse(BaseModel):
    """Response after a profile photo update."""

    status: str = "success"
    message: str = "Your photo updated successfully"
    photo: str = Field(..., description="URL of the current profile photo")
    attachments: list[AttachmentOut] = Field(default_factory=list)


class PostResponse(BaseModel):
    """A post with its images."""

    status: str = "success"
    id: str
    user: str
    fields: dict[str, Any] = Field(default_factory=dict)
    images: list[AttachmentOut] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str


# ============================================================================
# Dependencies
# ============================================================================


def get_synchronizer(request: Request) -> AttachmentSynchronizer:
    return request.app.state.synchronizer


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_requester_id(x_requester_id: str = Header(..., description="Authenticated user id")) -> str:
    return x_requester_id


async def to_pending(field_name: str, files: list[UploadFile]) -> list[PendingUpload]:
    pending = []
    for upload in files:
        pending.append(
            PendingUpload(
                field_name=field_name,
                raw_bytes=await upload.read(),
                declared_mime_type=upload.content_type or "",
                filename=upload.filename,
            )
        )
        await upload.close()
    return pending


def _attachments_out(attachments: AttachmentSet) -> list[AttachmentOut]:
    return [AttachmentOut(remote_id=d.remote_id, url=d.url) for d in attachments]


def _post_out(record: EntityRecord) -> PostResponse:
    return PostResponse(
        id=record.entity_id,
        user=record.owner_id,
        fields=dict(record.fields),
        images=_attachments_out(record.attachments),
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """Liveness check."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
    )


# ============================================================================
# Users
# ============================================================================


@router.patch("/api/v1/users/me/photo", response_model=PhotoResponse)
async def update_my_photo(
    photo: UploadFile = File(...),
    requester_id: str = Depends(get_requester_id),
    synchronizer: AttachmentSynchronizer = Depends(get_synchronizer),
    settings: Settings = Depends(get_app_settings),
) -> PhotoResponse:
    """Replace the requester's profile photo."""
    files = await to_pending(EntityKind.USER.field_name, [photo])
    attachments = await synchronizer.synchronize_attachments(EntityKind.USER, requester_id, requester_id, files)
    url = attachments.descriptors[0].url if not attachments.is_empty else settings.default_user_photo_url
    return PhotoResponse(photo=url, attachments=_attachments_out(attachments))


@router.delete("/api/v1/users/me", status_code=204)
async def delete_me(
    requester_id: str = Depends(get_requester_id),
    synchronizer: AttachmentSynchronizer = Depends(get_synchronizer),
) -> Response:
    """Delete the requester, their photo, and their posts with all images."""
    await synchronizer.delete_entity(EntityKind.USER, requester_id, requester_id)
    return Response(status_code=204)


# ============================================================================
# Posts
# ============================================================================


@router.post("/api/v1/posts", response_model=PostResponse, status_code=201)
async def create_post(
    content: str = Form(...),
    location: str = Form(...),
    category: str = Form(...),
    price: Optional[float] = Form(None),
    images: Optional[list[UploadFile]] = File(None),
    requester_id: str = Depends(get_requester_id),
    synchronizer: AttachmentSynchronizer = Depends(get_synchronizer),
) -> PostResponse:
    """Create a post with up to three images."""
    files = await to_pending(EntityKind.POST.field_name, images or [])
    fields = {"content": content, "location": location, "category": category, "price": price or None}
    record = await synchronizer.create_post(requester_id, fields, files)
    return _post_out(record)


@router.patch("/api/v1/posts/{post_id}/images", response_model=PostResponse)
async def update_post_images(
    post_id: str,
    images: list[UploadFile] = File(...),
    requester_id: str = Depends(get_requester_id),
    synchronizer: AttachmentSynchronizer = Depends(get_synchronizer),
) -> PostResponse:
    """Replace all images of a post owned by the requester."""
    files = await to_pending(EntityKind.POST.field_name, images)
    attachments = await synchronizer.synchronize_attachments(EntityKind.POST, post_id, requester_id, files)
    record = await synchronizer.updater.load_owned(EntityKind.POST, post_id, requester_id)
    return _post_out(record.with_attachments(attachments))


@router.delete("/api/v1/posts/{post_id}", status_code=204)
async def delete_post(
    post_id: str,
    requester_id: str = Depends(get_requester_id),
    synchronizer: AttachmentSynchronizer = Depends(get_synchronizer),
) -> Response:
    """Delete a post and its images."""
    await synchronizer.delete_entity(EntityKind.POST, post_id, requester_id)
    return Response(status_code=204)
