from __future__ import annotations

import asyncio
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from classifieds.domain.entities.attachment import AttachmentDescriptor
from classifieds.domain.errors import AssetNotFoundError, RemoteStoreError
from classifieds.infrastructure.settings import Settings

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class S3StoreConfig:
    endpoint: str
    region: str
    access_key: str
    secret_key: str
    bucket: str
    prefix: str = "images"
    use_ssl: bool = False
    force_path_style: bool = True
    public_base_url: Optional[str] = None
    timeout_seconds: float = 30.0


class S3AssetStore:
    """Remote asset store backed by an S3 compatible bucket.

    boto3 is blocking, so each call runs in a worker thread. botocore retries
    are disabled and every call is bounded by ``timeout_seconds``; callers own
    the retry policy.
    """

    def __init__(self, cfg: S3StoreConfig, client: Any = None) -> None:
        self.cfg = cfg
        if client is None:
            s3_cfg = Config(
                s3={"addressing_style": "path"} if cfg.force_path_style else {},
                connect_timeout=cfg.timeout_seconds,
                read_timeout=cfg.timeout_seconds,
                retries={"total_max_attempts": 1},
            )
            client = boto3.client(
                "s3",
                endpoint_url=cfg.endpoint,
                aws_access_key_id=cfg.access_key,
                aws_secret_access_key=cfg.secret_key,
                region_name=cfg.region,
                use_ssl=cfg.use_ssl,
                config=s3_cfg,
            )
        self.client = client

    def key_for(self, content_type: str, filename: Optional[str] = None) -> str:
        # prefix/<uuid><ext>; the original filename only contributes its extension
        ext = Path(filename).suffix.lower() if filename else ""
        if not ext:
            ext = mimetypes.guess_extension(content_type) or ""
        return f"{self.cfg.prefix}/{uuid.uuid4().hex}{ext}"

    def url_for(self, key: str) -> str:
        if self.cfg.public_base_url:
            return f"{self.cfg.public_base_url.rstrip('/')}/{key}"
        return f"{self.cfg.endpoint.rstrip('/')}/{self.cfg.bucket}/{key}"

    async def upload(self, data: bytes, content_type: str, filename: Optional[str] = None) -> AttachmentDescriptor:
        key = self.key_for(content_type, filename)
        put = asyncio.ensure_future(
            asyncio.to_thread(
                self.client.put_object,
                Bucket=self.cfg.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        )
        try:
            await self._bounded("put_object", key, asyncio.shield(put))
        except BaseException:
            await self._discard_abandoned(put, key)
            raise
        logger.debug(f"Uploaded {len(data)} bytes to s3://{self.cfg.bucket}/{key}")
        return AttachmentDescriptor(remote_id=key, url=self.url_for(key))

    async def _discard_abandoned(self, put: asyncio.Future, key: str) -> None:
        """Remove ``key`` once a put we gave up on has finished.

        The worker thread cannot be interrupted, so a timed out or cancelled
        put can still land the object after the caller saw the failure.
        """
        while not put.done():
            try:
                await asyncio.wait([put])
            except asyncio.CancelledError:
                continue
        if not put.cancelled() and isinstance(put.exception(), ClientError):
            # The store answered and refused the object
            return
        try:
            await self._call("delete_object", self.client.delete_object, Bucket=self.cfg.bucket, Key=key)
        except RemoteStoreError as e:
            logger.warning(f"Abandoned upload s3://{self.cfg.bucket}/{key} left behind: {e}")
            return
        logger.debug(f"Removed abandoned upload s3://{self.cfg.bucket}/{key}")

    async def delete(self, remote_id: str) -> None:
        # S3 deletes are silent for missing keys; check first so a missing object is reported
        await self._call("head_object", self.client.head_object, Bucket=self.cfg.bucket, Key=remote_id)
        await self._call("delete_object", self.client.delete_object, Bucket=self.cfg.bucket, Key=remote_id)
        logger.debug(f"Deleted s3://{self.cfg.bucket}/{remote_id}")

    async def exists(self, remote_id: str) -> bool:
        try:
            await self._call("head_object", self.client.head_object, Bucket=self.cfg.bucket, Key=remote_id)
        except AssetNotFoundError:
            return False
        return True

    async def _call(self, op: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        return await self._bounded(op, kwargs.get("Key"), asyncio.to_thread(fn, **kwargs))

    async def _bounded(self, op: str, key: Optional[str], aw: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(aw, timeout=self.cfg.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RemoteStoreError(f"S3 {op} on {key} timed out after {self.cfg.timeout_seconds}s") from e
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise AssetNotFoundError(f"S3 object {key} not found") from e
            raise RemoteStoreError(f"S3 {op} on {key} failed: {code or e}") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"S3 {op} on {key} failed: {e}") from e


def s3_store_from_settings(settings: Settings) -> S3AssetStore:
    cfg = S3StoreConfig(
        endpoint=settings.s3_endpoint,
        region=settings.s3_region,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key.get_secret_value(),
        bucket=settings.s3_bucket,
        prefix=settings.s3_prefix,
        use_ssl=settings.s3_use_ssl,
        force_path_style=settings.s3_force_path_style,
        public_base_url=settings.s3_public_base_url,
        timeout_seconds=settings.remote_timeout_seconds,
    )
    return S3AssetStore(cfg)
