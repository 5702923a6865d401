"""Object storage for generated previews and purchased images.

Uses S3 when AWS credentials are configured and the local filesystem
otherwise, so development works without a bucket. Uploads to S3 are retried
on connection errors and 5xx responses.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Protocol

from fastapi import Request

from ..platform.config import settings
from ..platform.errors import TransientInfrastructureError
from ..platform.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Storage rejected the request (permissions, missing bucket)."""


class StorageTransientError(TransientInfrastructureError):
    """Network failure or 5xx from the storage backend."""


@dataclass(frozen=True)
class StoredObject:
    bucket: str
    path: str
    url: str


class ObjectStorage(Protocol):
    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> StoredObject: ...

    def public_url(self, bucket: str, path: str) -> str: ...


def extension_for(mime_type: str | None) -> str:
    return {
        "image/jpeg": "jpg",
        "image/jpg": "jpg",
        "image/webp": "webp",
        "image/gif": "gif",
    }.get((mime_type or "").lower(), "png")


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, StorageTransientError)


class S3ObjectStorage:
    def __init__(self, client=None):
        self._client = client

    def _get_client(self):
        """Lazy-create the S3 client."""
        if self._client is None:
            import boto3

            self._client = boto3.client(
                "s3",
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=settings.AWS_REGION,
            )
        return self._client

    def public_url(self, bucket: str, path: str) -> str:
        return f"https://{bucket}.s3.{settings.AWS_REGION}.amazonaws.com/{path}"

    def _put(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError, ConnectionError as BotoConnectionError

        try:
            self._get_client().put_object(Bucket=bucket, Key=path, Body=data, ContentType=content_type)
        except BotoConnectionError as exc:
            raise StorageTransientError(f"S3 connection failed: {exc}") from exc
        except ClientError as exc:
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
            code = exc.response.get("Error", {}).get("Code", "")
            if status >= 500 or code in {"SlowDown", "RequestTimeout", "ServiceUnavailable"}:
                raise StorageTransientError(f"S3 returned {status} {code}") from exc
            raise StorageError(f"S3 rejected upload to {bucket}/{path}: {code}") from exc
        except BotoCoreError as exc:
            raise StorageTransientError(f"S3 request failed: {exc}") from exc

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> StoredObject:
        retry_with_backoff(
            lambda: self._put(bucket, path, data, content_type),
            is_retryable=_is_transient,
            operation=f"s3 upload {bucket}/{path}",
        )
        url = self.public_url(bucket, path)
        logger.info("Uploaded to S3: %s/%s (%d bytes)", bucket, path, len(data))
        return StoredObject(bucket=bucket, path=path, url=url)


class LocalObjectStorage:
    def __init__(self, root: str | None = None, base_url: str | None = None):
        self.root = root or settings.STORAGE_LOCAL_ROOT
        self.base_url = (base_url or settings.STORAGE_PUBLIC_BASE_URL).rstrip("/")

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/{bucket}/{path}"

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> StoredObject:
        target = os.path.join(self.root, bucket, *path.split("/"))
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "wb") as fh:
            fh.write(data)
        logger.info("Stored locally: %s (%d bytes)", target, len(data))
        return StoredObject(bucket=bucket, path=path, url=self.public_url(bucket, path))


def build_storage() -> ObjectStorage:
    if settings.storage_uses_s3:
        return S3ObjectStorage()
    logger.warning("S3 not configured, storing images under %s", settings.STORAGE_LOCAL_ROOT)
    return LocalObjectStorage()


def get_storage(request: Request) -> ObjectStorage:
    """FastAPI dependency returning the backend the app built at startup."""
    return request.app.state.storage
