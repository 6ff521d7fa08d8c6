from __future__ import annotations

import io
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from ..config import settings
from ..logger import logger

s3 = boto3.client(
    "s3",
    aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
    aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
    region_name=settings.AWS_REGION_NAME,
    endpoint_url=settings.AWS_ENDPOINT_URL,
)

ALLOWED_FORMATS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}


@dataclass(frozen=True)
class PhotoUpload:
    filename: str
    content_type: Optional[str]
    data: bytes


@dataclass(frozen=True)
class FailedUpload:
    filename: str
    reason: str


@dataclass
class UploadBatchResult:
    """Outcome of a sequential photo batch; the caller decides what partial failure means."""
    succeeded: List[str] = field(default_factory=list)
    failed: List[FailedUpload] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return not self.succeeded and bool(self.failed)

    @property
    def failed_filenames(self) -> List[str]:
        return [f.filename for f in self.failed]


def _detect_format(data: bytes) -> str:
    """Return the file extension for an accepted image, or raise ValueError."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"not a readable image: {e}") from e
    if fmt not in ALLOWED_FORMATS:
        raise ValueError(f"unsupported image format {fmt}")
    return ALLOWED_FORMATS[fmt]


def photo_key(job_id: str, kind: str, ext: str) -> str:
    return f"{job_id}/{kind}-{uuid.uuid4().hex}.{ext}"


def public_url(key: str) -> str:
    return f"{settings.PHOTO_PUBLIC_BASE_URL.rstrip('/')}/{key}"


def _key_from_url(url: str) -> Optional[str]:
    prefix = settings.PHOTO_PUBLIC_BASE_URL.rstrip("/") + "/"
    if not url.startswith(prefix):
        return None
    return url[len(prefix):]


def upload_photos(job_id: str, photos: Sequence[PhotoUpload], kind: str) -> UploadBatchResult:
    """
    Upload photos one after another under `{job_id}/{kind}-...`.

    A failing photo does not stop the batch; it is recorded in `failed`.
    """
    result = UploadBatchResult()
    for photo in photos:
        try:
            ext = _detect_format(photo.data)
        except ValueError as e:
            logger.warning(
                "Rejected job photo",
                extra={"job_id": job_id, "photo_filename": photo.filename, "reason": str(e)},
            )
            result.failed.append(FailedUpload(photo.filename, str(e)))
            continue

        key = photo_key(job_id, kind, ext)
        try:
            s3.put_object(
                Bucket=settings.S3_BUCKET_NAME,
                Key=key,
                Body=photo.data,
                ContentType=photo.content_type or f"image/{'jpeg' if ext == 'jpg' else ext}",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "Failed to upload job photo",
                extra={"job_id": job_id, "photo_filename": photo.filename, "key": key, "error": str(e)},
            )
            result.failed.append(FailedUpload(photo.filename, "storage error"))
            continue

        result.succeeded.append(public_url(key))

    logger.info(
        "Photo batch uploaded",
        extra={
            "job_id": job_id,
            "kind": kind,
            "succeeded": len(result.succeeded),
            "failed": len(result.failed),
        },
    )
    return result


def delete_photos(urls: Sequence[str]) -> None:
    """Best-effort cleanup of photos that never made it onto a job record."""
    for url in urls:
        key = _key_from_url(url)
        if key is None:
            continue
        try:
            s3.delete_object(Bucket=settings.S3_BUCKET_NAME, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.warning("Failed to delete orphaned photo", extra={"key": key, "error": str(e)})
