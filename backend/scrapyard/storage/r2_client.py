"""
Cloudflare R2 storage for ingested part photos.

Drop-in alternative to ``LocalStorage`` (``STORAGE_BACKEND=r2``), talking
to R2 through its S3-compatible API.
"""

import logging
import mimetypes

import boto3
from botocore.config import Config

from scrapyard.config import (
    CF_ACCOUNT_ID,
    R2_ACCESS_KEY,
    R2_BUCKET,
    R2_PUBLIC_URL,
    R2_SECRET_KEY,
)

logger = logging.getLogger(__name__)


def create_r2_client():
    """Boto3 S3 client configured for Cloudflare R2."""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{CF_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY,
        aws_secret_access_key=R2_SECRET_KEY,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


class R2Storage:
    """Object storage with the same interface as ``LocalStorage``."""

    def __init__(self, s3=None, bucket: str = R2_BUCKET, public_base: str = R2_PUBLIC_URL):
        self.s3 = s3 or create_r2_client()
        self.bucket = bucket
        self.public_base = public_base.rstrip("/")

    def write_file(self, key: str, data: bytes, content_type: str | None = None) -> int:
        """Upload *data* under *key* and return its size in bytes."""
        self.s3.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type or mimetypes.guess_type(key)[0] or "application/octet-stream",
        )
        return len(data)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object below the *prefix* folder."""
        prefix = prefix.rstrip("/") + "/"
        paginator = self.s3.get_paginator("list_objects_v2")
        removed = 0
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
            if not keys:
                continue
            response = self.s3.delete_objects(Bucket=self.bucket, Delete={"Objects": keys})
            errors = response.get("Errors") or []
            for err in errors:
                logger.error("R2 delete failed for %s: %s", err.get("Key"), err.get("Message"))
            removed += len(keys) - len(errors)
        return removed

    def public_url(self, key: str) -> str:
        return f"{self.public_base}/{key}"
