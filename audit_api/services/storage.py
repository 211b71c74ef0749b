from __future__ import annotations

import re
import time
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings

_MISSING_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}


class StorageError(RuntimeError):
    """Raised when the blob store cannot complete an operation."""


def _s3_client() -> Any:
    kwargs: dict[str, Any] = {"region_name": settings.aws.region, "config": Config(retries={"max_attempts": 3})}
    if settings.aws.access_key_id and settings.aws.secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws.access_key_id
        kwargs["aws_secret_access_key"] = settings.aws.secret_access_key
    if settings.aws.s3_endpoint_url:
        kwargs["endpoint_url"] = settings.aws.s3_endpoint_url
    return boto3.client("s3", **kwargs)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def sanitize_filename(filename: str) -> str:
    name = Path(filename or "document").name
    name = re.sub(r"[^A-Za-z0-9.-]", "_", name)
    return name[:100] or "document"


class StorageService:
    def __init__(self, bucket: Optional[str] = None, client: Any = None) -> None:
        self.bucket = bucket or settings.aws.s3_bucket
        self._client = client or _s3_client()
        self._bucket_ready = False

    def build_key(self, organization_id: str | uuid.UUID, original_name: str) -> str:
        timestamp = int(time.time() * 1000)
        return f"{organization_id}/{timestamp}-{sanitize_filename(original_name)}"

    def ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_CODES:
                raise StorageError(f"Failed to inspect bucket {self.bucket}: {exc}") from exc
            try:
                if settings.aws.region == "us-east-1":
                    self._client.create_bucket(Bucket=self.bucket)
                else:
                    self._client.create_bucket(
                        Bucket=self.bucket,
                        CreateBucketConfiguration={"LocationConstraint": settings.aws.region},
                    )
            except (BotoCoreError, ClientError) as create_exc:
                raise StorageError(f"Failed to create bucket {self.bucket}: {create_exc}") from create_exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to inspect bucket {self.bucket}: {exc}") from exc
        self._bucket_ready = True

    def put(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> str:
        self.ensure_bucket()
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload to S3: {exc}") from exc
        return f"s3://{self.bucket}/{key}"

    def get(self, key: str) -> bytes:
        self.ensure_bucket()
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
            body = obj["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to download S3 object: {exc}") from exc

    def exists(self, key: str) -> bool:
        self.ensure_bucket()
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            raise StorageError(f"Failed to inspect S3 object: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to inspect S3 object: {exc}") from exc

    def delete(self, key: str) -> None:
        self.ensure_bucket()
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete S3 object: {exc}") from exc

    def generate_presigned_url(self, key: str, ttl: timedelta = timedelta(hours=1)) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(ttl.total_seconds()),
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to generate presigned URL: {exc}") from exc


def get_storage_service() -> StorageService:
    return StorageService()
