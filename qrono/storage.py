"""
Blob storage for uploaded images: S3-compatible buckets, a local directory,
and an in-memory test double.

The relational store only ever sees the opaque locator returned by ``put``.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from qrono.errors import UpstreamStorageFailure


class StorageClient(Protocol):
    """Defines the operations the services need from blob storage."""

    def put(self, data: bytes, *, filename: str, content_type: str | None = None) -> str:
        ...

    def delete(self, locator: str) -> bool:
        ...

    def url_for(self, locator: str) -> str:
        ...


def new_locator(prefix: str, filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    return f"{prefix}/{uuid.uuid4().hex}{ext}"


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    prefix: str = "qrono"
    stored_objects: dict = field(default_factory=dict)

    def put(self, data: bytes, *, filename: str, content_type: str | None = None) -> str:
        locator = new_locator(self.prefix, filename)
        self.stored_objects[locator] = data
        return locator

    def delete(self, locator: str) -> bool:
        return self.stored_objects.pop(locator, None) is not None

    def url_for(self, locator: str) -> str:
        return f"{self.base_url}/{locator}"

    def get_bytes(self, locator: str) -> bytes:
        stored = self.stored_objects.get(locator)
        if stored is None:
            raise FileNotFoundError(locator)
        return stored


@dataclass
class LocalStorageClient:
    """
    Stores blobs under a directory on disk. The app mounts ``root`` as static
    files at ``base_url``.
    """

    root: str
    base_url: str = "/uploads"
    prefix: str = "qrono"

    def __post_init__(self):
        Path(self.root).mkdir(parents=True, exist_ok=True)

    def _path(self, locator: str) -> Path:
        root = Path(self.root).resolve()
        path = (root / locator).resolve()
        if root not in path.parents:
            raise ValueError(f"locator escapes storage root: {locator}")
        return path

    def put(self, data: bytes, *, filename: str, content_type: str | None = None) -> str:
        locator = new_locator(self.prefix, filename)
        path = self._path(locator)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise UpstreamStorageFailure(f"failed to write {locator}: {exc}") from exc
        return locator

    def delete(self, locator: str) -> bool:
        path = self._path(locator)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def url_for(self, locator: str) -> str:
        return f"{self.base_url.rstrip('/')}/{locator}"


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, Tencent COS, MinIO).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    prefix: str = "qrono"
    url_expires_in: int = 3600

    def __post_init__(self):
        # Use virtual-hosted style addressing to satisfy COS requirements.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def put(self, data: bytes, *, filename: str, content_type: str | None = None) -> str:
        locator = new_locator(self.prefix, filename)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=locator,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamStorageFailure(f"failed to write {locator}: {exc}") from exc
        return locator

    def delete(self, locator: str) -> bool:
        # delete_object succeeds on missing keys, so probe first to report absence.
        try:
            self._client.head_object(Bucket=self.bucket, Key=locator)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        self._client.delete_object(Bucket=self.bucket, Key=locator)
        return True

    def url_for(self, locator: str) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": locator},
            ExpiresIn=self.url_expires_in,
        )
