"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import Depends, Request

from qrono.auth import AuthService
from qrono.config import Settings, get_settings
from qrono.db import DbClient, InMemoryDbClient, SqlDbClient
from qrono.janitor import BlobJanitor
from qrono.queue import DeletionQueue, InMemoryDeletionQueue, RedisDeletionQueue
from qrono.services import ResourceService
from qrono.storage import (
    InMemoryStorageClient,
    LocalStorageClient,
    S3StorageClient,
    StorageClient,
)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_queue_client: DeletionQueue | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so rows persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _storage_client = InMemoryStorageClient(prefix=settings.storage_prefix)
    elif settings.s3_bucket:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            prefix=settings.storage_prefix,
        )
    elif settings.upload_dir:
        _storage_client = LocalStorageClient(
            root=settings.upload_dir,
            base_url=settings.uploads_url_path,
            prefix=settings.storage_prefix,
        )
    else:
        _storage_client = InMemoryStorageClient(prefix=settings.storage_prefix)
    return _storage_client


def get_queue_client() -> DeletionQueue:
    """
    Return a singleton queue client for dispatching blob deletions to the sweeper.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url:
        _queue_client = RedisDeletionQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryDeletionQueue()
    return _queue_client


def get_janitor(
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    queue: DeletionQueue = Depends(get_queue_client),
    settings: Settings = Depends(get_settings),
) -> BlobJanitor:
    return BlobJanitor(
        db,
        storage,
        queue,
        max_attempts=settings.blob_delete_max_attempts,
        retry_seconds=settings.blob_delete_retry_seconds,
    )


def get_resource_service(
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    janitor: BlobJanitor = Depends(get_janitor),
    settings: Settings = Depends(get_settings),
) -> ResourceService:
    return ResourceService(
        db,
        storage,
        janitor,
        max_photos_per_request=settings.max_photos_per_request,
        max_upload_bytes=settings.max_upload_bytes,
        allowed_extensions=settings.allowed_image_extensions,
    )


def get_auth_service(
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
) -> AuthService:
    return AuthService(
        db,
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        token_ttl=timedelta(seconds=settings.token_ttl_seconds),
    )


def current_user_id(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> int:
    """Resolve the caller from the auth header; raises Unauthorized otherwise."""
    return auth.authenticate(request.headers.get(settings.auth_header))
