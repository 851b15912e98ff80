"""
Album and memory operations on top of the relational and blob stores.

Ordering rules every operation follows:

* validation and ownership checks run before anything is written;
* new blobs are uploaded before the row transaction that references them, and
  are scheduled for deletion again if that transaction fails;
* blobs that lose their owner are deleted only after the row change commits,
  and a failed blob delete never fails the request.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from qrono.db import AlbumPatch, AlbumRecord, DbClient, MemoryRecord, MemorySummary
from qrono.errors import InvalidInput, NotFound, UpstreamStorageFailure
from qrono.janitor import BlobJanitor
from qrono.storage import StorageClient

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_EXTENSIONS = ("jpeg", "jpg", "png", "gif")


@dataclass
class ImageUpload:
    filename: str
    data: bytes
    content_type: Optional[str] = None


class ResourceService:
    def __init__(
        self,
        db: DbClient,
        storage: StorageClient,
        janitor: BlobJanitor,
        *,
        max_photos_per_request: int = 10,
        max_upload_bytes: int = 10 * 1024 * 1024,
        allowed_extensions: Iterable[str] = DEFAULT_ALLOWED_EXTENSIONS,
    ):
        self.db = db
        self.storage = storage
        self.janitor = janitor
        self.max_photos_per_request = max_photos_per_request
        self.max_upload_bytes = max_upload_bytes
        self.allowed_extensions = {e.lower().lstrip(".") for e in allowed_extensions}

    # Uploads

    def _validate_uploads(self, uploads: Sequence[ImageUpload]) -> None:
        if len(uploads) > self.max_photos_per_request:
            raise InvalidInput(
                f"At most {self.max_photos_per_request} photos per request"
            )
        for upload in uploads:
            ext = os.path.splitext(upload.filename or "")[1].lower().lstrip(".")
            if ext not in self.allowed_extensions:
                raise InvalidInput(f"Unsupported image type: {upload.filename}")
            if len(upload.data) > self.max_upload_bytes:
                raise InvalidInput(f"File too large: {upload.filename}")

    def _store(self, uploads: Sequence[ImageUpload]) -> list[str]:
        locators: list[str] = []
        for upload in uploads:
            try:
                locators.append(
                    self.storage.put(
                        upload.data,
                        filename=upload.filename,
                        content_type=upload.content_type,
                    )
                )
            except Exception as exc:
                logger.error("Failed to store %s: %s", upload.filename, exc)
                self._discard(locators)
                if isinstance(exc, UpstreamStorageFailure):
                    raise
                raise UpstreamStorageFailure(str(exc)) from exc
        return locators

    def _discard(self, locators: Sequence[str]) -> None:
        """Schedule blobs that never got an owning row."""
        if locators:
            self.janitor.purge_all(self.db.schedule_blob_deletions(locators))

    # Albums

    def create_album(
        self,
        user_id: int,
        title: Optional[str],
        description: Optional[str] = None,
        visible: bool = False,
        cover_image: Optional[ImageUpload] = None,
    ) -> AlbumRecord:
        if not title or not title.strip():
            raise InvalidInput("Title is required")
        uploads = [cover_image] if cover_image else []
        self._validate_uploads(uploads)
        locators = self._store(uploads)
        try:
            album = self.db.create_album(
                user_id,
                title,
                description,
                visible,
                locators[0] if locators else None,
            )
        except Exception:
            self._discard(locators)
            raise
        logger.info("Created album %s for user %s", album.id, user_id)
        return album

    def list_albums(self, user_id: int) -> list[AlbumRecord]:
        return self.db.list_albums(user_id)

    def get_album(self, user_id: int, album_id: int) -> AlbumRecord:
        album = self.db.get_album(user_id, album_id)
        if album is None:
            raise NotFound("Album not found")
        return album

    def update_album(
        self,
        user_id: int,
        album_id: int,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        visible: Optional[bool] = None,
        cover_image: Optional[ImageUpload] = None,
    ) -> AlbumRecord:
        if title is not None and not title.strip():
            raise InvalidInput("Title is required")
        uploads = [cover_image] if cover_image else []
        self._validate_uploads(uploads)
        self.get_album(user_id, album_id)

        locators = self._store(uploads)
        patch = AlbumPatch(
            title=title,
            description=description,
            visible=visible,
            cover_image=locators[0] if locators else None,
        )
        try:
            result = self.db.update_album(user_id, album_id, patch)
        except Exception:
            self._discard(locators)
            raise
        if result is None:
            self._discard(locators)
            raise NotFound("Album not found")
        album, orphaned = result
        self.janitor.purge_all(orphaned)
        return album

    def delete_album(self, user_id: int, album_id: int) -> None:
        orphaned = self.db.delete_album(user_id, album_id)
        if orphaned is None:
            raise NotFound("Album not found")
        logger.info(
            "Deleted album %s; cleaning up %d blobs", album_id, len(orphaned)
        )
        self.janitor.purge_all(orphaned)

    def list_memories(self, user_id: int, album_id: int) -> list[MemorySummary]:
        memories = self.db.list_memories(user_id, album_id)
        if memories is None:
            raise NotFound("Album not found")
        return memories

    # Memories

    def create_memory(
        self,
        user_id: int,
        album_id: Optional[int],
        title: Optional[str],
        diary_entry: Optional[str] = None,
        photos: Sequence[ImageUpload] = (),
    ) -> MemoryRecord:
        if not title or not title.strip() or album_id is None:
            raise InvalidInput("Title and album ID are required.")
        self._validate_uploads(photos)
        self.get_album(user_id, album_id)

        locators = self._store(photos)
        try:
            memory = self.db.create_memory(
                user_id, album_id, title, diary_entry, locators
            )
        except Exception:
            self._discard(locators)
            raise
        if memory is None:
            self._discard(locators)
            raise NotFound("Album not found")
        logger.info(
            "Created memory %s in album %s with %d photos",
            memory.id,
            album_id,
            len(locators),
        )
        return memory

    def get_memory(self, user_id: int, memory_id: int) -> MemoryRecord:
        memory = self.db.get_memory(user_id, memory_id)
        if memory is None:
            raise NotFound("Memory not found")
        return memory

    def update_memory(
        self,
        user_id: int,
        memory_id: int,
        *,
        title: Optional[str],
        diary_entry: Optional[str] = None,
        photo_ids_to_delete: Iterable[int] = (),
        new_photos: Sequence[ImageUpload] = (),
    ) -> MemoryRecord:
        """
        Additive update: title and diary entry are always overwritten, only the
        listed photos are removed, and new photos are appended.
        """
        if not title or not title.strip():
            raise InvalidInput("Title is required")
        self._validate_uploads(new_photos)
        self.get_memory(user_id, memory_id)

        locators = self._store(new_photos)
        try:
            result = self.db.update_memory(
                user_id,
                memory_id,
                title=title,
                diary_entry=diary_entry,
                photo_ids_to_delete=list(photo_ids_to_delete),
                new_photo_locators=locators,
            )
        except Exception:
            self._discard(locators)
            raise
        if result is None:
            self._discard(locators)
            raise NotFound("Memory not found")
        memory, orphaned = result
        self.janitor.purge_all(orphaned)
        return memory

    def delete_memory(self, user_id: int, memory_id: int) -> None:
        orphaned = self.db.delete_memory(user_id, memory_id)
        if orphaned is None:
            raise NotFound("Memory not found")
        self.janitor.purge_all(orphaned)
