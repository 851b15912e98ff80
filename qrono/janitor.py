"""
Best-effort removal of blobs whose owning rows are gone.

Every locator handed to the janitor already has a ``blob_deletions`` row, so a
failed purge is never lost: the row stays, gets a retry time, and its id goes
on the dispatch queue for the sweeper.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

from qrono.db import BlobDeletion, DbClient
from qrono.queue import DeletionQueue
from qrono.storage import StorageClient

logger = logging.getLogger(__name__)


class BlobJanitor:
    def __init__(
        self,
        db: DbClient,
        storage: StorageClient,
        queue: Optional[DeletionQueue] = None,
        *,
        max_attempts: int = 8,
        retry_seconds: float = 30.0,
    ):
        self.db = db
        self.storage = storage
        self.queue = queue
        self.max_attempts = max_attempts
        self.retry_seconds = retry_seconds

    def purge(self, deletion: BlobDeletion) -> bool:
        """
        Delete one blob. Returns True once the outbox row is cleared.

        Never raises: callers run this after their own commit, and a row that
        could not be updated here is still pending for the sweeper.
        """
        try:
            existed = self.storage.delete(deletion.locator)
        except Exception as exc:
            try:
                self._record_failure(deletion, exc)
            except Exception:
                logger.exception(
                    "Could not record failed delete of blob %s", deletion.locator
                )
            return False
        if existed:
            logger.info("Deleted blob %s", deletion.locator)
        else:
            logger.info("Blob %s was already gone", deletion.locator)
        try:
            self.db.complete_blob_deletion(deletion.id)
        except Exception:
            logger.exception(
                "Could not clear blob deletion %s for %s", deletion.id, deletion.locator
            )
            return False
        return True

    def purge_all(self, deletions: Iterable[BlobDeletion]) -> int:
        """Purge each deletion in order; returns how many were cleared."""
        return sum(1 for deletion in deletions if self.purge(deletion))

    def _record_failure(self, deletion: BlobDeletion, exc: Exception) -> None:
        attempts = deletion.attempts + 1
        abandon = attempts >= self.max_attempts
        # Exponential backoff from the configured base delay.
        retry_at = time.time() + self.retry_seconds * (2 ** (attempts - 1))
        self.db.record_blob_deletion_failure(
            deletion.id, str(exc), retry_at=retry_at, abandon=abandon
        )
        if abandon:
            logger.error(
                "Giving up on blob %s after %d attempts: %s",
                deletion.locator,
                attempts,
                exc,
            )
            return
        logger.warning(
            "Failed to delete blob %s (attempt %d): %s",
            deletion.locator,
            attempts,
            exc,
        )
        if self.queue is not None:
            self.queue.enqueue(deletion.id)
