"""
Sweeper loop that retries blob deletions left in the outbox.

Requests purge blobs inline right after their row change commits; anything
that failed there (or was interrupted by a crash) is picked up here, either
from the dispatch queue or by polling ``blob_deletions`` for due rows.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Optional

from qrono.config import get_settings
from qrono.db import BlobDeletion, DbClient
from qrono.dependencies import get_db_client, get_queue_client, get_storage_client
from qrono.janitor import BlobJanitor
from qrono.queue import DeletionQueue
from qrono.storage import StorageClient

logger = logging.getLogger(__name__)

CLAIM_LEASE_SECONDS = 60


def _block_seconds(interval: float) -> int:
    # BLPOP takes whole seconds and treats 0 as "wait forever".
    return max(1, math.ceil(interval))


def process_next(
    *,
    db: Optional[DbClient] = None,
    storage: Optional[StorageClient] = None,
    queue: Optional[DeletionQueue] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Purge one pending blob deletion. Returns True if one was attempted.
    """
    settings = get_settings()
    db = db or get_db_client()
    storage = storage or get_storage_client()
    queue = queue or get_queue_client()
    janitor = BlobJanitor(
        db,
        storage,
        queue,
        max_attempts=settings.blob_delete_max_attempts,
        retry_seconds=settings.blob_delete_retry_seconds,
    )

    deletion_id = queue.dequeue(block=block, timeout=timeout)
    deletion: Optional[BlobDeletion] = None

    if deletion_id is not None:
        deletion = db.get_blob_deletion(deletion_id)
        if deletion is None:
            logger.debug("Blob deletion %s no longer pending", deletion_id)
        elif deletion.abandoned_at is not None:
            deletion = None
        elif deletion.next_attempt_at > time.time():
            # Still backing off; look at it again on a later pass.
            queue.enqueue(deletion.id)
            deletion = None

    if deletion is None:
        # Fall back to polling for due rows, including ones whose queue entry was lost.
        deletion = db.claim_due_blob_deletion(
            time.time(), lease_seconds=CLAIM_LEASE_SECONDS
        )
        if deletion is None:
            return False

    janitor.purge(deletion)
    return True


def run_loop(poll_interval_seconds: Optional[float] = None) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    interval = poll_interval_seconds or settings.sweeper_poll_seconds
    db = get_db_client()
    storage = get_storage_client()
    queue = get_queue_client()
    logger.info("Blob sweeper started (poll every %.1fs)", interval)
    while True:
        processed = process_next(
            db=db,
            storage=storage,
            queue=queue,
            block=True,
            timeout=_block_seconds(interval),
        )
        if not processed:
            time.sleep(interval)


if __name__ == "__main__":
    run_loop()
