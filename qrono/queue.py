"""
Dispatch queue for pending blob deletions.

The ``blob_deletions`` table is the durable record; the queue only tells the
sweeper which rows to retry first. Supports an in-memory fallback for
tests/local runs and a Redis-backed implementation for production.

A deletion id is queued at most once. Re-enqueueing an id that is already
waiting (a failed purge re-queued while the sweeper also re-queues it during
backoff) moves it to the back instead of adding a second entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class DeletionQueue(Protocol):
    """Minimal queue interface for dispatching deletion ids to the sweeper."""

    def enqueue(self, deletion_id: int) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[int]:
        ...


@dataclass
class InMemoryDeletionQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[int] = field(default_factory=list)

    def enqueue(self, deletion_id: int) -> None:
        if deletion_id in self.items:
            self.items.remove(deletion_id)
        self.items.append(deletion_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[int]:
        if not self.items:
            return None
        return self.items.pop(0)


@dataclass
class RedisDeletionQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "qrono:blob-deletions"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, deletion_id: int) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.lrem(self.queue_key, 0, deletion_id)
            pipe.rpush(self.queue_key, deletion_id)
            pipe.execute()
        except redis_exceptions.RedisError as exc:
            # The outbox row is still there; the sweeper finds it by polling.
            logger.warning("Could not enqueue blob deletion %s: %s", deletion_id, exc)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[int]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, raw = result
            else:
                raw = self.client.lpop(self.queue_key)
                if raw is None:
                    return None
            return int(raw)
        except redis_exceptions.ConnectionError:
            # Connection resets can happen on managed Redis. Treat as empty queue
            # and allow the sweeper loop to retry.
            self.client = redis.Redis.from_url(self.url)
            return None
