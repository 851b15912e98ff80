import unittest
from unittest.mock import MagicMock, patch

from redis import exceptions as redis_exceptions

from qrono.queue import InMemoryDeletionQueue, RedisDeletionQueue


class InMemoryDeletionQueueTests(unittest.TestCase):
    def test_requeued_id_moves_to_back_once(self):
        queue = InMemoryDeletionQueue()
        queue.enqueue(1)
        queue.enqueue(2)
        queue.enqueue(1)
        self.assertEqual(queue.items, [2, 1])
        self.assertEqual(queue.dequeue(block=False), 2)
        self.assertEqual(queue.dequeue(block=False), 1)
        self.assertIsNone(queue.dequeue(block=False))


class RedisDeletionQueueTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("qrono.queue.redis.Redis.from_url")
        self.client = MagicMock()
        patcher.start().return_value = self.client
        self.addCleanup(patcher.stop)
        self.queue = RedisDeletionQueue(url="redis://localhost:6379/0")

    def test_enqueue_replaces_existing_entry(self):
        pipe = self.client.pipeline.return_value
        self.queue.enqueue(7)
        pipe.lrem.assert_called_once_with("qrono:blob-deletions", 0, 7)
        pipe.rpush.assert_called_once_with("qrono:blob-deletions", 7)
        pipe.execute.assert_called_once_with()

    def test_enqueue_swallows_redis_errors(self):
        self.client.pipeline.return_value.execute.side_effect = redis_exceptions.TimeoutError(
            "timed out"
        )
        with self.assertLogs("qrono.queue", level="WARNING"):
            self.queue.enqueue(7)

    def test_dequeue(self):
        self.client.blpop.return_value = (b"qrono:blob-deletions", b"12")
        self.assertEqual(self.queue.dequeue(timeout=1), 12)
        self.client.blpop.assert_called_once_with("qrono:blob-deletions", timeout=1)

        self.client.lpop.return_value = None
        self.assertIsNone(self.queue.dequeue(block=False))

    def test_dequeue_reconnects_after_connection_error(self):
        self.client.blpop.side_effect = redis_exceptions.ConnectionError("reset")
        self.assertIsNone(self.queue.dequeue(timeout=1))


if __name__ == "__main__":
    unittest.main()
