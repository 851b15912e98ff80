import unittest
from unittest.mock import patch

from qrono.db import InMemoryDbClient
from qrono.errors import InvalidInput, NotFound, UpstreamStorageFailure
from qrono.janitor import BlobJanitor
from qrono.queue import InMemoryDeletionQueue
from qrono.services import ImageUpload, ResourceService
from qrono.storage import InMemoryStorageClient


def _image(name: str, body: bytes = b"img") -> ImageUpload:
    return ImageUpload(filename=name, data=body, content_type="image/jpeg")


class ResourceServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.queue = InMemoryDeletionQueue()
        self.janitor = BlobJanitor(self.db, self.storage, self.queue)
        self.service = ResourceService(
            self.db, self.storage, self.janitor, max_photos_per_request=3, max_upload_bytes=16
        )
        self.user = self.db.create_user("alice", "digest")
        self.album = self.service.create_album(self.user.id, "Trip")

    def test_failed_upload_midway_writes_no_rows_and_cleans_written_blobs(self):
        real_put = self.storage.put
        calls = []

        def flaky_put(data, *, filename, content_type=None):
            calls.append(filename)
            if len(calls) == 2:
                raise UpstreamStorageFailure("bucket down")
            return real_put(data, filename=filename, content_type=content_type)

        with patch.object(self.storage, "put", side_effect=flaky_put):
            with self.assertRaises(UpstreamStorageFailure):
                self.service.create_memory(
                    self.user.id,
                    self.album.id,
                    "Day 1",
                    photos=[_image("a.jpg"), _image("b.jpg"), _image("c.jpg")],
                )

        self.assertEqual(calls, ["a.jpg", "b.jpg"])
        self.assertEqual(self.db.memories, {})
        self.assertEqual(self.db.photos, {})
        self.assertEqual(self.storage.stored_objects, {})
        self.assertEqual(self.db.list_blob_deletions(), [])

    def test_failed_row_insert_schedules_uploaded_blobs(self):
        with patch.object(self.db, "create_memory", side_effect=RuntimeError("db down")):
            with self.assertRaises(RuntimeError):
                self.service.create_memory(
                    self.user.id, self.album.id, "Day 1", photos=[_image("a.jpg")]
                )
        self.assertEqual(self.storage.stored_objects, {})

    def test_create_memory_in_foreign_album_is_not_found(self):
        bob = self.db.create_user("bob", "digest")
        with self.assertRaises(NotFound):
            self.service.create_memory(bob.id, self.album.id, "Day 1", photos=[_image("a.jpg")])
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_policy(self):
        with self.assertRaises(InvalidInput):
            self.service.create_memory(
                self.user.id, self.album.id, "Day 1", photos=[_image(f"{i}.jpg") for i in range(4)]
            )
        with self.assertRaises(InvalidInput):
            self.service.create_memory(
                self.user.id, self.album.id, "Day 1", photos=[_image("big.jpg", b"x" * 17)]
            )
        with self.assertRaises(InvalidInput):
            self.service.update_album(
                self.user.id, self.album.id, cover_image=_image("cover.bmp")
            )
        self.assertEqual(self.storage.stored_objects, {})

    def test_update_memory_cleans_up_after_commit(self):
        memory = self.service.create_memory(
            self.user.id, self.album.id, "Day 1", photos=[_image("a.jpg", b"A"), _image("b.jpg", b"B")]
        )
        photo_a, photo_b = memory.photos

        updated = self.service.update_memory(
            self.user.id,
            memory.id,
            title="Day 1",
            diary_entry=None,
            photo_ids_to_delete=[photo_a.id],
            new_photos=[_image("c.jpg", b"C")],
        )
        self.assertEqual(
            [self.storage.get_bytes(p.image) for p in updated.photos], [b"B", b"C"]
        )
        self.assertNotIn(photo_a.image, self.storage.stored_objects)
        self.assertIn(photo_b.image, self.storage.stored_objects)

    def test_update_memory_requires_title(self):
        memory = self.service.create_memory(self.user.id, self.album.id, "Day 1")
        with self.assertRaises(InvalidInput):
            self.service.update_memory(self.user.id, memory.id, title="")

    def test_cleanup_failure_is_logged_and_queued(self):
        memory = self.service.create_memory(
            self.user.id, self.album.id, "Day 1", photos=[_image("a.jpg")]
        )
        with patch.object(self.storage, "delete", side_effect=RuntimeError("timeout")):
            with self.assertLogs("qrono.janitor", level="WARNING") as logs:
                self.service.delete_memory(self.user.id, memory.id)

        self.assertIn("Failed to delete blob", logs.output[0])
        with self.assertRaises(NotFound):
            self.service.get_memory(self.user.id, memory.id)
        pending = self.db.list_blob_deletions()
        self.assertEqual([d.locator for d in pending], [memory.photos[0].image])
        self.assertEqual(self.queue.items, [pending[0].id])

    def test_outbox_bookkeeping_failure_after_commit_is_not_raised(self):
        memory = self.service.create_memory(
            self.user.id, self.album.id, "Day 1", photos=[_image("a.jpg")]
        )
        with patch.object(
            self.db, "complete_blob_deletion", side_effect=RuntimeError("outbox write failed")
        ):
            with self.assertLogs("qrono.janitor", level="ERROR"):
                self.service.delete_album(self.user.id, self.album.id)

        with self.assertRaises(NotFound):
            self.service.get_album(self.user.id, self.album.id)
        self.assertEqual(self.storage.stored_objects, {})
        pending = self.db.list_blob_deletions()
        self.assertEqual([d.locator for d in pending], [memory.photos[0].image])

    def test_failure_bookkeeping_errors_are_not_raised(self):
        memory = self.service.create_memory(
            self.user.id, self.album.id, "Day 1", photos=[_image("a.jpg")]
        )
        with patch.object(self.storage, "delete", side_effect=RuntimeError("timeout")), \
                patch.object(self.queue, "enqueue", side_effect=RuntimeError("queue down")):
            with self.assertLogs("qrono.janitor", level="ERROR"):
                self.service.delete_memory(self.user.id, memory.id)

        pending = self.db.list_blob_deletions()
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0].attempts, 1)

        with patch.object(self.storage, "delete", side_effect=RuntimeError("timeout")), \
                patch.object(
                    self.db, "record_blob_deletion_failure", side_effect=RuntimeError("db down")
                ):
            with self.assertLogs("qrono.janitor", level="ERROR"):
                self.assertFalse(self.janitor.purge(pending[0]))
        self.assertEqual(self.db.get_blob_deletion(pending[0].id).attempts, 1)

    def test_delete_twice_reports_not_found(self):
        self.service.delete_album(self.user.id, self.album.id)
        with self.assertRaises(NotFound):
            self.service.delete_album(self.user.id, self.album.id)


class BlobJanitorTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.queue = InMemoryDeletionQueue()
        self.janitor = BlobJanitor(
            self.db, self.storage, self.queue, max_attempts=2, retry_seconds=10
        )

    def test_missing_blob_counts_as_done(self):
        (deletion,) = self.db.schedule_blob_deletions(["qrono/gone.jpg"])
        self.assertTrue(self.janitor.purge(deletion))
        self.assertIsNone(self.db.get_blob_deletion(deletion.id))

    def test_gives_up_after_max_attempts(self):
        (deletion,) = self.db.schedule_blob_deletions(["qrono/a.jpg"])
        with patch.object(self.storage, "delete", side_effect=RuntimeError("denied")):
            self.assertFalse(self.janitor.purge(deletion))
            retry = self.db.get_blob_deletion(deletion.id)
            self.assertEqual(retry.attempts, 1)
            self.assertIsNone(retry.abandoned_at)

            with self.assertLogs("qrono.janitor", level="ERROR"):
                self.assertFalse(self.janitor.purge(retry))

        final = self.db.get_blob_deletion(deletion.id)
        self.assertEqual(final.attempts, 2)
        self.assertIsNotNone(final.abandoned_at)
        self.assertEqual(self.queue.items, [deletion.id])


if __name__ == "__main__":
    unittest.main()
