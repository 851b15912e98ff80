import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from qrono.errors import UpstreamStorageFailure
from qrono.storage import LocalStorageClient, S3StorageClient


class LocalStorageClientTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.storage = LocalStorageClient(root=self.tmp.name)

    def test_put_and_delete(self):
        locator = self.storage.put(b"jpeg-bytes", filename="Beach.JPG")
        self.assertTrue(locator.startswith("qrono/"))
        self.assertTrue(locator.endswith(".jpg"))
        self.assertEqual((Path(self.tmp.name) / locator).read_bytes(), b"jpeg-bytes")
        self.assertEqual(self.storage.url_for(locator), f"/uploads/{locator}")

        self.assertTrue(self.storage.delete(locator))
        self.assertFalse(self.storage.delete(locator))

    def test_rejects_locators_outside_root(self):
        with self.assertRaises(ValueError):
            self.storage.delete("../outside.jpg")

    def test_write_failure_is_upstream_failure(self):
        with patch("pathlib.Path.write_bytes", side_effect=OSError("disk full")):
            with self.assertRaises(UpstreamStorageFailure):
                self.storage.put(b"x", filename="a.png")


class S3StorageClientTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("qrono.storage.boto3.client")
        self.client = MagicMock()
        patcher.start().return_value = self.client
        self.addCleanup(patcher.stop)
        self.storage = S3StorageClient(
            bucket="photos",
            region="us-east-1",
            endpoint="",
            access_key_id="key",
            secret_access_key="secret",
        )

    def test_put_uploads_under_prefix(self):
        locator = self.storage.put(b"img", filename="a.gif", content_type="image/gif")
        self.client.put_object.assert_called_once_with(
            Bucket="photos", Key=locator, Body=b"img", ContentType="image/gif"
        )
        self.assertTrue(locator.startswith("qrono/"))

    def test_put_failure(self):
        self.client.put_object.side_effect = ClientError(
            {"Error": {"Code": "500", "Message": "boom"}}, "PutObject"
        )
        with self.assertRaises(UpstreamStorageFailure):
            self.storage.put(b"img", filename="a.gif")

    def test_delete_reports_missing_keys(self):
        self.client.head_object.side_effect = ClientError(
            {"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject"
        )
        self.assertFalse(self.storage.delete("qrono/a.gif"))
        self.client.delete_object.assert_not_called()

    def test_delete_existing_key(self):
        self.assertTrue(self.storage.delete("qrono/a.gif"))
        self.client.delete_object.assert_called_once_with(Bucket="photos", Key="qrono/a.gif")

    def test_delete_propagates_other_errors(self):
        self.client.head_object.side_effect = ClientError(
            {"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadObject"
        )
        with self.assertRaises(ClientError):
            self.storage.delete("qrono/a.gif")


if __name__ == "__main__":
    unittest.main()
