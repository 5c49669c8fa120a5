import unittest
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from quizstore.errors import MediaError
from quizstore.files import ImageFile
from quizstore.media import (
    MediaStore,
    path_for_question_main,
    path_for_question_options,
    sanitize_filename,
)
from quizstore.storage import (
    InMemoryStorageClient,
    ObjectExistsError,
    S3StorageClient,
    StorageOperationError,
)

BASE = "https://example.test/storage/v1/object/public"


def _png(name="photo.png", size=None):
    return ImageFile(name=name, mime_type="image/png", data=b"\x89PNG...", declared_size=size)


class MediaStoreTests(unittest.TestCase):
    def setUp(self):
        self.storage = InMemoryStorageClient()
        self.media = MediaStore(self.storage, clock=lambda: 1700000000.5)

    def test_upload_returns_public_url_with_sanitized_name(self):
        url = self.media.upload(_png(name="my photo (1).png"), "questions/q1/main")
        path = "questions/q1/main/1700000000500-my_photo__1_.png"
        self.assertEqual(url, f"{BASE}/quiz-images/{path}")
        stored = self.storage.stored_objects[path]
        self.assertEqual(stored.content_type, "image/png")
        self.assertEqual(stored.cache_control, "3600")

    def test_oversized_file_rejected_before_network(self):
        storage = MagicMock()
        storage.bucket = "quiz-images"
        media = MediaStore(storage)
        with self.assertLogs("quizstore.media", level="ERROR"):
            with self.assertRaises(MediaError) as ctx:
                media.upload(_png(size=6 * 1024 * 1024), "questions/q1/main")
        self.assertEqual(ctx.exception.code, "file_too_large")
        self.assertIn("5MB", ctx.exception.message)
        storage.upload.assert_not_called()

    def test_pdf_rejected(self):
        pdf = ImageFile(name="doc.pdf", mime_type="application/pdf", data=b"%PDF")
        with self.assertRaises(MediaError) as ctx:
            self.media.upload(pdf, "questions/q1/main")
        self.assertEqual(ctx.exception.code, "unsupported_type")
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_never_overwrites(self):
        self.media.upload(_png(), "questions/q1/main")
        with self.assertRaises(MediaError) as ctx:
            self.media.upload(_png(), "questions/q1/main")
        self.assertEqual(ctx.exception.code, "upload_conflict")
        self.assertIsInstance(ctx.exception.__cause__, ObjectExistsError)

    def test_network_failure_becomes_media_error(self):
        storage = MagicMock()
        storage.bucket = "quiz-images"
        storage.upload.side_effect = ConnectionError("reset by peer")
        with self.assertRaises(MediaError) as ctx:
            MediaStore(storage).upload(_png(), "questions/q1/main")
        self.assertEqual(ctx.exception.code, "upload_failed")
        self.assertIn("reset by peer", ctx.exception.message)

    def test_localized_messages(self):
        media = MediaStore(self.storage, locale="ja")
        with self.assertRaises(MediaError) as ctx:
            media.upload(_png(size=6 * 1024 * 1024), "x")
        self.assertIn("5MB以下", ctx.exception.message)

    def test_upload_many_all_or_nothing(self):
        clock = iter(range(1000, 2000)).__next__
        media = MediaStore(self.storage, clock=lambda: clock())
        urls = media.upload_many([_png("a.png"), _png("b.png")], "questions/q1/options")
        self.assertEqual(len(urls), 2)
        self.assertTrue(all("/quiz-images/questions/q1/options/" in u for u in urls))

        bad = ImageFile(name="doc.pdf", mime_type="application/pdf", data=b"%PDF")
        with self.assertRaises(MediaError):
            media.upload_many([_png("c.png"), bad], "questions/q1/options")

    def test_delete_extracts_path_from_url(self):
        url = self.media.upload(_png(name="a b.png"), "questions/q1/main")
        self.media.delete(url)
        self.assertEqual(self.storage.stored_objects, {})

    def test_delete_rejects_url_without_bucket(self):
        for url in ("https://example.test/other/x.png", "not a url", f"{BASE}/quiz-images/"):
            with self.assertRaises(MediaError) as ctx:
                self.media.delete(url)
            self.assertEqual(ctx.exception.code, "invalid_url")

    def test_delete_failure_becomes_media_error(self):
        storage = MagicMock()
        storage.bucket = "quiz-images"
        storage.remove.side_effect = StorageOperationError("denied")
        with self.assertRaises(MediaError) as ctx:
            MediaStore(storage).delete(f"{BASE}/quiz-images/questions/q1/main/a.png")
        self.assertEqual(ctx.exception.code, "delete_failed")
        storage.remove.assert_called_once_with(["questions/q1/main/a.png"])

    def test_delete_many(self):
        clock = iter(range(1000, 2000)).__next__
        media = MediaStore(self.storage, clock=lambda: clock())
        urls = media.upload_many([_png("a.png"), _png("b.png")], "questions/q1/main")
        media.delete_many(urls)
        self.assertEqual(self.storage.stored_objects, {})
        with self.assertRaises(MediaError):
            media.delete_many([urls[0], "https://example.test/nope.png"])

    def test_is_valid_media_url(self):
        self.assertTrue(self.media.is_valid_media_url(f"{BASE}/quiz-images/a/b.png"))
        self.assertFalse(self.media.is_valid_media_url("https://example.test/a/b.png"))
        self.assertFalse(self.media.is_valid_media_url("quiz-images/a.png"))

    def test_path_helpers(self):
        self.assertEqual(path_for_question_main("q1"), "questions/q1/main")
        self.assertEqual(path_for_question_options("q1"), "questions/q1/options")
        self.assertEqual(sanitize_filename("é x-1.PNG"), "__x-1.PNG")

    def test_bucket_exists_reports_errors_as_missing(self):
        storage = MagicMock()
        storage.bucket = "quiz-images"
        storage.bucket_exists.side_effect = RuntimeError("no credentials")
        with self.assertLogs("quizstore.media", level="ERROR"):
            self.assertFalse(MediaStore(storage).bucket_exists())
        self.assertTrue(self.media.bucket_exists())


class S3StorageClientTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("quizstore.storage.boto3.client")
        self.boto_client = patcher.start().return_value
        self.addCleanup(patcher.stop)
        self.client = S3StorageClient(
            bucket="quiz-images",
            endpoint="https://s3.example.test",
            public_base_url="https://cdn.example.test/",
        )

    def test_upload_is_conditional(self):
        self.client.upload("a/b.png", b"data", "image/png")
        kwargs = self.boto_client.put_object.call_args.kwargs
        self.assertEqual(kwargs["IfNoneMatch"], "*")
        self.assertEqual(kwargs["Key"], "a/b.png")
        self.assertEqual(kwargs["ContentType"], "image/png")

        self.client.upload("a/b.png", b"data", "image/png", upsert=True)
        self.assertNotIn("IfNoneMatch", self.boto_client.put_object.call_args.kwargs)

    def test_precondition_failure_is_collision(self):
        self.boto_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "PreconditionFailed", "Message": "exists"}}, "PutObject"
        )
        with self.assertRaises(ObjectExistsError):
            self.client.upload("a/b.png", b"data", "image/png")

    def test_other_client_errors_propagate(self):
        self.boto_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutObject"
        )
        with self.assertRaises(ClientError):
            self.client.upload("a/b.png", b"data", "image/png")

    def test_public_url_contains_bucket_segment(self):
        self.assertEqual(
            self.client.public_url("questions/q1/main/a b.png"),
            "https://cdn.example.test/quiz-images/questions/q1/main/a%20b.png",
        )

    def test_remove_reports_partial_failures(self):
        self.boto_client.delete_objects.return_value = {
            "Errors": [{"Key": "a.png", "Code": "AccessDenied"}]
        }
        with self.assertRaises(StorageOperationError):
            self.client.remove(["a.png"])

    def test_bucket_exists(self):
        self.assertTrue(self.client.bucket_exists())
        self.boto_client.head_bucket.side_effect = ClientError(
            {"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket"
        )
        self.assertFalse(self.client.bucket_exists())


if __name__ == "__main__":
    unittest.main()
