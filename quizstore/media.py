"""
Question image uploads and deletions against blob storage.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, List
from urllib.parse import unquote, urlsplit

from quizstore.batch import run_all
from quizstore.errors import MediaError
from quizstore.files import ImageFile, upload_rejection
from quizstore.messages import DEFAULT_LOCALE, get_message
from quizstore.storage import ObjectExistsError, StorageClient

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(name: str) -> str:
    """Replaces every character outside ``[A-Za-z0-9.-]`` with ``_``."""
    return _UNSAFE_NAME_CHARS.sub("_", name)


def path_for_question_main(question_id: str) -> str:
    return f"questions/{question_id}/main"


def path_for_question_options(question_id: str) -> str:
    return f"questions/{question_id}/options"


class MediaStore:
    """Validates, uploads and deletes question images in one bucket."""

    def __init__(
        self,
        storage: StorageClient,
        locale: str = DEFAULT_LOCALE,
        clock: Callable[[], float] = time.time,
        max_workers: int = 4,
    ):
        self.storage = storage
        self.bucket = storage.bucket
        self.locale = locale
        self.clock = clock
        self.max_workers = max_workers

    def _error(self, code: str, **kwargs) -> MediaError:
        return MediaError(code, get_message(code, self.locale, **kwargs))

    def object_name(self, filename: str) -> str:
        return f"{int(self.clock() * 1000)}-{sanitize_filename(filename)}"

    def upload(self, file: ImageFile, destination: str) -> str:
        """
        Uploads ``file`` under ``destination`` and returns its public URL.

        Size and type are checked before storage is contacted. Uploads never
        overwrite; an existing object at the generated path is an error.
        """
        rejection = upload_rejection(file)
        if rejection:
            logger.error(
                "Rejected upload of %s (%s, %d bytes): %s",
                file.name,
                file.mime_type,
                file.size,
                rejection,
            )
            raise self._error(rejection)

        path = f"{destination.rstrip('/')}/{self.object_name(file.name)}"
        try:
            stored_path = self.storage.upload(
                path, file.data, file.mime_type, upsert=False
            )
        except ObjectExistsError as exc:
            logger.error("Upload collision at %s", path)
            raise self._error("upload_conflict", detail=path) from exc
        except Exception as exc:
            logger.error("Upload of %s to %s failed: %s", file.name, path, exc)
            raise self._error("upload_failed", detail=str(exc)) from exc
        return self.storage.public_url(stored_path)

    def upload_many(self, files: List[ImageFile], destination: str) -> List[str]:
        """Uploads all files concurrently; any failure fails the batch."""
        return run_all(
            lambda file: self.upload(file, destination),
            files,
            max_workers=self.max_workers,
        )

    def storage_path_from_url(self, url: str) -> str:
        """Extracts the object path that follows the bucket segment of ``url``."""
        marker = f"/{self.bucket}/"
        try:
            parts = urlsplit(url)
        except ValueError as exc:
            logger.error("Malformed image URL %r", url)
            raise self._error("invalid_url") from exc
        if not parts.scheme or not parts.netloc:
            logger.error("Malformed image URL %r", url)
            raise self._error("invalid_url")
        pieces = parts.path.split(marker, 1)
        if len(pieces) < 2 or not pieces[1]:
            logger.error("Image URL %r has no object path under %s", url, marker)
            raise self._error("invalid_url")
        return unquote(pieces[1])

    def delete(self, url: str) -> None:
        path = self.storage_path_from_url(url)
        try:
            self.storage.remove([path])
        except Exception as exc:
            logger.error("Delete of %s failed: %s", path, exc)
            raise self._error("delete_failed", detail=str(exc)) from exc

    def delete_many(self, urls: List[str]) -> None:
        """Deletes all URLs concurrently; any failure fails the batch."""
        run_all(self.delete, urls, max_workers=self.max_workers)

    def is_valid_media_url(self, url: str) -> bool:
        try:
            parts = urlsplit(url)
        except ValueError:
            return False
        if not parts.scheme or not parts.netloc:
            return False
        return f"/{self.bucket}/" in parts.path

    def bucket_exists(self) -> bool:
        """Setup probe. Any storage error is logged and reported as missing."""
        try:
            return self.storage.bucket_exists()
        except Exception:
            logger.exception("Bucket check for %s failed", self.bucket)
            return False
