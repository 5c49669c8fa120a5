"""
Blob storage abstraction for S3-compatible buckets and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

# Error codes S3-compatible services return for a failed If-None-Match put.
_CONFLICT_CODES = ("PreconditionFailed", "ConditionalRequestConflict", "412")
_MISSING_BUCKET_CODES = ("404", "NoSuchBucket", "NotFound")


class ObjectExistsError(Exception):
    """A non-overwriting upload hit an existing object."""

    def __init__(self, path: str):
        super().__init__(f"Object already exists: {path}")
        self.path = path


class StorageOperationError(Exception):
    """The storage service reported a failure for part of a request."""


class StorageClient(Protocol):
    """Defines the operations the media store needs from object storage."""

    bucket: str

    def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:
        ...

    def remove(self, paths: List[str]) -> None:
        ...

    def public_url(self, path: str) -> str:
        ...

    def bucket_exists(self) -> bool:
        ...


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    cache_control: str


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    bucket: str = "quiz-images"
    base_url: str = "https://example.test/storage/v1/object/public"
    stored_objects: Dict[str, StoredObject] = field(default_factory=dict)

    def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:
        if not upsert and path in self.stored_objects:
            raise ObjectExistsError(path)
        self.stored_objects[path] = StoredObject(data, content_type, cache_control)
        return path

    def remove(self, paths: List[str]) -> None:
        for path in paths:
            self.stored_objects.pop(path, None)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{self.bucket}/{quote(path)}"

    def bucket_exists(self) -> bool:
        return True


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client. Objects are served from
    ``{public_base_url}/{bucket}/{path}``.
    """

    bucket: str
    endpoint: str
    region: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    public_base_url: Optional[str] = None

    def __post_init__(self):
        # Path-style addressing keeps the bucket name in the URL path.
        config = Config(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:
        params = {
            "Bucket": self.bucket,
            "Key": path,
            "Body": data,
            "ContentType": content_type,
            "CacheControl": f"max-age={cache_control}",
        }
        if not upsert:
            params["IfNoneMatch"] = "*"
        try:
            self._client.put_object(**params)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _CONFLICT_CODES:
                raise ObjectExistsError(path) from exc
            raise
        return path

    def remove(self, paths: List[str]) -> None:
        if not paths:
            return
        response = self._client.delete_objects(
            Bucket=self.bucket,
            Delete={"Objects": [{"Key": path} for path in paths], "Quiet": True},
        )
        errors = response.get("Errors") or []
        if errors:
            keys = ", ".join(e.get("Key", "?") for e in errors)
            raise StorageOperationError(f"Failed to delete objects: {keys}")

    def public_url(self, path: str) -> str:
        base = (self.public_base_url or self.endpoint).rstrip("/")
        return f"{base}/{self.bucket}/{quote(path)}"

    def bucket_exists(self) -> bool:
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _MISSING_BUCKET_CODES:
                return False
            raise
        return True
