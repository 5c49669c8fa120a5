"""
Image file payloads and the checks shared by uploads and local encoding.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

MAX_FILE_SIZE = 5 * 1024 * 1024
ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


@dataclass
class ImageFile:
    """An image picked by the user: original name, MIME type and bytes."""

    name: str
    mime_type: str
    data: bytes
    declared_size: Optional[int] = None

    @property
    def size(self) -> int:
        if self.declared_size is not None:
            return self.declared_size
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass
class ImageValidation:
    valid: bool
    error: Optional[str] = None


def upload_rejection(file: ImageFile) -> Optional[str]:
    """Returns the message code an upload of ``file`` must fail with, if any."""
    if file.size > MAX_FILE_SIZE:
        return "file_too_large"
    if file.mime_type not in ALLOWED_MIME_TYPES:
        return "unsupported_type"
    return None
