"""
Local image encoding: data URLs, downscaling and JPEG re-compression.

Nothing here touches the network.
"""

from __future__ import annotations

import base64
import io
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Tuple

from PIL import Image, UnidentifiedImageError

from quizstore.batch import run_all
from quizstore.errors import MediaError
from quizstore.files import (
    ALLOWED_MIME_TYPES,
    MAX_FILE_SIZE,
    ImageFile,
    ImageValidation,
)
from quizstore.messages import DEFAULT_LOCALE, get_message

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 1920
DEFAULT_MAX_HEIGHT = 1080
DEFAULT_QUALITY = 0.8
LARGE_RESULT_MB = 2.0


def _error(code: str, locale: str, **kwargs) -> MediaError:
    return MediaError(code, get_message(code, locale, **kwargs))


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def to_base64(file: ImageFile, locale: str = DEFAULT_LOCALE) -> str:
    """Encodes the raw bytes of ``file`` as a data URL, without re-encoding."""
    if file.size > MAX_FILE_SIZE:
        logger.error("Refusing to encode %s: %d bytes", file.name, file.size)
        raise _error("file_too_large", locale)
    if not file.is_image:
        logger.error("Refusing to encode %s: type %s", file.name, file.mime_type)
        raise _error("not_an_image", locale)
    return to_data_url(file.data, file.mime_type)


def fit_within(
    width: int, height: int, max_width: int, max_height: int
) -> Tuple[int, int]:
    """
    Scales ``(width, height)`` uniformly to fit the bounds. Sizes already
    inside the bounds are returned unchanged; nothing is ever upscaled.
    """
    if width <= max_width and height <= max_height:
        return width, height
    ratio = min(max_width / width, max_height / height)
    new_width = min(max_width, max(1, round(width * ratio)))
    new_height = min(max_height, max(1, round(height * ratio)))
    return new_width, new_height


def base64_size_mb(data_url: str) -> float:
    """Approximate decoded size in MB of a base64 string."""
    return (len(data_url) * 3 / 4) / (1024 * 1024)


def _fixed(value: float, places: str) -> Decimal:
    # Ties round away from zero.
    return Decimal(value).quantize(Decimal(places), rounding=ROUND_HALF_UP)


def estimate_size(data_url: str) -> str:
    size_mb = base64_size_mb(data_url)
    if size_mb < 0.1:
        return f"{_fixed(size_mb * 1024, '1')} KB"
    return f"{_fixed(size_mb, '0.01')} MB"


def compress_and_encode(
    file: ImageFile,
    max_width: int = DEFAULT_MAX_WIDTH,
    max_height: int = DEFAULT_MAX_HEIGHT,
    quality: float = DEFAULT_QUALITY,
    locale: str = DEFAULT_LOCALE,
) -> str:
    """
    Downscales ``file`` to fit the bounds and re-encodes it as a JPEG data URL.

    ``quality`` is in ``[0, 1]``. A result above ~2MB is logged as a warning
    but still returned.
    """
    if not file.is_image:
        logger.error("Refusing to compress %s: type %s", file.name, file.mime_type)
        raise _error("not_an_image", locale)

    try:
        with Image.open(io.BytesIO(file.data)) as source:
            source.load()
            size = fit_within(source.width, source.height, max_width, max_height)
            if size != source.size:
                image = source.resize(size, Image.Resampling.LANCZOS)
            else:
                image = source.copy()
    except (UnidentifiedImageError, OSError) as exc:
        logger.error("Could not decode image %s: %s", file.name, exc)
        raise _error("read_failed", locale) from exc

    jpeg_quality = min(100, max(1, int(round(quality * 100))))
    buffer = io.BytesIO()
    try:
        image.convert("RGB").save(buffer, format="JPEG", quality=jpeg_quality)
    except (OSError, ValueError) as exc:
        logger.error("Could not encode image %s: %s", file.name, exc)
        raise _error("process_failed", locale) from exc

    result = to_data_url(buffer.getvalue(), "image/jpeg")
    size_mb = base64_size_mb(result)
    if size_mb > LARGE_RESULT_MB:
        logger.warning(
            "Compressed image %s is still large (%.2fMB)", file.name, size_mb
        )
    return result


def generate_thumbnail(
    file: ImageFile,
    max_width: int = 200,
    max_height: int = 200,
    locale: str = DEFAULT_LOCALE,
) -> str:
    return compress_and_encode(file, max_width, max_height, 0.7, locale=locale)


def process_many(
    files: List[ImageFile], max_count: int = 3, locale: str = DEFAULT_LOCALE
) -> List[str]:
    """Compresses up to ``max_count`` files concurrently, keeping input order."""
    if len(files) > max_count:
        logger.error("Got %d images, at most %d allowed", len(files), max_count)
        raise _error("too_many_files", locale, max_count=max_count)
    return run_all(lambda file: compress_and_encode(file, locale=locale), files)


def validate_image(file: ImageFile, locale: str = DEFAULT_LOCALE) -> ImageValidation:
    """Non-raising version of the upload checks, for form feedback."""
    if file.mime_type not in ALLOWED_MIME_TYPES:
        return ImageValidation(valid=False, error=get_message("unsupported_type", locale))
    if file.size > MAX_FILE_SIZE:
        return ImageValidation(valid=False, error=get_message("file_too_large", locale))
    return ImageValidation(valid=True)
