"""Image helpers: upload validation, Pillow conversion and thumbnails."""

from __future__ import annotations

import io
import logging

from PIL import Image, UnidentifiedImageError

from wrapcal.core import data_uri
from wrapcal.core.errors import InvalidFormatError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES: tuple[str, ...] = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
)

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def validate_upload(
    content_type: str | None, size: int, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
) -> None:
    """Check an uploaded file's type and size.

    Args:
        content_type: MIME type reported by the client.
        size: Size of the upload in bytes.
        max_bytes: Largest accepted size.

    Raises:
        ValidationError: ``INVALID_TYPE`` for a disallowed type,
            ``FILE_TOO_LARGE`` when *size* exceeds *max_bytes*.
    """
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(
            f"Invalid file type. Allowed types: {', '.join(ALLOWED_IMAGE_TYPES)}",
            code="INVALID_TYPE",
        )

    if size > max_bytes:
        limit_mb = max_bytes / 1024 / 1024
        raise ValidationError(
            f"File size exceeds {limit_mb:g}MB limit",
            code="FILE_TOO_LARGE",
        )


def upload_to_data_uri(
    content: bytes, content_type: str | None, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
) -> str:
    """Validate an uploaded image and encode it as a data URI.

    Args:
        content: Raw file bytes.
        content_type: MIME type reported by the client.
        max_bytes: Largest accepted size.

    Returns:
        Data URI tagged with the (normalised) upload content type.

    Raises:
        ValidationError: If the type or size is rejected, or the bytes are
            not a readable image (``INVALID_FORMAT``).
    """
    validate_upload(content_type, len(content), max_bytes)

    try:
        with Image.open(io.BytesIO(content)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(
            "Failed to convert file to valid image data URI", code="INVALID_FORMAT"
        ) from e

    # image/jpg is accepted from clients but is not a registered type.
    media_type = "image/jpeg" if content_type == "image/jpg" else content_type
    return data_uri.encode(content, media_type)


def load_image(uri: str) -> Image.Image:
    """Decode an image data URI into an RGB Pillow image.

    Raises:
        InvalidFormatError: If the URI or the image bytes are invalid.
    """
    decoded = data_uri.decode(uri)
    try:
        image = Image.open(io.BytesIO(decoded.data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidFormatError(f"Payload is not a readable image: {e}") from e

    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def image_to_data_uri(image: Image.Image) -> str:
    """Encode a Pillow image as a PNG data URI."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return data_uri.encode(buffer.getvalue(), "image/png")


def make_thumbnail(uri: str, size: int) -> str:
    """Create an aspect-preserving PNG thumbnail of an image data URI.

    Args:
        uri: Source image as a data URI.
        size: Maximum edge length of the thumbnail in pixels.

    Returns:
        The thumbnail as a PNG data URI.
    """
    image = load_image(uri)
    image.thumbnail((size, size), Image.Resampling.LANCZOS)
    logger.debug("Created %dx%d thumbnail.", image.width, image.height)
    return image_to_data_uri(image)
