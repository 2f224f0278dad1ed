"""Data-URI codec for image payloads.

Images travel between the browser, the API and the AI providers as tagged
strings of the form ``data:<type>/<subtype>;base64,<payload>``.  This module
is the only place that knows that format.

Usage
-----
::

    uri = encode(png_bytes, "image/png")
    decoded = decode(uri)
    assert decoded.data == png_bytes
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

from wrapcal.core.errors import InvalidFormatError

_DATA_URI_RE = re.compile(
    r"^data:(?P<media_type>[A-Za-z0-9.+-]+/[A-Za-z0-9.+-]+);base64,(?P<payload>.+)$",
    re.DOTALL,
)


@dataclass(frozen=True)
class DecodedDataUri:
    """Result of :func:`decode`.

    Attributes:
        media_type: MIME type from the URI header, e.g. ``"image/png"``.
        data: Raw decoded bytes.
    """

    media_type: str
    data: bytes


def decode(data_uri: str) -> DecodedDataUri:
    """Split a data URI into its media type and raw bytes.

    Args:
        data_uri: String of the form ``data:<type>/<subtype>;base64,<payload>``.

    Returns:
        The decoded media type and bytes.

    Raises:
        InvalidFormatError: If the string does not match the pattern or the
            payload is not valid base64.
    """
    if not isinstance(data_uri, str):
        raise InvalidFormatError("Invalid data URI format")

    match = _DATA_URI_RE.match(data_uri.strip())
    if match is None:
        raise InvalidFormatError("Invalid data URI format")

    try:
        data = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidFormatError(f"Invalid data URI format: {e}") from e

    return DecodedDataUri(media_type=match.group("media_type").lower(), data=data)


def encode(data: bytes, media_type: str) -> str:
    """Encode raw bytes as a base64 data URI.

    Args:
        data: Raw bytes (typically an encoded image).
        media_type: MIME type to tag the payload with.

    Returns:
        ``data:<media_type>;base64,<payload>``.
    """
    payload = base64.b64encode(data).decode("ascii")
    return f"data:{media_type};base64,{payload}"


def media_type_of(data_uri: str) -> str:
    """Return the media type of *data_uri* without decoding the payload."""
    match = _DATA_URI_RE.match(data_uri.strip()) if isinstance(data_uri, str) else None
    if match is None:
        raise InvalidFormatError("Invalid data URI format")
    return match.group("media_type").lower()


def is_image_data_uri(value: str | None) -> bool:
    """Cheap prefix check used by request validation.

    This does not decode the payload; :func:`decode` does the strict check.
    """
    return bool(value) and value.startswith("data:image/")
