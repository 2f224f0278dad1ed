"""Error taxonomy for Wrapcal.

Every failure the calendar pipeline can report derives from
:class:`WrapcalError`.  The message is meant to be shown to the user as-is.

- :class:`InvalidFormatError`: an encoded image is malformed.
- :class:`AnalysisError`: the analysis capability failed.
- :class:`GenerationError`: the generation capability failed.
- :class:`ValidationError`: a required field is missing or empty.
"""

from __future__ import annotations


class WrapcalError(Exception):
    """Base exception for all Wrapcal errors.

    Attributes:
        message: Human-readable description.
        code: Optional machine-readable code (e.g. ``"FILE_TOO_LARGE"``).
    """

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class InvalidFormatError(WrapcalError):
    """An image payload is not a valid ``data:<type>/<subtype>;base64,`` URI."""


class AnalysisError(WrapcalError):
    """The analysis step produced no usable editing instruction."""


class GenerationError(WrapcalError):
    """The generation step produced no image."""


class ValidationError(WrapcalError):
    """A required value is missing or empty at a boundary."""
