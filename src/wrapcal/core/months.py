"""Month input models for the calendar batch."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

from wrapcal.core.errors import ValidationError

MONTHS: tuple[str, ...] = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


@dataclass(frozen=True)
class AnalysisRequest:
    """Input to the analysis capability.

    Attributes:
        kind: ``"image"`` when *payload* is a data URI, ``"text"`` otherwise.
        payload: The data URI or the trimmed description.
    """

    kind: Literal["text", "image"]
    payload: str


@dataclass(frozen=True)
class MonthInput:
    """One month's scene, given either as an image or as a description.

    At most one of ``image`` / ``text`` is set.  Use :meth:`with_image` and
    :meth:`with_text` to switch modes; switching clears the other field.

    Attributes:
        name: Month identifier, e.g. ``"Jan"``.
        image: Scene photo as a data URI.
        text: Free-text scene description.
    """

    name: str
    image: str | None = None
    text: str | None = None

    def __post_init__(self) -> None:
        if self.image and self.text:
            raise ValidationError(f"{self.name}: provide either an image or a description, not both")

    @classmethod
    def from_image(cls, name: str, image: str) -> MonthInput:
        return cls(name=name, image=image)

    @classmethod
    def from_text(cls, name: str, text: str) -> MonthInput:
        return cls(name=name, text=text)

    def with_image(self, image: str) -> MonthInput:
        """Return a copy in image mode (the description is cleared)."""
        return replace(self, image=image, text=None)

    def with_text(self, text: str) -> MonthInput:
        """Return a copy in text mode (the image is cleared)."""
        return replace(self, image=None, text=text)

    def has_content(self) -> bool:
        """True if the month has an image or a non-blank description."""
        return bool(self.image) or bool(self.text and self.text.strip())

    def to_analysis_request(self) -> AnalysisRequest:
        """Build the analysis input for this month.

        Raises:
            ValidationError: If the month has no content.
        """
        if self.image:
            return AnalysisRequest(kind="image", payload=self.image)
        if self.text and self.text.strip():
            return AnalysisRequest(kind="text", payload=self.text.strip())
        raise ValidationError(f"{self.name}: no image or description provided")


@dataclass(frozen=True)
class BatchItem:
    """A month queued for batch generation with its position in the calendar."""

    month: MonthInput
    index: int
