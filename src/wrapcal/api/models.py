"""Pydantic request and response models for the Wrapcal API.

These models define the JSON schema for every API endpoint.  FastAPI uses
them for automatic request validation, serialisation, and OpenAPI
documentation generation.

Fields that the original clients could omit are optional here and checked
in the route handlers, so a missing value is reported as a 400 with a
readable message rather than as a 422 schema error.

Models
------
AnalyzeRequest / AnalyzeResponse
    ``POST /api/analyze``: scene input in, editing instruction out.
GenerateRequest / GenerateResponse
    ``POST /api/generate``: base image plus instruction in, edited tile out.
BatchRequest / BatchResponse
    ``POST /api/batch``: run the pipeline over a set of months.
BaseStyleCreate / BaseStyleUpdate
    Base style image CRUD payloads.
CalendarCreate / CalendarUpdate
    Saved calendar CRUD payloads.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Single-step endpoints.
# ---------------------------------------------------------------------------


class AnalyzeRequest(BaseModel):
    """Request body for ``POST /api/analyze``.

    Attributes:
        type: ``"text"`` or ``"image"``.
        content: The description, or an image data URI when ``type`` is
            ``"image"``.
    """

    type: str | None = Field(
        default=None,
        description="Input kind: 'text' or 'image'.",
    )
    content: str | None = Field(
        default=None,
        description="Free-text description or image data URI.",
    )


class AnalyzeResponse(BaseModel):
    prompt: str = Field(..., description="Generated image-editing instruction.")


class GenerateRequest(BaseModel):
    """Request body for ``POST /api/generate``.

    Attributes:
        base_image_url: Base style image as a data URI.
        prompt: Editing instruction to apply.
    """

    base_image_url: str | None = Field(
        default=None,
        description="Base style image as a base64 data URI.",
    )
    prompt: str | None = Field(
        default=None,
        description="Image-editing instruction.",
    )


class GenerateResponse(BaseModel):
    image_url: str = Field(..., description="Edited image as a base64 data URI.")


# ---------------------------------------------------------------------------
# Batch generation.
# ---------------------------------------------------------------------------


class BatchMonth(BaseModel):
    """One month of a batch request.

    At most one of ``image_url`` / ``text`` may be given.  A month with
    neither is skipped.
    """

    name: str = Field(..., description="Month identifier, e.g. 'Jan'.")
    index: int = Field(..., ge=0, le=11, description="Position in the calendar (0-11).")
    image_url: str | None = Field(default=None, description="Scene photo as a data URI.")
    text: str | None = Field(default=None, description="Free-text scene description.")


class BatchRequest(BaseModel):
    """Request body for ``POST /api/batch``.

    Exactly one of ``base_image_url`` / ``base_style_id`` must be given.

    Attributes:
        base_image_url: Base style image as a data URI.
        base_style_id: Id of a stored base style to use instead.
        months: Months to generate, in calendar order.
        save: Persist the successful months as a calendar.  Requires
            ``base_style_id``.
    """

    base_image_url: str | None = Field(
        default=None,
        description="Base style image as a base64 data URI.",
    )
    base_style_id: str | None = Field(
        default=None,
        description="Id of a stored base style image.",
    )
    months: list[BatchMonth] = Field(
        default_factory=list,
        description="Months to generate.",
    )
    save: bool = Field(
        default=False,
        description="Save the successful months as a calendar.",
    )


class BatchMonthResult(BaseModel):
    index: int
    name: str
    status: Literal["completed", "error"]
    prompt: str | None = None
    image_url: str | None = None
    error: str | None = None


class BatchResponse(BaseModel):
    """Response body for ``POST /api/batch``.

    ``results`` holds one entry per processed month, in request order.
    """

    total: int
    completed: int
    succeeded: int
    failed: int
    results: list[BatchMonthResult]
    calendar_id: str | None = None


# ---------------------------------------------------------------------------
# Base style images.
# ---------------------------------------------------------------------------


class BaseStyleCreate(BaseModel):
    """Request body for ``POST /api/base-styles``.

    A thumbnail is generated from ``image_url`` when ``thumbnail_url`` is
    not supplied.
    """

    name: str | None = Field(default=None, description="Display name.")
    image_url: str | None = Field(default=None, description="Image as a base64 data URI.")
    thumbnail_url: str | None = Field(default=None, description="Optional thumbnail data URI.")


class BaseStyleUpdate(BaseModel):
    """Request body for ``PUT /api/base-styles/{id}``.  Omitted fields are kept."""

    name: str | None = None
    image_url: str | None = None
    thumbnail_url: str | None = None


# ---------------------------------------------------------------------------
# Saved calendars.
# ---------------------------------------------------------------------------


class MonthData(BaseModel):
    """One generated month stored in a calendar."""

    month: str = Field(..., description="Month identifier, e.g. 'Jan'.")
    base_image_url: str = Field(..., description="Base style image used.")
    edit_prompt: str = Field(..., description="Editing instruction used.")
    result_image_url: str = Field(..., description="Generated tile.")


class CalendarCreate(BaseModel):
    """Request body for ``POST /api/calendars``."""

    months: list[MonthData] | None = None
    selected_base_style_id: str | None = None


class CalendarUpdate(BaseModel):
    """Request body for ``PUT /api/calendars/{id}``.  Omitted fields are kept."""

    months: list[MonthData] | None = None
    selected_base_style_id: str | None = None
