"""Wrapcal - FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Analysis and generation** are performed by the capabilities in
  :mod:`wrapcal.core.analysis` and :mod:`wrapcal.core.generation`, created
  once at startup and kept on ``app.state``.
- **Batch generation** delegates to :func:`~wrapcal.core.batch.run_batch`,
  which isolates per-month failures.
- **Persistence** uses one JSON file per collection
  (:class:`~wrapcal.api.store.DocumentStore`).  No database is required.
- **Rate limiting** applies to the three AI endpoints only.

Handlers that call the AI capabilities are plain ``def`` functions, so
FastAPI runs them in its threadpool and a slow model call does not block
the event loop.

Endpoints
---------
======  ===========================  ==========================================
Method  Path                         Purpose
======  ===========================  ==========================================
GET     ``/api/health``              Version and configured backends
POST    ``/api/uploads``             Multipart image -> validated data URI
POST    ``/api/analyze``             Scene input -> editing instruction
POST    ``/api/generate``            Base image + instruction -> edited tile
POST    ``/api/batch``               Generate every month with content
GET     ``/api/base-styles``         List base style images
POST    ``/api/base-styles``         Create a base style image
GET     ``/api/base-styles/{id}``    Fetch one base style image
PUT     ``/api/base-styles/{id}``    Update a base style image
DELETE  ``/api/base-styles/{id}``    Delete a base style image
GET     ``/api/calendars``           Paginated calendar listing
POST    ``/api/calendars``           Save a generated calendar
GET     ``/api/calendars/{id}``      Fetch one calendar
PUT     ``/api/calendars/{id}``      Update a calendar
DELETE  ``/api/calendars/{id}``      Delete a calendar
======  ===========================  ==========================================

Usage
-----
CLI (installed entry point)::

    wrapcal

Direct invocation::

    python -m wrapcal.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from wrapcal import __version__
from wrapcal.api.models import (
    AnalyzeRequest,
    AnalyzeResponse,
    BaseStyleCreate,
    BaseStyleUpdate,
    BatchMonthResult,
    BatchRequest,
    BatchResponse,
    CalendarCreate,
    CalendarUpdate,
    GenerateRequest,
    GenerateResponse,
    MonthData,
)
from wrapcal.api.rate_limit import (
    SlidingWindowRateLimiter,
    attach_rate_limit_headers,
    enforce_rate_limit,
)
from wrapcal.api.store import DocumentStore, is_valid_id, paginate
from wrapcal.core.analysis import GeminiAnalyzer
from wrapcal.core.batch import ProgressSnapshot, run_batch
from wrapcal.core.config import config
from wrapcal.core.data_uri import is_image_data_uri
from wrapcal.core.errors import (
    AnalysisError,
    GenerationError,
    InvalidFormatError,
    ValidationError,
)
from wrapcal.core.generation import build_editor
from wrapcal.core.image_utils import make_thumbnail, upload_to_data_uri
from wrapcal.core.model_manager import ModelManager
from wrapcal.core.months import AnalysisRequest, BatchItem, MonthInput

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Creates the analysis and generation capabilities, the document
        stores, and the rate limiter, and stores them on ``app.state``.
        No local model is loaded at this point; the local backend loads
        its model on the first edit.

    On shutdown:
        Unloads any local model and frees GPU memory.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    app.state.model_manager = ModelManager(config)
    app.state.analyzer = GeminiAnalyzer(config)
    app.state.editor = build_editor(config, app.state.model_manager)
    app.state.base_styles = DocumentStore(config.data_dir / "base_styles.json")
    app.state.calendars = DocumentStore(config.data_dir / "calendars.json")
    app.state.rate_limiter = (
        SlidingWindowRateLimiter(config.rate_limit_requests, config.rate_limit_window)
        if config.rate_limit_enabled
        else None
    )
    logger.info(
        "Wrapcal started (generation backend: %s, data dir: %s).",
        config.generation_backend,
        config.data_dir,
    )

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    app.state.model_manager.unload()
    logger.info("ModelManager unloaded on shutdown.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Wrapcal",
    description="Generate a twelve-month calendar of AI-edited avatar tiles.",
    version=__version__,
    lifespan=lifespan,
)

# Restrict ``allow_origins`` to the deployment domain in production.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(attach_rate_limit_headers)


# ---------------------------------------------------------------------------
# Request validation helpers.
# ---------------------------------------------------------------------------


def _require_valid_id(document_id: str, label: str) -> None:
    if not is_valid_id(document_id):
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")


def _require_data_uri(value: str, field: str) -> None:
    if not is_image_data_uri(value):
        raise HTTPException(
            status_code=400,
            detail=f"{field} must be a base64 data URI (e.g., data:image/jpeg;base64,...)",
        )


def _validate_calendar_months(months: list[MonthData]) -> list[dict]:
    """Check every stored month carries image data URIs.

    Returns:
        The months as plain dicts, ready to be stored.
    """
    if not months:
        raise HTTPException(status_code=400, detail="months array cannot be empty")
    for month in months:
        _require_data_uri(month.base_image_url, "base_image_url")
        _require_data_uri(month.result_image_url, "result_image_url")
    return [month.model_dump() for month in months]


def _thumbnail_for(image_url: str) -> str:
    try:
        return make_thumbnail(image_url, config.thumbnail_size)
    except InvalidFormatError as e:
        raise HTTPException(status_code=400, detail=f"Invalid image format: {e.message}") from e


def _log_progress(snapshot: ProgressSnapshot) -> None:
    if snapshot.current is None:
        logger.debug("Batch progress: %d/%d", snapshot.completed, snapshot.total)
    else:
        logger.debug(
            "Batch progress: %d/%d, processing month %d",
            snapshot.completed,
            snapshot.total,
            snapshot.current,
        )


# ---------------------------------------------------------------------------
# Service routes.
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def health() -> dict:
    """Return the service version and the configured backends."""
    return {
        "status": "ok",
        "version": __version__,
        "analysis_model": config.analysis_model,
        "generation_backend": config.generation_backend,
        "rate_limit_enabled": config.rate_limit_enabled,
    }


@app.post("/api/uploads")
async def upload_image(file: UploadFile = File(...)) -> dict:
    """Validate an uploaded image and return it as a data URI.

    Args:
        file: Multipart image upload (JPEG, PNG, WebP or GIF).

    Returns:
        Dictionary with ``image_url``, ``content_type`` and ``size``.

    Raises:
        HTTPException: 400 for a disallowed type, an oversized file, or
            bytes that are not a readable image.
    """
    content = await file.read()
    try:
        image_url = upload_to_data_uri(content, file.content_type, config.max_upload_bytes)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message) from e

    return {
        "image_url": image_url,
        "content_type": file.content_type,
        "size": len(content),
    }


@app.post(
    "/api/analyze",
    response_model=AnalyzeResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
def analyze(req: AnalyzeRequest) -> AnalyzeResponse:
    """Turn a scene description or photo into an image-editing instruction.

    Args:
        req: Validated :class:`AnalyzeRequest` payload.

    Returns:
        :class:`AnalyzeResponse` with the generated ``prompt``.

    Raises:
        HTTPException: 400 for missing fields, an unknown ``type``, or an
            invalid image; 500 if analysis fails; 429 when rate limited.
    """
    if not req.type or not req.content or not req.content.strip():
        raise HTTPException(status_code=400, detail="type and content are required")
    if req.type not in ("text", "image"):
        raise HTTPException(status_code=400, detail='type must be either "text" or "image"')
    if req.type == "image":
        _require_data_uri(req.content, "image content")

    payload = req.content if req.type == "image" else req.content.strip()

    try:
        instruction = app.state.analyzer.analyze(AnalysisRequest(kind=req.type, payload=payload))
    except InvalidFormatError as e:
        raise HTTPException(status_code=400, detail=f"Invalid image format: {e.message}") from e
    except AnalysisError as e:
        logger.error("Error analyzing input: %s", e.message)
        raise HTTPException(status_code=500, detail=f"Analysis failed: {e.message}") from e

    return AnalyzeResponse(prompt=instruction)


@app.post(
    "/api/generate",
    response_model=GenerateResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
def generate(req: GenerateRequest) -> GenerateResponse:
    """Apply an editing instruction to a base style image.

    Args:
        req: Validated :class:`GenerateRequest` payload.

    Returns:
        :class:`GenerateResponse` with the edited ``image_url``.

    Raises:
        HTTPException: 400 for missing fields or an invalid image; 500 if
            generation fails; 429 when rate limited.
    """
    if not req.base_image_url or req.prompt is None:
        raise HTTPException(status_code=400, detail="base_image_url and prompt are required")
    _require_data_uri(req.base_image_url, "base_image_url")
    if not req.prompt.strip():
        raise HTTPException(status_code=400, detail="prompt cannot be empty")

    try:
        image_url = app.state.editor.edit(req.base_image_url, req.prompt.strip())
    except InvalidFormatError as e:
        raise HTTPException(status_code=400, detail=f"Invalid image format: {e.message}") from e
    except GenerationError as e:
        logger.error("Error generating image: %s", e.message)
        raise HTTPException(
            status_code=500, detail=f"Image generation failed: {e.message}"
        ) from e

    if not image_url:
        raise HTTPException(
            status_code=500, detail="Image generation failed: No image was generated"
        )
    return GenerateResponse(image_url=image_url)


@app.post(
    "/api/batch",
    response_model=BatchResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
def generate_batch(req: BatchRequest) -> BatchResponse:
    """Generate a tile for every month that has content.

    Months are processed one at a time in request order.  A month that
    fails is reported with ``status="error"`` and the batch continues;
    months without an image or description are skipped.

    This endpoint:

    1. Resolves the base image (inline data URI or stored base style).
    2. Builds the month queue, skipping empty months.
    3. Runs the batch coordinator.
    4. Optionally saves the successful months as a calendar.

    Args:
        req: Validated :class:`BatchRequest` payload.

    Returns:
        :class:`BatchResponse` with one result per processed month.

    Raises:
        HTTPException: 400 for an invalid base image source, a month with
            both an image and a description, or no months with content;
            404 for an unknown base style; 429 when rate limited.
    """
    # --- Resolve base image ------------------------------------------------
    if bool(req.base_image_url) == bool(req.base_style_id):
        raise HTTPException(
            status_code=400,
            detail="Provide exactly one of base_image_url or base_style_id",
        )
    if req.save and not req.base_style_id:
        raise HTTPException(
            status_code=400,
            detail="base_style_id is required to save the calendar",
        )

    if req.base_style_id:
        _require_valid_id(req.base_style_id, "base style")
        style = app.state.base_styles.get(req.base_style_id)
        if style is None:
            raise HTTPException(status_code=404, detail="Base style image not found")
        base_image = style["image_url"]
    else:
        base_image = req.base_image_url
    _require_data_uri(base_image, "base_image_url")

    # --- Build the month queue ---------------------------------------------
    items: list[BatchItem] = []
    for month in req.months:
        try:
            month_input = MonthInput(name=month.name, image=month.image_url or None, text=month.text)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.message) from e
        if not month_input.has_content():
            continue
        if month_input.image:
            _require_data_uri(month_input.image, f"{month.name} image_url")
        items.append(BatchItem(month=month_input, index=month.index))

    if not items:
        raise HTTPException(status_code=400, detail="No months with content to generate")

    # --- Run ---------------------------------------------------------------
    try:
        outcome = run_batch(
            items,
            base_image,
            app.state.analyzer,
            app.state.editor,
            on_progress=_log_progress,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message) from e

    results: list[BatchMonthResult] = []
    for item, entry in zip(items, outcome):
        if entry.succeeded:
            results.append(
                BatchMonthResult(
                    index=entry.index,
                    name=item.month.name,
                    status="completed",
                    prompt=entry.result.instruction,
                    image_url=entry.result.image,
                )
            )
        else:
            results.append(
                BatchMonthResult(
                    index=entry.index,
                    name=item.month.name,
                    status="error",
                    error=entry.error.message,
                )
            )

    # --- Persist -----------------------------------------------------------
    calendar_id = None
    if req.save and outcome.successes:
        months = [
            {
                "month": result.name,
                "base_image_url": base_image,
                "edit_prompt": result.prompt,
                "result_image_url": result.image_url,
            }
            for result in results
            if result.status == "completed"
        ]
        calendar = app.state.calendars.create(
            {"months": months, "selected_base_style_id": req.base_style_id}
        )
        calendar_id = calendar["id"]

    return BatchResponse(
        total=len(items),
        completed=len(outcome),
        succeeded=len(outcome.successes),
        failed=len(outcome.failures),
        results=results,
        calendar_id=calendar_id,
    )


# ---------------------------------------------------------------------------
# Base style routes.
# ---------------------------------------------------------------------------


@app.get("/api/base-styles")
def list_base_styles() -> list[dict]:
    """Return every base style image, newest first."""
    return app.state.base_styles.list_documents()


@app.post("/api/base-styles", status_code=201)
def create_base_style(req: BaseStyleCreate) -> dict:
    """Create a base style image.

    A PNG thumbnail is generated from ``image_url`` when none is supplied.

    Raises:
        HTTPException: 400 for a missing name or image, or an image that is
            not a readable data URI.
    """
    if not req.name or not req.name.strip() or not req.image_url:
        raise HTTPException(status_code=400, detail="name and image_url are required")
    _require_data_uri(req.image_url, "image_url")

    thumbnail_url = req.thumbnail_url
    if thumbnail_url:
        _require_data_uri(thumbnail_url, "thumbnail_url")
    else:
        thumbnail_url = _thumbnail_for(req.image_url)

    return app.state.base_styles.create(
        {
            "name": req.name.strip(),
            "image_url": req.image_url,
            "thumbnail_url": thumbnail_url,
        }
    )


@app.get("/api/base-styles/{style_id}")
def get_base_style(style_id: str) -> dict:
    """Return a single base style image.

    Raises:
        HTTPException: 400 for a malformed id, 404 if not found.
    """
    _require_valid_id(style_id, "base style")
    style = app.state.base_styles.get(style_id)
    if style is None:
        raise HTTPException(status_code=404, detail="Base style image not found")
    return style


@app.put("/api/base-styles/{style_id}")
def update_base_style(style_id: str, req: BaseStyleUpdate) -> dict:
    """Partially update a base style image.

    Replacing ``image_url`` without a new ``thumbnail_url`` regenerates
    the thumbnail.
    """
    _require_valid_id(style_id, "base style")
    if req.image_url is not None:
        _require_data_uri(req.image_url, "image_url")
    if req.thumbnail_url is not None:
        _require_data_uri(req.thumbnail_url, "thumbnail_url")

    changes = req.model_dump()
    if req.image_url and not req.thumbnail_url:
        changes["thumbnail_url"] = _thumbnail_for(req.image_url)

    style = app.state.base_styles.update(style_id, changes)
    if style is None:
        raise HTTPException(status_code=404, detail="Base style image not found")
    return style


@app.delete("/api/base-styles/{style_id}")
def delete_base_style(style_id: str) -> dict:
    _require_valid_id(style_id, "base style")
    if not app.state.base_styles.delete(style_id):
        raise HTTPException(status_code=404, detail="Base style image not found")
    return {"success": True, "deleted": style_id}


# ---------------------------------------------------------------------------
# Calendar routes.
# ---------------------------------------------------------------------------


@app.get("/api/calendars")
def list_calendars(limit: int | None = None, offset: int | None = None) -> dict:
    """Return saved calendars, newest first.

    Args:
        limit: Maximum number of calendars to return (at least 1).
        offset: Number of calendars to skip (at least 0).

    Returns:
        Dictionary with ``calendars`` (the requested page) and ``total``
        (the size of the whole collection).

    Raises:
        HTTPException: 400 for a non-positive ``limit`` or a negative
            ``offset``.
    """
    if limit is not None and limit < 1:
        raise HTTPException(status_code=400, detail="limit must be a positive number")
    if offset is not None and offset < 0:
        raise HTTPException(status_code=400, detail="offset must be a non-negative number")

    calendars = app.state.calendars.list_documents()
    return {
        "calendars": paginate(calendars, limit, offset or 0),
        "total": len(calendars),
    }


@app.post("/api/calendars", status_code=201)
def create_calendar(req: CalendarCreate) -> dict:
    """Save a generated calendar.

    Raises:
        HTTPException: 400 for missing or empty months, image fields that
            are not data URIs, or a missing or malformed base style id.
    """
    if req.months is None:
        raise HTTPException(status_code=400, detail="months must be an array")
    if not req.selected_base_style_id:
        raise HTTPException(status_code=400, detail="selected_base_style_id is required")

    months = _validate_calendar_months(req.months)
    if not is_valid_id(req.selected_base_style_id):
        raise HTTPException(
            status_code=400, detail="selected_base_style_id must be a valid ID"
        )

    return app.state.calendars.create(
        {"months": months, "selected_base_style_id": req.selected_base_style_id}
    )


@app.get("/api/calendars/{calendar_id}")
def get_calendar(calendar_id: str) -> dict:
    _require_valid_id(calendar_id, "calendar")
    calendar = app.state.calendars.get(calendar_id)
    if calendar is None:
        raise HTTPException(status_code=404, detail="Calendar not found")
    return calendar


@app.put("/api/calendars/{calendar_id}")
def update_calendar(calendar_id: str, req: CalendarUpdate) -> dict:
    """Partially update a saved calendar.

    Raises:
        HTTPException: 400 for a malformed id, invalid fields, or an empty
            update; 404 if the calendar does not exist.
    """
    _require_valid_id(calendar_id, "calendar")

    changes: dict = {}
    if req.months is not None:
        changes["months"] = _validate_calendar_months(req.months)
    if req.selected_base_style_id is not None:
        if not is_valid_id(req.selected_base_style_id):
            raise HTTPException(
                status_code=400, detail="selected_base_style_id must be a valid ID"
            )
        changes["selected_base_style_id"] = req.selected_base_style_id

    if not changes:
        raise HTTPException(status_code=400, detail="No valid fields provided for update")

    calendar = app.state.calendars.update(calendar_id, changes)
    if calendar is None:
        raise HTTPException(status_code=404, detail="Calendar not found")
    return calendar


@app.delete("/api/calendars/{calendar_id}")
def delete_calendar(calendar_id: str) -> dict:
    _require_valid_id(calendar_id, "calendar")
    if not app.state.calendars.delete(calendar_id):
        raise HTTPException(status_code=404, detail="Calendar not found")
    return {"success": True, "deleted": calendar_id}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~wrapcal.core.config.config` (which
    loads from ``WRAPCAL_SERVER_HOST`` and ``WRAPCAL_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:8000``.

    This function is registered as the ``wrapcal`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "wrapcal.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
