"""Single-month pipeline: analyze the scene, then edit the base style image.

A month's input (photo or description) is first turned into a short editing
instruction by the analysis capability; that instruction is then applied to
the shared base style image by the generation capability.  Each invocation
makes exactly one analyze call and one generate call, with no retries and no
state carried between invocations.

Two entry points are provided:

- :func:`run_pipeline` returns a :class:`PipelineResult` or raises
  :class:`~wrapcal.core.errors.AnalysisError` /
  :class:`~wrapcal.core.errors.GenerationError`.
- :func:`try_pipeline` returns :class:`PipelineSuccess` or
  :class:`PipelineFailure` instead of raising, which is what the batch
  coordinator consumes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from wrapcal.core import data_uri
from wrapcal.core.analysis import Analyzer
from wrapcal.core.errors import (
    AnalysisError,
    GenerationError,
    InvalidFormatError,
    ValidationError,
)
from wrapcal.core.generation import ImageEditor
from wrapcal.core.months import MonthInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Output of one successful pipeline run.

    Attributes:
        instruction: Editing instruction produced by the analysis step.
        image: Edited tile as a data URI.
    """

    instruction: str
    image: str


@dataclass(frozen=True)
class PipelineSuccess:
    result: PipelineResult


@dataclass(frozen=True)
class PipelineFailure:
    error: AnalysisError | GenerationError


PipelineOutcome = Union[PipelineSuccess, PipelineFailure]


def _analyze(month: MonthInput, analyzer: Analyzer) -> str:
    try:
        request = month.to_analysis_request()
    except ValidationError as e:
        raise AnalysisError(e.message, code=e.code or "MISSING_CONTENT") from e

    if request.kind == "image":
        try:
            data_uri.decode(request.payload)
        except InvalidFormatError as e:
            raise AnalysisError(f"Invalid image format: {e.message}", code="INVALID_FORMAT") from e

    try:
        instruction = analyzer.analyze(request)
    except AnalysisError:
        raise
    except InvalidFormatError as e:
        raise AnalysisError(f"Invalid image format: {e.message}", code="INVALID_FORMAT") from e
    except Exception as e:
        raise AnalysisError(f"Analysis failed: {e}") from e

    if not instruction or not instruction.strip():
        raise AnalysisError("No prompt generated from analysis")

    return instruction.strip()


def _generate(base_image: str, instruction: str, editor: ImageEditor) -> str:
    try:
        image = editor.edit(base_image, instruction)
    except GenerationError:
        raise
    except InvalidFormatError as e:
        raise GenerationError(f"Invalid image format: {e.message}", code="INVALID_FORMAT") from e
    except Exception as e:
        raise GenerationError(f"Image generation failed: {e}") from e

    if not image:
        raise GenerationError("No image was generated")

    return image


def run_pipeline(
    month: MonthInput,
    base_image: str,
    analyzer: Analyzer,
    editor: ImageEditor,
) -> PipelineResult:
    """Run analyze then generate for a single month.

    Args:
        month: The month's scene (image or description).
        base_image: Style reference image as a data URI, shared by the batch.
        analyzer: Analysis capability.
        editor: Generation capability.

    Returns:
        The instruction and the edited tile.

    Raises:
        AnalysisError: If the month has no content, its image is not a valid
            data URI, or the analysis capability fails or returns nothing.
        GenerationError: If the generation capability fails or returns no
            image.
    """
    instruction = _analyze(month, analyzer)
    logger.debug("%s: instruction '%s'.", month.name, instruction)

    image = _generate(base_image, instruction, editor)
    return PipelineResult(instruction=instruction, image=image)


def try_pipeline(
    month: MonthInput,
    base_image: str,
    analyzer: Analyzer,
    editor: ImageEditor,
) -> PipelineOutcome:
    """Run :func:`run_pipeline`, returning the failure instead of raising it."""
    try:
        return PipelineSuccess(run_pipeline(month, base_image, analyzer, editor))
    except (AnalysisError, GenerationError) as e:
        return PipelineFailure(e)
