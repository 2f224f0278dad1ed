"""Batch coordinator for calendar generation.

Drives every queued month through the single-month pipeline, one at a time,
in input order.  A month that fails is recorded as a failed entry and the
batch moves on; the returned :class:`BatchOutcome` always has exactly one
entry per queued month, in the order the months were given.

Progress
--------
An optional ``on_progress`` callback receives a :class:`ProgressSnapshot`
twice per month::

    before month i:  ProgressSnapshot(completed=i,     total=N, current=index_i)
    after month i:   ProgressSnapshot(completed=i + 1, total=N, current=None)

so a batch of N months produces 2N calls and the last one reports
``completed == N``.

Usage
-----
::

    outcome = run_batch(items, base_image, analyzer, editor, on_progress=print)
    for entry in outcome:
        print(entry.index, entry.succeeded)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass

from wrapcal.core.analysis import Analyzer
from wrapcal.core.errors import AnalysisError, GenerationError, ValidationError
from wrapcal.core.generation import ImageEditor
from wrapcal.core.months import BatchItem
from wrapcal.core.pipeline import PipelineFailure, PipelineResult, try_pipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Coordinator state at one point in time.

    Attributes:
        completed: Number of months already attempted.
        total: Number of months in the batch.
        current: Calendar index of the month being processed, or ``None``
            between months.
    """

    completed: int
    total: int
    current: int | None


ProgressCallback = Callable[[ProgressSnapshot], None]


@dataclass(frozen=True)
class BatchEntry:
    """Outcome of one month: exactly one of ``result`` / ``error`` is set."""

    index: int
    result: PipelineResult | None = None
    error: AnalysisError | GenerationError | None = None

    def __post_init__(self) -> None:
        if (self.result is None) == (self.error is None):
            raise ValueError("BatchEntry needs exactly one of result or error")

    @property
    def succeeded(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class BatchOutcome:
    """Ordered, immutable per-month results of one batch."""

    entries: tuple[BatchEntry, ...]

    def __iter__(self) -> Iterator[BatchEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, position: int) -> BatchEntry:
        return self.entries[position]

    @property
    def successes(self) -> list[BatchEntry]:
        return [entry for entry in self.entries if entry.succeeded]

    @property
    def failures(self) -> list[BatchEntry]:
        return [entry for entry in self.entries if not entry.succeeded]


def run_batch(
    items: Sequence[BatchItem],
    base_image: str,
    analyzer: Analyzer,
    editor: ImageEditor,
    on_progress: ProgressCallback | None = None,
) -> BatchOutcome:
    """Generate a tile for every queued month, sequentially.

    Args:
        items: Months to process with their calendar index, in order.
        base_image: Style reference image (data URI) shared by every month.
            It is not decoded here; an invalid image shows up as a
            ``GenerationError`` on each entry.
        analyzer: Analysis capability.
        editor: Generation capability.
        on_progress: Optional observer called before and after each month.

    Returns:
        One :class:`BatchEntry` per item, in input order.

    Raises:
        ValidationError: If *items* is empty or *base_image* is missing.
            Raised before any month is processed or any callback is made.
    """
    if not items:
        raise ValidationError("No months to generate")
    if not base_image or not base_image.strip():
        raise ValidationError("A base style image is required")

    total = len(items)
    entries: list[BatchEntry] = []

    logger.info("Starting batch of %d month(s).", total)

    for i, item in enumerate(items):
        if on_progress is not None:
            on_progress(ProgressSnapshot(completed=i, total=total, current=item.index))

        outcome = try_pipeline(item.month, base_image, analyzer, editor)

        if isinstance(outcome, PipelineFailure):
            logger.warning("Error processing %s: %s", item.month.name, outcome.error.message)
            entries.append(BatchEntry(index=item.index, error=outcome.error))
        else:
            entries.append(BatchEntry(index=item.index, result=outcome.result))

        if on_progress is not None:
            on_progress(ProgressSnapshot(completed=i + 1, total=total, current=None))

    result = BatchOutcome(entries=tuple(entries))
    logger.info(
        "Batch finished: %d succeeded, %d failed.",
        len(result.successes),
        len(result.failures),
    )
    return result
