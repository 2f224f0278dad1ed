"""Core functionality for calendar generation.

Architecture Overview
---------------------
1. **Configuration** (config.py): environment-based settings (WRAPCAL_ prefix).
2. **Codec and images** (data_uri.py, image_utils.py): data-URI encoding,
   upload validation, thumbnails.
3. **Capabilities** (analysis.py, generation.py, model_manager.py): the
   analyze and generate steps, hosted (Gemini) or local (diffusers).
4. **Pipeline** (pipeline.py, batch.py): the per-month analyze -> generate
   sequence and the sequential batch coordinator with per-month failure
   isolation.

Usage Example
-------------
    from wrapcal.core import config, run_batch, BatchItem, MonthInput
    from wrapcal.core.analysis import GeminiAnalyzer
    from wrapcal.core.generation import GeminiImageEditor

    items = [BatchItem(MonthInput.from_text("Jan", "skiing trip"), 0)]
    outcome = run_batch(items, base_image, GeminiAnalyzer(config),
                        GeminiImageEditor(config))
"""

from wrapcal.core.batch import BatchEntry, BatchOutcome, ProgressSnapshot, run_batch
from wrapcal.core.config import WrapcalConfig, config
from wrapcal.core.months import MONTHS, BatchItem, MonthInput
from wrapcal.core.pipeline import PipelineResult, run_pipeline, try_pipeline

__all__ = [
    "BatchEntry",
    "BatchItem",
    "BatchOutcome",
    "MONTHS",
    "MonthInput",
    "PipelineResult",
    "ProgressSnapshot",
    "WrapcalConfig",
    "config",
    "run_batch",
    "run_pipeline",
    "try_pipeline",
]
