"""Local image-edit pipeline lifecycle management for Wrapcal.

This module provides :class:`ModelManager`, the single point of control for
loading, switching, and invoking a HuggingFace diffusers image-edit pipeline
when ``generation_backend`` is ``"local"``.  One pipeline is held in memory
at a time.

Key Responsibilities
--------------------
- **Lazy model loading**: nothing is loaded until :meth:`load_model` is
  called (the local editor does so on its first tile).
- **Model switching**: when a different model is requested the current
  pipeline is unloaded and CUDA memory is freed before loading the new one.
- **Deterministic edits**: a seeded ``torch.Generator`` is created for every
  call to :meth:`edit`, so the same seed and instruction give the same tile.
- **Qwen guidance**: Qwen-Image-Edit pipelines take their guidance as
  ``true_cfg_scale``; other pipelines receive ``guidance_scale``.
- **CUDA memory management**: on switch or unload, the pipeline reference
  is deleted, garbage-collected, and ``torch.cuda.empty_cache()`` is called.

``torch`` and ``diffusers`` are imported inside the methods so the API can
run on the hosted backend without the ``local`` extra installed.

Usage
-----
::

    from wrapcal.core.config import config
    from wrapcal.core.model_manager import ModelManager

    mgr = ModelManager(config)
    mgr.load_model("Qwen/Qwen-Image-Edit-2509")
    tile = mgr.edit(base_image, "wearing a red knitted scarf", steps=30,
                    guidance_scale=4.0, seed=0)
    mgr.unload()
"""

from __future__ import annotations

import gc
import logging

from PIL import Image

from wrapcal.core.config import WrapcalConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dtype string -> torch dtype mapping, built lazily so that importing this
# module does not import torch.
# ---------------------------------------------------------------------------
_DTYPE_MAP: dict | None = None


def _get_dtype_map() -> dict:
    """Return the dtype string -> ``torch.dtype`` mapping.

    Returns:
        Dictionary mapping ``"bfloat16"``, ``"float16"``, and ``"float32"``
        to their corresponding ``torch.dtype`` values.
    """
    global _DTYPE_MAP
    if _DTYPE_MAP is None:
        import torch

        _DTYPE_MAP = {
            "bfloat16": torch.bfloat16,
            "float16": torch.float16,
            "float32": torch.float32,
        }
    return _DTYPE_MAP


class ModelManager:
    """Manages the lifecycle of a single diffusers image-edit pipeline.

    Attributes:
        _config (WrapcalConfig):
            Application configuration: device, dtype, cache path, and
            performance flags.
        _pipeline:
            The currently loaded diffusers pipeline, or ``None``.
        _current_model_id (str | None):
            HuggingFace identifier of the loaded model, or ``None``.
    """

    def __init__(self, config: WrapcalConfig) -> None:
        self._config = config
        self._pipeline = None
        self._current_model_id: str | None = None

    # -- Public interface ---------------------------------------------------

    def load_model(self, hf_id: str) -> None:
        """Load a diffusers image-edit pipeline by HuggingFace identifier.

        If the requested model is already loaded this method is a no-op.
        If a *different* model is loaded it is unloaded first.

        ``DiffusionPipeline.from_pretrained`` resolves the concrete pipeline
        class (e.g. ``QwenImageEditPlusPipeline``) from the model's
        ``model_index.json``.

        Args:
            hf_id: HuggingFace model identifier, e.g.
                ``"Qwen/Qwen-Image-Edit-2509"``.

        Raises:
            Exception: Whatever diffusers raises when the model cannot be
                loaded; the manager is left with nothing loaded.
        """
        if self._current_model_id == hf_id and self._pipeline is not None:
            logger.info("Model '%s' is already loaded, skipping.", hf_id)
            return

        if self._pipeline is not None:
            logger.info(
                "Switching from '%s' to '%s', unloading current model.",
                self._current_model_id,
                hf_id,
            )
            self.unload()

        import torch
        from diffusers import DiffusionPipeline

        dtype_map = _get_dtype_map()
        torch_dtype = dtype_map.get(self._config.torch_dtype, torch.bfloat16)

        logger.info(
            "Loading model '%s' (dtype=%s, device=%s, cache=%s).",
            hf_id,
            self._config.torch_dtype,
            self._config.device,
            self._config.models_dir,
        )

        try:
            pipeline = DiffusionPipeline.from_pretrained(
                hf_id,
                torch_dtype=torch_dtype,
                cache_dir=str(self._config.models_dir),
            )

            if self._config.enable_model_cpu_offload:
                pipeline.enable_model_cpu_offload()
                logger.info("Model CPU offloading enabled.")
            else:
                pipeline = pipeline.to(self._config.device)

            if self._config.enable_attention_slicing:
                pipeline.enable_attention_slicing()
                logger.info("Attention slicing enabled.")

            self._pipeline = pipeline
            self._current_model_id = hf_id
            logger.info("Model '%s' loaded successfully.", hf_id)

        except Exception:
            # Leave a clean state so edit() does not use a half-loaded pipeline.
            self._pipeline = None
            self._current_model_id = None
            logger.exception("Failed to load model '%s'.", hf_id)
            raise

    def edit(
        self,
        image: Image.Image,
        instruction: str,
        *,
        steps: int,
        guidance_scale: float,
        seed: int,
    ) -> Image.Image:
        """Apply a natural-language edit to *image*.

        Args:
            image: Base style image (RGB).
            instruction: Editing instruction from the analysis step.
            steps: Number of denoising steps.
            guidance_scale: Guidance strength; passed as ``true_cfg_scale``
                to Qwen pipelines.
            seed: Random seed for reproducible output.

        Returns:
            The edited image.

        Raises:
            RuntimeError: If no model is loaded or the pipeline returned no
                image.
        """
        if self._pipeline is None:
            raise RuntimeError("No model is loaded.  Call load_model(hf_id) before edit().")

        import torch

        generator = torch.Generator(device=self._config.device).manual_seed(seed)

        pipeline_kwargs: dict = {
            "image": image,
            "prompt": instruction,
            "num_inference_steps": steps,
            "generator": generator,
        }
        if self._current_model_id and "qwen" in self._current_model_id.lower():
            pipeline_kwargs["true_cfg_scale"] = guidance_scale
            pipeline_kwargs["negative_prompt"] = " "
        else:
            pipeline_kwargs["guidance_scale"] = guidance_scale

        logger.info(
            "Editing image: %d steps, guidance=%.1f, seed=%d.", steps, guidance_scale, seed
        )

        with torch.inference_mode():
            output = self._pipeline(**pipeline_kwargs)

        images = getattr(output, "images", None)
        if not images:
            raise RuntimeError("Pipeline returned no images")

        return images[0]

    def unload(self) -> None:
        """Unload the current model and free GPU memory.

        Safe to call when no model is loaded (no-op).
        """
        if self._pipeline is None:
            return

        model_id = self._current_model_id
        logger.info("Unloading model '%s'.", model_id)

        del self._pipeline
        self._pipeline = None
        self._current_model_id = None

        gc.collect()

        try:
            import torch

            if torch.cuda.is_available():
                torch.cuda.empty_cache()
                torch.cuda.synchronize()
                logger.info("CUDA cache cleared after unloading '%s'.", model_id)
        except ImportError:
            pass

    # -- Properties ---------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        """Whether a pipeline is currently loaded in memory."""
        return self._pipeline is not None

    @property
    def current_model_id(self) -> str | None:
        """HuggingFace ID of the currently loaded model, or ``None``."""
        return self._current_model_id
