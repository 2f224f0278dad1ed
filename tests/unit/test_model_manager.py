"""Tests for wrapcal.core.model_manager - local image-edit pipeline lifecycle.

All tests use mocked torch and diffusers imports so that no real model
loading or GPU access occurs.  Tests cover:

- Initial state (no model loaded).
- Model loading and pipeline configuration (offload, attention slicing).
- Model switching.
- Qwen ``true_cfg_scale`` handling vs. plain ``guidance_scale``.
- Deterministic seed generation.
- Error handling during model loading and empty pipeline output.
- Unload safety (no-op when nothing loaded).

Implementation Note
-------------------
``ModelManager.load_model()`` and ``edit()`` import ``torch`` and
``diffusers`` lazily inside the method body.  To mock these we use
``sys.modules`` injection rather than ``@patch`` decorators, since the
module-level names don't exist until the import statement executes.
"""

from __future__ import annotations

import sys
from unittest.mock import MagicMock

import pytest
from PIL import Image

from wrapcal.core.config import WrapcalConfig
from wrapcal.core.model_manager import ModelManager

QWEN_ID = "Qwen/Qwen-Image-Edit-2509"

# ---------------------------------------------------------------------------
# Shared helpers for mocking torch and diffusers.
# ---------------------------------------------------------------------------


def _create_mock_torch() -> MagicMock:
    """Create a mock ``torch`` module with the attributes ModelManager uses."""
    mock_torch = MagicMock()
    mock_torch.bfloat16 = "mock_bfloat16"
    mock_torch.float16 = "mock_float16"
    mock_torch.float32 = "mock_float32"

    mock_generator = MagicMock()
    mock_generator.manual_seed.return_value = mock_generator
    mock_torch.Generator.return_value = mock_generator

    mock_torch.cuda.is_available.return_value = False
    return mock_torch


class _MockContext:
    """Context manager that injects mock torch and diffusers into sys.modules.

    The mock pipeline returns a 32x32 green image from every call.
    """

    def __init__(self):
        self.mock_torch = _create_mock_torch()

        self.mock_pipeline = MagicMock()
        self.mock_pipeline.return_value = MagicMock(
            images=[Image.new("RGB", (32, 32), color=(0, 255, 0))]
        )
        self.mock_pipeline.to.return_value = self.mock_pipeline

        self.mock_pipeline_class = MagicMock()
        self.mock_pipeline_class.from_pretrained.return_value = self.mock_pipeline

        self.mock_diffusers = MagicMock()
        self.mock_diffusers.DiffusionPipeline = self.mock_pipeline_class

        self._saved_torch = None
        self._saved_diffusers = None

    def __enter__(self):
        import wrapcal.core.model_manager as mm

        mm._DTYPE_MAP = None

        self._saved_torch = sys.modules.get("torch")
        self._saved_diffusers = sys.modules.get("diffusers")
        sys.modules["torch"] = self.mock_torch
        sys.modules["diffusers"] = self.mock_diffusers
        return self

    def __exit__(self, *args):
        if self._saved_torch is not None:
            sys.modules["torch"] = self._saved_torch
        else:
            sys.modules.pop("torch", None)

        if self._saved_diffusers is not None:
            sys.modules["diffusers"] = self._saved_diffusers
        else:
            sys.modules.pop("diffusers", None)

        import wrapcal.core.model_manager as mm

        mm._DTYPE_MAP = None


@pytest.fixture
def base_image() -> Image.Image:
    return Image.new("RGB", (32, 32), color=(255, 0, 0))


# ---------------------------------------------------------------------------
# Tests.
# ---------------------------------------------------------------------------


class TestModelManagerInit:
    """Test ModelManager initial state."""

    def test_no_model_loaded_initially(self, test_config: WrapcalConfig):
        mgr = ModelManager(test_config)
        assert mgr.is_loaded is False
        assert mgr.current_model_id is None


class TestModelLoading:
    """Test model loading behaviour."""

    def test_load_model_sets_state(self, test_config: WrapcalConfig):
        with _MockContext():
            mgr = ModelManager(test_config)
            mgr.load_model(QWEN_ID)

            assert mgr.is_loaded is True
            assert mgr.current_model_id == QWEN_ID

    def test_load_uses_dtype_and_cache_dir(self, test_config: WrapcalConfig):
        """from_pretrained should receive the configured dtype and models_dir."""
        with _MockContext() as ctx:
            ModelManager(test_config).load_model(QWEN_ID)

            kwargs = ctx.mock_pipeline_class.from_pretrained.call_args.kwargs
            assert kwargs["torch_dtype"] == "mock_float32"
            assert kwargs["cache_dir"] == str(test_config.models_dir)
            ctx.mock_pipeline.to.assert_called_once_with("cpu")

    def test_cpu_offload_replaces_device_move(self, test_config: WrapcalConfig):
        cfg = test_config.model_copy(update={"enable_model_cpu_offload": True})
        with _MockContext() as ctx:
            ModelManager(cfg).load_model(QWEN_ID)

            ctx.mock_pipeline.enable_model_cpu_offload.assert_called_once()
            ctx.mock_pipeline.to.assert_not_called()

    def test_attention_slicing(self, test_config: WrapcalConfig):
        cfg = test_config.model_copy(update={"enable_attention_slicing": True})
        with _MockContext() as ctx:
            ModelManager(cfg).load_model(QWEN_ID)
            ctx.mock_pipeline.enable_attention_slicing.assert_called_once()

    def test_load_same_model_is_noop(self, test_config: WrapcalConfig):
        """Loading the same model twice should not call from_pretrained again."""
        with _MockContext() as ctx:
            mgr = ModelManager(test_config)
            mgr.load_model(QWEN_ID)
            mgr.load_model(QWEN_ID)

            assert ctx.mock_pipeline_class.from_pretrained.call_count == 1

    def test_load_failure_clears_state(self, test_config: WrapcalConfig):
        """If loading fails, state should be cleaned up (no partial pipeline)."""
        with _MockContext() as ctx:
            ctx.mock_pipeline_class.from_pretrained.side_effect = RuntimeError("Out of memory")

            mgr = ModelManager(test_config)

            with pytest.raises(RuntimeError, match="Out of memory"):
                mgr.load_model("some/model")

            assert mgr.is_loaded is False
            assert mgr.current_model_id is None


class TestModelSwitching:
    def test_switching_unloads_previous(self, test_config: WrapcalConfig):
        """Switching models should unload the previous one and load the new."""
        with _MockContext() as ctx:
            mgr = ModelManager(test_config)
            mgr.load_model("model-a")
            mgr.load_model("model-b")

            assert mgr.current_model_id == "model-b"
            assert ctx.mock_pipeline_class.from_pretrained.call_count == 2


class TestEdit:
    """Test image editing."""

    def test_edit_without_model_raises(self, test_config: WrapcalConfig, base_image):
        mgr = ModelManager(test_config)
        with pytest.raises(RuntimeError, match="No model is loaded"):
            mgr.edit(base_image, "add a hat", steps=4, guidance_scale=4.0, seed=0)

    def test_edit_returns_pil_image(self, test_config: WrapcalConfig, base_image):
        with _MockContext():
            mgr = ModelManager(test_config)
            mgr.load_model(QWEN_ID)

            result = mgr.edit(base_image, "add a hat", steps=4, guidance_scale=4.0, seed=0)

            assert isinstance(result, Image.Image)
            assert result.size == (32, 32)

    def test_qwen_uses_true_cfg_scale(self, test_config: WrapcalConfig, base_image):
        with _MockContext() as ctx:
            mgr = ModelManager(test_config)
            mgr.load_model(QWEN_ID)
            mgr.edit(base_image, "add a hat", steps=4, guidance_scale=4.0, seed=0)

            call_kwargs = ctx.mock_pipeline.call_args.kwargs
            assert call_kwargs["true_cfg_scale"] == 4.0
            assert "guidance_scale" not in call_kwargs
            assert call_kwargs["image"] is base_image
            assert call_kwargs["prompt"] == "add a hat"
            assert call_kwargs["num_inference_steps"] == 4

    def test_other_models_use_guidance_scale(self, test_config: WrapcalConfig, base_image):
        with _MockContext() as ctx:
            mgr = ModelManager(test_config)
            mgr.load_model("timbrooks/instruct-pix2pix")
            mgr.edit(base_image, "add a hat", steps=10, guidance_scale=7.5, seed=0)

            call_kwargs = ctx.mock_pipeline.call_args.kwargs
            assert call_kwargs["guidance_scale"] == 7.5
            assert "true_cfg_scale" not in call_kwargs

    def test_seed_is_applied(self, test_config: WrapcalConfig, base_image):
        with _MockContext() as ctx:
            mgr = ModelManager(test_config)
            mgr.load_model(QWEN_ID)
            mgr.edit(base_image, "add a hat", steps=4, guidance_scale=4.0, seed=1234)

            ctx.mock_torch.Generator.assert_called_once_with(device="cpu")
            ctx.mock_torch.Generator.return_value.manual_seed.assert_called_once_with(1234)

    def test_empty_output_raises(self, test_config: WrapcalConfig, base_image):
        with _MockContext() as ctx:
            ctx.mock_pipeline.return_value = MagicMock(images=[])
            mgr = ModelManager(test_config)
            mgr.load_model(QWEN_ID)

            with pytest.raises(RuntimeError, match="no images"):
                mgr.edit(base_image, "add a hat", steps=4, guidance_scale=4.0, seed=0)


class TestUnload:
    """Test model unloading and cleanup."""

    def test_unload_noop_when_empty(self, test_config: WrapcalConfig):
        mgr = ModelManager(test_config)
        mgr.unload()  # Should not raise.
        assert mgr.is_loaded is False

    def test_unload_clears_state(self, test_config: WrapcalConfig):
        with _MockContext():
            mgr = ModelManager(test_config)
            mgr.load_model(QWEN_ID)
            assert mgr.is_loaded is True

            mgr.unload()
            assert mgr.is_loaded is False
            assert mgr.current_model_id is None
