"""Tests for wrapcal.core.generation - image editing capabilities.

Tests cover:
- Edit prompt wording.
- GeminiImageEditor: request shape, image extraction, missing-image errors
  and SDK error wrapping (mocked client).
- LocalImageEditor: lazy model load, configured edit parameters and error
  wrapping (mocked ModelManager).
- Backend selection.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from PIL import Image

from wrapcal.core import data_uri
from wrapcal.core.config import WrapcalConfig
from wrapcal.core.errors import GenerationError, InvalidFormatError
from wrapcal.core.generation import (
    GeminiImageEditor,
    LocalImageEditor,
    build_edit_prompt,
    build_editor,
)


def _part(data: bytes | None = None, mime_type: str | None = None, text: str | None = None):
    inline = SimpleNamespace(data=data, mime_type=mime_type) if data is not None else None
    return SimpleNamespace(inline_data=inline, text=text)


def _response(*parts) -> SimpleNamespace:
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


def _mock_client(response=None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.models.generate_content.side_effect = error
    else:
        client.models.generate_content.return_value = response
    return client


class TestBuildEditPrompt:
    def test_includes_instruction_and_size(self):
        prompt = build_edit_prompt("add a red scarf", 120)
        assert "add a red scarf" in prompt
        assert "120px by 120px" in prompt


# ---------------------------------------------------------------------------
# Gemini editor.
# ---------------------------------------------------------------------------


class TestGeminiImageEditor:
    """Test GeminiImageEditor with a mocked google-genai client."""

    def test_returns_first_image_part(self, test_config: WrapcalConfig, png_data_uri: str):
        response = _response(_part(text="Here you go"), _part(b"tile-bytes", "image/png"))
        client = _mock_client(response)
        editor = GeminiImageEditor(test_config, client=client)

        result = editor.edit(png_data_uri, "add a red scarf")

        assert result == data_uri.encode(b"tile-bytes", "image/png")

    def test_request_shape(self, test_config: WrapcalConfig, png_data_uri: str):
        client = _mock_client(_response(_part(b"x", "image/png")))
        editor = GeminiImageEditor(test_config, client=client)

        editor.edit(png_data_uri, "add a red scarf")

        kwargs = client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == test_config.generation_model
        assert "add a red scarf" in kwargs["contents"][0]
        assert kwargs["contents"][1].inline_data.mime_type == "image/png"
        assert kwargs["config"].response_modalities == ["TEXT", "IMAGE"]

    def test_no_parts(self, test_config: WrapcalConfig, png_data_uri: str):
        editor = GeminiImageEditor(test_config, client=_mock_client(SimpleNamespace(candidates=[])))
        with pytest.raises(GenerationError, match="No image was generated"):
            editor.edit(png_data_uri, "add a hat")

    def test_parts_without_image(self, test_config: WrapcalConfig, png_data_uri: str):
        response = _response(_part(text="I cannot do that"), _part(b"{}", "application/json"))
        editor = GeminiImageEditor(test_config, client=_mock_client(response))
        with pytest.raises(GenerationError, match="does not contain an image"):
            editor.edit(png_data_uri, "add a hat")

    def test_sdk_error_is_wrapped(self, test_config: WrapcalConfig, png_data_uri: str):
        editor = GeminiImageEditor(test_config, client=_mock_client(error=TimeoutError("timed out")))
        with pytest.raises(GenerationError, match="timed out"):
            editor.edit(png_data_uri, "add a hat")

    def test_invalid_base_image(self, test_config: WrapcalConfig):
        client = _mock_client(_response(_part(b"x", "image/png")))
        editor = GeminiImageEditor(test_config, client=client)
        with pytest.raises(InvalidFormatError):
            editor.edit("not-a-data-uri", "add a hat")
        client.models.generate_content.assert_not_called()


# ---------------------------------------------------------------------------
# Local editor.
# ---------------------------------------------------------------------------


class TestLocalImageEditor:
    """Test LocalImageEditor with a mocked ModelManager."""

    def _manager(self, current_model_id: str | None = None) -> MagicMock:
        manager = MagicMock()
        manager.current_model_id = current_model_id
        manager.edit.return_value = Image.new("RGB", (16, 16), color=(0, 255, 0))
        return manager

    def test_loads_model_on_first_use(self, test_config: WrapcalConfig, png_data_uri: str):
        manager = self._manager()
        editor = LocalImageEditor(test_config, manager)

        result = editor.edit(png_data_uri, "add a hat")

        manager.load_model.assert_called_once_with(test_config.edit_model_id)
        assert result.startswith("data:image/png;base64,")

    def test_skips_load_when_model_current(self, test_config: WrapcalConfig, png_data_uri: str):
        manager = self._manager(current_model_id=test_config.edit_model_id)
        LocalImageEditor(test_config, manager).edit(png_data_uri, "add a hat")
        manager.load_model.assert_not_called()

    def test_passes_configured_parameters(self, test_config: WrapcalConfig, png_data_uri: str):
        manager = self._manager(current_model_id=test_config.edit_model_id)
        LocalImageEditor(test_config, manager).edit(png_data_uri, "add a hat")

        args, kwargs = manager.edit.call_args
        assert isinstance(args[0], Image.Image)
        assert "add a hat" in args[1]
        assert kwargs == {
            "steps": test_config.edit_steps,
            "guidance_scale": test_config.edit_guidance_scale,
            "seed": test_config.edit_seed,
        }

    def test_model_failure_is_wrapped(self, test_config: WrapcalConfig, png_data_uri: str):
        manager = self._manager()
        manager.load_model.side_effect = OSError("model not found")
        with pytest.raises(GenerationError, match="model not found"):
            LocalImageEditor(test_config, manager).edit(png_data_uri, "add a hat")

    def test_invalid_base_image(self, test_config: WrapcalConfig):
        manager = self._manager()
        with pytest.raises(InvalidFormatError):
            LocalImageEditor(test_config, manager).edit("garbage", "add a hat")
        manager.edit.assert_not_called()


class TestBuildEditor:
    def test_gemini_backend(self, test_config: WrapcalConfig):
        assert isinstance(build_editor(test_config, MagicMock()), GeminiImageEditor)

    def test_local_backend(self, test_config: WrapcalConfig):
        local_config = test_config.model_copy(update={"generation_backend": "local"})
        assert isinstance(build_editor(local_config, MagicMock()), LocalImageEditor)
