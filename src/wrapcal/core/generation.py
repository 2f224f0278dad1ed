"""Generation capability: apply an editing instruction to the base style image.

Components
----------
ImageEditor
    Abstract interface consumed by :mod:`wrapcal.core.pipeline`.
GeminiImageEditor
    Hosted editing through a Gemini image model via ``google-genai``.
LocalImageEditor
    Editing with a local diffusers pipeline managed by
    :class:`~wrapcal.core.model_manager.ModelManager`.
build_editor
    Picks the implementation named by ``config.generation_backend``.

Both implementations take and return images as data URIs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from wrapcal.core import data_uri
from wrapcal.core.config import WrapcalConfig
from wrapcal.core.errors import GenerationError
from wrapcal.core.image_utils import image_to_data_uri, load_image
from wrapcal.core.model_manager import ModelManager

logger = logging.getLogger(__name__)

EDIT_PROMPT_TEMPLATE = """Given the following base style image and its character, keep the original character but edit the character with the following: {instruction}

Render a square {size}px by {size}px image with the same character and art style, with the edits."""


def build_edit_prompt(instruction: str, size: int) -> str:
    """Wrap an analysis instruction in the editing prompt."""
    return EDIT_PROMPT_TEMPLATE.format(instruction=instruction, size=size)


class ImageEditor(ABC):
    """Interface of the generation capability."""

    @abstractmethod
    def edit(self, base_image: str, instruction: str) -> str:
        """Return *base_image* edited according to *instruction*.

        Args:
            base_image: Style reference image as a data URI.
            instruction: Editing instruction from the analysis step.

        Returns:
            The edited image as a data URI.

        Raises:
            GenerationError: If no image is produced.
            InvalidFormatError: If *base_image* is not a valid data URI.
        """
        raise NotImplementedError


def _extract_image_part(response: Any) -> tuple[bytes, str]:
    """Find the first inline image in a ``generate_content`` response.

    Raises:
        GenerationError: If the response has no parts, or none is an image.
    """
    parts: list[Any] = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        parts.extend(getattr(content, "parts", None) or [])

    if not parts:
        raise GenerationError("No image was generated")

    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is None or not inline.data:
            continue
        mime_type = inline.mime_type or ""
        if mime_type.startswith("image/"):
            return inline.data, mime_type

    raise GenerationError("Generated result does not contain an image")


class GeminiImageEditor(ImageEditor):
    """Generation capability backed by a Gemini image model."""

    def __init__(self, config: WrapcalConfig, client: Any = None) -> None:
        self._config = config
        self._client = client
        self.model = config.generation_model

    def _get_client(self) -> Any:
        if self._client is None:
            from google import genai
            from google.genai import types

            self._client = genai.Client(
                api_key=self._config.gemini_api_key,
                http_options=types.HttpOptions(timeout=self._config.api_timeout_ms),
            )
        return self._client

    def edit(self, base_image: str, instruction: str) -> str:
        from google.genai import types

        decoded = data_uri.decode(base_image)
        contents = [
            build_edit_prompt(instruction, self._config.tile_size),
            types.Part.from_bytes(data=decoded.data, mime_type=decoded.media_type),
        ]

        logger.info("Generating tile with '%s'.", self.model)
        try:
            response = self._get_client().models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
            )
        except Exception as e:
            raise GenerationError(f"Image generation request failed: {e}") from e

        data, mime_type = _extract_image_part(response)
        logger.info("Received %d-byte %s tile.", len(data), mime_type)
        return data_uri.encode(data, mime_type)


class LocalImageEditor(ImageEditor):
    """Generation capability backed by a local diffusers image-edit pipeline."""

    def __init__(self, config: WrapcalConfig, model_manager: ModelManager) -> None:
        self._config = config
        self._model_manager = model_manager

    def edit(self, base_image: str, instruction: str) -> str:
        image = load_image(base_image)

        try:
            if self._model_manager.current_model_id != self._config.edit_model_id:
                self._model_manager.load_model(self._config.edit_model_id)

            result = self._model_manager.edit(
                image,
                build_edit_prompt(instruction, self._config.tile_size),
                steps=self._config.edit_steps,
                guidance_scale=self._config.edit_guidance_scale,
                seed=self._config.edit_seed,
            )
        except Exception as e:
            raise GenerationError(f"Local image edit failed: {e}") from e

        if result is None:
            raise GenerationError("No image was generated")

        return image_to_data_uri(result)


def build_editor(config: WrapcalConfig, model_manager: ModelManager) -> ImageEditor:
    """Return the editor selected by ``config.generation_backend``."""
    if config.generation_backend == "local":
        return LocalImageEditor(config, model_manager)
    return GeminiImageEditor(config)
