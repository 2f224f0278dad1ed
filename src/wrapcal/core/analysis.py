"""Analysis capability: turn a month's scene into an image-editing instruction.

The analysis step looks at the user's photo (or reads their description) and
extracts one visual characteristic (clothing, expression or props) phrased as
a short instruction that can be applied to the base style character.

Components
----------
Analyzer
    Abstract interface consumed by :mod:`wrapcal.core.pipeline`.
GeminiAnalyzer
    Implementation backed by the Gemini API via ``google-genai``.
parse_instruction
    Extracts the instruction from the model's (loosely JSON) reply.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from wrapcal.core import data_uri
from wrapcal.core.config import WrapcalConfig
from wrapcal.core.errors import AnalysisError
from wrapcal.core.months import AnalysisRequest

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Prompt sent alongside every analysis request.
# ---------------------------------------------------------------------------
ANALYSIS_PROMPT = """Analyze the provided {subject} and extract one key visual characteristic. Focus on:

- Clothings: Specific clothing items
- Emotions/expressions: Describe the expressions on the face
- Overlay logic: Describe the elements as items the base character is 'donning' or 'wearing'.

Write a concise, actionable 15-word image-editing prompt. Crucially: Avoid naming a specific person or archetype (like 'Santa' or 'Chef'). Instead, describe the specific garments and environment to be added to the existing character.

Format your response as JSON with this structure:
{{
  "prompt": "your concise editing prompt here"
}}"""

DEFAULT_INSTRUCTION = "Edit the image based on the provided input"

_FENCED_JSON_RE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)
_FENCED_RE = re.compile(r"```\s*(.*?)\s*```", re.DOTALL)
_PROMPT_FIELD_RE = re.compile(r'"prompt"\s*:\s*"([^"]+)"')
_PROMPT_LINE_RE = re.compile(r"prompt[:\s]+(.+?)(?:\n|$)", re.IGNORECASE)


def build_analysis_prompt(kind: str) -> str:
    """Return the analysis prompt worded for an image or a text input."""
    return ANALYSIS_PROMPT.format(subject="image" if kind == "image" else "text input")


def parse_instruction(response_text: str) -> str:
    """Extract the editing instruction from an analysis reply.

    The model is asked for ``{"prompt": "..."}`` but frequently wraps it in
    a Markdown code fence or returns almost-JSON.  Resolution order:

    1. JSON inside a ```json fence, a bare ``` fence, or the whole reply.
    2. If that is not valid JSON: a ``"prompt": "..."`` field, a
       ``prompt: ...`` line, the first line of the reply, and finally
       :data:`DEFAULT_INSTRUCTION`.

    Args:
        response_text: Raw text returned by the analysis model.

    Returns:
        The instruction string.

    Raises:
        AnalysisError: If the reply is valid JSON but carries no ``prompt``.
    """
    text = response_text.strip()

    fence = _FENCED_JSON_RE.search(text) or _FENCED_RE.search(text)
    json_text = fence.group(1) if fence else text

    try:
        parsed: Any = json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse JSON analysis response, extracting manually: %s", e)
        match = _PROMPT_FIELD_RE.search(text) or _PROMPT_LINE_RE.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
        first_line = text.split("\n", 1)[0].strip()
        return first_line or DEFAULT_INSTRUCTION

    if not isinstance(parsed, dict) or not str(parsed.get("prompt") or "").strip():
        raise AnalysisError("Invalid analysis result format")

    return str(parsed["prompt"]).strip()


class Analyzer(ABC):
    """Interface of the analysis capability."""

    @abstractmethod
    def analyze(self, request: AnalysisRequest) -> str:
        """Return a short editing instruction for *request*.

        Raises:
            AnalysisError: If no instruction can be produced.
            InvalidFormatError: If an image payload is not a valid data URI.
        """
        raise NotImplementedError


class GeminiAnalyzer(Analyzer):
    """Analysis capability backed by a Gemini multimodal model.

    The ``google-genai`` client is created lazily on the first request so
    the application can start (and tests can run) without credentials.
    """

    def __init__(self, config: WrapcalConfig, client: Any = None) -> None:
        self._config = config
        self._client = client
        self.model = config.analysis_model

    def _get_client(self) -> Any:
        if self._client is None:
            from google import genai
            from google.genai import types

            self._client = genai.Client(
                api_key=self._config.gemini_api_key,
                http_options=types.HttpOptions(timeout=self._config.api_timeout_ms),
            )
        return self._client

    def _build_contents(self, request: AnalysisRequest) -> list[Any]:
        prompt = build_analysis_prompt(request.kind)
        if request.kind == "text":
            return [f"User input: {request.payload}\n\n{prompt}"]

        from google.genai import types

        # Raises InvalidFormatError before anything is sent.
        decoded = data_uri.decode(request.payload)
        return [
            prompt,
            types.Part.from_bytes(data=decoded.data, mime_type=decoded.media_type),
        ]

    def analyze(self, request: AnalysisRequest) -> str:
        contents = self._build_contents(request)

        logger.info("Analyzing %s input with '%s'.", request.kind, self.model)
        try:
            response = self._get_client().models.generate_content(
                model=self.model,
                contents=contents,
            )
        except Exception as e:
            raise AnalysisError(f"Analysis request failed: {e}") from e

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise AnalysisError("No prompt generated from analysis")

        instruction = parse_instruction(text)
        logger.info("Analysis produced instruction: %s", instruction)
        return instruction
