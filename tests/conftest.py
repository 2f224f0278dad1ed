"""Shared pytest fixtures for Wrapcal tests."""

from __future__ import annotations

import base64
import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest
from PIL import Image

from wrapcal.core.analysis import Analyzer
from wrapcal.core.config import WrapcalConfig
from wrapcal.core.errors import AnalysisError, GenerationError
from wrapcal.core.generation import ImageEditor
from wrapcal.core.months import AnalysisRequest


def make_png_bytes(color: tuple[int, int, int] = (255, 0, 0), size: tuple[int, int] = (8, 8)) -> bytes:
    """Encode a solid-colour PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_png_data_uri(color: tuple[int, int, int] = (255, 0, 0), size: tuple[int, int] = (8, 8)) -> str:
    return "data:image/png;base64," + base64.b64encode(make_png_bytes(color, size)).decode("ascii")


# ---------------------------------------------------------------------------
# Fake capabilities.
# ---------------------------------------------------------------------------


class FakeAnalyzer(Analyzer):
    """Analyzer returning ``"apply <payload>"`` for text and a fixed string for images.

    Requests whose payload is listed in *fail_payloads* raise
    :class:`AnalysisError`.
    """

    def __init__(self, fail_payloads: tuple[str, ...] = ()) -> None:
        self.fail_payloads = set(fail_payloads)
        self.calls: list[AnalysisRequest] = []

    def analyze(self, request: AnalysisRequest) -> str:
        self.calls.append(request)
        if request.payload in self.fail_payloads:
            raise AnalysisError(f"could not analyze {request.payload}")
        if request.kind == "image":
            return "apply photo scene"
        return f"apply {request.payload}"


class FakeEditor(ImageEditor):
    """Editor returning a blue PNG data URI.

    Instructions listed in *fail_instructions* raise :class:`GenerationError`.
    """

    def __init__(self, fail_instructions: tuple[str, ...] = ()) -> None:
        self.fail_instructions = set(fail_instructions)
        self.calls: list[tuple[str, str]] = []
        self.output = make_png_data_uri(color=(0, 0, 255))

    def edit(self, base_image: str, instruction: str) -> str:
        self.calls.append((base_image, instruction))
        if instruction in self.fail_instructions:
            raise GenerationError(f"could not render {instruction}")
        return self.output


# ---------------------------------------------------------------------------
# Fixtures.
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> WrapcalConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        WrapcalConfig instance for testing
    """
    return WrapcalConfig(
        _env_file=None,
        gemini_api_key="test-key",
        models_dir=temp_dir / "models",
        data_dir=temp_dir / "data",
        device="cpu",  # Use CPU for tests
        torch_dtype="float32",
        edit_steps=4,
        rate_limit_enabled=False,
    )


@pytest.fixture
def png_bytes() -> bytes:
    return make_png_bytes()


@pytest.fixture
def png_data_uri() -> str:
    """An 8x8 red PNG as a data URI."""
    return make_png_data_uri()


@pytest.fixture
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def fake_editor() -> FakeEditor:
    return FakeEditor()


@pytest.fixture
def test_client(monkeypatch, test_config: WrapcalConfig, fake_analyzer, fake_editor):
    """FastAPI TestClient with fake capabilities and temporary stores.

    The lifespan is not run; ``app.state`` is populated directly so that no
    Gemini client or model manager is created.  Rate limiting is off; tests
    that need it assign ``app.state.rate_limiter`` themselves.
    """
    from fastapi.testclient import TestClient

    from wrapcal.api import main
    from wrapcal.api.store import DocumentStore

    monkeypatch.setattr(main, "config", test_config)

    app = main.app
    app.state.model_manager = MagicMock()
    app.state.analyzer = fake_analyzer
    app.state.editor = fake_editor
    app.state.base_styles = DocumentStore(test_config.data_dir / "base_styles.json")
    app.state.calendars = DocumentStore(test_config.data_dir / "calendars.json")
    app.state.rate_limiter = None

    return TestClient(app)
