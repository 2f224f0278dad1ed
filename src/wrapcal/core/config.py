"""Configuration management for Wrapcal.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the WRAPCAL_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (WRAPCAL_* prefix)
2. .env file in the project root
3. Default values defined in WrapcalConfig

Example .env file:
    WRAPCAL_GEMINI_API_KEY=...
    WRAPCAL_GENERATION_BACKEND=gemini
    WRAPCAL_DATA_DIR=data
    WRAPCAL_RATE_LIMIT_REQUESTS=10

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.

Usage Example
-------------
    from wrapcal.core.config import config

    print(config.analysis_model)
    print(config.data_dir)

Generation Backends
-------------------
- ``gemini``: hosted image editing through the Gemini API (default)
- ``local``: a diffusers image-edit pipeline (Qwen-Image-Edit by default),
  requires the ``local`` extra (torch + diffusers)
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WrapcalConfig(BaseSettings):
    """Main configuration for Wrapcal.

    Values are loaded from environment variables with the WRAPCAL_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    AI Provider Settings:
        gemini_api_key : str | None
            API key for the Gemini API.  When unset the google-genai client
            falls back to ``GOOGLE_API_KEY`` / ``GEMINI_API_KEY``.
        analysis_model : str
            Gemini model used to turn month input into an edit instruction
        generation_model : str
            Gemini model used for image editing
        generation_backend : Literal["gemini", "local"]
            Which image-editing capability to use
        api_timeout_ms : int
            Per-request timeout for Gemini API calls

    Local Backend Settings:
        edit_model_id : str
            HuggingFace model ID of the local image-edit pipeline
        torch_dtype, device, edit_steps, edit_guidance_scale, edit_seed,
        enable_model_cpu_offload, enable_attention_slicing

    Image Settings:
        tile_size : int
            Edge length in pixels requested for each month tile
        thumbnail_size : int
            Maximum edge length of generated base-style thumbnails
        max_upload_bytes : int
            Largest accepted upload

    Rate Limiting:
        rate_limit_enabled, rate_limit_requests, rate_limit_window

    Paths:
        models_dir : Path
            Directory to cache downloaded models
        data_dir : Path
            Directory holding the JSON document collections

    Server:
        server_host, server_port
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="WRAPCAL_",
        case_sensitive=False,
    )

    # AI provider settings
    gemini_api_key: str | None = Field(
        default=None,
        description="Gemini API key (falls back to GOOGLE_API_KEY / GEMINI_API_KEY)",
    )
    analysis_model: str = Field(
        default="gemini-flash-latest",
        description="Gemini model used for input analysis",
    )
    generation_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Gemini model used for image editing",
    )
    generation_backend: Literal["gemini", "local"] = Field(
        default="gemini",
        description="Image-editing backend (gemini or local diffusers pipeline)",
    )
    api_timeout_ms: int = Field(
        default=60_000,
        description="Timeout for a single Gemini API call in milliseconds",
        ge=1_000,
    )

    # Local image-edit backend
    edit_model_id: str = Field(
        default="Qwen/Qwen-Image-Edit-2509",
        description="HuggingFace model ID for the local image-edit pipeline",
    )
    torch_dtype: Literal["bfloat16", "float16", "float32"] = Field(
        default="bfloat16",
        description="Torch dtype for local inference",
    )
    device: str = Field(
        default="cuda",
        description="Device to run local inference on (cuda/cpu)",
    )
    edit_steps: int = Field(
        default=30,
        description="Number of denoising steps for local edits",
        ge=1,
        le=100,
    )
    edit_guidance_scale: float = Field(
        default=4.0,
        description="Guidance (true CFG for Qwen) scale for local edits",
        ge=0.0,
    )
    edit_seed: int = Field(
        default=0,
        description="Seed for local edits (same seed + instruction = same tile)",
        ge=0,
    )
    enable_model_cpu_offload: bool = Field(
        default=False,
        description="Enable CPU offloading for memory-constrained setups",
    )
    enable_attention_slicing: bool = Field(
        default=False,
        description="Enable attention slicing for lower VRAM usage",
    )

    # Image settings
    tile_size: int = Field(default=120, ge=32, le=2048)
    thumbnail_size: int = Field(default=256, ge=16, le=1024)
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum accepted upload size in bytes",
        ge=1,
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(
        default=True,
        description="Apply the per-client limit to the AI endpoints",
    )
    rate_limit_requests: int = Field(
        default=10,
        description="Requests allowed per client per window",
        ge=1,
    )
    rate_limit_window: int = Field(
        default=60,
        description="Sliding window length in seconds",
        ge=1,
    )

    # Paths
    models_dir: Path = Field(
        default=Path("models"),
        description="Directory to cache models",
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding base_styles.json and calendars.json",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=8000,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.models_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance, loaded from WRAPCAL_* variables and .env.
config = WrapcalConfig()
