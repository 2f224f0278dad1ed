"""Wrapcal - twelve months of AI-edited avatars on one wrapped calendar."""

__version__ = "0.1.0"
