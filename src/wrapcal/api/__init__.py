"""Wrapcal - FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request/response
models, JSON-file persistence, and rate limiting.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request and response validation.
store
    File-backed document collections for base styles and calendars.
rate_limit
    Sliding-window per-client rate limiter and its FastAPI dependency.
"""
