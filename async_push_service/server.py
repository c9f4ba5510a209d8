"""ASGI application entry point for uvicorn.

This module provides a pre-configured FastAPI application built from the
INI file and environment variables read by
:func:`async_push_service.config_loader.load_settings`.

Usage:
    uvicorn async_push_service.server:app --host 0.0.0.0 --port 8080
"""

from .api import build_app
from .config_loader import load_settings

app = build_app(load_settings())
