"""Asynchronous push notification relay with a rate-limited delivery queue.

This package accepts push requests over HTTP and forwards them to a
push-delivery API (Expo by default), one recipient at a time:

- Single-worker FIFO queue with a global minimum interval between sends
- Stagger delay between consecutive recipients
- Optional immediate mode that sends every recipient concurrently
- Prometheus metrics for monitoring
- FastAPI REST API for submission and health checks

Example:
    Basic usage with the FastAPI application::

        from async_push_service.core import AsyncPushCore
        from async_push_service.api import create_app

        core = AsyncPushCore(min_interval_ms=20000, stagger_ms=3000)
        app = create_app(core)
"""
