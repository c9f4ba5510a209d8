"""
FastAPI application factory for the async push relay.

The module exposes a `create_app` function that builds the HTTP surface:
``GET /health`` for liveness and queue depth, ``POST /push`` to submit a
notification for one or many recipient tokens, and ``GET /metrics`` for
Prometheus. Every error is reported as ``{"error": message}``.

`build_app` wires a core built from loaded settings into that surface and
ties the core's start/stop to the application lifespan. Nothing here reads
configuration at import time.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, Mapping

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core import AsyncPushCore, ClientInputError, ParseError, PayloadTooLargeError
from .logger import get_logger

logger = get_logger("api")

MAX_BODY_BYTES = 16 * 1024


async def read_json_body(request: Request, limit: int = MAX_BODY_BYTES) -> Dict[str, Any]:
    """Read and decode the request body, refusing anything above ``limit`` bytes.

    The size check happens before any JSON parsing: first on the declared
    ``Content-Length``, then while streaming the body.
    """
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            declared_size = int(declared)
        except ValueError:
            raise ClientInputError("Invalid Content-Length header")
        if declared_size > limit:
            raise PayloadTooLargeError()

    chunks = bytearray()
    async for chunk in request.stream():
        chunks.extend(chunk)
        if len(chunks) > limit:
            raise PayloadTooLargeError()

    if not chunks:
        return {}
    try:
        data = json.loads(chunks.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ParseError(str(exc))
    if not isinstance(data, dict):
        raise ClientInputError("Request body must be a JSON object")
    return data


def create_app(
    svc: AsyncPushCore,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        Instance of :class:`async_push_service.core.AsyncPushCore` that
        validates and dispatches push requests.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn or any ASGI
        server.
    """
    api = FastAPI(title="Async Push Service", lifespan=lifespan, redirect_slashes=False)
    api.state.service = svc

    @api.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Report unknown routes and methods as a plain 404."""
        if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
            return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Not found"})
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @api.exception_handler(ClientInputError)
    async def client_input_handler(request: Request, exc: ClientInputError):
        """Turn request body problems into ``{"error": ...}`` responses."""
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        svc.metrics.inc_rejected(exc.code)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @api.get("/health")
    async def health():
        """Report liveness and the number of pushes waiting to be sent."""
        result = await svc.handle_command("status", {})
        return {"status": result["status"], "queued": result["queued"]}

    @api.post("/push", status_code=status.HTTP_202_ACCEPTED)
    async def push(request: Request):
        """Accept a notification for one or many recipient tokens."""
        body = await read_json_body(request)
        result = await svc.handle_command("push", body)
        if result.get("ok") is not True:
            code = status.HTTP_503_SERVICE_UNAVAILABLE if result.get("error_code") == "queue_full" else status.HTTP_400_BAD_REQUEST
            return JSONResponse(status_code=code, content={"error": result.get("error")})
        return {"queued": result["queued"]}

    @api.get("/metrics")
    async def metrics():
        """Expose Prometheus metrics collected by the relay."""
        return Response(content=svc.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    return api


def build_core(settings: Mapping[str, object]) -> AsyncPushCore:
    """Create the core service described by ``settings``."""
    return AsyncPushCore(
        endpoint=str(settings["endpoint"]),
        min_interval_ms=int(settings["min_interval_ms"]),
        stagger_ms=int(settings["stagger_ms"]),
        mode=str(settings["mode"]),
        queue_max_size=settings.get("queue_max_size"),
        send_timeout=float(settings["send_timeout"]),
    )


def build_app(settings: Mapping[str, object]) -> FastAPI:
    """Create the application and bind the core lifecycle to its lifespan."""
    core = build_core(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler - starts and stops the core service."""
        await core.start()
        yield
        await core.stop()

    return create_app(core, lifespan=lifespan)
