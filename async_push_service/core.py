"""Core orchestration logic for the asynchronous push relay."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import ValidationError

from .delivery import DEFAULT_ENDPOINT, DEFAULT_SEND_TIMEOUT, DeliveryClient
from .dispatch import ImmediateDispatcher, QueueFullError, RateLimitedQueue
from .logger import get_logger
from .models import NotificationPayload, PushRequest
from .prometheus import PushMetrics

MODE_QUEUED = "queued"
MODE_IMMEDIATE = "immediate"
DELIVERY_MODES = (MODE_QUEUED, MODE_IMMEDIATE)

DEFAULT_MIN_INTERVAL_MS = 20000
DEFAULT_STAGGER_MS = 3000


class ClientInputError(ValueError):
    """Raised when an inbound request cannot be accepted as sent."""

    status_code = 400

    def __init__(self, message: str, code: str = "invalid_request"):
        super().__init__(message)
        self.code = code


class ParseError(ClientInputError):
    """Raised when the request body is not valid JSON."""

    def __init__(self, message: str):
        super().__init__(message, code="malformed_json")


class PayloadTooLargeError(ClientInputError):
    """Raised when the request body exceeds the accepted size."""

    status_code = 413

    def __init__(self, message: str = "Payload too large"):
        super().__init__(message, code="payload_too_large")


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


class AsyncPushCore:
    """Validate push requests and hand them to the configured dispatcher."""

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        min_interval_ms: int = DEFAULT_MIN_INTERVAL_MS,
        stagger_ms: int = DEFAULT_STAGGER_MS,
        mode: str = MODE_QUEUED,
        queue_max_size: Optional[int] = None,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        logger=None,
        metrics: PushMetrics | None = None,
        client: DeliveryClient | None = None,
    ):
        """Prepare the delivery client and the dispatcher for ``mode``."""
        if mode not in DELIVERY_MODES:
            raise ValueError(f"Unknown delivery mode {mode!r}; expected one of {', '.join(DELIVERY_MODES)}")
        self.logger = logger or get_logger()
        self.metrics = metrics or PushMetrics()
        self.endpoint = endpoint
        self.mode = mode
        self.client = client or DeliveryClient(endpoint, timeout=send_timeout, metrics=self.metrics)

        if mode == MODE_IMMEDIATE:
            self.min_interval_ms = 0
            self.stagger_ms = 0
            self.dispatcher = ImmediateDispatcher(self.client.send, metrics=self.metrics)
        else:
            self.min_interval_ms = max(0, int(min_interval_ms))
            self.stagger_ms = max(0, int(stagger_ms))
            self.dispatcher = RateLimitedQueue(
                self.client.send,
                min_interval=self.min_interval_ms / 1000.0,
                stagger=self.stagger_ms / 1000.0,
                max_size=queue_max_size,
                metrics=self.metrics,
            )

    # ----------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Log the effective delivery configuration."""
        self.logger.info("Push endpoint: %s", self.endpoint)
        self.logger.info(
            "Delivery mode: %s, min interval: %d ms, device stagger: %d ms",
            self.mode,
            self.min_interval_ms,
            self.stagger_ms,
        )

    async def stop(self) -> None:
        """Stop the dispatcher, dropping anything still waiting."""
        await self.dispatcher.stop()

    @property
    def depth(self) -> int:
        return self.dispatcher.depth

    # ------------------------------------------------------------------ commands
    async def handle_command(self, cmd: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute one of the external commands."""
        payload = payload or {}
        if cmd == "push":
            return self._handle_push(payload)
        if cmd == "status":
            return {
                "ok": True,
                "status": "ok",
                "queued": self.dispatcher.depth,
                "mode": self.mode,
                "draining": self.dispatcher.is_draining,
            }
        return {"ok": False, "error": "unknown command"}

    def _handle_push(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            request = PushRequest.model_validate(payload)
        except ValidationError as exc:
            return self._reject(_validation_message(exc), "invalid_field")

        tokens = request.tokens()
        if not tokens:
            return self._reject("Missing 'to' token(s)", "missing_to")
        if not request.title or not request.body:
            return self._reject("Missing 'title' or 'body'", "missing_content")

        notification = NotificationPayload.from_request(request)
        try:
            queued = self.dispatcher.enqueue(tokens, notification)
        except QueueFullError as exc:
            self.logger.warning("%s", exc)
            return self._reject(str(exc), exc.code)
        self.metrics.inc_enqueued(queued)
        self.logger.debug("Accepted push for %d recipient(s), depth now %d", queued, self.dispatcher.depth)
        return {"ok": True, "queued": queued}

    def _reject(self, error: str, code: str) -> Dict[str, Any]:
        self.metrics.inc_rejected(code)
        return {"ok": False, "error": error, "error_code": code}
