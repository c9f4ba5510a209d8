"""Outbound client for the push-delivery API."""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import aiohttp

from .logger import get_logger
from .models import (
    DeliveryOutcome,
    Delivered,
    NotificationPayload,
    RemoteOverloaded,
    RemoteRejected,
    TransportFailed,
)
from .prometheus import PushMetrics

DEFAULT_ENDPOINT = "https://exp.host/--/api/v2/push/send"
DEFAULT_SEND_TIMEOUT = 30.0
TOKEN_PREVIEW_CHARS = 20
BODY_PREVIEW_CHARS = 512


def _token_preview(token: str) -> str:
    return f"{token[:TOKEN_PREVIEW_CHARS]}..."


def _body_preview(text: str) -> str:
    if len(text) > BODY_PREVIEW_CHARS:
        return text[:BODY_PREVIEW_CHARS]
    return text


def classify_response(status_code: int, body: str) -> DeliveryOutcome:
    """Map an HTTP status code from the delivery API to an outcome."""
    if 200 <= status_code < 300:
        return Delivered(status_code, body)
    if status_code == 429 or status_code >= 500:
        return RemoteOverloaded(status_code, body)
    return RemoteRejected(status_code, body)


class DeliveryClient:
    """Send one notification to one recipient token per call.

    :meth:`send` always resolves to a :class:`DeliveryOutcome`; network and
    protocol failures are reported as :class:`TransportFailed` and never
    raised to the caller.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        *,
        timeout: float = DEFAULT_SEND_TIMEOUT,
        logger=None,
        metrics: Optional[PushMetrics] = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.logger = logger or get_logger("delivery")
        self.metrics = metrics

    async def send(self, token: str, payload: NotificationPayload) -> DeliveryOutcome:
        """POST ``payload`` addressed to ``token`` and classify the reply."""
        body = json.dumps(payload.to_wire(token)).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Content-Length": str(len(body)),
        }
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(self.endpoint, data=body, headers=headers) as resp:
                    status_code = resp.status
                    text = await resp.text()
        except asyncio.TimeoutError:
            outcome: DeliveryOutcome = TransportFailed(f"timed out after {self.timeout}s")
        except (aiohttp.ClientError, UnicodeDecodeError) as exc:
            outcome = TransportFailed(str(exc) or exc.__class__.__name__)
        except Exception as exc:
            self.logger.exception("Unexpected error while sending to %s", _token_preview(token))
            outcome = TransportFailed(str(exc) or exc.__class__.__name__)
        else:
            outcome = classify_response(status_code, text)

        self._record(token, outcome)
        return outcome

    def _record(self, token: str, outcome: DeliveryOutcome) -> None:
        """Emit the log line (and metric) describing one attempt."""
        if self.metrics is not None:
            self.metrics.inc_attempt(outcome.kind)
        preview = _token_preview(token)
        if isinstance(outcome, TransportFailed):
            self.logger.error("Push send failed for %s: %s", preview, outcome.reason)
            return
        self.logger.info("Push response %s for token %s", outcome.status_code, preview)
        if isinstance(outcome, RemoteOverloaded):
            self.logger.warning("Push backoff suggested (status %s)", outcome.status_code)
        if outcome.body:
            self.logger.info("Body: %s", _body_preview(outcome.body))
