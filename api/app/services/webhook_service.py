"""Outbound webhook delivery for automation actions.

Delivery is fire-and-forget: a bounded timeout, no retries, and failures are
logged and reported to the caller rather than retried, so an external system
never sees the same automation twice.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

logger = logging.getLogger("app.services.webhooks")

USER_AGENT = "boardflow-automations/1.0"


class WebhookDeliveryError(RuntimeError):
    """Raised when a webhook POST fails or returns a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


async def deliver_webhook(
    url: str,
    payload: dict[str, Any],
    *,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """POST a JSON payload once and return a delivery summary."""
    body = json.dumps(payload, default=str)
    headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, content=body, headers=headers)
    except httpx.TimeoutException as exc:
        logger.warning("Webhook to %s timed out after %ss", url, timeout)
        raise WebhookDeliveryError("webhook_timeout") from exc
    except httpx.HTTPError as exc:
        logger.warning("Webhook to %s failed: %s", url, exc)
        raise WebhookDeliveryError(f"webhook_error:{exc.__class__.__name__}") from exc
    if response.status_code >= 300:
        logger.warning("Webhook to %s returned %s", url, response.status_code)
        raise WebhookDeliveryError(f"webhook_status:{response.status_code}", status_code=response.status_code)
    logger.info("Webhook delivered to %s [status=%s, bytes=%s]", url, response.status_code, len(body))
    return {"status_code": response.status_code, "payload_bytes": len(body)}
