from __future__ import annotations

import logging
from typing import Any

import httpx

from relay_workers.core.errors import TransientError, is_retryable_status

logger = logging.getLogger(__name__)


async def execute_deliver_notification(
    job: dict[str, Any],
    *,
    webhook_url: str | None,
    timeout_seconds: float = 10.0,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    raw_inputs = job.get("inputs_json")
    inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}
    base = {
        "handled": True,
        "kind": job.get("kind"),
        "target_type": job.get("target_type"),
        "target_id": job.get("target_id"),
    }

    notification = inputs.get("notification")
    if inputs.get("skip_reason") or not isinstance(notification, dict):
        return {**base, "delivery_status": "skipped", "error": inputs.get("skip_reason") or "missing_notification"}
    if not webhook_url:
        return {**base, "delivery_status": "skipped", "error": "delivery_webhook_not_configured"}
    if not notification.get("push_token"):
        return {**base, "delivery_status": "skipped", "error": "member_has_no_push_token"}

    try:
        if client is not None:
            response = await client.post(webhook_url, json=notification, timeout=timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=timeout_seconds) as temp_client:
                response = await temp_client.post(webhook_url, json=notification)
    except httpx.TransportError as exc:
        raise TransientError(f"delivery webhook unreachable: {exc.__class__.__name__}") from exc

    if is_retryable_status(response.status_code):
        raise TransientError(f"delivery webhook returned retryable status {response.status_code}")
    if response.status_code >= 400:
        logger.warning(
            "delivery rejected notification=%s status=%s",
            notification.get("id"),
            response.status_code,
        )
        return {**base, "delivery_status": "failed", "error": f"webhook rejected delivery: {response.status_code}"}

    return {**base, "delivery_status": "delivered", "status_code": response.status_code}
