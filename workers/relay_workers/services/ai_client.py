from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from relay_workers.core.errors import DataQualityError, TransientError, is_retryable_status

logger = logging.getLogger(__name__)


async def post_json(
    *,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout_seconds: float,
    client: httpx.AsyncClient | None = None,
) -> Any:
    """POST a JSON body and decode the JSON reply, mapping failures onto the worker taxonomy."""
    try:
        if client is not None:
            response = await client.post(url, json=payload, headers=headers, timeout=timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=timeout_seconds) as temp_client:
                response = await temp_client.post(url, json=payload, headers=headers)
    except httpx.TransportError as exc:
        raise TransientError(f"request to {url} failed: {exc.__class__.__name__}") from exc

    if is_retryable_status(response.status_code):
        raise TransientError(f"{url} returned retryable status {response.status_code}")
    response.raise_for_status()

    try:
        return response.json()
    except ValueError as exc:
        raise DataQualityError(f"{url} returned a non-JSON body") from exc


class AIClient:
    """OpenAI-compatible chat completion client that always asks for a JSON object."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        model: str,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def complete_json(self, *, system_prompt: str, user_prompt: str) -> Any:
        body = await post_json(
            url=f"{self.base_url}/chat/completions",
            payload={
                "model": self.model,
                "temperature": 0,
                "response_format": {"type": "json_object"},
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            },
            headers=self._headers(),
            timeout_seconds=self.timeout_seconds,
            client=self._client,
        )

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise DataQualityError("chat completion response has no message content") from exc
        if not isinstance(content, str):
            raise DataQualityError("chat completion content is not text")

        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            logger.debug("unparseable completion content: %.200s", content)
            raise DataQualityError(f"chat completion content is not valid JSON: {exc.msg}") from exc

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}
