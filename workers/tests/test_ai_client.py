from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from relay_workers.core.errors import DataQualityError, TransientError
from relay_workers.services.ai_client import AIClient, post_json


def _completion(content: str) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _run_with_handler(handler, call):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await call(client)

    return asyncio.run(run())


def test_complete_json_requests_json_object_and_decodes_content() -> None:
    captured: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion('{"resources": []}'), request=request)

    async def call(client: httpx.AsyncClient) -> Any:
        ai_client = AIClient(base_url="https://ai.example.com/v1/", api_key="sk-test", model="gpt-4o-mini", client=client)
        return await ai_client.complete_json(system_prompt="system", user_prompt="user")

    result = _run_with_handler(handler, call)

    assert result == {"resources": []}
    assert captured["url"] == "https://ai.example.com/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert [message["role"] for message in captured["body"]["messages"]] == ["system", "user"]


def test_complete_json_rejects_non_json_content() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion("Sure! Here are the resources:"), request=request)

    async def call(client: httpx.AsyncClient) -> Any:
        ai_client = AIClient(base_url="https://ai.example.com/v1", api_key=None, model="m", client=client)
        return await ai_client.complete_json(system_prompt="s", user_prompt="u")

    with pytest.raises(DataQualityError):
        _run_with_handler(handler, call)


def test_complete_json_rejects_missing_choices() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []}, request=request)

    async def call(client: httpx.AsyncClient) -> Any:
        ai_client = AIClient(base_url="https://ai.example.com/v1", api_key=None, model="m", client=client)
        return await ai_client.complete_json(system_prompt="s", user_prompt="u")

    with pytest.raises(DataQualityError):
        _run_with_handler(handler, call)


@pytest.mark.parametrize("status_code", [429, 500, 503])
def test_post_json_maps_retryable_status_to_transient(status_code: int) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"error": "busy"}, request=request)

    async def call(client: httpx.AsyncClient) -> Any:
        return await post_json(url="https://ai.example.com/x", payload={}, headers={}, timeout_seconds=1.0, client=client)

    with pytest.raises(TransientError):
        _run_with_handler(handler, call)


def test_post_json_raises_on_client_error_status() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "bad key"}, request=request)

    async def call(client: httpx.AsyncClient) -> Any:
        return await post_json(url="https://ai.example.com/x", payload={}, headers={}, timeout_seconds=1.0, client=client)

    with pytest.raises(httpx.HTTPStatusError):
        _run_with_handler(handler, call)


def test_post_json_maps_transport_errors_to_transient() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    async def call(client: httpx.AsyncClient) -> Any:
        return await post_json(url="https://ai.example.com/x", payload={}, headers={}, timeout_seconds=1.0, client=client)

    with pytest.raises(TransientError):
        _run_with_handler(handler, call)


def test_post_json_rejects_non_json_body() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>", request=request)

    async def call(client: httpx.AsyncClient) -> Any:
        return await post_json(url="https://ai.example.com/x", payload={}, headers={}, timeout_seconds=1.0, client=client)

    with pytest.raises(DataQualityError):
        _run_with_handler(handler, call)
