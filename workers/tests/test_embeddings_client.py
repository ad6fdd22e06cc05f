from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from relay_workers.core.errors import DataQualityError, EmbeddingConfigurationError
from relay_workers.services.embeddings import EmbeddingClient


def _embed(handler, texts: list[str], *, dimension: int = 3) -> list[list[float]]:
    async def run() -> list[list[float]]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            embedding_client = EmbeddingClient(
                base_url="https://ai.example.com/v1",
                api_key="sk-test",
                model="text-embedding-3-small",
                dimension=dimension,
                client=client,
            )
            return await embedding_client.embed(texts)

    return asyncio.run(run())


def test_embed_returns_vectors_in_input_order() -> None:
    captured: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0, 0.0]},
                    {"index": 0, "embedding": [1, 0, 0]},
                ]
            },
            request=request,
        )

    vectors = _embed(handler, ["first", "second"])

    assert vectors == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
    assert captured["body"] == {"model": "text-embedding-3-small", "input": ["first", "second"]}


def test_embed_rejects_wrong_dimension() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1, 0.2]}]}, request=request)

    with pytest.raises(DataQualityError, match="dimension mismatch"):
        _embed(handler, ["text"])


def test_embed_rejects_missing_vectors() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1, 0.2, 0.3]}]}, request=request)

    with pytest.raises(DataQualityError):
        _embed(handler, ["one", "two"])


def test_embed_of_nothing_makes_no_request() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert _embed(handler, []) == []


def test_verify_dimension_fails_fast_on_mismatch() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1] * 768}]}, request=request)

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            embedding_client = EmbeddingClient(
                base_url="https://ai.example.com/v1",
                api_key=None,
                model="small-model",
                dimension=1536,
                client=client,
            )
            await embedding_client.verify_dimension()

    with pytest.raises(EmbeddingConfigurationError, match="1536"):
        asyncio.run(run())
