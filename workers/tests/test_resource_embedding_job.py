from __future__ import annotations

import asyncio
from typing import Any

from relay_workers.jobs.executor import JobDependencies, execute_job
from relay_workers.jobs.resources import execute_embed_resource


class FakeEmbeddingClient:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(texts)
        return [[0.25, 0.75] for _ in texts]


def _job(**inputs: Any) -> dict[str, Any]:
    return {
        "id": "job-1",
        "kind": "embed_resource",
        "target_type": "resource",
        "target_id": "resource-1",
        "inputs_json": inputs,
    }


def test_embed_resource_returns_vector_for_current_content() -> None:
    client = FakeEmbeddingClient()
    job = _job(text="Food bank\nOpen Saturday ", content_hash="h1", current_content_hash="h1")

    result = asyncio.run(execute_embed_resource(job, embedding_client=client))

    assert result["embedding"] == [0.25, 0.75]
    assert result["content_hash"] == "h1"
    assert client.calls == [["Food bank\nOpen Saturday"]]


def test_embed_resource_skips_when_content_was_edited_again() -> None:
    client = FakeEmbeddingClient()
    job = _job(text="Food bank", content_hash="h1", current_content_hash="h2")

    result = asyncio.run(execute_embed_resource(job, embedding_client=client))

    assert result["skipped"] == "content_changed"
    assert result["embedding"] is None
    assert client.calls == []


def test_embed_resource_skips_missing_resource() -> None:
    client = FakeEmbeddingClient()

    result = asyncio.run(execute_embed_resource(_job(skip_reason="resource_missing"), embedding_client=client))

    assert result == {
        "handled": True,
        "kind": "embed_resource",
        "target_type": "resource",
        "target_id": "resource-1",
        "embedding": None,
        "skipped": "resource_missing",
    }


def test_executor_dispatches_embed_resource() -> None:
    client = FakeEmbeddingClient()
    dependencies = JobDependencies(ai_client=object(), embedding_client=client)  # type: ignore[arg-type]
    job = _job(text="Tutoring", content_hash="h1", current_content_hash="h1")

    result = asyncio.run(execute_job(job, dependencies=dependencies))

    assert result["embedding"] == [0.25, 0.75]
    assert client.calls == [["Tutoring"]]
