from __future__ import annotations

import asyncio
from typing import Any

from relay_workers.jobs.members import execute_embed_member


class FakeEmbeddingClient:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(texts)
        return [[0.5, 0.5] for _ in texts]


def _job(**inputs: Any) -> dict[str, Any]:
    return {"id": "job-1", "kind": "embed_member", "target_type": "member", "target_id": "member-1", "inputs_json": inputs}


def test_embed_member_returns_vector_and_profile_hash() -> None:
    client = FakeEmbeddingClient()
    job = _job(profile_text=" Volunteer driver ", profile_hash="abc", current_profile_hash="abc")

    result = asyncio.run(execute_embed_member(job, embedding_client=client))

    assert result["embedding"] == [0.5, 0.5]
    assert result["profile_hash"] == "abc"
    assert client.calls == [["Volunteer driver"]]


def test_embed_member_skips_stale_profile() -> None:
    client = FakeEmbeddingClient()
    job = _job(profile_text="old text", profile_hash="old", current_profile_hash="new")

    result = asyncio.run(execute_embed_member(job, embedding_client=client))

    assert result["skipped"] == "profile_changed"
    assert result["embedding"] is None
    assert client.calls == []


def test_embed_member_skips_missing_member() -> None:
    client = FakeEmbeddingClient()

    result = asyncio.run(execute_embed_member(_job(skip_reason="member_missing"), embedding_client=client))

    assert result["skipped"] == "member_missing"
    assert client.calls == []
