from __future__ import annotations

from typing import Any

from relay_workers.services.embeddings import EmbeddingClient


async def execute_embed_resource(job: dict[str, Any], *, embedding_client: EmbeddingClient) -> dict[str, Any]:
    raw_inputs = job.get("inputs_json")
    inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}
    base = {
        "handled": True,
        "kind": job.get("kind"),
        "target_type": job.get("target_type"),
        "target_id": job.get("target_id"),
    }

    text = inputs.get("text")
    if inputs.get("skip_reason") or not isinstance(text, str) or not text.strip():
        return {**base, "embedding": None, "skipped": inputs.get("skip_reason") or "missing_resource_text"}

    # The reviewer edited the resource again after this job was queued.
    if inputs.get("current_content_hash") and inputs.get("current_content_hash") != inputs.get("content_hash"):
        return {**base, "embedding": None, "skipped": "content_changed"}

    [embedding] = await embedding_client.embed([text.strip()])
    return {**base, "embedding": embedding, "content_hash": inputs.get("content_hash")}
