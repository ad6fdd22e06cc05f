from __future__ import annotations

from typing import Any

from relay_workers.services.embeddings import EmbeddingClient


async def execute_embed_member(job: dict[str, Any], *, embedding_client: EmbeddingClient) -> dict[str, Any]:
    raw_inputs = job.get("inputs_json")
    inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}
    base = {
        "handled": True,
        "kind": job.get("kind"),
        "target_type": job.get("target_type"),
        "target_id": job.get("target_id"),
    }

    profile_text = inputs.get("profile_text")
    if inputs.get("skip_reason") or not isinstance(profile_text, str) or not profile_text.strip():
        return {**base, "embedding": None, "skipped": inputs.get("skip_reason") or "missing_profile_text"}

    # A newer profile revision has its own job; embedding this one would be stale.
    if inputs.get("current_profile_hash") and inputs.get("current_profile_hash") != inputs.get("profile_hash"):
        return {**base, "embedding": None, "skipped": "profile_changed"}

    [embedding] = await embedding_client.embed([profile_text.strip()])
    return {**base, "embedding": embedding, "profile_hash": inputs.get("profile_hash")}
