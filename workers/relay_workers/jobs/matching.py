from __future__ import annotations

import json
import logging
from typing import Any

from relay_workers.core.errors import DataQualityError
from relay_workers.jobs.prompts import wrap_untrusted
from relay_workers.services.ai_client import AIClient

logger = logging.getLogger(__name__)

RELEVANCE_SYSTEM_PROMPT = """You help a community organisation tell its members about resources they may want.
For the resource and every candidate member profile below, decide whether the member could plausibly
be interested. Be generous: include anyone for whom the resource might reasonably be useful, and only
exclude clear mismatches.

Reply with a JSON object {"verdicts": [{"member_id": "...", "is_relevant": true | false,
"reasoning": "<one short sentence>"}]} containing exactly one verdict per candidate."""


async def execute_match_resource(job: dict[str, Any], *, ai_client: AIClient) -> dict[str, Any]:
    raw_inputs = job.get("inputs_json")
    inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}
    base = {
        "handled": True,
        "kind": job.get("kind"),
        "target_type": job.get("target_type"),
        "target_id": job.get("target_id"),
    }

    skip_reason = inputs.get("skip_reason")
    if skip_reason:
        return {**base, "verdicts": [], "skipped": skip_reason}

    candidates = [item for item in inputs.get("candidates") or [] if isinstance(item, dict)]
    if not candidates:
        return {**base, "verdicts": [], "relevant_count": 0}

    resource = inputs.get("resource") if isinstance(inputs.get("resource"), dict) else {}
    user_prompt = build_relevance_prompt(resource=resource, candidates=candidates)
    payload = await ai_client.complete_json(system_prompt=RELEVANCE_SYSTEM_PROMPT, user_prompt=user_prompt)
    verdicts = validate_verdicts(payload, expected_member_ids=[str(item.get("member_id")) for item in candidates])

    relevant_count = sum(1 for verdict in verdicts if verdict["is_relevant"])
    logger.info(
        "relevance judged resource=%s candidates=%s relevant=%s",
        job.get("target_id"),
        len(candidates),
        relevant_count,
    )
    return {**base, "verdicts": verdicts, "relevant_count": relevant_count}


def build_relevance_prompt(*, resource: dict[str, Any], candidates: list[dict[str, Any]]) -> str:
    members = [
        {"member_id": item.get("member_id"), "profile": item.get("profile_text") or ""}
        for item in candidates
    ]
    return wrap_untrusted(
        f"Resource: {resource.get('title', '')}\n{resource.get('description', '')}\n\n"
        f"Candidates:\n{json.dumps(members, ensure_ascii=False, indent=1)}"
    )


def validate_verdicts(payload: Any, *, expected_member_ids: list[str]) -> list[dict[str, Any]]:
    """One boolean verdict per retrieved candidate, nothing more and nothing less."""
    items = payload.get("verdicts") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        raise DataQualityError("relevance reply must contain a verdicts list")

    expected = set(expected_member_ids)
    verdicts: dict[str, dict[str, Any]] = {}
    for item in items:
        if not isinstance(item, dict):
            raise DataQualityError("relevance verdict is not an object")
        member_id = item.get("member_id")
        if member_id not in expected:
            raise DataQualityError(f"relevance verdict names an unknown member: {member_id!r}")
        is_relevant = item.get("is_relevant")
        if not isinstance(is_relevant, bool):
            raise DataQualityError(f"relevance verdict for {member_id} has no boolean is_relevant")
        reasoning = item.get("reasoning")
        verdicts[member_id] = {
            "member_id": member_id,
            "is_relevant": is_relevant,
            "reasoning": reasoning.strip() if isinstance(reasoning, str) else "",
        }

    missing = expected - verdicts.keys()
    if missing:
        raise DataQualityError(f"relevance reply is missing {len(missing)} candidates")
    return [verdicts[member_id] for member_id in expected_member_ids if member_id in verdicts]
