from __future__ import annotations

import logging
from typing import Any

from relay_workers.core.errors import DataQualityError
from relay_workers.jobs.prompts import wrap_untrusted
from relay_workers.services.ai_client import AIClient

logger = logging.getLogger(__name__)

VERDICTS = {"same", "different", "uncertain"}

ADJUDICATION_SYSTEM_PROMPT = """You decide whether two community resource listings describe the same real-world
resource (same organisation, same offer or need, same time and place).

Reply with a JSON object {"verdict": "same" | "different" | "uncertain", "reasoning": "<one sentence>"}.
Answer "uncertain" whenever the listings could plausibly be either; a person will review those."""


async def execute_adjudicate_duplicate(job: dict[str, Any], *, ai_client: AIClient) -> dict[str, Any]:
    raw_inputs = job.get("inputs_json")
    inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}
    base = {
        "handled": True,
        "kind": job.get("kind"),
        "target_type": job.get("target_type"),
        "target_id": job.get("target_id"),
    }

    skip_reason = inputs.get("skip_reason")
    resource = inputs.get("resource")
    canonical = inputs.get("canonical")
    if skip_reason or not isinstance(resource, dict) or not isinstance(canonical, dict):
        return {**base, "verdict": None, "skipped": skip_reason or "missing_resources"}

    user_prompt = wrap_untrusted(
        "Listing A:\n"
        f"{resource.get('title', '')}\n{resource.get('description', '')}\n\n"
        "Listing B:\n"
        f"{canonical.get('title', '')}\n{canonical.get('description', '')}"
    )
    payload = await ai_client.complete_json(system_prompt=ADJUDICATION_SYSTEM_PROMPT, user_prompt=user_prompt)
    verdict, reasoning = parse_adjudication(payload)
    logger.info(
        "adjudicated resource=%s canonical=%s verdict=%s",
        resource.get("id"),
        canonical.get("id"),
        verdict,
    )
    return {**base, "verdict": verdict, "reasoning": reasoning, "similarity": inputs.get("similarity")}


def parse_adjudication(payload: Any) -> tuple[str, str]:
    if not isinstance(payload, dict):
        raise DataQualityError("adjudication reply is not an object")
    verdict = payload.get("verdict")
    if not isinstance(verdict, str) or verdict.strip().lower() not in VERDICTS:
        raise DataQualityError(f"adjudication verdict must be one of {sorted(VERDICTS)}")
    reasoning = payload.get("reasoning")
    return verdict.strip().lower(), reasoning.strip() if isinstance(reasoning, str) else ""
