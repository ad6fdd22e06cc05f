from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from relay_workers.core.errors import DataQualityError
from relay_workers.jobs.prompts import wrap_untrusted
from relay_workers.services.ai_client import AIClient
from relay_workers.services.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)

DEFAULT_PARSE_ATTEMPTS = 3
CONFIDENCE_LABELS = {"high": 0.9, "medium": 0.6, "low": 0.3}
URGENCY_ALIASES = {"medium": "normal", "moderate": "normal", "critical": "urgent"}

EXTRACTION_SYSTEM_PROMPT = """You read community web pages and list the resources they announce: needs,
offers, services, volunteer opportunities and events people can act on.

Reply with a JSON object {"resources": [...]} where each item has:
- "title": a clear title of 5-10 words
- "description": the full actionable details (what, when, where, requirements)
- "contact_info": an object of contact details found on the page (phone, email, website, address)
- "urgency": one of "urgent", "high", "normal", "low"
- "confidence": a number between 0 and 1 for how clearly the page states this resource

Only extract resources explicitly stated on the page. Never merge distinct resources into one.
If the page lists nothing, reply {"resources": []}."""


class ExtractedCandidate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    description: str = ""
    contact_info: dict[str, Any] = Field(default_factory=dict)
    urgency: Literal["urgent", "high", "normal", "low"] = "normal"
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("contact_info", mode="before")
    @classmethod
    def _coerce_contact_info(cls, value: Any) -> dict[str, Any]:
        if value is None:
            return {}
        if isinstance(value, str):
            return {"text": value.strip()} if value.strip() else {}
        return value

    @field_validator("urgency", mode="before")
    @classmethod
    def _normalize_urgency(cls, value: Any) -> str:
        if not isinstance(value, str):
            return "normal"
        lowered = value.strip().lower()
        lowered = URGENCY_ALIASES.get(lowered, lowered)
        return lowered if lowered in {"urgent", "high", "normal", "low"} else "normal"

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float | None:
        if isinstance(value, str):
            label = value.strip().lower()
            if label in CONFIDENCE_LABELS:
                return CONFIDENCE_LABELS[label]
            value = label
        try:
            return min(1.0, max(0.0, float(value)))
        except (TypeError, ValueError):
            return None

    def embedding_text(self) -> str:
        return f"{self.title}\n{self.description}".strip()


def parse_extraction(payload: Any) -> list[ExtractedCandidate]:
    """Validate the extractor's reply; candidates without a description are dropped."""
    items = payload.get("resources") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise DataQualityError("extraction reply must contain a resources list")

    candidates: list[ExtractedCandidate] = []
    for item in items:
        if not isinstance(item, dict):
            raise DataQualityError("extraction item is not an object")
        try:
            candidate = ExtractedCandidate.model_validate(item)
        except ValidationError as exc:
            raise DataQualityError(f"extraction item failed validation: {exc.error_count()} errors") from exc
        if candidate.description:
            candidates.append(candidate)
    return candidates


async def extract_candidates(
    *,
    ai_client: AIClient,
    url: str,
    raw_text: str,
    attempts: int = DEFAULT_PARSE_ATTEMPTS,
) -> list[ExtractedCandidate]:
    user_prompt = wrap_untrusted(f"Page URL: {url}\n\nContent:\n{raw_text}")
    last_error: DataQualityError | None = None
    for attempt in range(1, max(1, attempts) + 1):
        try:
            payload = await ai_client.complete_json(system_prompt=EXTRACTION_SYSTEM_PROMPT, user_prompt=user_prompt)
            return parse_extraction(payload)
        except DataQualityError as exc:
            last_error = exc
            logger.warning("extraction parse failed url=%s attempt=%s: %s", url, attempt, exc)
    raise DataQualityError(f"extraction failed after {attempts} attempts: {last_error}")


async def execute_sync_source(
    job: dict[str, Any],
    *,
    ai_client: AIClient,
    embedding_client: EmbeddingClient,
    parse_attempts: int = DEFAULT_PARSE_ATTEMPTS,
) -> dict[str, Any]:
    raw_inputs = job.get("inputs_json")
    inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}
    pages = inputs.get("pages") if isinstance(inputs.get("pages"), list) else []

    result_pages: list[dict[str, Any]] = []
    for page in pages:
        if not isinstance(page, dict):
            continue
        snapshot_id = page.get("snapshot_id")
        url = str(page.get("url") or "")
        raw_text = page.get("raw_text") if isinstance(page.get("raw_text"), str) else ""
        if not raw_text.strip():
            result_pages.append({"snapshot_id": snapshot_id, "url": url, "status": "skipped", "error": "empty_page"})
            continue

        try:
            candidates = await extract_candidates(
                ai_client=ai_client,
                url=url,
                raw_text=raw_text,
                attempts=parse_attempts,
            )
        except DataQualityError as exc:
            # A page that never parses is reported and skipped; it does not fail the cycle.
            result_pages.append({"snapshot_id": snapshot_id, "url": url, "status": "skipped", "error": str(exc)})
            continue

        embeddings = await embedding_client.embed([candidate.embedding_text() for candidate in candidates])
        result_pages.append(
            {
                "snapshot_id": snapshot_id,
                "url": url,
                "status": "extracted",
                "candidates": [
                    {**candidate.model_dump(), "embedding": embedding}
                    for candidate, embedding in zip(candidates, embeddings)
                ],
            }
        )

    extracted = sum(1 for page in result_pages if page["status"] == "extracted")
    logger.info(
        "sync extraction source=%s cycle=%s pages=%s extracted=%s",
        job.get("target_id"),
        inputs.get("cycle_key"),
        len(result_pages),
        extracted,
    )
    return {
        "handled": True,
        "kind": job.get("kind"),
        "target_type": job.get("target_type"),
        "target_id": job.get("target_id"),
        "cycle_key": inputs.get("cycle_key"),
        "pages": result_pages,
    }
