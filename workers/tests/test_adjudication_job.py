from __future__ import annotations

import asyncio
from typing import Any

import pytest

from relay_workers.core.errors import DataQualityError
from relay_workers.jobs.adjudication import execute_adjudicate_duplicate, parse_adjudication


class FakeAIClient:
    def __init__(self, reply: Any) -> None:
        self.reply = reply
        self.calls = 0

    async def complete_json(self, *, system_prompt: str, user_prompt: str) -> Any:
        self.calls += 1
        return self.reply


def _job(**inputs: Any) -> dict[str, Any]:
    return {
        "id": "job-1",
        "kind": "adjudicate_duplicate",
        "target_type": "resource",
        "target_id": "resource-new",
        "inputs_json": inputs,
    }


def test_adjudication_returns_normalized_verdict() -> None:
    ai_client = FakeAIClient({"verdict": " Same ", "reasoning": "Same hall, same Saturday."})
    job = _job(
        resource={"id": "resource-new", "title": "Food bank", "description": "Saturday 9am."},
        canonical={"id": "resource-old", "title": "Food distribution", "description": "Saturdays at 9."},
        similarity=0.91,
    )

    result = asyncio.run(execute_adjudicate_duplicate(job, ai_client=ai_client))

    assert result["verdict"] == "same"
    assert result["reasoning"] == "Same hall, same Saturday."
    assert result["similarity"] == 0.91


def test_adjudication_skips_when_no_longer_staged() -> None:
    ai_client = FakeAIClient({"verdict": "same"})

    result = asyncio.run(execute_adjudicate_duplicate(_job(skip_reason="no_longer_staged"), ai_client=ai_client))

    assert result["verdict"] is None
    assert result["skipped"] == "no_longer_staged"
    assert ai_client.calls == 0


def test_parse_adjudication_rejects_unknown_verdict() -> None:
    with pytest.raises(DataQualityError):
        parse_adjudication({"verdict": "probably"})
    with pytest.raises(DataQualityError):
        parse_adjudication(["same"])
    assert parse_adjudication({"verdict": "uncertain"}) == ("uncertain", "")
