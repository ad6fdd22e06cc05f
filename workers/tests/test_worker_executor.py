from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from relay_workers import main as worker_main
from relay_workers.core.errors import DataQualityError, TransientError, UnsupportedJobError, classify_error, error_payload
from relay_workers.jobs import executor
from relay_workers.jobs.executor import JobDependencies, execute_job


def _dependencies() -> JobDependencies:
    return JobDependencies(ai_client=object(), embedding_client=object(), delivery_webhook_url="https://push.test")


def _job(kind: str) -> dict[str, Any]:
    return {"id": "job-1", "kind": kind, "target_type": "resource", "target_id": "resource-1", "inputs_json": {}}


@pytest.mark.parametrize(
    ("kind", "handler_name"),
    [
        ("sync_source", "execute_sync_source"),
        ("adjudicate_duplicate", "execute_adjudicate_duplicate"),
        ("match_resource", "execute_match_resource"),
        ("embed_member", "execute_embed_member"),
        ("deliver_notification", "execute_deliver_notification"),
    ],
)
def test_execute_job_dispatches_by_kind(monkeypatch: pytest.MonkeyPatch, kind: str, handler_name: str) -> None:
    seen: dict[str, Any] = {}

    async def fake_handler(job: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        seen["kind"] = job["kind"]
        seen["kwargs"] = kwargs
        return {"handled": True}

    monkeypatch.setattr(executor, handler_name, fake_handler)

    result = asyncio.run(execute_job(_job(kind), dependencies=_dependencies()))

    assert result == {"handled": True}
    assert seen["kind"] == kind
    if kind == "deliver_notification":
        assert seen["kwargs"]["webhook_url"] == "https://push.test"


def test_execute_job_rejects_unknown_kind() -> None:
    with pytest.raises(UnsupportedJobError, match="unsupported job kind: discover"):
        asyncio.run(execute_job(_job("discover"), dependencies=_dependencies()))


def test_classify_error_maps_failures_to_retry_classes() -> None:
    request = httpx.Request("POST", "https://ai.test")

    assert classify_error(TransientError("slow")) == "transient"
    assert classify_error(DataQualityError("bad json")) == "data_quality"
    assert classify_error(httpx.ReadTimeout("timeout", request=request)) == "transient"
    assert classify_error(
        httpx.HTTPStatusError("busy", request=request, response=httpx.Response(503, request=request))
    ) == "transient"
    assert classify_error(
        httpx.HTTPStatusError("nope", request=request, response=httpx.Response(400, request=request))
    ) == "unexpected"
    assert classify_error(KeyError("kind")) == "unexpected"


def test_error_payload_names_the_class_and_type() -> None:
    assert error_payload(DataQualityError("missing verdicts")) == {
        "error": "missing verdicts",
        "error_class": "data_quality",
        "error_type": "DataQualityError",
    }
    assert error_payload(ValueError())["error"] == "ValueError"


class FakeJobClient:
    def __init__(self, *, claim_status: int | None = None) -> None:
        self.claim_status = claim_status
        self.results: list[dict[str, Any]] = []

    async def claim_job(self, job_id: str, lease_seconds: int = 120) -> dict[str, Any]:
        if self.claim_status is not None:
            request = httpx.Request("POST", f"https://api.test/jobs/{job_id}/claim")
            response = httpx.Response(self.claim_status, request=request)
            raise httpx.HTTPStatusError("claim failed", request=request, response=response)
        return {**_job("match_resource"), "id": job_id, "attempt": 1, "lease_seconds": lease_seconds}

    async def submit_result(self, job_id: str, **payload: Any) -> dict[str, Any]:
        self.results.append({"job_id": job_id, **payload})
        return {"id": job_id, "status": payload["status"]}


def test_process_job_submits_done_result(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_execute(job: dict[str, Any], *, dependencies: JobDependencies) -> dict[str, Any]:
        return {"handled": True, "verdicts": []}

    monkeypatch.setattr(worker_main, "execute_job", fake_execute)
    client = FakeJobClient()

    status = asyncio.run(
        worker_main.process_job(client, {"id": "job-7", "kind": "match_resource"}, dependencies=_dependencies(), lease_seconds=60)
    )

    assert status == "done"
    assert client.results == [{"job_id": "job-7", "status": "done", "result_json": {"handled": True, "verdicts": []}}]


def test_process_job_reports_classified_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_execute(job: dict[str, Any], *, dependencies: JobDependencies) -> dict[str, Any]:
        raise DataQualityError("relevance reply is missing 2 candidates")

    monkeypatch.setattr(worker_main, "execute_job", fake_execute)
    client = FakeJobClient()

    status = asyncio.run(
        worker_main.process_job(client, {"id": "job-8", "kind": "match_resource"}, dependencies=_dependencies(), lease_seconds=60)
    )

    assert status == "failed"
    assert client.results[0]["status"] == "failed"
    assert client.results[0]["error_json"]["error_class"] == "data_quality"


def test_process_job_treats_conflicting_claim_as_lost(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_execute(job: dict[str, Any], *, dependencies: JobDependencies) -> dict[str, Any]:
        raise AssertionError("lost jobs must not execute")

    monkeypatch.setattr(worker_main, "execute_job", fake_execute)
    client = FakeJobClient(claim_status=409)

    status = asyncio.run(
        worker_main.process_job(client, {"id": "job-9", "kind": "match_resource"}, dependencies=_dependencies(), lease_seconds=60)
    )

    assert status == "lost"
    assert client.results == []
