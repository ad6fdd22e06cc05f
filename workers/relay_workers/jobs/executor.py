from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from relay_workers.core.config import Settings
from relay_workers.core.errors import UnsupportedJobError
from relay_workers.jobs.adjudication import execute_adjudicate_duplicate
from relay_workers.jobs.delivery import execute_deliver_notification
from relay_workers.jobs.extraction import execute_sync_source
from relay_workers.jobs.matching import execute_match_resource
from relay_workers.jobs.members import execute_embed_member
from relay_workers.jobs.resources import execute_embed_resource
from relay_workers.services.ai_client import AIClient
from relay_workers.services.embeddings import EmbeddingClient


@dataclass(slots=True)
class JobDependencies:
    ai_client: AIClient
    embedding_client: EmbeddingClient
    delivery_webhook_url: str | None = None
    delivery_timeout_seconds: float = 10.0
    extraction_parse_attempts: int = 3


def build_job_dependencies(settings: Settings) -> JobDependencies:
    return JobDependencies(
        ai_client=AIClient(
            base_url=settings.ai_base_url,
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            timeout_seconds=settings.ai_timeout_seconds,
        ),
        embedding_client=EmbeddingClient(
            base_url=settings.embedding_base_url or settings.ai_base_url,
            api_key=settings.embedding_api_key or settings.ai_api_key,
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            timeout_seconds=settings.ai_timeout_seconds,
        ),
        delivery_webhook_url=settings.delivery_webhook_url,
        delivery_timeout_seconds=settings.delivery_timeout_seconds,
        extraction_parse_attempts=settings.extraction_parse_attempts,
    )


async def execute_job(job: dict[str, Any], *, dependencies: JobDependencies) -> dict[str, Any]:
    kind = job.get("kind")
    if kind == "sync_source":
        return await execute_sync_source(
            job,
            ai_client=dependencies.ai_client,
            embedding_client=dependencies.embedding_client,
            parse_attempts=dependencies.extraction_parse_attempts,
        )
    if kind == "adjudicate_duplicate":
        return await execute_adjudicate_duplicate(job, ai_client=dependencies.ai_client)
    if kind == "match_resource":
        return await execute_match_resource(job, ai_client=dependencies.ai_client)
    if kind == "embed_member":
        return await execute_embed_member(job, embedding_client=dependencies.embedding_client)
    if kind == "embed_resource":
        return await execute_embed_resource(job, embedding_client=dependencies.embedding_client)
    if kind == "deliver_notification":
        return await execute_deliver_notification(
            job,
            webhook_url=dependencies.delivery_webhook_url,
            timeout_seconds=dependencies.delivery_timeout_seconds,
        )

    raise UnsupportedJobError(f"unsupported job kind: {kind}")
