from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any

import httpx
from opentelemetry import trace

from relay_workers.core.config import get_settings
from relay_workers.core.errors import classify_error, error_payload
from relay_workers.core.telemetry import (
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from relay_workers.jobs.executor import JobDependencies, build_job_dependencies, execute_job
from relay_workers.services.job_client import JobClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

LOST_CLAIM_STATUS_CODES = {404, 409}


async def process_job(
    client: JobClient,
    job: dict[str, Any],
    *,
    dependencies: JobDependencies,
    lease_seconds: int,
) -> str:
    """Claim, execute and acknowledge one job; returns the submitted status or "lost"."""
    with tracer.start_as_current_span("worker.process_job") as job_span:
        job_span.set_attribute("job.id", job["id"])
        job_span.set_attribute("job.kind", str(job.get("kind")))
        try:
            claimed = await client.claim_job(job["id"], lease_seconds=lease_seconds)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in LOST_CLAIM_STATUS_CODES:
                logger.info("job id=%s was claimed elsewhere", job["id"])
                return "lost"
            raise

        job_span.set_attribute("job.attempt", int(claimed.get("attempt", 0)))
        try:
            result = await execute_job(claimed, dependencies=dependencies)
        except Exception as exc:
            error_class = classify_error(exc)
            job_span.set_attribute("job.error_class", error_class)
            if error_class == "unexpected":
                logger.exception("job execution failed for id=%s kind=%s", claimed["id"], claimed.get("kind"))
            else:
                logger.warning(
                    "job execution failed for id=%s kind=%s error_class=%s: %s",
                    claimed["id"],
                    claimed.get("kind"),
                    error_class,
                    exc,
                )
            await client.submit_result(claimed["id"], status="failed", error_json=error_payload(exc))
            return "failed"

        await client.submit_result(claimed["id"], status="done", result_json=result)
        return "done"


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging(settings)
    telemetry = setup_worker_telemetry(settings)
    client = JobClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
    )
    dependencies = build_job_dependencies(settings)

    backoff = settings.poll_interval_seconds
    last_reap_at = 0.0
    last_expiry_at = 0.0

    try:
        if settings.embedding_verify_on_startup:
            # Refuse to start against a model whose vectors would not fit the schema.
            await dependencies.embedding_client.verify_dimension()

        while True:
            try:
                with tracer.start_as_current_span("worker.poll_cycle"):
                    now = time.monotonic()
                    if now - last_reap_at >= settings.lease_reaper_interval_seconds:
                        requeued = await client.reap_expired_jobs(limit=settings.lease_reaper_batch_size)
                        if requeued:
                            logger.info("requeued expired leases: %s", requeued)
                        last_reap_at = now

                    if now - last_expiry_at >= settings.resource_expiry_interval_seconds:
                        swept = await client.expire_resources(limit=settings.resource_expiry_batch_size)
                        if swept["expired"] or swept["archived"]:
                            logger.info("resource sweep expired=%s archived=%s", swept["expired"], swept["archived"])
                        last_expiry_at = now

                    jobs = await client.get_jobs(limit=settings.job_batch_size)
                    if not jobs:
                        await asyncio.sleep(settings.poll_interval_seconds)
                        continue

                    for job in jobs:
                        await process_job(
                            client,
                            job,
                            dependencies=dependencies,
                            lease_seconds=settings.claim_lease_seconds,
                        )

                    backoff = settings.poll_interval_seconds
            except Exception as exc:  # pragma: no cover - loop must survive API outages
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        shutdown_worker_telemetry(telemetry)


if __name__ == "__main__":
    asyncio.run(run_worker())
