from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from relay_api.core.config import get_settings
from relay_api.core.fingerprint import candidate_text, compute_content_hash, compute_fingerprint
from relay_api.services.dedupe import (
    DedupeClassification,
    DedupeThresholds,
    SourceRecordMatch,
    VectorNeighbour,
    classify_by_similarity,
    match_source_records,
    resolve_adjudication,
)
from relay_api.services.lifecycle import (
    DEFAULT_TTL_DAYS,
    InvalidTransitionError,
    RESOURCE_STATUSES,
    compute_expires_at,
    is_expired,
    normalize_urgency,
    should_archive_disappeared,
    validate_transition,
)
from relay_api.services.matching import (
    MemberCandidate,
    NotificationPlanEntry,
    parse_verdicts,
    rank_eligible_members,
)
from relay_api.services.sync_tracker import (
    SyncRecordState,
    SyncTransition,
    apply_miss,
    apply_observation,
    resource_has_disappeared,
    should_count_misses,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryForbiddenError(RepositoryError):
    """Raised when an operation is not permitted for the actor."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class _NotificationRolledBack(Exception):
    """Unwinds the per-member savepoint when the notification row already exists."""


@dataclass(slots=True)
class MachineCredentialRecord:
    module_db_id: str
    module_id: str
    scopes: list[str]
    key_hash: str


@dataclass(slots=True)
class CandidateFields:
    title: str
    description: str
    contact_info: dict[str, Any]
    urgency: str
    confidence: float | None
    embedding: list[float] | None
    content_hash: str
    fingerprint: str


JOB_KINDS = {
    "sync_source",
    "adjudicate_duplicate",
    "match_resource",
    "embed_member",
    "embed_resource",
    "deliver_notification",
}
JOB_STATUSES = {"queued", "claimed", "done", "failed", "dead_letter"}
JOB_REQUEUEABLE_STATUSES = {"failed", "dead_letter"}
ERROR_CLASSES = {"transient", "data_quality", "unexpected"}
MATCHING_STATUSES = {"not_started", "queued", "matched", "matching_failed"}
DELIVERY_RESULT_STATUSES = {"delivered", "skipped", "failed"}
ADJUDICATION_VERDICTS = {"same", "different", "uncertain"}

_RESOURCE_COLUMNS = """
  r.id::text as id,
  r.source_id::text as source_id,
  r.title,
  r.description,
  r.contact_info,
  r.urgency::text as urgency,
  r.confidence,
  r.status::text as status,
  r.content_hash,
  r.fingerprint,
  (r.embedding is not null) as has_embedding,
  r.page_snapshot_id::text as page_snapshot_id,
  r.merge_candidate_id::text as merge_candidate_id,
  r.merge_similarity,
  r.merged_into_id::text as merged_into_id,
  r.matching_status::text as matching_status,
  r.approved_at,
  r.expires_at,
  r.rejection_reason,
  r.created_at,
  r.updated_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        job_max_attempts: int,
        job_retry_base_seconds: int,
        job_retry_max_seconds: int,
        dedupe_thresholds: DedupeThresholds | None = None,
        dedupe_neighbour_limit: int = 20,
        adjudicator_enabled: bool = True,
        embedding_dimension: int = 1536,
        disappear_after_misses: int = 2,
        ttl_days_by_urgency: dict[str, int] | None = None,
        disappeared_archive_after_days: int | None = None,
        notification_weekly_cap: int = 3,
        max_notifications_per_resource: int = 5,
        matching_candidate_limit: int = 20,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.job_max_attempts = max(1, job_max_attempts)
        self.job_retry_base_seconds = max(0, job_retry_base_seconds)
        self.job_retry_max_seconds = max(0, job_retry_max_seconds)
        self.dedupe_thresholds = dedupe_thresholds or DedupeThresholds()
        self.dedupe_neighbour_limit = max(1, dedupe_neighbour_limit)
        self.adjudicator_enabled = adjudicator_enabled
        self.embedding_dimension = max(1, embedding_dimension)
        self.disappear_after_misses = max(1, disappear_after_misses)
        self.ttl_days_by_urgency = dict(ttl_days_by_urgency or DEFAULT_TTL_DAYS)
        self.disappeared_archive_after_days = disappeared_archive_after_days
        self.notification_weekly_cap = max(0, notification_weekly_cap)
        self.max_notifications_per_resource = max(0, max_notifications_per_resource)
        self.matching_candidate_limit = max(1, matching_candidate_limit)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              m.id::text as module_db_id,
              m.module_id,
              m.scopes,
              mc.key_hash
            from modules m
            join module_credentials mc on mc.module_id = m.id
            where m.module_id = $1
              and m.enabled = true
              and mc.is_active = true
              and mc.revoked_at is null
              and (mc.expires_at is null or mc.expires_at > now())
            """,
            module_id,
        )
        return [
            MachineCredentialRecord(
                module_db_id=row["module_db_id"],
                module_id=row["module_id"],
                scopes=list(row["scopes"] or []),
                key_hash=row["key_hash"],
            )
            for row in rows
        ]

    # -- fetch boundary -------------------------------------------------

    async def create_snapshots_and_enqueue_sync(
        self,
        *,
        source_key: str,
        source_kind: str,
        source_url: str | None,
        cycle_key: str,
        pages: list[dict[str, Any]],
        actor_module_db_id: str,
    ) -> dict[str, Any]:
        normalized_source_key = self._coerce_text(source_key)
        normalized_cycle_key = self._coerce_text(cycle_key)
        if not normalized_source_key:
            raise RepositoryValidationError("source_key must be a non-empty string")
        if not normalized_cycle_key:
            raise RepositoryValidationError("cycle_key must be a non-empty string")

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                source = await conn.fetchrow(
                    """
                    insert into sources (source_key, kind, url)
                    values ($1, $2, $3)
                    on conflict (source_key)
                    do update set url = coalesce(excluded.url, sources.url)
                    returning id::text as id, enabled
                    """,
                    normalized_source_key,
                    source_kind,
                    source_url,
                )
                if not source["enabled"]:
                    raise RepositoryForbiddenError(f"source is disabled: {normalized_source_key}")
                source_id = source["id"]

                snapshot_ids: list[str] = []
                for page in pages:
                    raw_text = page.get("raw_text") or ""
                    row = await conn.fetchrow(
                        """
                        insert into page_snapshots (source_id, cycle_key, url, raw_text, content_hash, fetched_at)
                        values ($1::uuid, $2, $3, $4, $5, $6)
                        on conflict (source_id, url, content_hash)
                        do update set fetched_at = greatest(page_snapshots.fetched_at, excluded.fetched_at)
                        returning id::text as id
                        """,
                        source_id,
                        normalized_cycle_key,
                        page["url"],
                        raw_text,
                        compute_content_hash(raw_text),
                        page["fetched_at"],
                    )
                    if row["id"] not in snapshot_ids:
                        snapshot_ids.append(row["id"])

                idempotency_key = f"sync_source:{source_id}:{normalized_cycle_key}"
                job_id = await self._enqueue_job(
                    conn=conn,
                    kind="sync_source",
                    target_type="source",
                    target_id=source_id,
                    idempotency_key=idempotency_key,
                    inputs={
                        "source_id": source_id,
                        "source_key": normalized_source_key,
                        "cycle_key": normalized_cycle_key,
                        "snapshot_ids": snapshot_ids,
                    },
                    actor_type="machine",
                    actor_id=actor_module_db_id,
                )
                job_created = job_id is not None
                if job_id is None:
                    job_id = await conn.fetchval(
                        "select id::text from jobs where idempotency_key = $1",
                        idempotency_key,
                    )

                await self._record_event(
                    conn=conn,
                    entity_type="source",
                    entity_id=source_id,
                    event_type="snapshots_received",
                    actor_type="machine",
                    actor_id=actor_module_db_id,
                    payload={
                        "cycle_key": normalized_cycle_key,
                        "snapshot_count": len(snapshot_ids),
                        "job_id": job_id,
                        "job_created": job_created,
                    },
                )
                return {
                    "source_id": source_id,
                    "cycle_key": normalized_cycle_key,
                    "snapshot_ids": snapshot_ids,
                    "job_id": job_id,
                    "job_created": job_created,
                }

    # -- members --------------------------------------------------------

    async def upsert_member(
        self,
        *,
        external_id: str,
        push_token: str | None,
        profile_text: str,
        active: bool,
        actor_module_db_id: str,
    ) -> dict[str, Any]:
        normalized_profile = self._coerce_text(profile_text)
        if not normalized_profile:
            raise RepositoryValidationError("profile_text must be a non-empty string")
        profile_hash = compute_content_hash(normalized_profile)

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    insert into members (external_id, push_token, profile_text, profile_hash, active)
                    values ($1, $2, $3, $4, $5)
                    on conflict (external_id)
                    do update set
                      push_token = excluded.push_token,
                      profile_text = excluded.profile_text,
                      profile_hash = excluded.profile_hash,
                      active = excluded.active
                    returning
                      id::text as id,
                      external_id,
                      push_token,
                      active,
                      (embedding is not null) as has_embedding,
                      notification_count_this_week,
                      notification_window_started_at,
                      created_at,
                      updated_at
                    """,
                    external_id,
                    push_token,
                    normalized_profile,
                    profile_hash,
                    active,
                )
                embed_job_id = await self._enqueue_job(
                    conn=conn,
                    kind="embed_member",
                    target_type="member",
                    target_id=row["id"],
                    idempotency_key=f"embed_member:{row['id']}:{profile_hash[:16]}",
                    inputs={"member_id": row["id"], "profile_hash": profile_hash},
                    actor_type="machine",
                    actor_id=actor_module_db_id,
                )
                member = self._member_row_to_dict(row)
                member["embed_job_id"] = embed_job_id
                return member

    # -- jobs -----------------------------------------------------------

    async def list_queued_jobs(self, limit: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              kind::text as kind,
              target_type,
              target_id::text as target_id,
              inputs_json,
              status::text as status,
              attempt
            from jobs
            where status = 'queued' and next_run_at <= now()
            order by next_run_at asc, created_at asc
            limit $1
            """,
            limit,
        )
        return [self._job_row_to_dict(row) for row in rows]

    async def claim_job(self, job_id: str, module_db_id: str, lease_seconds: int) -> dict[str, Any]:
        pool = await self._get_pool()

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        update jobs
                        set
                          status = 'claimed',
                          locked_by_module_id = $2::uuid,
                          locked_at = now(),
                          lease_expires_at = now() + ($3::int * interval '1 second'),
                          attempt = attempt + 1
                        where id = $1::uuid and status = 'queued' and next_run_at <= now()
                        returning
                          id::text as id,
                          kind::text as kind,
                          target_type,
                          target_id::text as target_id,
                          inputs_json,
                          status::text as status,
                          attempt
                        """,
                        job_id,
                        module_db_id,
                        lease_seconds,
                    )

                    if not row:
                        exists = await conn.fetchval("select 1 from jobs where id = $1::uuid", job_id)
                        if not exists:
                            raise RepositoryNotFoundError("job not found")
                        raise RepositoryConflictError("job is not claimable")

                    await self._record_event(
                        conn=conn,
                        entity_type="job",
                        entity_id=row["id"],
                        event_type="claimed",
                        actor_type="machine",
                        actor_id=module_db_id,
                        payload={"lease_seconds": lease_seconds, "attempt": int(row["attempt"])},
                    )
                    job = self._job_row_to_dict(row)
                    job["inputs_json"] = await self._enrich_claimed_job_inputs(conn=conn, job=job)
                    return job
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    async def _enrich_claimed_job_inputs(self, *, conn: asyncpg.Connection, job: dict[str, Any]) -> dict[str, Any]:
        """Attach the current database state a handler needs.

        Match and adjudication inputs are persisted back onto the job because the
        result is applied against exactly what the worker was shown. Page text is
        only handed out, never copied into the job row.
        """
        inputs = self._coerce_json_dict(job.get("inputs_json"))
        kind = job["kind"]
        target_id = job.get("target_id")

        if kind == "sync_source":
            snapshot_ids = self._coerce_text_list(inputs.get("snapshot_ids"))
            rows = await conn.fetch(
                """
                select id::text as snapshot_id, url, raw_text, fetched_at
                from page_snapshots
                where id = any($1::uuid[])
                order by url asc, id asc
                """,
                snapshot_ids,
            )
            inputs["pages"] = [
                {
                    "snapshot_id": row["snapshot_id"],
                    "url": row["url"],
                    "raw_text": row["raw_text"],
                    "fetched_at": row["fetched_at"].isoformat(),
                }
                for row in rows
            ]
            return inputs

        if kind == "match_resource" and target_id:
            resource = await conn.fetchrow(
                """
                select id::text as id, title, description, urgency::text as urgency,
                       status::text as status, (embedding is not null) as has_embedding
                from resources
                where id = $1::uuid
                """,
                target_id,
            )
            candidates: list[dict[str, Any]] = []
            if resource is None:
                inputs["skip_reason"] = "resource_missing"
            elif resource["status"] != "active":
                inputs["skip_reason"] = "resource_not_active"
            elif not resource["has_embedding"]:
                inputs["skip_reason"] = "resource_embedding_missing"
            else:
                inputs.pop("skip_reason", None)
                rows = await conn.fetch(
                    """
                    select
                      m.id::text as member_id,
                      m.profile_text,
                      1 - (m.embedding <=> r.embedding) as similarity
                    from resources r
                    join members m on m.active = true and m.embedding is not null
                    where r.id = $1::uuid
                    order by m.embedding <=> r.embedding asc, m.id asc
                    limit $2
                    """,
                    target_id,
                    self.matching_candidate_limit,
                )
                candidates = [
                    {
                        "member_id": row["member_id"],
                        "profile_text": row["profile_text"],
                        "similarity": float(row["similarity"]),
                    }
                    for row in rows
                ]
            if resource is not None:
                inputs["resource"] = {
                    "id": resource["id"],
                    "title": resource["title"],
                    "description": resource["description"],
                    "urgency": resource["urgency"],
                }
            inputs["candidates"] = candidates
            await self._persist_job_inputs(conn=conn, job_id=job["id"], inputs=inputs)
            return inputs

        if kind == "adjudicate_duplicate" and target_id:
            row = await conn.fetchrow(
                """
                select
                  r.id::text as id,
                  r.title,
                  r.description,
                  r.status::text as status,
                  r.merge_similarity,
                  c.id::text as canonical_id,
                  c.title as canonical_title,
                  c.description as canonical_description
                from resources r
                left join resources c on c.id = r.merge_candidate_id
                where r.id = $1::uuid
                """,
                target_id,
            )
            if row is None or row["canonical_id"] is None or row["status"] != "pending_approval":
                inputs["skip_reason"] = "no_longer_staged"
            else:
                inputs.pop("skip_reason", None)
                inputs["resource"] = {"id": row["id"], "title": row["title"], "description": row["description"]}
                inputs["canonical"] = {
                    "id": row["canonical_id"],
                    "title": row["canonical_title"],
                    "description": row["canonical_description"],
                }
                inputs["similarity"] = self._coerce_float(row["merge_similarity"])
            await self._persist_job_inputs(conn=conn, job_id=job["id"], inputs=inputs)
            return inputs

        if kind == "embed_member" and target_id:
            row = await conn.fetchrow(
                "select profile_text, profile_hash from members where id = $1::uuid",
                target_id,
            )
            if row is None:
                inputs["skip_reason"] = "member_missing"
            else:
                inputs["profile_text"] = row["profile_text"]
                inputs["current_profile_hash"] = row["profile_hash"]
            return inputs

        if kind == "embed_resource" and target_id:
            row = await conn.fetchrow(
                "select title, description, content_hash from resources where id = $1::uuid",
                target_id,
            )
            if row is None:
                inputs["skip_reason"] = "resource_missing"
            else:
                inputs["text"] = f"{row['title']}\n{row['description']}".strip()
                inputs["current_content_hash"] = row["content_hash"]
            return inputs

        if kind == "deliver_notification" and target_id:
            row = await conn.fetchrow(
                """
                select
                  n.id::text as notification_id,
                  n.reasoning,
                  n.sent_at,
                  m.id::text as member_id,
                  m.external_id as member_external_id,
                  m.push_token,
                  r.id::text as resource_id,
                  r.title,
                  r.description,
                  r.contact_info
                from notifications n
                join members m on m.id = n.member_id
                join resources r on r.id = n.resource_id
                where n.id = $1::uuid
                """,
                target_id,
            )
            if row is None:
                inputs["skip_reason"] = "notification_missing"
            else:
                inputs["notification"] = {
                    "id": row["notification_id"],
                    "reasoning": row["reasoning"],
                    "sent_at": row["sent_at"].isoformat(),
                    "member_id": row["member_id"],
                    "member_external_id": row["member_external_id"],
                    "push_token": row["push_token"],
                    "resource_id": row["resource_id"],
                    "title": row["title"],
                    "description": row["description"],
                    "contact_info": self._coerce_json_dict(row["contact_info"]),
                }
            return inputs

        return inputs

    async def requeue_expired_claimed_jobs(self, module_db_id: str, limit: int) -> int:
        return await self._requeue_expired_claimed_jobs(
            actor_id=module_db_id,
            actor_type="machine",
            limit=limit,
        )

    async def admin_requeue_expired_claimed_jobs(self, *, actor_user_id: str, limit: int) -> int:
        normalized_actor_user_id = self._coerce_text(actor_user_id)
        if not normalized_actor_user_id:
            raise RepositoryValidationError("actor_user_id must be a non-empty string")
        return await self._requeue_expired_claimed_jobs(
            actor_id=normalized_actor_user_id,
            actor_type="human",
            limit=limit,
        )

    async def _requeue_expired_claimed_jobs(self, *, actor_id: str, actor_type: str, limit: int) -> int:
        pool = await self._get_pool()
        bounded_limit = max(1, min(limit, 1000))

        async with pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    """
                    with expired as (
                      select id
                      from jobs
                      where status = 'claimed'
                        and lease_expires_at is not null
                        and lease_expires_at <= now()
                      order by lease_expires_at asc
                      limit $1
                      for update skip locked
                    )
                    update jobs j
                    set
                      status = 'queued',
                      locked_by_module_id = null,
                      locked_at = null,
                      lease_expires_at = null,
                      next_run_at = now()
                    from expired e
                    where j.id = e.id
                    returning j.id::text as id
                    """,
                    bounded_limit,
                )

                for row in rows:
                    await self._record_event(
                        conn=conn,
                        entity_type="job",
                        entity_id=row["id"],
                        event_type="lease_requeued",
                        actor_type=actor_type,
                        actor_id=actor_id,
                        payload={"reason": "lease_expired"},
                    )
                if rows:
                    logger.info("requeued %s jobs with expired leases", len(rows))
                return len(rows)

    async def submit_job_result(
        self,
        job_id: str,
        module_db_id: str,
        status: str,
        result_json: dict[str, Any] | None,
        error_json: dict[str, Any] | None,
    ) -> dict[str, Any]:
        pool = await self._get_pool()

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    claimed = await conn.fetchrow(
                        """
                        select
                          id::text as id,
                          kind::text as kind,
                          target_type,
                          target_id::text as target_id,
                          inputs_json,
                          status::text as status,
                          locked_by_module_id::text as locked_by,
                          attempt
                        from jobs
                        where id = $1::uuid
                        for update
                        """,
                        job_id,
                    )

                    if not claimed:
                        raise RepositoryNotFoundError("job not found")
                    if claimed["status"] != "claimed":
                        raise RepositoryConflictError("job is not in claimed state")
                    if claimed["locked_by"] != module_db_id:
                        raise RepositoryForbiddenError("job claimed by another module")

                    attempt = int(claimed["attempt"])
                    next_run_at: datetime | None = None
                    requested_status = status
                    rejected_reason: str | None = None
                    if status == "done":
                        rejected_reason = self._check_result_payload(kind=claimed["kind"], result_json=result_json)
                    if rejected_reason is not None:
                        # An unusable payload is a failed attempt, not a silent partial apply.
                        status = "failed"
                        error_json = {
                            "error": rejected_reason,
                            "error_class": "data_quality",
                            "error_type": "ResultRejected",
                        }
                        logger.warning(
                            "job result rejected id=%s kind=%s reason=%s",
                            job_id,
                            claimed["kind"],
                            rejected_reason,
                        )
                    resolved_status = status
                    retry_delay_seconds: int | None = None
                    error_class = self._resolve_error_class(error_json)

                    if status == "failed":
                        if attempt >= self.job_max_attempts:
                            # Exhausted transient failures stay visible as failed; anything else is dead-lettered.
                            resolved_status = "failed" if error_class == "transient" else "dead_letter"
                        else:
                            retry_delay_seconds = self._compute_retry_delay_seconds(attempt=attempt)
                            next_run_at = datetime.now(timezone.utc) + timedelta(seconds=retry_delay_seconds)
                            resolved_status = "queued"

                    row = await conn.fetchrow(
                        """
                        update jobs
                        set
                          status = $2::job_status,
                          result_json = $3::jsonb,
                          error_json = $4::jsonb,
                          locked_by_module_id = null,
                          locked_at = null,
                          lease_expires_at = null,
                          next_run_at = coalesce($5::timestamptz, next_run_at)
                        where id = $1::uuid
                        returning
                          id::text as id,
                          kind::text as kind,
                          target_type,
                          target_id::text as target_id,
                          inputs_json,
                          status::text as status,
                          attempt
                        """,
                        job_id,
                        resolved_status,
                        json.dumps(result_json) if result_json is not None else None,
                        json.dumps(error_json) if error_json is not None else None,
                        next_run_at,
                    )
                    job = self._job_row_to_dict(row)

                    outcome: dict[str, Any] | None = None
                    if job["status"] == "done":
                        outcome = await self._apply_job_result(
                            conn=conn,
                            job=job,
                            actor_module_db_id=module_db_id,
                            result_json=result_json,
                        )
                    elif job["status"] in {"failed", "dead_letter"}:
                        outcome = await self._apply_exhausted_job_fallback(
                            conn=conn,
                            job=job,
                            actor_module_db_id=module_db_id,
                            error_class=error_class,
                            error_json=error_json,
                        )

                    if outcome is not None:
                        merged_result_json = self._coerce_json_dict(result_json)
                        merged_result_json["repository_outcome"] = outcome
                        await conn.execute(
                            """
                            update jobs
                            set result_json = $2::jsonb
                            where id = $1::uuid
                            """,
                            job["id"],
                            json.dumps(merged_result_json, default=str),
                        )

                    await self._record_event(
                        conn=conn,
                        entity_type="job",
                        entity_id=job["id"],
                        event_type="result_submitted",
                        actor_type="machine",
                        actor_id=module_db_id,
                        payload={
                            "requested_status": requested_status,
                            "resolved_status": resolved_status,
                            "rejected_reason": rejected_reason,
                            "error_class": error_class,
                            "attempt": attempt,
                            "max_attempts": self.job_max_attempts,
                            "retry_delay_seconds": retry_delay_seconds,
                        },
                    )
                    if status == "failed" and resolved_status == "queued" and retry_delay_seconds is not None:
                        await self._record_event(
                            conn=conn,
                            entity_type="job",
                            entity_id=job["id"],
                            event_type="retry_scheduled",
                            actor_type="machine",
                            actor_id=module_db_id,
                            payload={
                                "attempt": attempt,
                                "max_attempts": self.job_max_attempts,
                                "retry_delay_seconds": retry_delay_seconds,
                                "error_class": error_class,
                            },
                        )
                    if resolved_status == "dead_letter":
                        logger.warning(
                            "job dead-lettered id=%s kind=%s attempt=%s error_class=%s",
                            job["id"],
                            job["kind"],
                            attempt,
                            error_class,
                        )
                    return job
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    def _check_result_payload(self, *, kind: str, result_json: dict[str, Any] | None) -> str | None:
        """Return why a completed result cannot be applied, or None when it can."""
        payload = result_json if isinstance(result_json, dict) else {}

        if kind == "sync_source":
            for page in self._coerce_json_list(payload.get("pages")):
                if page.get("status") != "extracted":
                    continue
                for candidate in self._coerce_json_list(page.get("candidates")):
                    if not self._coerce_text(candidate.get("description")):
                        continue
                    if self._coerce_embedding(candidate.get("embedding")) is None:
                        return (
                            f"candidate on snapshot {page.get('snapshot_id')} has no "
                            f"{self.embedding_dimension}-dimension embedding"
                        )
            return None

        if kind in {"embed_member", "embed_resource"}:
            if payload.get("skipped"):
                return None
            if self._coerce_embedding(payload.get("embedding")) is None:
                return f"embedding must be a list of {self.embedding_dimension} numbers"
            return None

        return None

    async def _apply_job_result(
        self,
        *,
        conn: asyncpg.Connection,
        job: dict[str, Any],
        actor_module_db_id: str,
        result_json: dict[str, Any] | None,
    ) -> dict[str, Any] | None:
        kind = job["kind"]
        target_id = job.get("target_id")
        if not target_id:
            return None
        payload = result_json if isinstance(result_json, dict) else {}
        inputs = self._coerce_json_dict(job.get("inputs_json"))

        if kind == "sync_source":
            return await self._apply_sync_source_result(
                conn=conn,
                job_id=job["id"],
                source_id=target_id,
                inputs=inputs,
                result_json=payload,
                actor_module_db_id=actor_module_db_id,
            )
        if kind == "adjudicate_duplicate":
            return await self._apply_adjudication_result(
                conn=conn,
                job_id=job["id"],
                resource_id=target_id,
                result_json=payload,
                actor_module_db_id=actor_module_db_id,
            )
        if kind == "match_resource":
            return await self._apply_match_result(
                conn=conn,
                job_id=job["id"],
                resource_id=target_id,
                inputs=inputs,
                result_json=payload,
                actor_module_db_id=actor_module_db_id,
            )
        if kind == "embed_member":
            return await self._apply_member_embedding(conn=conn, member_id=target_id, inputs=inputs, result_json=payload)
        if kind == "embed_resource":
            return await self._apply_resource_embedding(
                conn=conn,
                resource_id=target_id,
                inputs=inputs,
                result_json=payload,
                actor_module_db_id=actor_module_db_id,
            )
        if kind == "deliver_notification":
            return await self._apply_delivery_result(conn=conn, notification_id=target_id, result_json=payload)
        return None

    async def _apply_exhausted_job_fallback(
        self,
        *,
        conn: asyncpg.Connection,
        job: dict[str, Any],
        actor_module_db_id: str,
        error_class: str,
        error_json: dict[str, Any] | None,
    ) -> dict[str, Any]:
        kind = job["kind"]
        target_id = job.get("target_id")
        error_message = self._coerce_text(self._coerce_json_dict(error_json).get("error"))
        outcome: dict[str, Any] = {"fallback": "none", "error_class": error_class}

        if kind == "match_resource" and target_id:
            updated = await conn.fetchval(
                """
                update resources
                set matching_status = 'matching_failed'
                where id = $1::uuid and matching_status <> 'matched'
                returning id::text
                """,
                target_id,
            )
            outcome["fallback"] = "matching_failed" if updated else "none"
        elif kind == "embed_resource" and target_id:
            updated = await conn.fetchval(
                """
                update resources
                set matching_status = 'matching_failed'
                where id = $1::uuid and matching_status = 'not_started'
                returning id::text
                """,
                target_id,
            )
            outcome["fallback"] = "matching_failed" if updated else "none"
        elif kind == "deliver_notification" and target_id:
            updated = await conn.fetchval(
                """
                update notifications
                set delivery_status = 'failed', delivery_error = $2
                where id = $1::uuid and delivery_status = 'pending'
                returning id::text
                """,
                target_id,
                error_message,
            )
            outcome["fallback"] = "delivery_failed" if updated else "none"
        elif kind == "adjudicate_duplicate":
            outcome["fallback"] = "left_staged_for_review"
        elif kind == "sync_source":
            outcome["fallback"] = "cycle_not_applied"

        await self._record_event(
            conn=conn,
            entity_type="job",
            entity_id=job["id"],
            event_type="retry_exhausted",
            actor_type="machine",
            actor_id=actor_module_db_id,
            payload={"kind": kind, "target_id": target_id, "error": error_message, **outcome},
        )
        return outcome

    # -- dedupe and sync tracking ----------------------------------------

    async def _apply_sync_source_result(
        self,
        *,
        conn: asyncpg.Connection,
        job_id: str,
        source_id: str,
        inputs: dict[str, Any],
        result_json: dict[str, Any],
        actor_module_db_id: str,
    ) -> dict[str, Any]:
        cycle_key = self._coerce_text(inputs.get("cycle_key")) or self._coerce_text(result_json.get("cycle_key"))
        if not cycle_key:
            return {"status": "skipped_missing_cycle_key"}

        pages = self._coerce_json_list(result_json.get("pages"))
        extracted_pages = [page for page in pages if page.get("status") == "extracted"]
        pages_submitted = len(self._coerce_text_list(inputs.get("snapshot_ids"))) or len(pages)

        decisions: dict[str, int] = {}
        observed: set[str] = set()
        for page in extracted_pages:
            snapshot_id = self._coerce_text(page.get("snapshot_id"))
            for candidate in self._coerce_json_list(page.get("candidates")):
                applied = await self._apply_sync_candidate(
                    conn=conn,
                    source_id=source_id,
                    cycle_key=cycle_key,
                    snapshot_id=snapshot_id,
                    candidate=candidate,
                    actor_module_db_id=actor_module_db_id,
                )
                decision = applied["decision"] if applied else "invalid_candidate"
                decisions[decision] = decisions.get(decision, 0) + 1
                if applied and applied.get("resource_id"):
                    observed.add(applied["resource_id"])

        misses: dict[str, Any] = {"counted": False, "missed_records": 0, "disappeared_resources": 0}
        if should_count_misses(pages_submitted=pages_submitted, pages_extracted=len(extracted_pages)):
            misses = await self._apply_sync_misses(
                conn=conn,
                source_id=source_id,
                cycle_key=cycle_key,
                actor_module_db_id=actor_module_db_id,
            )

        outcome = {
            "cycle_key": cycle_key,
            "pages_submitted": pages_submitted,
            "pages_extracted": len(extracted_pages),
            "decisions": decisions,
            "observed_resources": len(observed),
            "misses": misses,
        }
        await self._record_event(
            conn=conn,
            entity_type="source",
            entity_id=source_id,
            event_type="sync_cycle_applied",
            actor_type="machine",
            actor_id=actor_module_db_id,
            payload={"job_id": job_id, **outcome},
        )
        return outcome

    async def _apply_sync_candidate(
        self,
        *,
        conn: asyncpg.Connection,
        source_id: str,
        cycle_key: str,
        snapshot_id: str | None,
        candidate: dict[str, Any],
        actor_module_db_id: str,
    ) -> dict[str, Any] | None:
        fields = self._build_candidate_fields(candidate)
        if fields is None:
            return None

        try:
            async with conn.transaction():
                return await self._dedupe_candidate(
                    conn=conn,
                    source_id=source_id,
                    cycle_key=cycle_key,
                    snapshot_id=snapshot_id,
                    fields=fields,
                    actor_module_db_id=actor_module_db_id,
                    allow_content_writes=True,
                )
        except pg_exc.UniqueViolationError:
            # Lost a race on (source, content_hash); the winner's row is visible now.
            async with conn.transaction():
                return await self._dedupe_candidate(
                    conn=conn,
                    source_id=source_id,
                    cycle_key=cycle_key,
                    snapshot_id=snapshot_id,
                    fields=fields,
                    actor_module_db_id=actor_module_db_id,
                    allow_content_writes=False,
                )

    def _build_candidate_fields(self, candidate: dict[str, Any]) -> CandidateFields | None:
        description = self._coerce_text(candidate.get("description"))
        if not description:
            return None
        title = self._coerce_text(candidate.get("title")) or description[:120]
        contact_info = self._coerce_contact_info(candidate.get("contact_info"))
        text = candidate_text(title, description, contact_info)
        return CandidateFields(
            title=title,
            description=description,
            contact_info=contact_info,
            urgency=normalize_urgency(candidate.get("urgency")),
            confidence=self._coerce_float(candidate.get("confidence")),
            embedding=self._coerce_embedding(candidate.get("embedding")),
            content_hash=compute_content_hash(text),
            fingerprint=compute_fingerprint(text),
        )

    async def _dedupe_candidate(
        self,
        *,
        conn: asyncpg.Connection,
        source_id: str,
        cycle_key: str,
        snapshot_id: str | None,
        fields: CandidateFields,
        actor_module_db_id: str,
        allow_content_writes: bool,
    ) -> dict[str, Any]:
        record_rows = await conn.fetch(
            """
            select
              s.resource_id::text as resource_id,
              s.content_hash,
              s.fingerprint,
              r.status::text as status
            from source_sync_records s
            join resources r on r.id = s.resource_id
            where s.source_id = $1::uuid
              and (s.content_hash = $2 or s.fingerprint = $3)
              and r.status in ('pending_approval', 'active', 'disappeared')
            order by s.resource_id
            for update of r
            """,
            source_id,
            fields.content_hash,
            fields.fingerprint,
        )
        records = [
            SourceRecordMatch(
                resource_id=row["resource_id"],
                content_hash=row["content_hash"],
                fingerprint=row["fingerprint"],
                status=row["status"],
            )
            for row in record_rows
        ]
        classification = match_source_records(
            content_hash=fields.content_hash,
            fingerprint=fields.fingerprint,
            records=records,
        )

        if classification is not None and classification.matched_resource_id:
            resource_id = classification.matched_resource_id
            if classification.decision == "content_updated" and allow_content_writes:
                await self._update_resource_content(
                    conn=conn,
                    resource_id=resource_id,
                    fields=fields,
                    snapshot_id=snapshot_id,
                )
                await self._insert_version(
                    conn=conn,
                    resource_id=resource_id,
                    reason="content_updated",
                    actor_type="machine",
                    actor_id=actor_module_db_id,
                    reasoning=classification.reasoning,
                    source_id=source_id,
                    page_snapshot_id=snapshot_id,
                )
            await self._observe_resource(
                conn=conn,
                resource_id=resource_id,
                source_id=source_id,
                cycle_key=cycle_key,
                fields=fields,
                snapshot_id=snapshot_id,
                actor_module_db_id=actor_module_db_id,
            )
            return {"decision": classification.decision, "resource_id": resource_id}

        if not allow_content_writes:
            existing_id = await conn.fetchval(
                """
                select id::text
                from resources
                where source_id = $1::uuid and content_hash = $2 and status in ('pending_approval', 'active')
                """,
                source_id,
                fields.content_hash,
            )
            if existing_id:
                await self._observe_resource(
                    conn=conn,
                    resource_id=existing_id,
                    source_id=source_id,
                    cycle_key=cycle_key,
                    fields=fields,
                    snapshot_id=snapshot_id,
                    actor_module_db_id=actor_module_db_id,
                )
                return {"decision": "unchanged", "resource_id": existing_id}

        classification = await self._classify_by_neighbours(conn=conn, fields=fields)

        if classification.decision == "auto_merge" and classification.matched_resource_id:
            canonical_id = classification.matched_resource_id
            canonical_status = await conn.fetchval(
                "select status::text from resources where id = $1::uuid for update",
                canonical_id,
            )
            if canonical_status in {"pending_approval", "active"}:
                await self._observe_resource(
                    conn=conn,
                    resource_id=canonical_id,
                    source_id=source_id,
                    cycle_key=cycle_key,
                    fields=fields,
                    snapshot_id=snapshot_id,
                    actor_module_db_id=actor_module_db_id,
                )
                await self._insert_version(
                    conn=conn,
                    resource_id=canonical_id,
                    reason="auto_merged",
                    actor_type="machine",
                    actor_id=actor_module_db_id,
                    matched_resource_id=canonical_id,
                    similarity=classification.similarity,
                    reasoning=classification.reasoning,
                    source_id=source_id,
                    page_snapshot_id=snapshot_id,
                )
                return {"decision": "auto_merge", "resource_id": canonical_id}
            classification = DedupeClassification(
                decision="new",
                matched_resource_id=canonical_id,
                similarity=classification.similarity,
                reasoning=f"auto-merge target no longer live ({canonical_status})",
            )

        staged = classification.decision == "merge_staged"
        inserted_id = await conn.fetchval(
            """
            insert into resources (
              source_id,
              title,
              description,
              contact_info,
              urgency,
              confidence,
              status,
              content_hash,
              fingerprint,
              embedding,
              page_snapshot_id,
              merge_candidate_id,
              merge_similarity
            )
            values (
              $1::uuid, $2, $3, $4::jsonb, $5::resource_urgency, $6, 'pending_approval',
              $7, $8, $9::vector, $10::uuid, $11::uuid, $12
            )
            on conflict (source_id, content_hash) where status in ('pending_approval', 'active') do nothing
            returning id::text
            """,
            source_id,
            fields.title,
            fields.description,
            json.dumps(fields.contact_info),
            fields.urgency,
            fields.confidence,
            fields.content_hash,
            fields.fingerprint,
            self._vector_literal(fields.embedding),
            snapshot_id,
            classification.matched_resource_id if staged else None,
            classification.similarity if staged else None,
        )

        if inserted_id is None:
            existing_id = await conn.fetchval(
                """
                select id::text
                from resources
                where source_id = $1::uuid and content_hash = $2 and status in ('pending_approval', 'active')
                """,
                source_id,
                fields.content_hash,
            )
            if existing_id is None:
                raise RepositoryConflictError("live resource conflict could not be resolved")
            await self._observe_resource(
                conn=conn,
                resource_id=existing_id,
                source_id=source_id,
                cycle_key=cycle_key,
                fields=fields,
                snapshot_id=snapshot_id,
                actor_module_db_id=actor_module_db_id,
            )
            return {"decision": "unchanged", "resource_id": existing_id}

        await self._observe_resource(
            conn=conn,
            resource_id=inserted_id,
            source_id=source_id,
            cycle_key=cycle_key,
            fields=fields,
            snapshot_id=snapshot_id,
            actor_module_db_id=actor_module_db_id,
        )
        await self._insert_version(
            conn=conn,
            resource_id=inserted_id,
            reason="merge_staged" if staged else "created",
            actor_type="machine",
            actor_id=actor_module_db_id,
            matched_resource_id=classification.matched_resource_id,
            similarity=classification.similarity,
            reasoning=classification.reasoning,
            source_id=source_id,
            page_snapshot_id=snapshot_id,
        )
        if staged and self.adjudicator_enabled:
            await self._enqueue_job(
                conn=conn,
                kind="adjudicate_duplicate",
                target_type="resource",
                target_id=inserted_id,
                idempotency_key=f"adjudicate_duplicate:{inserted_id}",
                inputs={"resource_id": inserted_id, "canonical_id": classification.matched_resource_id},
                actor_type="machine",
                actor_id=actor_module_db_id,
            )
        return {"decision": classification.decision, "resource_id": inserted_id}

    async def _classify_by_neighbours(
        self,
        *,
        conn: asyncpg.Connection,
        fields: CandidateFields,
    ) -> DedupeClassification:
        if fields.embedding is None:
            raise RepositoryValidationError("candidate embedding is missing or has the wrong dimension")
        rows = await conn.fetch(
            """
            select id::text as resource_id, 1 - (embedding <=> $1::vector) as similarity
            from resources
            where status in ('pending_approval', 'active') and embedding is not null
            order by embedding <=> $1::vector asc, id asc
            limit $2
            """,
            self._vector_literal(fields.embedding),
            self.dedupe_neighbour_limit,
        )
        neighbours = [
            VectorNeighbour(resource_id=row["resource_id"], similarity=float(row["similarity"]))
            for row in rows
        ]
        return classify_by_similarity(neighbours, self.dedupe_thresholds)

    async def _update_resource_content(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        fields: CandidateFields,
        snapshot_id: str | None,
    ) -> None:
        await conn.execute(
            """
            update resources
            set
              title = $2,
              description = $3,
              contact_info = $4::jsonb,
              urgency = $5::resource_urgency,
              confidence = coalesce($6, confidence),
              content_hash = $7,
              fingerprint = $8,
              embedding = coalesce($9::vector, embedding),
              page_snapshot_id = coalesce($10::uuid, page_snapshot_id)
            where id = $1::uuid
            """,
            resource_id,
            fields.title,
            fields.description,
            json.dumps(fields.contact_info),
            fields.urgency,
            fields.confidence,
            fields.content_hash,
            fields.fingerprint,
            self._vector_literal(fields.embedding),
            snapshot_id,
        )

    async def _observe_resource(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        source_id: str,
        cycle_key: str,
        fields: CandidateFields,
        snapshot_id: str | None,
        actor_module_db_id: str,
    ) -> SyncTransition:
        row = await conn.fetchrow(
            """
            select consecutive_misses, disappeared_at, last_cycle_key
            from source_sync_records
            where resource_id = $1::uuid and source_id = $2::uuid
            for update
            """,
            resource_id,
            source_id,
        )
        state = self._sync_state_from_row(row) if row else None
        transition = apply_observation(state, cycle_key=cycle_key)
        await conn.execute(
            """
            insert into source_sync_records (
              resource_id,
              source_id,
              content_hash,
              fingerprint,
              page_snapshot_id,
              consecutive_misses,
              disappeared_at,
              last_cycle_key
            )
            values ($1::uuid, $2::uuid, $3, $4, $5::uuid, $6, $7, $8)
            on conflict (resource_id, source_id)
            do update set
              content_hash = excluded.content_hash,
              fingerprint = excluded.fingerprint,
              page_snapshot_id = coalesce(excluded.page_snapshot_id, source_sync_records.page_snapshot_id),
              last_seen_at = now(),
              consecutive_misses = excluded.consecutive_misses,
              disappeared_at = excluded.disappeared_at,
              last_cycle_key = excluded.last_cycle_key
            """,
            resource_id,
            source_id,
            fields.content_hash,
            fields.fingerprint,
            snapshot_id,
            transition.state.consecutive_misses,
            transition.state.disappeared_at,
            transition.state.last_cycle_key,
        )

        status = await conn.fetchval("select status::text from resources where id = $1::uuid", resource_id)
        if status == "disappeared":
            await self._transition_resource(
                conn=conn,
                resource_id=resource_id,
                to_status="active",
                reason="reappeared",
                actor_type="machine",
                actor_id=actor_module_db_id,
                reasoning=f"observed again in cycle {cycle_key}",
                source_id=source_id,
                page_snapshot_id=snapshot_id,
            )
        return transition

    async def _apply_sync_misses(
        self,
        *,
        conn: asyncpg.Connection,
        source_id: str,
        cycle_key: str,
        actor_module_db_id: str,
    ) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        rows = await conn.fetch(
            """
            select
              s.id::text as id,
              s.resource_id::text as resource_id,
              s.consecutive_misses,
              s.disappeared_at,
              s.last_cycle_key
            from source_sync_records s
            join resources r on r.id = s.resource_id
            where s.source_id = $1::uuid
              and s.disappeared_at is null
              and s.last_cycle_key is distinct from $2
              and r.status in ('pending_approval', 'active')
            order by s.resource_id
            for update of s
            """,
            source_id,
            cycle_key,
        )

        missed_records = 0
        disappeared_resources = 0
        for row in rows:
            transition = apply_miss(
                self._sync_state_from_row(row),
                cycle_key=cycle_key,
                now=now,
                disappear_after_misses=self.disappear_after_misses,
            )
            if not transition.changed:
                continue
            missed_records += 1
            await conn.execute(
                """
                update source_sync_records
                set consecutive_misses = $2, disappeared_at = $3, last_cycle_key = $4
                where id = $1::uuid
                """,
                row["id"],
                transition.state.consecutive_misses,
                transition.state.disappeared_at,
                transition.state.last_cycle_key,
            )
            if not transition.newly_disappeared:
                continue

            sibling_rows = await conn.fetch(
                """
                select consecutive_misses, disappeared_at, last_cycle_key
                from source_sync_records
                where resource_id = $1::uuid
                """,
                row["resource_id"],
            )
            if not resource_has_disappeared([self._sync_state_from_row(sibling) for sibling in sibling_rows]):
                continue
            moved = await self._transition_resource(
                conn=conn,
                resource_id=row["resource_id"],
                to_status="disappeared",
                reason="disappeared",
                actor_type="machine",
                actor_id=actor_module_db_id,
                reasoning=f"missed {transition.state.consecutive_misses} consecutive cycles",
                source_id=source_id,
                strict=False,
            )
            if moved:
                disappeared_resources += 1

        return {
            "counted": True,
            "missed_records": missed_records,
            "disappeared_resources": disappeared_resources,
        }

    async def _apply_adjudication_result(
        self,
        *,
        conn: asyncpg.Connection,
        job_id: str,
        resource_id: str,
        result_json: dict[str, Any],
        actor_module_db_id: str,
    ) -> dict[str, Any]:
        verdict = self._coerce_text(result_json.get("verdict"))
        reasoning = self._coerce_text(result_json.get("reasoning"))
        if verdict not in ADJUDICATION_VERDICTS:
            return {"status": "skipped_invalid_verdict", "verdict": verdict}

        row = await self._fetch_resource_row(conn=conn, resource_id=resource_id, for_update=True)
        if row is None or row["status"] != "pending_approval" or row["merge_candidate_id"] is None:
            return {"status": "skipped_not_staged", "verdict": verdict}

        canonical_id = row["merge_candidate_id"]
        action = resolve_adjudication(verdict)
        if action == "merge":
            merged = await self._merge_into(
                conn=conn,
                resource_id=resource_id,
                canonical_id=canonical_id,
                actor_type="machine",
                actor_id=actor_module_db_id,
                reasoning=reasoning or "adjudicator judged both resources the same",
                similarity=self._coerce_float(row["merge_similarity"]),
                strict=False,
            )
            return {"status": "merged" if merged else "skipped_canonical_not_live", "verdict": verdict}

        if action == "release":
            await conn.execute(
                """
                update resources
                set merge_candidate_id = null, merge_similarity = null
                where id = $1::uuid
                """,
                resource_id,
            )
        await self._insert_version(
            conn=conn,
            resource_id=resource_id,
            reason="adjudicated",
            actor_type="machine",
            actor_id=actor_module_db_id,
            matched_resource_id=canonical_id,
            similarity=self._coerce_float(row["merge_similarity"]),
            reasoning=f"{verdict}: {reasoning}" if reasoning else verdict,
        )
        return {"status": "released" if action == "release" else "held_for_review", "verdict": verdict}

    async def _apply_member_embedding(
        self,
        *,
        conn: asyncpg.Connection,
        member_id: str,
        inputs: dict[str, Any],
        result_json: dict[str, Any],
    ) -> dict[str, Any]:
        embedding = self._coerce_embedding(result_json.get("embedding"))
        if embedding is None:
            return {"status": "skipped_invalid_embedding"}
        profile_hash = self._coerce_text(inputs.get("profile_hash"))
        updated = await conn.fetchval(
            """
            update members
            set embedding = $2::vector
            where id = $1::uuid and ($3::text is null or profile_hash = $3)
            returning id::text
            """,
            member_id,
            self._vector_literal(embedding),
            profile_hash,
        )
        return {"status": "embedded" if updated else "skipped_stale_profile"}

    async def _apply_resource_embedding(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        inputs: dict[str, Any],
        result_json: dict[str, Any],
        actor_module_db_id: str,
    ) -> dict[str, Any]:
        embedding = self._coerce_embedding(result_json.get("embedding"))
        if embedding is None:
            return {"status": "skipped", "reason": self._coerce_text(result_json.get("skipped"))}
        row = await conn.fetchrow(
            """
            update resources
            set embedding = $2::vector
            where id = $1::uuid and content_hash = $3
            returning status::text as status, matching_status::text as matching_status
            """,
            resource_id,
            self._vector_literal(embedding),
            self._coerce_text(inputs.get("content_hash")),
        )
        if row is None:
            return {"status": "skipped_stale_content"}

        match_job_id: str | None = None
        if row["status"] == "active" and row["matching_status"] == "not_started":
            match_job_id = await self._enqueue_match_job(
                conn=conn,
                resource_id=resource_id,
                actor_type="machine",
                actor_id=actor_module_db_id,
            )
        return {"status": "embedded", "match_job_id": match_job_id}

    async def _apply_delivery_result(
        self,
        *,
        conn: asyncpg.Connection,
        notification_id: str,
        result_json: dict[str, Any],
    ) -> dict[str, Any]:
        delivery_status = self._coerce_text(result_json.get("delivery_status"))
        if delivery_status not in DELIVERY_RESULT_STATUSES:
            return {"status": "skipped_invalid_delivery_status"}
        updated = await conn.fetchval(
            """
            update notifications
            set
              delivery_status = $2::delivery_status,
              delivered_at = case when $2 = 'delivered' then now() else delivered_at end,
              delivery_error = $3
            where id = $1::uuid and delivery_status = 'pending'
            returning id::text
            """,
            notification_id,
            delivery_status,
            self._coerce_text(result_json.get("error")),
        )
        return {"status": delivery_status if updated else "skipped_already_recorded"}

    # -- relevance matching ---------------------------------------------

    async def _apply_match_result(
        self,
        *,
        conn: asyncpg.Connection,
        job_id: str,
        resource_id: str,
        inputs: dict[str, Any],
        result_json: dict[str, Any],
        actor_module_db_id: str,
    ) -> dict[str, Any]:
        resource = await conn.fetchrow(
            """
            select status::text as status, (embedding is not null) as has_embedding
            from resources
            where id = $1::uuid
            for update
            """,
            resource_id,
        )
        resource_status = resource["status"] if resource else None
        if resource_status != "active":
            return {"status": "skipped_resource_not_active", "resource_status": resource_status}
        if not resource["has_embedding"] or inputs.get("skip_reason") == "resource_embedding_missing":
            return await self._mark_matching_failed(
                conn=conn,
                job_id=job_id,
                resource_id=resource_id,
                reason="resource_embedding_missing",
                actor_module_db_id=actor_module_db_id,
            )

        similarity_by_member: dict[str, float] = {}
        for item in self._coerce_json_list(inputs.get("candidates")):
            member_id = self._coerce_text(item.get("member_id"))
            similarity = self._coerce_float(item.get("similarity"))
            if member_id and similarity is not None:
                similarity_by_member[member_id] = similarity

        verdicts = parse_verdicts(result_json.get("verdicts"))
        relevant_ids = [
            verdict.member_id
            for verdict in verdicts
            if verdict.is_relevant and verdict.member_id in similarity_by_member
        ]
        # Member rows are locked in id order up front so concurrent match results
        # sharing members always acquire them in the same sequence.
        await conn.execute(
            "select id from members where id = any($1::uuid[]) order by id for update",
            relevant_ids,
        )
        stats_rows = await conn.fetch(
            """
            select
              m.id::text as member_id,
              (
                select count(*)::int
                from notifications n
                where n.member_id = m.id and n.sent_at > now() - interval '7 days'
              ) as recent_count,
              exists(
                select 1 from notifications n where n.member_id = m.id and n.resource_id = $2::uuid
              ) as already_notified
            from members m
            where m.id = any($1::uuid[]) and m.active = true
            """,
            relevant_ids,
            resource_id,
        )
        candidates = [
            MemberCandidate(
                member_id=row["member_id"],
                similarity=similarity_by_member[row["member_id"]],
                notifications_last_7_days=int(row["recent_count"]),
                already_notified=bool(row["already_notified"]),
            )
            for row in stats_rows
        ]
        ranked = rank_eligible_members(
            candidates=candidates,
            verdicts=verdicts,
            weekly_cap=self.notification_weekly_cap,
        )

        existing_count = await conn.fetchval(
            "select count(*)::int from notifications where resource_id = $1::uuid",
            resource_id,
        )
        remaining = max(0, self.max_notifications_per_resource - int(existing_count or 0))

        created: list[str] = []
        quota_refused: list[str] = []
        for entry in ranked:
            if len(created) >= remaining:
                break
            notification_id, status = await self._emit_notification(
                conn=conn,
                resource_id=resource_id,
                entry=entry,
            )
            if notification_id is None:
                if status == "quota_reached":
                    quota_refused.append(entry.member_id)
                continue
            created.append(notification_id)
            await self._enqueue_job(
                conn=conn,
                kind="deliver_notification",
                target_type="notification",
                target_id=notification_id,
                idempotency_key=f"deliver_notification:{notification_id}",
                inputs={"notification_id": notification_id, "resource_id": resource_id, "member_id": entry.member_id},
                actor_type="machine",
                actor_id=actor_module_db_id,
            )

        await conn.execute(
            "update resources set matching_status = 'matched' where id = $1::uuid",
            resource_id,
        )
        outcome = {
            "status": "matched",
            "candidates": len(similarity_by_member),
            "relevant": len(set(relevant_ids)),
            "eligible": len(ranked),
            "notifications_created": len(created),
            "notification_ids": created,
            "quota_refused_member_ids": quota_refused,
        }
        await self._record_event(
            conn=conn,
            entity_type="resource",
            entity_id=resource_id,
            event_type="matching_applied",
            actor_type="machine",
            actor_id=actor_module_db_id,
            payload={"job_id": job_id, **outcome},
        )
        return outcome

    async def _mark_matching_failed(
        self,
        *,
        conn: asyncpg.Connection,
        job_id: str,
        resource_id: str,
        reason: str,
        actor_module_db_id: str,
    ) -> dict[str, Any]:
        await conn.execute(
            "update resources set matching_status = 'matching_failed' where id = $1::uuid",
            resource_id,
        )
        outcome = {"status": "matching_failed", "reason": reason}
        await self._record_event(
            conn=conn,
            entity_type="resource",
            entity_id=resource_id,
            event_type="matching_failed",
            actor_type="machine",
            actor_id=actor_module_db_id,
            payload={"job_id": job_id, **outcome},
        )
        logger.warning("matching failed resource_id=%s reason=%s", resource_id, reason)
        return outcome

    async def _emit_notification(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        entry: NotificationPlanEntry,
    ) -> tuple[str | None, str]:
        try:
            async with conn.transaction():
                # Serializes concurrent matching jobs on this member; the recount
                # below runs after the lock and sees every committed notification.
                locked = await conn.fetchval(
                    "select id::text from members where id = $1::uuid for update",
                    entry.member_id,
                )
                if locked is None:
                    return None, "member_missing"

                counted = await conn.fetchval(
                    """
                    update members m
                    set
                      notification_count_this_week = recent.sent + 1,
                      notification_window_started_at = coalesce(recent.oldest, now())
                    from (
                      select count(*)::int as sent, min(sent_at) as oldest
                      from notifications
                      where member_id = $1::uuid and sent_at > now() - interval '7 days'
                    ) recent
                    where m.id = $1::uuid and recent.sent < $2
                    returning m.notification_count_this_week
                    """,
                    entry.member_id,
                    self.notification_weekly_cap,
                )
                if counted is None:
                    return None, "quota_reached"

                notification_id = await conn.fetchval(
                    """
                    insert into notifications (resource_id, member_id, reasoning, similarity)
                    values ($1::uuid, $2::uuid, $3, $4)
                    on conflict (resource_id, member_id) do nothing
                    returning id::text
                    """,
                    resource_id,
                    entry.member_id,
                    entry.reasoning,
                    entry.similarity,
                )
                if notification_id is None:
                    raise _NotificationRolledBack()
                return notification_id, "created"
        except _NotificationRolledBack:
            return None, "already_notified"

    # -- review and lifecycle -------------------------------------------

    async def list_resources(
        self,
        *,
        status: str | None,
        matching_status: str | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        normalized_status = self._coerce_text(status)
        if normalized_status and normalized_status not in RESOURCE_STATUSES:
            raise RepositoryValidationError(f"status must be one of: {', '.join(sorted(RESOURCE_STATUSES))}")
        normalized_matching = self._coerce_text(matching_status)
        if normalized_matching and normalized_matching not in MATCHING_STATUSES:
            raise RepositoryValidationError(
                f"matching_status must be one of: {', '.join(sorted(MATCHING_STATUSES))}"
            )

        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_RESOURCE_COLUMNS}
            from resources r
            where ($1::text is null or r.status::text = $1)
              and ($2::text is null or r.matching_status::text = $2)
            order by r.updated_at desc, r.id desc
            limit $3
            offset $4
            """,
            normalized_status,
            normalized_matching,
            limit,
            offset,
        )
        return [self._resource_row_to_dict(row) for row in rows]

    async def list_review_queue(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_RESOURCE_COLUMNS}
            from resources r
            where r.status = 'pending_approval'
            order by r.confidence asc nulls first, r.created_at asc, r.id asc
            limit $1
            offset $2
            """,
            limit,
            offset,
        )
        return [self._resource_row_to_dict(row) for row in rows]

    async def get_resource(self, resource_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                row = await self._fetch_resource_row(conn=conn, resource_id=resource_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("resource not found") from exc
        if row is None:
            raise RepositoryNotFoundError("resource not found")
        return self._resource_row_to_dict(row)

    async def approve_resource(
        self,
        *,
        resource_id: str,
        actor_user_id: str,
        edits: dict[str, Any],
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await self._fetch_resource_row(conn=conn, resource_id=resource_id, for_update=True)
                    if row is None:
                        raise RepositoryNotFoundError("resource not found")
                    from_status = row["status"]
                    try:
                        validate_transition(from_status=from_status, to_status="active")
                    except InvalidTransitionError as exc:
                        raise RepositoryConflictError(str(exc)) from exc

                    title = self._coerce_text(edits.get("title")) or row["title"]
                    description = self._coerce_text(edits.get("description")) or row["description"]
                    contact_info = (
                        self._coerce_contact_info(edits["contact_info"])
                        if edits.get("contact_info") is not None
                        else self._coerce_json_dict(row["contact_info"])
                    )
                    urgency = normalize_urgency(edits.get("urgency") or row["urgency"])
                    text = candidate_text(title, description, contact_info)
                    content_hash = compute_content_hash(text)
                    edited = content_hash != row["content_hash"] or urgency != row["urgency"]
                    # The stored vector embeds title and description; either changing makes it stale.
                    text_changed = title != row["title"] or description != row["description"]

                    approved_at = datetime.now(timezone.utc)
                    expires_at = compute_expires_at(
                        urgency=urgency,
                        approved_at=approved_at,
                        ttl_days=self.ttl_days_by_urgency,
                    )
                    try:
                        await conn.execute(
                            """
                            update resources
                            set
                              status = 'active',
                              title = $2,
                              description = $3,
                              contact_info = $4::jsonb,
                              urgency = $5::resource_urgency,
                              content_hash = $6,
                              fingerprint = $7,
                              approved_at = $8,
                              expires_at = $9,
                              merge_candidate_id = null,
                              merge_similarity = null,
                              embedding = case when $10::boolean then null else embedding end
                            where id = $1::uuid
                            """,
                            resource_id,
                            title,
                            description,
                            json.dumps(contact_info),
                            urgency,
                            content_hash,
                            compute_fingerprint(text),
                            approved_at,
                            expires_at,
                            text_changed,
                        )
                    except pg_exc.UniqueViolationError as exc:
                        raise RepositoryConflictError(
                            "edited content duplicates another live resource from the same source"
                        ) from exc

                    reason = "approved" if from_status == "pending_approval" else "renewed"
                    await self._insert_version(
                        conn=conn,
                        resource_id=resource_id,
                        reason=reason,
                        actor_type="human",
                        actor_id=actor_user_id,
                        reasoning="approved with edits" if edited else None,
                    )

                    match_job_id: str | None = None
                    embed_job_id: str | None = None
                    if text_changed or not row["has_embedding"]:
                        # Matching is queued once the fresh embedding lands.
                        embed_job_id = await self._enqueue_embed_resource_job(
                            conn=conn,
                            resource_id=resource_id,
                            content_hash=content_hash,
                            actor_type="human",
                            actor_id=actor_user_id,
                        )
                    elif row["matching_status"] == "not_started":
                        match_job_id = await self._enqueue_match_job(
                            conn=conn,
                            resource_id=resource_id,
                            actor_type="human",
                            actor_id=actor_user_id,
                        )

                    await self._record_event(
                        conn=conn,
                        entity_type="resource",
                        entity_id=resource_id,
                        event_type=reason,
                        actor_type="human",
                        actor_id=actor_user_id,
                        payload={
                            "from_status": from_status,
                            "expires_at": expires_at.isoformat(),
                            "edited": edited,
                            "match_job_id": match_job_id,
                            "embed_job_id": embed_job_id,
                        },
                    )
                    updated = await self._fetch_resource_row(conn=conn, resource_id=resource_id)
                    return self._resource_row_to_dict(updated)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("resource not found") from exc

    async def reject_resource(self, *, resource_id: str, actor_user_id: str, reason: str) -> dict[str, Any]:
        normalized_reason = self._coerce_text(reason)
        if not normalized_reason:
            raise RepositoryValidationError("reason must be a non-empty string")

        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await self._transition_resource(
                        conn=conn,
                        resource_id=resource_id,
                        to_status="rejected",
                        reason="rejected",
                        actor_type="human",
                        actor_id=actor_user_id,
                        reasoning=normalized_reason,
                    )
                    await conn.execute(
                        "update resources set rejection_reason = $2 where id = $1::uuid",
                        resource_id,
                        normalized_reason,
                    )
                    row = await self._fetch_resource_row(conn=conn, resource_id=resource_id)
                    return self._resource_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("resource not found") from exc

    async def merge_resource(
        self,
        *,
        resource_id: str,
        canonical_resource_id: str,
        actor_user_id: str,
        reason: str | None,
    ) -> dict[str, Any]:
        if resource_id == canonical_resource_id:
            raise RepositoryValidationError("a resource cannot be merged into itself")

        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await self._merge_into(
                        conn=conn,
                        resource_id=resource_id,
                        canonical_id=canonical_resource_id,
                        actor_type="human",
                        actor_id=actor_user_id,
                        reasoning=self._coerce_text(reason) or "merged by reviewer",
                        similarity=None,
                        strict=True,
                    )
                    row = await self._fetch_resource_row(conn=conn, resource_id=resource_id)
                    return self._resource_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("resource not found") from exc

    async def _merge_into(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        canonical_id: str,
        actor_type: str,
        actor_id: str,
        reasoning: str,
        similarity: float | None,
        strict: bool,
    ) -> bool:
        # Lock both rows in id order so concurrent merges cannot deadlock.
        locked = await conn.fetch(
            """
            select id::text as id, status::text as status
            from resources
            where id = any($1::uuid[])
            order by id
            for update
            """,
            [resource_id, canonical_id],
        )
        statuses = {row["id"]: row["status"] for row in locked}
        if resource_id not in statuses:
            raise RepositoryNotFoundError("resource not found")
        if canonical_id not in statuses:
            raise RepositoryNotFoundError("canonical resource not found")
        if statuses[canonical_id] not in {"pending_approval", "active"}:
            if strict:
                raise RepositoryConflictError(f"canonical resource is not live: {statuses[canonical_id]}")
            return False

        moved = await self._transition_resource(
            conn=conn,
            resource_id=resource_id,
            to_status="merged",
            reason="merged",
            actor_type=actor_type,
            actor_id=actor_id,
            matched_resource_id=canonical_id,
            similarity=similarity,
            reasoning=reasoning,
            strict=strict,
        )
        if not moved:
            return False

        await conn.execute(
            """
            update resources
            set merged_into_id = $2::uuid, merge_candidate_id = null, merge_similarity = null
            where id = $1::uuid
            """,
            resource_id,
            canonical_id,
        )
        # The canonical inherits the absorbed resource's sources; the original records stay.
        await conn.execute(
            """
            insert into source_sync_records (
              resource_id,
              source_id,
              content_hash,
              fingerprint,
              page_snapshot_id,
              first_seen_at,
              last_seen_at,
              disappeared_at,
              consecutive_misses,
              last_cycle_key
            )
            select
              $2::uuid,
              s.source_id,
              s.content_hash,
              s.fingerprint,
              s.page_snapshot_id,
              s.first_seen_at,
              s.last_seen_at,
              s.disappeared_at,
              s.consecutive_misses,
              s.last_cycle_key
            from source_sync_records s
            where s.resource_id = $1::uuid
            on conflict (resource_id, source_id) do nothing
            """,
            resource_id,
            canonical_id,
        )
        await self._insert_version(
            conn=conn,
            resource_id=canonical_id,
            reason="merged",
            actor_type=actor_type,
            actor_id=actor_id,
            matched_resource_id=resource_id,
            similarity=similarity,
            reasoning=f"absorbed {resource_id}: {reasoning}",
        )
        return True

    async def request_rematch(self, *, resource_id: str, actor_user_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await self._fetch_resource_row(conn=conn, resource_id=resource_id, for_update=True)
                    if row is None:
                        raise RepositoryNotFoundError("resource not found")
                    if row["status"] != "active":
                        raise RepositoryConflictError(f"only active resources can be matched: {row['status']}")
                    pending = await conn.fetchval(
                        """
                        select 1
                        from jobs
                        where kind = 'match_resource'
                          and target_id = $1::uuid
                          and status in ('queued', 'claimed')
                        limit 1
                        """,
                        resource_id,
                    )
                    if pending:
                        raise RepositoryConflictError("a matching job is already pending for this resource")
                    job_id = await self._enqueue_match_job(
                        conn=conn,
                        resource_id=resource_id,
                        actor_type="human",
                        actor_id=actor_user_id,
                    )
                    await self._record_event(
                        conn=conn,
                        entity_type="resource",
                        entity_id=resource_id,
                        event_type="rematch_requested",
                        actor_type="human",
                        actor_id=actor_user_id,
                        payload={"job_id": job_id, "previous_matching_status": row["matching_status"]},
                    )
                    updated = await self._fetch_resource_row(conn=conn, resource_id=resource_id)
                    return self._resource_row_to_dict(updated)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("resource not found") from exc

    async def _enqueue_match_job(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        actor_type: str,
        actor_id: str,
    ) -> str | None:
        generation = await conn.fetchval(
            "select count(*)::int + 1 from jobs where kind = 'match_resource' and target_id = $1::uuid",
            resource_id,
        )
        job_id = await self._enqueue_job(
            conn=conn,
            kind="match_resource",
            target_type="resource",
            target_id=resource_id,
            idempotency_key=f"match_resource:{resource_id}:{generation}",
            inputs={"resource_id": resource_id, "generation": generation},
            actor_type=actor_type,
            actor_id=actor_id,
        )
        if job_id is not None:
            await conn.execute(
                "update resources set matching_status = 'queued' where id = $1::uuid",
                resource_id,
            )
        return job_id

    async def _enqueue_embed_resource_job(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        content_hash: str,
        actor_type: str,
        actor_id: str,
    ) -> str | None:
        generation = await conn.fetchval(
            "select count(*)::int + 1 from jobs where kind = 'embed_resource' and target_id = $1::uuid",
            resource_id,
        )
        return await self._enqueue_job(
            conn=conn,
            kind="embed_resource",
            target_type="resource",
            target_id=resource_id,
            idempotency_key=f"embed_resource:{resource_id}:{content_hash[:16]}:{generation}",
            inputs={"resource_id": resource_id, "content_hash": content_hash},
            actor_type=actor_type,
            actor_id=actor_id,
        )

    async def expire_resources(self, *, actor_type: str, actor_id: str, limit: int) -> dict[str, int]:
        """TTL sweep: active past expires_at become expired; optionally archive long-disappeared."""
        pool = await self._get_pool()
        bounded_limit = max(1, min(limit, 1000))
        now = datetime.now(timezone.utc)

        async with pool.acquire() as conn:
            async with conn.transaction():
                due = await conn.fetch(
                    """
                    select id::text as id, status::text as status, expires_at
                    from resources
                    where status = 'active' and expires_at is not null and expires_at <= $2
                    order by expires_at asc
                    limit $1
                    for update skip locked
                    """,
                    bounded_limit,
                    now,
                )
                expired = 0
                for row in due:
                    if not is_expired(status=row["status"], expires_at=row["expires_at"], now=now):
                        continue
                    moved = await self._transition_resource(
                        conn=conn,
                        resource_id=row["id"],
                        to_status="expired",
                        reason="expired",
                        actor_type=actor_type,
                        actor_id=actor_id,
                        reasoning=f"ttl elapsed at {row['expires_at'].isoformat()}",
                        strict=False,
                    )
                    expired += int(moved)

                archived = 0
                if self.disappeared_archive_after_days is not None:
                    stale = await conn.fetch(
                        """
                        select r.id::text as id, r.status::text as status, max(s.disappeared_at) as disappeared_at
                        from resources r
                        join source_sync_records s on s.resource_id = r.id
                        where r.status = 'disappeared'
                        group by r.id
                        order by max(s.disappeared_at) asc
                        limit $1
                        """,
                        bounded_limit,
                    )
                    for row in stale:
                        if not should_archive_disappeared(
                            status=row["status"],
                            disappeared_at=row["disappeared_at"],
                            now=now,
                            archive_after_days=self.disappeared_archive_after_days,
                        ):
                            continue
                        moved = await self._transition_resource(
                            conn=conn,
                            resource_id=row["id"],
                            to_status="archived",
                            reason="archived",
                            actor_type=actor_type,
                            actor_id=actor_id,
                            reasoning=f"disappeared for more than {self.disappeared_archive_after_days} days",
                            strict=False,
                        )
                        archived += int(moved)

                if expired or archived:
                    logger.info("resource sweep expired=%s archived=%s", expired, archived)
                return {"expired": expired, "archived": archived}

    async def _transition_resource(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        to_status: str,
        reason: str,
        actor_type: str,
        actor_id: str,
        reasoning: str | None = None,
        matched_resource_id: str | None = None,
        similarity: float | None = None,
        source_id: str | None = None,
        page_snapshot_id: str | None = None,
        strict: bool = True,
    ) -> bool:
        from_status = await conn.fetchval(
            "select status::text from resources where id = $1::uuid for update",
            resource_id,
        )
        if from_status is None:
            if strict:
                raise RepositoryNotFoundError("resource not found")
            return False
        try:
            validate_transition(from_status=from_status, to_status=to_status)
        except InvalidTransitionError as exc:
            if strict:
                raise RepositoryConflictError(str(exc)) from exc
            return False

        await conn.execute(
            "update resources set status = $2::resource_status where id = $1::uuid",
            resource_id,
            to_status,
        )
        await self._insert_version(
            conn=conn,
            resource_id=resource_id,
            reason=reason,
            actor_type=actor_type,
            actor_id=actor_id,
            matched_resource_id=matched_resource_id,
            similarity=similarity,
            reasoning=reasoning,
            source_id=source_id,
            page_snapshot_id=page_snapshot_id,
        )
        await self._record_event(
            conn=conn,
            entity_type="resource",
            entity_id=resource_id,
            event_type="status_changed",
            actor_type=actor_type,
            actor_id=actor_id,
            payload={"from_status": from_status, "to_status": to_status, "reason": reason},
        )
        return True

    async def list_resource_versions(self, *, resource_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                exists = await conn.fetchval("select 1 from resources where id = $1::uuid", resource_id)
                if not exists:
                    raise RepositoryNotFoundError("resource not found")
                rows = await conn.fetch(
                    """
                    select
                      id,
                      resource_id::text as resource_id,
                      reason,
                      title,
                      description,
                      contact_info,
                      urgency::text as urgency,
                      status::text as status,
                      content_hash,
                      fingerprint,
                      matched_resource_id::text as matched_resource_id,
                      similarity_score,
                      reasoning,
                      source_id::text as source_id,
                      page_snapshot_id::text as page_snapshot_id,
                      actor_type,
                      actor_id,
                      created_at
                    from resource_versions
                    where resource_id = $1::uuid
                    order by id asc
                    limit $2
                    offset $3
                    """,
                    resource_id,
                    limit,
                    offset,
                )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("resource not found") from exc
        return [self._version_row_to_dict(row) for row in rows]

    async def list_resource_notifications(
        self,
        *,
        resource_id: str,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  id::text as id,
                  resource_id::text as resource_id,
                  member_id::text as member_id,
                  reasoning,
                  similarity,
                  sent_at,
                  delivery_status::text as delivery_status,
                  delivered_at
                from notifications
                where resource_id = $1::uuid
                order by sent_at asc, id asc
                limit $2
                offset $3
                """,
                resource_id,
                limit,
                offset,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("resource not found") from exc
        return [dict(row) for row in rows]

    # -- admin ----------------------------------------------------------

    async def list_admin_jobs(
        self,
        *,
        status: str | None,
        kind: str | None,
        target_type: str | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()

        normalized_status = self._coerce_text(status)
        if normalized_status and normalized_status not in JOB_STATUSES:
            raise RepositoryValidationError(f"status must be one of: {', '.join(sorted(JOB_STATUSES))}")

        normalized_kind = self._coerce_text(kind)
        if normalized_kind and normalized_kind not in JOB_KINDS:
            raise RepositoryValidationError(f"kind must be one of: {', '.join(sorted(JOB_KINDS))}")

        rows = await pool.fetch(
            """
            select
              id::text as id,
              kind::text as kind,
              target_type,
              target_id::text as target_id,
              idempotency_key,
              status::text as status,
              attempt,
              locked_by_module_id::text as locked_by_module_id,
              lease_expires_at,
              next_run_at,
              inputs_json,
              result_json,
              error_json,
              created_at,
              updated_at
            from jobs
            where ($1::text is null or status::text = $1)
              and ($2::text is null or kind::text = $2)
              and ($3::text is null or target_type = $3)
            order by updated_at desc, id desc
            limit $4
            offset $5
            """,
            normalized_status,
            normalized_kind,
            self._coerce_text(target_type),
            limit,
            offset,
        )
        return [self._admin_job_row_to_dict(row) for row in rows]

    async def admin_requeue_job(self, *, job_id: str, actor_user_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    current = await conn.fetchrow(
                        "select status::text as status, kind::text as kind, target_id::text as target_id "
                        "from jobs where id = $1::uuid for update",
                        job_id,
                    )
                    if current is None:
                        raise RepositoryNotFoundError("job not found")
                    if current["status"] not in JOB_REQUEUEABLE_STATUSES:
                        raise RepositoryConflictError(f"job is not requeueable from status {current['status']}")

                    row = await conn.fetchrow(
                        """
                        update jobs
                        set status = 'queued', attempt = 0, next_run_at = now(), error_json = null
                        where id = $1::uuid
                        returning
                          id::text as id,
                          kind::text as kind,
                          target_type,
                          target_id::text as target_id,
                          idempotency_key,
                          status::text as status,
                          attempt,
                          locked_by_module_id::text as locked_by_module_id,
                          lease_expires_at,
                          next_run_at,
                          inputs_json,
                          result_json,
                          error_json,
                          created_at,
                          updated_at
                        """,
                        job_id,
                    )
                    if current["kind"] == "match_resource" and current["target_id"]:
                        await conn.execute(
                            """
                            update resources
                            set matching_status = 'queued'
                            where id = $1::uuid and matching_status = 'matching_failed'
                            """,
                            current["target_id"],
                        )
                    await self._record_event(
                        conn=conn,
                        entity_type="job",
                        entity_id=job_id,
                        event_type="admin_requeued",
                        actor_type="human",
                        actor_id=actor_user_id,
                        payload={"from_status": current["status"]},
                    )
                    return self._admin_job_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    # -- helpers --------------------------------------------------------

    async def _enqueue_job(
        self,
        *,
        conn: asyncpg.Connection,
        kind: str,
        target_type: str,
        target_id: str | None,
        idempotency_key: str,
        inputs: dict[str, Any],
        actor_type: str,
        actor_id: str,
    ) -> str | None:
        job_id = await conn.fetchval(
            """
            insert into jobs (kind, target_type, target_id, idempotency_key, inputs_json)
            values ($1::job_kind, $2, $3::uuid, $4, $5::jsonb)
            on conflict (idempotency_key) do nothing
            returning id::text
            """,
            kind,
            target_type,
            target_id,
            idempotency_key,
            json.dumps(inputs),
        )
        if job_id is None:
            return None
        await self._record_event(
            conn=conn,
            entity_type="job",
            entity_id=job_id,
            event_type="enqueued",
            actor_type=actor_type,
            actor_id=actor_id,
            payload={"kind": kind, "idempotency_key": idempotency_key},
        )
        return job_id

    async def _persist_job_inputs(self, *, conn: asyncpg.Connection, job_id: str, inputs: dict[str, Any]) -> None:
        await conn.execute(
            """
            update jobs
            set inputs_json = $2::jsonb
            where id = $1::uuid
            """,
            job_id,
            json.dumps(inputs),
        )

    async def _insert_version(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        reason: str,
        actor_type: str,
        actor_id: str | None,
        matched_resource_id: str | None = None,
        similarity: float | None = None,
        reasoning: str | None = None,
        source_id: str | None = None,
        page_snapshot_id: str | None = None,
    ) -> None:
        await conn.execute(
            """
            insert into resource_versions (
              resource_id,
              reason,
              title,
              description,
              contact_info,
              urgency,
              status,
              content_hash,
              fingerprint,
              matched_resource_id,
              similarity_score,
              reasoning,
              source_id,
              page_snapshot_id,
              actor_type,
              actor_id
            )
            select
              r.id,
              $2,
              r.title,
              r.description,
              r.contact_info,
              r.urgency,
              r.status,
              r.content_hash,
              r.fingerprint,
              $3::uuid,
              $4::double precision,
              $5,
              coalesce($6::uuid, r.source_id),
              coalesce($7::uuid, r.page_snapshot_id),
              $8,
              $9
            from resources r
            where r.id = $1::uuid
            """,
            resource_id,
            reason,
            matched_resource_id,
            similarity,
            reasoning,
            source_id,
            page_snapshot_id,
            actor_type,
            actor_id,
        )

    async def _record_event(
        self,
        *,
        conn: asyncpg.Connection,
        entity_type: str,
        entity_id: str | None,
        event_type: str,
        actor_type: str,
        actor_id: str | None,
        payload: dict[str, Any],
    ) -> None:
        await conn.execute(
            """
            insert into provenance_events (
              entity_type,
              entity_id,
              event_type,
              actor_type,
              actor_id,
              payload
            )
            values ($1, $2::uuid, $3, $4, $5, $6::jsonb)
            """,
            entity_type,
            entity_id,
            event_type,
            actor_type,
            actor_id,
            json.dumps(payload, default=str),
        )

    async def _fetch_resource_row(
        self,
        *,
        conn: asyncpg.Connection,
        resource_id: str,
        for_update: bool = False,
    ) -> asyncpg.Record | None:
        lock_clause = "for update" if for_update else ""
        return await conn.fetchrow(
            f"""
            select {_RESOURCE_COLUMNS}
            from resources r
            where r.id = $1::uuid
            {lock_clause}
            """,
            resource_id,
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("RR_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _sync_state_from_row(row: asyncpg.Record) -> SyncRecordState:
        return SyncRecordState(
            consecutive_misses=int(row["consecutive_misses"]),
            disappeared_at=row["disappeared_at"],
            last_cycle_key=row["last_cycle_key"],
        )

    @staticmethod
    def _job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        inputs_json = row["inputs_json"]
        if isinstance(inputs_json, str):
            try:
                inputs_json = json.loads(inputs_json)
            except json.JSONDecodeError:
                inputs_json = {}
        if inputs_json is None:
            inputs_json = {}

        return {
            "id": row["id"],
            "kind": row["kind"],
            "target_type": row["target_type"],
            "target_id": row["target_id"],
            "inputs_json": inputs_json,
            "status": row["status"],
            "attempt": int(row["attempt"]),
        }

    def _admin_job_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "kind": row["kind"],
            "target_type": row["target_type"],
            "target_id": row["target_id"],
            "idempotency_key": row["idempotency_key"],
            "status": row["status"],
            "attempt": int(row["attempt"]),
            "locked_by_module_id": row["locked_by_module_id"],
            "lease_expires_at": row["lease_expires_at"],
            "next_run_at": row["next_run_at"],
            "inputs_json": self._coerce_json_dict(row["inputs_json"]),
            "result_json": self._coerce_json_dict(row["result_json"]),
            "error_json": self._coerce_json_dict(row["error_json"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def _resource_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "source_id": row["source_id"],
            "title": row["title"],
            "description": row["description"],
            "contact_info": self._coerce_json_dict(row["contact_info"]),
            "urgency": row["urgency"],
            "confidence": self._coerce_float(row["confidence"]),
            "status": row["status"],
            "content_hash": row["content_hash"],
            "fingerprint": row["fingerprint"],
            "has_embedding": bool(row["has_embedding"]),
            "page_snapshot_id": row["page_snapshot_id"],
            "merge_candidate_id": row["merge_candidate_id"],
            "merge_similarity": self._coerce_float(row["merge_similarity"]),
            "merged_into_id": row["merged_into_id"],
            "matching_status": row["matching_status"],
            "approved_at": row["approved_at"],
            "expires_at": row["expires_at"],
            "rejection_reason": row["rejection_reason"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def _version_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": int(row["id"]),
            "resource_id": row["resource_id"],
            "reason": row["reason"],
            "title": row["title"],
            "description": row["description"],
            "contact_info": self._coerce_json_dict(row["contact_info"]),
            "urgency": row["urgency"],
            "status": row["status"],
            "content_hash": row["content_hash"],
            "fingerprint": row["fingerprint"],
            "matched_resource_id": row["matched_resource_id"],
            "similarity_score": self._coerce_float(row["similarity_score"]),
            "reasoning": row["reasoning"],
            "source_id": row["source_id"],
            "page_snapshot_id": row["page_snapshot_id"],
            "actor_type": row["actor_type"],
            "actor_id": row["actor_id"],
            "created_at": row["created_at"],
        }

    @staticmethod
    def _member_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "external_id": row["external_id"],
            "push_token": row["push_token"],
            "active": bool(row["active"]),
            "has_embedding": bool(row["has_embedding"]),
            "notification_count_this_week": int(row["notification_count_this_week"]),
            "notification_window_started_at": row["notification_window_started_at"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def _compute_retry_delay_seconds(self, *, attempt: int) -> int:
        if self.job_retry_base_seconds <= 0:
            return 0
        multiplier = max(0, attempt - 1)
        delay = self.job_retry_base_seconds * (2**multiplier)
        return min(delay, self.job_retry_max_seconds)

    def _resolve_error_class(self, error_json: dict[str, Any] | None) -> str:
        error_class = self._coerce_text(self._coerce_json_dict(error_json).get("error_class"))
        if error_class in ERROR_CLASSES:
            return error_class
        return "unexpected"

    def _coerce_embedding(self, value: Any) -> list[float] | None:
        if not isinstance(value, list) or len(value) != self.embedding_dimension:
            return None
        values: list[float] = []
        for item in value:
            if isinstance(item, bool) or not isinstance(item, (int, float)):
                return None
            values.append(float(item))
        return values

    @staticmethod
    def _vector_literal(values: list[float] | None) -> str | None:
        if values is None:
            return None
        return "[" + ",".join(repr(item) for item in values) + "]"

    @staticmethod
    def _coerce_contact_info(value: Any) -> dict[str, Any]:
        if isinstance(value, dict):
            return {str(key): item for key, item in value.items() if item not in (None, "")}
        if isinstance(value, str) and value.strip():
            return {"text": value.strip()}
        return {}

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)

    @staticmethod
    def _coerce_text_list(value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        items: list[str] = []
        for item in value:
            if not isinstance(item, str):
                continue
            stripped = item.strip()
            if stripped:
                items.append(stripped)
        return items

    @staticmethod
    def _coerce_float(value: Any) -> float | None:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coerce_json_list(value: Any) -> list[dict[str, Any]]:
        if not isinstance(value, list):
            return []
        items: list[dict[str, Any]] = []
        for item in value:
            if isinstance(item, dict):
                items.append(item)
        return items

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        job_max_attempts=settings.job_max_attempts,
        job_retry_base_seconds=settings.job_retry_base_seconds,
        job_retry_max_seconds=settings.job_retry_max_seconds,
        dedupe_thresholds=DedupeThresholds(
            auto_merge=settings.dedupe_auto_merge_threshold,
            review=settings.dedupe_review_threshold,
        ),
        dedupe_neighbour_limit=settings.dedupe_neighbour_limit,
        adjudicator_enabled=settings.adjudicator_enabled,
        embedding_dimension=settings.embedding_dimension,
        disappear_after_misses=settings.disappear_after_misses,
        ttl_days_by_urgency=settings.ttl_days_by_urgency,
        disappeared_archive_after_days=settings.disappeared_archive_after_days,
        notification_weekly_cap=settings.notification_weekly_cap,
        max_notifications_per_resource=settings.max_notifications_per_resource,
        matching_candidate_limit=settings.matching_candidate_limit,
    )
