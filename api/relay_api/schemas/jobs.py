from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

JobKind = Literal[
    "sync_source",
    "adjudicate_duplicate",
    "match_resource",
    "embed_member",
    "embed_resource",
    "deliver_notification",
]
JobStatus = Literal["queued", "claimed", "done", "failed", "dead_letter"]
JobResultStatus = Literal["done", "failed"]


class JobOut(BaseModel):
    id: str
    kind: JobKind
    target_type: str
    target_id: str | None = None
    inputs_json: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus
    attempt: int = 0


class ClaimRequest(BaseModel):
    lease_seconds: int = Field(default=120, ge=10, le=3600)


class ResultRequest(BaseModel):
    status: JobResultStatus
    result_json: dict[str, Any] | None = None
    error_json: dict[str, Any] | None = None


class ReapExpiredRequest(BaseModel):
    limit: int = Field(default=100, ge=1, le=1000)


class ReapExpiredOut(BaseModel):
    requeued: int


class ExpireResourcesRequest(BaseModel):
    limit: int = Field(default=200, ge=1, le=1000)


class ExpireResourcesOut(BaseModel):
    expired: int
    archived: int


class AdminJobOut(BaseModel):
    id: str
    kind: JobKind
    target_type: str
    target_id: str | None = None
    idempotency_key: str | None = None
    status: JobStatus
    attempt: int
    locked_by_module_id: str | None = None
    lease_expires_at: datetime | None = None
    next_run_at: datetime
    inputs_json: dict[str, Any] = Field(default_factory=dict)
    result_json: dict[str, Any] = Field(default_factory=dict)
    error_json: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
