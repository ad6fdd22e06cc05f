from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ResourceStatus = Literal[
    "pending_approval",
    "active",
    "rejected",
    "expired",
    "disappeared",
    "archived",
    "merged",
]
Urgency = Literal["urgent", "high", "normal", "low"]
MatchingStatus = Literal["not_started", "queued", "matched", "matching_failed"]
DeliveryStatus = Literal["pending", "delivered", "failed", "skipped"]


class ResourceOut(BaseModel):
    id: str
    source_id: str
    title: str
    description: str
    contact_info: dict[str, Any] = Field(default_factory=dict)
    urgency: Urgency
    confidence: float | None = None
    status: ResourceStatus
    content_hash: str
    fingerprint: str
    has_embedding: bool = False
    page_snapshot_id: str | None = None
    merge_candidate_id: str | None = None
    merge_similarity: float | None = None
    merged_into_id: str | None = None
    matching_status: MatchingStatus
    approved_at: datetime | None = None
    expires_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class ResourceApproveRequest(BaseModel):
    """Optional reviewer edits applied as part of approval."""

    title: str | None = Field(default=None, min_length=1)
    description: str | None = Field(default=None, min_length=1)
    contact_info: dict[str, Any] | None = None
    urgency: Urgency | None = None


class ResourceRejectRequest(BaseModel):
    reason: str = Field(min_length=1)


class ResourceMergeRequest(BaseModel):
    canonical_resource_id: str
    reason: str | None = None


class ResourceVersionOut(BaseModel):
    id: int
    resource_id: str
    reason: str
    title: str
    description: str
    contact_info: dict[str, Any] = Field(default_factory=dict)
    urgency: Urgency
    status: ResourceStatus
    content_hash: str
    fingerprint: str
    matched_resource_id: str | None = None
    similarity_score: float | None = None
    reasoning: str | None = None
    source_id: str | None = None
    page_snapshot_id: str | None = None
    actor_type: str
    actor_id: str | None = None
    created_at: datetime


class NotificationOut(BaseModel):
    id: str
    resource_id: str
    member_id: str
    reasoning: str | None = None
    similarity: float | None = None
    sent_at: datetime
    delivery_status: DeliveryStatus
    delivered_at: datetime | None = None
