from datetime import datetime, timezone

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PageSnapshotIn(BaseModel):
    url: str = Field(min_length=1)
    raw_text: str
    fetched_at: datetime = Field(default_factory=_utcnow)


class SnapshotBatchRequest(BaseModel):
    cycle_key: str = Field(min_length=1)
    source_kind: str = "website"
    source_url: str | None = None
    pages: list[PageSnapshotIn] = Field(default_factory=list, max_length=500)


class SnapshotBatchAccepted(BaseModel):
    source_id: str
    cycle_key: str
    snapshot_ids: list[str] = Field(default_factory=list)
    job_id: str | None = None
    job_created: bool
