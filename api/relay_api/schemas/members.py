from datetime import datetime

from pydantic import BaseModel, Field


class MemberUpsertRequest(BaseModel):
    external_id: str = Field(min_length=1)
    profile_text: str = Field(min_length=1)
    push_token: str | None = None
    active: bool = True


class MemberOut(BaseModel):
    id: str
    external_id: str
    push_token: str | None = None
    active: bool
    has_embedding: bool
    notification_count_this_week: int
    notification_window_started_at: datetime | None = None
    embed_job_id: str | None = None
    created_at: datetime
    updated_at: datetime
