from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Literal

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

RESOURCE_STATUSES: set[str] = {
    "pending_approval",
    "active",
    "rejected",
    "expired",
    "disappeared",
    "archived",
    "merged",
}
LIVE_STATUSES: set[str] = {"pending_approval", "active"}
TERMINAL_STATUSES: set[str] = {"rejected", "expired", "archived", "merged"}
URGENCIES: set[str] = {"urgent", "high", "normal", "low"}
DEFAULT_URGENCY = "normal"
DEFAULT_TTL_DAYS: dict[str, int] = {"urgent": 7, "high": 14, "normal": 30, "low": 60}

# active -> active is re-approval, which renews the TTL.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending_approval": {"active", "rejected", "merged"},
    "active": {"active", "expired", "disappeared", "merged"},
    "disappeared": {"active", "archived"},
    "expired": {"archived"},
}


class InvalidTransitionError(ValueError):
    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"invalid resource transition: {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def validate_transition(*, from_status: str, to_status: str) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)


def normalize_urgency(value: object) -> str:
    if isinstance(value, str):
        candidate = value.strip().lower()
        if candidate in URGENCIES:
            return candidate
    return DEFAULT_URGENCY


def ttl_for_urgency(urgency: str, ttl_days: Mapping[str, int] | None = None) -> timedelta:
    table = ttl_days or DEFAULT_TTL_DAYS
    days = table.get(normalize_urgency(urgency), table.get(DEFAULT_URGENCY, DEFAULT_TTL_DAYS[DEFAULT_URGENCY]))
    return timedelta(days=max(1, int(days)))


def compute_expires_at(
    *,
    urgency: str,
    approved_at: datetime,
    ttl_days: Mapping[str, int] | None = None,
) -> datetime:
    return approved_at + ttl_for_urgency(urgency, ttl_days)


def is_expired(*, status: str, expires_at: datetime | None, now: datetime) -> bool:
    return status == "active" and expires_at is not None and expires_at <= now


def should_archive_disappeared(
    *,
    status: str,
    disappeared_at: datetime | None,
    now: datetime,
    archive_after_days: int | None,
) -> bool:
    if archive_after_days is None or status != "disappeared" or disappeared_at is None:
        return False
    return disappeared_at + timedelta(days=archive_after_days) <= now
