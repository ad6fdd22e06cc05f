from datetime import datetime, timedelta, timezone

import pytest

from relay_api.services.lifecycle import (
    InvalidTransitionError,
    can_transition,
    compute_expires_at,
    is_expired,
    normalize_urgency,
    should_archive_disappeared,
    ttl_for_urgency,
    validate_transition,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("from_status", "to_status"),
    [
        ("pending_approval", "active"),
        ("pending_approval", "rejected"),
        ("pending_approval", "merged"),
        ("active", "active"),
        ("active", "expired"),
        ("active", "disappeared"),
        ("disappeared", "active"),
        ("disappeared", "archived"),
        ("expired", "archived"),
    ],
)
def test_allowed_transitions(from_status: str, to_status: str) -> None:
    validate_transition(from_status=from_status, to_status=to_status)


@pytest.mark.parametrize(
    ("from_status", "to_status"),
    [
        ("rejected", "active"),
        ("merged", "active"),
        ("archived", "active"),
        ("expired", "active"),
        ("pending_approval", "expired"),
        ("active", "pending_approval"),
    ],
)
def test_forbidden_transitions(from_status: str, to_status: str) -> None:
    assert not can_transition(from_status, to_status)
    with pytest.raises(InvalidTransitionError) as exc_info:
        validate_transition(from_status=from_status, to_status=to_status)
    assert exc_info.value.from_status == from_status


def test_ttl_follows_urgency() -> None:
    assert ttl_for_urgency("urgent") == timedelta(days=7)
    assert ttl_for_urgency("high") == timedelta(days=14)
    assert ttl_for_urgency("normal") == timedelta(days=30)
    assert ttl_for_urgency("low") == timedelta(days=60)
    assert ttl_for_urgency("bogus") == timedelta(days=30)


def test_expires_at_uses_configured_table() -> None:
    expires_at = compute_expires_at(urgency="urgent", approved_at=NOW, ttl_days={"urgent": 3, "normal": 10})

    assert expires_at == NOW + timedelta(days=3)


def test_normalize_urgency_defaults_to_normal() -> None:
    assert normalize_urgency(" HIGH ") == "high"
    assert normalize_urgency(None) == "normal"


def test_is_expired_only_for_active_past_deadline() -> None:
    assert is_expired(status="active", expires_at=NOW, now=NOW)
    assert not is_expired(status="active", expires_at=NOW + timedelta(seconds=1), now=NOW)
    assert not is_expired(status="pending_approval", expires_at=NOW - timedelta(days=1), now=NOW)
    assert not is_expired(status="active", expires_at=None, now=NOW)


def test_disappeared_archive_is_opt_in() -> None:
    gone_at = NOW - timedelta(days=10)

    assert not should_archive_disappeared(status="disappeared", disappeared_at=gone_at, now=NOW, archive_after_days=None)
    assert should_archive_disappeared(status="disappeared", disappeared_at=gone_at, now=NOW, archive_after_days=7)
    assert not should_archive_disappeared(status="disappeared", disappeared_at=gone_at, now=NOW, archive_after_days=14)
    assert not should_archive_disappeared(status="active", disappeared_at=gone_at, now=NOW, archive_after_days=7)
