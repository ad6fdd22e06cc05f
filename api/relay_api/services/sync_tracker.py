from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

DEFAULT_DISAPPEAR_AFTER_MISSES = 2


@dataclass(slots=True)
class SyncRecordState:
    consecutive_misses: int
    disappeared_at: datetime | None
    last_cycle_key: str | None


@dataclass(slots=True)
class SyncTransition:
    state: SyncRecordState
    changed: bool
    newly_disappeared: bool = False
    reappeared: bool = False


def apply_observation(state: SyncRecordState | None, *, cycle_key: str) -> SyncTransition:
    if state is None:
        return SyncTransition(
            state=SyncRecordState(consecutive_misses=0, disappeared_at=None, last_cycle_key=cycle_key),
            changed=True,
        )

    reappeared = state.disappeared_at is not None
    return SyncTransition(
        state=SyncRecordState(consecutive_misses=0, disappeared_at=None, last_cycle_key=cycle_key),
        changed=True,
        reappeared=reappeared,
    )


def apply_miss(
    state: SyncRecordState,
    *,
    cycle_key: str,
    now: datetime,
    disappear_after_misses: int = DEFAULT_DISAPPEAR_AFTER_MISSES,
) -> SyncTransition:
    # A cycle counts at most once per record, so replaying a cycle is a no-op.
    if state.last_cycle_key == cycle_key or state.disappeared_at is not None:
        return SyncTransition(state=state, changed=False)

    misses = state.consecutive_misses + 1
    threshold = max(1, disappear_after_misses)
    if misses >= threshold:
        return SyncTransition(
            state=SyncRecordState(consecutive_misses=misses, disappeared_at=now, last_cycle_key=cycle_key),
            changed=True,
            newly_disappeared=True,
        )
    return SyncTransition(
        state=SyncRecordState(consecutive_misses=misses, disappeared_at=None, last_cycle_key=cycle_key),
        changed=True,
    )


def resource_has_disappeared(records: list[SyncRecordState]) -> bool:
    """A resource is gone only once every source that linked it has stopped seeing it."""
    return bool(records) and all(record.disappeared_at is not None for record in records)


def should_count_misses(*, pages_submitted: int, pages_extracted: int) -> bool:
    return pages_submitted > 0 and pages_extracted > 0
