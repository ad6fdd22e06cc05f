from datetime import datetime, timezone

from relay_api.services.sync_tracker import (
    SyncRecordState,
    apply_miss,
    apply_observation,
    resource_has_disappeared,
    should_count_misses,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def test_first_observation_creates_clean_state() -> None:
    transition = apply_observation(None, cycle_key="c1")

    assert transition.changed
    assert transition.state == SyncRecordState(consecutive_misses=0, disappeared_at=None, last_cycle_key="c1")


def test_two_misses_mark_record_disappeared() -> None:
    state = SyncRecordState(consecutive_misses=0, disappeared_at=None, last_cycle_key="c1")

    first = apply_miss(state, cycle_key="c2", now=NOW)
    assert first.state.consecutive_misses == 1
    assert not first.newly_disappeared

    second = apply_miss(first.state, cycle_key="c3", now=NOW)
    assert second.newly_disappeared
    assert second.state.disappeared_at == NOW


def test_replaying_a_cycle_does_not_double_count() -> None:
    state = SyncRecordState(consecutive_misses=0, disappeared_at=None, last_cycle_key="c1")
    first = apply_miss(state, cycle_key="c2", now=NOW)

    replay = apply_miss(first.state, cycle_key="c2", now=NOW)

    assert not replay.changed
    assert replay.state.consecutive_misses == 1


def test_observation_resets_misses_and_reports_reappearance() -> None:
    gone = SyncRecordState(consecutive_misses=2, disappeared_at=NOW, last_cycle_key="c3")

    transition = apply_observation(gone, cycle_key="c4")

    assert transition.reappeared
    assert transition.state.consecutive_misses == 0
    assert transition.state.disappeared_at is None


def test_resource_disappears_only_when_every_source_lost_it() -> None:
    gone = SyncRecordState(consecutive_misses=2, disappeared_at=NOW, last_cycle_key="c3")
    seen = SyncRecordState(consecutive_misses=0, disappeared_at=None, last_cycle_key="c3")

    assert resource_has_disappeared([gone])
    assert not resource_has_disappeared([gone, seen])
    assert not resource_has_disappeared([])


def test_misses_are_not_counted_for_empty_or_failed_cycles() -> None:
    assert should_count_misses(pages_submitted=3, pages_extracted=1)
    assert not should_count_misses(pages_submitted=0, pages_extracted=0)
    assert not should_count_misses(pages_submitted=3, pages_extracted=0)
