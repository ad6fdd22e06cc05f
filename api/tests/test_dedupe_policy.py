import pytest

from relay_api.services.dedupe import (
    DedupeThresholds,
    SourceRecordMatch,
    VectorNeighbour,
    classify_by_similarity,
    classify_candidate,
    resolve_adjudication,
)


def test_exact_hash_match_wins_over_fingerprint_and_vectors() -> None:
    decision = classify_candidate(
        content_hash="hash-a",
        fingerprint="fp-a",
        records=[
            SourceRecordMatch(resource_id="r-2", content_hash="hash-b", fingerprint="fp-a", status="active"),
            SourceRecordMatch(resource_id="r-1", content_hash="hash-a", fingerprint="fp-x", status="active"),
        ],
        neighbours=[VectorNeighbour(resource_id="r-9", similarity=0.99)],
    )

    assert decision.decision == "unchanged"
    assert decision.matched_resource_id == "r-1"
    assert decision.reasoning == "content_hash_match"


def test_fingerprint_match_updates_content_in_place() -> None:
    decision = classify_candidate(
        content_hash="hash-new",
        fingerprint="fp-a",
        records=[SourceRecordMatch(resource_id="r-1", content_hash="hash-old", fingerprint="fp-a", status="active")],
        neighbours=[],
    )

    assert decision.decision == "content_updated"
    assert decision.matched_resource_id == "r-1"


def test_similarity_in_review_band_stages_merge() -> None:
    decision = classify_by_similarity(
        [
            VectorNeighbour(resource_id="r-1", similarity=0.70),
            VectorNeighbour(resource_id="r-2", similarity=0.92),
        ],
        DedupeThresholds(),
    )

    assert decision.decision == "merge_staged"
    assert decision.matched_resource_id == "r-2"
    assert decision.similarity == pytest.approx(0.92)


@pytest.mark.parametrize(
    ("similarity", "expected"),
    [(0.95, "auto_merge"), (0.9499, "merge_staged"), (0.85, "merge_staged"), (0.8499, "new")],
)
def test_threshold_boundaries_are_inclusive(similarity: float, expected: str) -> None:
    decision = classify_by_similarity([VectorNeighbour(resource_id="r-1", similarity=similarity)], DedupeThresholds())

    assert decision.decision == expected


def test_ties_break_on_resource_id() -> None:
    decision = classify_by_similarity(
        [
            VectorNeighbour(resource_id="r-b", similarity=0.97),
            VectorNeighbour(resource_id="r-a", similarity=0.97),
        ],
        DedupeThresholds(),
    )

    assert decision.matched_resource_id == "r-a"


def test_no_neighbours_is_new() -> None:
    decision = classify_by_similarity([], DedupeThresholds())

    assert decision.decision == "new"
    assert decision.matched_resource_id is None


def test_invalid_thresholds_are_rejected() -> None:
    with pytest.raises(ValueError):
        DedupeThresholds(auto_merge=0.8, review=0.9)


def test_adjudication_verdicts_resolve_to_actions() -> None:
    assert resolve_adjudication("same") == "merge"
    assert resolve_adjudication("different") == "release"
    assert resolve_adjudication("uncertain") == "hold"
    assert resolve_adjudication("garbage") == "hold"
