from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

DedupeDecision = Literal["unchanged", "content_updated", "auto_merge", "merge_staged", "new"]
AdjudicationVerdict = Literal["same", "different", "uncertain"]
AdjudicationAction = Literal["merge", "release", "hold"]


@dataclass(slots=True)
class DedupeThresholds:
    auto_merge: float = 0.95
    review: float = 0.85

    def __post_init__(self) -> None:
        if not 0.0 < self.review <= self.auto_merge <= 1.0:
            raise ValueError(
                f"invalid dedupe thresholds: review={self.review} auto_merge={self.auto_merge}"
            )


@dataclass(slots=True)
class SourceRecordMatch:
    """A resource already linked to the candidate's source through a sync record."""

    resource_id: str
    content_hash: str | None
    fingerprint: str | None
    status: str


@dataclass(slots=True)
class VectorNeighbour:
    resource_id: str
    similarity: float


@dataclass(slots=True)
class DedupeClassification:
    decision: DedupeDecision
    matched_resource_id: str | None
    similarity: float | None
    reasoning: str


def match_source_records(
    *,
    content_hash: str,
    fingerprint: str,
    records: list[SourceRecordMatch],
) -> DedupeClassification | None:
    """Exact hash first, fingerprint second. Hash equality always wins."""
    exact = sorted(
        (row for row in records if row.content_hash == content_hash),
        key=lambda row: row.resource_id,
    )
    if exact:
        return DedupeClassification(
            decision="unchanged",
            matched_resource_id=exact[0].resource_id,
            similarity=1.0,
            reasoning="content_hash_match",
        )

    fuzzy = sorted(
        (row for row in records if row.fingerprint == fingerprint),
        key=lambda row: row.resource_id,
    )
    if fuzzy:
        return DedupeClassification(
            decision="content_updated",
            matched_resource_id=fuzzy[0].resource_id,
            similarity=None,
            reasoning="fingerprint_match",
        )
    return None


def classify_by_similarity(
    neighbours: list[VectorNeighbour],
    thresholds: DedupeThresholds,
) -> DedupeClassification:
    if not neighbours:
        return DedupeClassification(
            decision="new",
            matched_resource_id=None,
            similarity=None,
            reasoning="no_similar_resources",
        )

    best = sorted(neighbours, key=lambda row: (-row.similarity, row.resource_id))[0]
    similarity = round(best.similarity, 6)
    if similarity >= thresholds.auto_merge:
        return DedupeClassification(
            decision="auto_merge",
            matched_resource_id=best.resource_id,
            similarity=similarity,
            reasoning=f"similarity {similarity:.4f} >= auto_merge {thresholds.auto_merge:.2f}",
        )
    if similarity >= thresholds.review:
        return DedupeClassification(
            decision="merge_staged",
            matched_resource_id=best.resource_id,
            similarity=similarity,
            reasoning=f"similarity {similarity:.4f} in review band [{thresholds.review:.2f}, {thresholds.auto_merge:.2f})",
        )
    return DedupeClassification(
        decision="new",
        matched_resource_id=best.resource_id,
        similarity=similarity,
        reasoning=f"similarity {similarity:.4f} < review {thresholds.review:.2f}",
    )


def classify_candidate(
    *,
    content_hash: str,
    fingerprint: str,
    records: list[SourceRecordMatch],
    neighbours: list[VectorNeighbour],
    thresholds: DedupeThresholds | None = None,
) -> DedupeClassification:
    source_match = match_source_records(content_hash=content_hash, fingerprint=fingerprint, records=records)
    if source_match is not None:
        return source_match
    return classify_by_similarity(neighbours, thresholds or DedupeThresholds())


def resolve_adjudication(verdict: str) -> AdjudicationAction:
    if verdict == "same":
        return "merge"
    if verdict == "different":
        return "release"
    return "hold"
