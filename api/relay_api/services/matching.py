from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEFAULT_WEEKLY_CAP = 3
DEFAULT_MAX_NOTIFICATIONS = 5


@dataclass(slots=True)
class MemberCandidate:
    member_id: str
    similarity: float
    notifications_last_7_days: int = 0
    already_notified: bool = False


@dataclass(slots=True)
class RelevanceVerdict:
    member_id: str
    is_relevant: bool
    reasoning: str


@dataclass(slots=True)
class NotificationPlanEntry:
    member_id: str
    similarity: float
    reasoning: str


def parse_verdicts(raw: Any) -> list[RelevanceVerdict]:
    if not isinstance(raw, list):
        return []
    verdicts: list[RelevanceVerdict] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        member_id = item.get("member_id")
        if not isinstance(member_id, str) or not member_id.strip():
            continue
        reasoning = item.get("reasoning")
        verdicts.append(
            RelevanceVerdict(
                member_id=member_id.strip(),
                is_relevant=item.get("is_relevant") is True,
                reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
            )
        )
    return verdicts


def rank_eligible_members(
    *,
    candidates: list[MemberCandidate],
    verdicts: list[RelevanceVerdict],
    weekly_cap: int = DEFAULT_WEEKLY_CAP,
) -> list[NotificationPlanEntry]:
    """Relevant, not yet notified, under quota; highest retrieval similarity first.

    Verdicts for members outside the retrieved candidate set are ignored.
    """
    by_member = {candidate.member_id: candidate for candidate in candidates}
    ranked: list[NotificationPlanEntry] = []
    seen: set[str] = set()
    for verdict in verdicts:
        candidate = by_member.get(verdict.member_id)
        if candidate is None or not verdict.is_relevant or verdict.member_id in seen:
            continue
        seen.add(verdict.member_id)
        if candidate.already_notified or candidate.notifications_last_7_days >= weekly_cap:
            continue
        ranked.append(
            NotificationPlanEntry(
                member_id=candidate.member_id,
                similarity=candidate.similarity,
                reasoning=verdict.reasoning,
            )
        )
    ranked.sort(key=lambda entry: (-entry.similarity, entry.member_id))
    return ranked


def plan_notifications(
    *,
    candidates: list[MemberCandidate],
    verdicts: list[RelevanceVerdict],
    weekly_cap: int = DEFAULT_WEEKLY_CAP,
    max_notifications: int = DEFAULT_MAX_NOTIFICATIONS,
) -> list[NotificationPlanEntry]:
    ranked = rank_eligible_members(candidates=candidates, verdicts=verdicts, weekly_cap=weekly_cap)
    return ranked[: max(0, max_notifications)]
