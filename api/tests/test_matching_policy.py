from relay_api.services.matching import (
    MemberCandidate,
    RelevanceVerdict,
    parse_verdicts,
    plan_notifications,
    rank_eligible_members,
)


def test_weekly_cap_and_per_resource_limit() -> None:
    candidates = [MemberCandidate(member_id=f"m-{index:02d}", similarity=1.0 - index / 100) for index in range(20)]
    for candidate in candidates[:2]:
        candidate.notifications_last_7_days = 3
    verdicts = [
        RelevanceVerdict(member_id=candidate.member_id, is_relevant=index < 7, reasoning="fits")
        for index, candidate in enumerate(candidates)
    ]

    plan = plan_notifications(candidates=candidates, verdicts=verdicts, weekly_cap=3, max_notifications=5)

    assert [entry.member_id for entry in plan] == ["m-02", "m-03", "m-04", "m-05", "m-06"]


def test_ranking_prefers_similarity_and_skips_already_notified() -> None:
    candidates = [
        MemberCandidate(member_id="m-a", similarity=0.6),
        MemberCandidate(member_id="m-b", similarity=0.9),
        MemberCandidate(member_id="m-c", similarity=0.8, already_notified=True),
    ]
    verdicts = [RelevanceVerdict(member_id=member_id, is_relevant=True, reasoning="") for member_id in ("m-a", "m-b", "m-c")]

    ranked = rank_eligible_members(candidates=candidates, verdicts=verdicts)

    assert [entry.member_id for entry in ranked] == ["m-b", "m-a"]


def test_verdicts_for_unknown_members_are_ignored() -> None:
    candidates = [MemberCandidate(member_id="m-a", similarity=0.7)]
    verdicts = [
        RelevanceVerdict(member_id="m-z", is_relevant=True, reasoning=""),
        RelevanceVerdict(member_id="m-a", is_relevant=True, reasoning="close"),
        RelevanceVerdict(member_id="m-a", is_relevant=True, reasoning="duplicate"),
    ]

    plan = plan_notifications(candidates=candidates, verdicts=verdicts)

    assert len(plan) == 1
    assert plan[0].reasoning == "close"


def test_parse_verdicts_requires_literal_true() -> None:
    verdicts = parse_verdicts(
        [
            {"member_id": "m-a", "is_relevant": True, "reasoning": " yes "},
            {"member_id": "m-b", "is_relevant": "true"},
            {"member_id": ""},
            "noise",
        ]
    )

    assert [(verdict.member_id, verdict.is_relevant, verdict.reasoning) for verdict in verdicts] == [
        ("m-a", True, "yes"),
        ("m-b", False, ""),
    ]
    assert parse_verdicts(None) == []
