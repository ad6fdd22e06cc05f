from relay_api.core.fingerprint import (
    FINGERPRINT_PREFIX_CHARS,
    candidate_text,
    compute_content_hash,
    compute_fingerprint,
    contact_text,
    normalize_for_fingerprint,
)


def test_content_hash_changes_on_any_byte() -> None:
    text = candidate_text("Free meals", "Hot meals every Tuesday at 6pm.", {"phone": "555-0100"})
    edited = candidate_text("Free meals", "Hot meals every Tuesday at 6pm!", {"phone": "555-0100"})

    assert compute_content_hash(text) != compute_content_hash(edited)
    assert len(compute_content_hash(text)) == 64


def test_fingerprint_ignores_case_punctuation_and_token_order() -> None:
    first = candidate_text("Free Meals", "Hot meals, every Tuesday at 6pm.")
    second = candidate_text("free meals", "every Tuesday: hot meals at 6pm")

    assert normalize_for_fingerprint(first) == normalize_for_fingerprint(second)
    assert compute_fingerprint(first) == compute_fingerprint(second)
    assert compute_content_hash(first) != compute_content_hash(second)


def test_fingerprint_distinguishes_different_wording() -> None:
    first = candidate_text("Free meals", "Hot meals every Tuesday")
    second = candidate_text("Free meals", "Cold sandwiches every Tuesday")

    assert compute_fingerprint(first) != compute_fingerprint(second)


def test_normalized_fingerprint_text_is_capped() -> None:
    text = " ".join(f"word{index:05d}" for index in range(500))

    assert len(normalize_for_fingerprint(text)) == FINGERPRINT_PREFIX_CHARS


def test_contact_text_is_stable_over_key_order() -> None:
    first = contact_text({"phone": "555-0100", "email": "help@example.org", "fax": None})
    second = contact_text({"email": "help@example.org", "phone": "555-0100"})

    assert first == second == "email: help@example.org\nphone: 555-0100"
    assert contact_text(None) == ""
    assert contact_text("  call us  ") == "call us"
