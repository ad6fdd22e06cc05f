from __future__ import annotations

import hashlib
import re
from typing import Any

FINGERPRINT_PREFIX_CHARS = 512

_NON_WORD_RE = re.compile(r"[^\w\s]|_", re.UNICODE)


def contact_text(contact_info: Any) -> str:
    if contact_info is None:
        return ""
    if isinstance(contact_info, str):
        return contact_info.strip()
    if isinstance(contact_info, dict):
        lines = []
        for key in sorted(contact_info):
            value = contact_info[key]
            if value is None or value == "":
                continue
            lines.append(f"{key}: {value}")
        return "\n".join(lines)
    return str(contact_info).strip()


def candidate_text(title: str | None, description: str | None, contact_info: Any = None) -> str:
    """Canonical text of a candidate; both identifiers are computed over it."""
    parts = [(title or "").strip(), (description or "").strip(), contact_text(contact_info)]
    return "\n".join(parts)


def compute_content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_for_fingerprint(text: str) -> str:
    """Casefold, drop punctuation, collapse whitespace, sort tokens and cap the length.

    Sorting makes the key independent of token order, so reordered sentences or
    reshuffled contact lines still collide.
    """
    stripped = _NON_WORD_RE.sub(" ", text.casefold())
    tokens = sorted(stripped.split())
    return " ".join(tokens)[:FINGERPRINT_PREFIX_CHARS]


def compute_fingerprint(text: str) -> str:
    return hashlib.sha256(normalize_for_fingerprint(text).encode("utf-8")).hexdigest()
