"""Regeneration drift - detect a substantively different requirements input."""

import re

OVERLAP_THRESHOLD = 0.4
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def normalize_text(text: str) -> str:
    """Lower-case, drop punctuation."""
    return _NON_ALNUM_RE.sub("", (text or "").lower()).strip()


def keywords(text: str) -> list[str]:
    """Words longer than three characters, in order (duplicates kept)."""
    return [w for w in normalize_text(text).split() if len(w) > 3]


def has_prompt_changed(
    stored_description: str,
    new_description: str,
    stored_feature_name: str,
    new_feature_name: str,
    threshold: float = OVERLAP_THRESHOLD,
) -> bool:
    """Whether the new feature input differs enough to require a full reset.

    True when the feature name changed (both non-empty, different after
    normalization) or keyword overlap falls below threshold. Overlap is
    |stored words found in new| / max(|stored|, |new|).
    """
    if not stored_description and not new_description:
        return False
    if not stored_description or not new_description:
        return stored_description != new_description

    feature_name_changed = bool(
        stored_feature_name
        and new_feature_name
        and normalize_text(stored_feature_name) != normalize_text(new_feature_name)
    )

    stored_words = keywords(stored_description) + keywords(stored_feature_name)
    new_words = keywords(new_description) + keywords(new_feature_name)
    if not stored_words or not new_words:
        return len(stored_words) != len(new_words)

    new_set = set(new_words)
    common = [w for w in stored_words if w in new_set]
    overlap = len(common) / max(len(stored_words), len(new_words))
    return overlap < threshold or feature_name_changed
