"""
Dedupe keys and the reprocess policy for items seen before.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone

from .config import DEFAULT_REPROCESS_POLICY, REPROCESS_POLICIES
from .text_utils import jaccard_similarity, normalize_for_comparison

POLICY_NEVER = "never"
POLICY_IF_EMPTY = "if-empty"
POLICY_ALWAYS = "always"
POLICY_IF_EMPTY_OR_CHANGED = "if-empty-or-changed"

LENGTH_DELTA_THRESHOLD = 0.05
SIMILARITY_THRESHOLD = 0.9


@dataclass
class ChangeThresholds:
    """Tunable limits for deciding that stored HTML changed substantially."""
    length_delta: float = LENGTH_DELTA_THRESHOLD
    similarity: float = SIMILARITY_THRESHOLD


def to_iso_timestamp(value: datetime) -> str:
    """UTC timestamp with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def compute_dedupe_key(
    guid: str | None,
    link: str | None,
    title: str,
    snippet: str,
    published_at: datetime,
) -> str:
    """guid:<guid>, else link:<url>, else hash:<sha256(title|snippet|iso)>."""
    if guid:
        return f"guid:{guid}"
    if link:
        return f"link:{link}"

    digest = hashlib.sha256()
    digest.update((title or "").encode("utf-8"))
    digest.update(b"|")
    digest.update((snippet or "").encode("utf-8"))
    digest.update(b"|")
    digest.update(to_iso_timestamp(published_at).encode("utf-8"))
    return f"hash:{digest.hexdigest()}"


def content_hash(markup: str | None) -> str:
    return hashlib.sha256(normalize_for_comparison(markup).encode("utf-8")).hexdigest()


def is_blank_html(markup: str | None) -> bool:
    return not markup or not markup.strip()


def has_substantial_change(
    stored_html: str | None,
    new_html: str | None,
    thresholds: ChangeThresholds | None = None,
) -> bool:
    """
    Compare stored and new article HTML.

    Changed means the normalized text hashes differ and either the text
    length moved by more than `length_delta` or the token-set Jaccard
    similarity dropped below `similarity`.
    """
    thresholds = thresholds or ChangeThresholds()
    old_text = normalize_for_comparison(stored_html)
    new_text = normalize_for_comparison(new_html)
    if content_hash(stored_html) == content_hash(new_html):
        return False

    length_delta = abs(len(new_text) - len(old_text)) / max(len(old_text), 1)
    if length_delta > thresholds.length_delta:
        return True
    return jaccard_similarity(old_text, new_text) < thresholds.similarity


def should_update_existing(
    policy: str,
    stored_html: str | None,
    new_html: str | None,
    thresholds: ChangeThresholds | None = None,
) -> bool:
    """Whether an article that already exists gets its HTML overwritten."""
    if policy not in REPROCESS_POLICIES:
        policy = DEFAULT_REPROCESS_POLICY

    if policy == POLICY_NEVER:
        return False
    if policy == POLICY_ALWAYS:
        return True
    if policy == POLICY_IF_EMPTY:
        return is_blank_html(stored_html)
    return is_blank_html(stored_html) or has_substantial_change(stored_html, new_html, thresholds)
