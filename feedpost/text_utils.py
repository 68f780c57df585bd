"""
Text helpers shared by the normalizer, selector, assembler and dedupe logic.
"""

import re

from .html_fragments import fragment_text

WHITESPACE_REGEX = re.compile(r"\s+")


def strip_tags(value: str | None) -> str:
    """Text content of an HTML fragment, each tag boundary becoming a space."""
    return fragment_text(value, " ")


def collapse_whitespace(value: str | None) -> str:
    if not value:
        return ""
    return WHITESPACE_REGEX.sub(" ", value).strip()


def clean_text(value: str | None) -> str:
    """Strip tags and collapse whitespace."""
    return collapse_whitespace(strip_tags(value))


def truncate_text(value: str, max_length: int) -> str:
    """Cut to max_length characters, the last one being an ellipsis."""
    if len(value) <= max_length:
        return value
    return f"{value[:max_length - 1]}…"


def normalize_for_comparison(markup: str | None) -> str:
    """Plain, lowercased, whitespace-collapsed text of an HTML fragment."""
    return clean_text(markup).lower()


def token_set(text: str) -> set[str]:
    return {token for token in text.split() if token}


def jaccard_similarity(a: str, b: str) -> float:
    """Token-set Jaccard similarity of two normalized texts (0 when either is empty)."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    tokens_a = token_set(a)
    tokens_b = token_set(b)
    if not tokens_a or not tokens_b:
        return 0.0
    union = tokens_a | tokens_b
    return len(tokens_a & tokens_b) / len(union)
