"""
Quick checks on stored article HTML used by ingestion diagnostics.
"""

import re
from dataclasses import dataclass

from .html_fragments import contains_block_tags, fragment_text, parse_fragment
from .text_utils import collapse_whitespace

# Applied to decoded text: a match means the markup arrived entity-escaped
DECODED_BLOCK_TAG_REGEX = re.compile(
    r"</?(p|div|img|h1|h2|h3|ul|ol|li|figure|pre|code|blockquote)\b", re.IGNORECASE
)

WEAK_CONTENT_LENGTH = 300
PREVIEW_LENGTH = 300


@dataclass
class WeakContentCheck:
    length: int
    contains_blocks: bool
    weak: bool


def has_block_tags(markup: str | None) -> bool:
    if not markup:
        return False
    return contains_block_tags(parse_fragment(markup))


def looks_escaped_html(markup: str | None) -> bool:
    """True when block tags appear entity-escaped (double-encoded feeds)."""
    if not markup or "&" not in markup:
        return False
    return bool(DECODED_BLOCK_TAG_REGEX.search(fragment_text(markup, "")))


def compute_weak_content(markup: str | None) -> WeakContentCheck:
    content = markup or ""
    length = len(collapse_whitespace(content))
    contains_blocks = has_block_tags(content)
    return WeakContentCheck(
        length=length,
        contains_blocks=contains_blocks,
        weak=length < WEAK_CONTENT_LENGTH or not contains_blocks,
    )


def build_preview(markup: str | None, max_length: int = PREVIEW_LENGTH) -> str:
    if not isinstance(markup, str) or max_length <= 0:
        return ""
    return markup[:max_length]
