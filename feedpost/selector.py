"""
Body/Lead Selector - choose which raw HTML candidate becomes the article body.

Candidates are tried in priority order (content:encoded, Atom content,
description/summary). The first "substantial" one wins (block tags, more
than 300 characters, or two or more paragraphs); otherwise the largest
non-empty candidate is used. When the body did not come from the
description, the description may become a short lead paragraph unless it
repeats the body.
"""

from dataclasses import dataclass, field

from bs4 import BeautifulSoup

from .html_fragments import (
    contains_block_tags,
    count_paragraphs,
    has_any_tag,
    last_significant_child,
    parse_fragment,
    remove_by_class,
    trim_to_budget,
    truncate_by_text_length,
)
from .normalizer import (
    SOURCE_CONTENT,
    SOURCE_CONTENT_ENCODED,
    SOURCE_DESCRIPTION,
    NormalizedFeedItem,
)
from .text_utils import jaccard_similarity, normalize_for_comparison

SOURCE_PRIORITY = (SOURCE_CONTENT_ENCODED, SOURCE_CONTENT, SOURCE_DESCRIPTION)
SOURCE_EMPTY = "empty"

READ_MORE_KEYWORDS = ("read more", "continue reading")

BODY_SIZE_LIMIT = 150 * 1024
LEAD_TEXT_LIMIT = 400
SUBSTANTIAL_LENGTH = 300
LEAD_SIMILARITY_THRESHOLD = 0.9

BOILERPLATE_CLASSES = ("outpost-pub-container",)


@dataclass
class SelectionDiagnostics:
    chosen_source: str = SOURCE_EMPTY
    content_score: float = 0.0
    lead_used: bool = False
    dedupe_ratio: float = 0.0
    reasons: list[str] = field(default_factory=list)

    def add_reason(self, reason: str) -> None:
        if reason not in self.reasons:
            self.reasons.append(reason)


@dataclass
class SelectionResult:
    body_html: str
    lead_html: str | None
    diagnostics: SelectionDiagnostics

    @property
    def chosen_source(self) -> str:
        return self.diagnostics.chosen_source

    @property
    def lead_used(self) -> bool:
        return self.diagnostics.lead_used


@dataclass
class _Candidate:
    source: str
    html: str
    has_blocks: bool
    paragraph_count: int
    length: int
    content_score: float
    wrapped_plaintext: bool
    removed_boilerplate: bool

    @property
    def is_substantial(self) -> bool:
        return self.has_blocks or self.length > SUBSTANTIAL_LENGTH or self.paragraph_count >= 2


# ─────────────────────────────────────────────────────────────
# Candidate evaluation
# ─────────────────────────────────────────────────────────────

def content_score(has_blocks: bool, length: int, paragraph_count: int) -> float:
    block_score = 0.4 if has_blocks else 0.0
    length_score = min(0.3, length * 0.0005) if length > 0 else 0.0
    paragraph_score = 0.3 if paragraph_count >= 2 else 0.0
    return min(1.0, block_score + length_score + paragraph_score)


def _is_read_more(node) -> bool:
    if getattr(node, "name", None) != "p":
        return False
    text = node.get_text(" ").lower()
    return any(keyword in text for keyword in READ_MORE_KEYWORDS)


def _strip_trailing_read_more(soup: BeautifulSoup) -> int:
    removed = 0
    last = last_significant_child(soup)
    while last is not None and _is_read_more(last):
        last.decompose()
        removed += 1
        last = last_significant_child(soup)
    return removed


def strip_boilerplate(soup: BeautifulSoup) -> bool:
    """Drop publisher promo containers and trailing 'read more' paragraphs in place."""
    removed = remove_by_class(soup, BOILERPLATE_CLASSES)
    removed += _strip_trailing_read_more(soup)
    return removed > 0


def remove_trivial_boilerplate(markup: str) -> str:
    soup = parse_fragment(markup)
    if not strip_boilerplate(soup):
        return markup
    return str(soup).strip()


def _evaluate(source: str, value: str | None) -> _Candidate | None:
    if not value or not value.strip():
        return None

    processed = value.strip()
    soup = parse_fragment(processed)
    wrapped = False
    if not has_any_tag(soup):
        processed = f"<p>{processed}</p>"
        soup = parse_fragment(processed)
        wrapped = True

    removed = strip_boilerplate(soup)
    cleaned = str(soup).strip() if removed else processed
    if not cleaned:
        return None

    blocks = contains_block_tags(soup)
    paragraphs = count_paragraphs(soup)
    return _Candidate(
        source=source,
        html=cleaned,
        has_blocks=blocks,
        paragraph_count=paragraphs,
        length=len(cleaned),
        content_score=content_score(blocks, len(cleaned), paragraphs),
        wrapped_plaintext=wrapped,
        removed_boilerplate=removed,
    )


def truncate_body_html(markup: str, limit: int = BODY_SIZE_LIMIT) -> tuple[str, bool]:
    """Cut an oversized body at the last element boundary within `limit` characters."""
    if not markup or len(markup) <= limit:
        return markup, False
    return trim_to_budget(markup, limit, count_closing_tags=False), True


# ─────────────────────────────────────────────────────────────
# Selection
# ─────────────────────────────────────────────────────────────

def _add_body_reasons(candidate: _Candidate, diagnostics: SelectionDiagnostics) -> None:
    if candidate.has_blocks:
        diagnostics.add_reason("has-block-tags")
    if candidate.length > SUBSTANTIAL_LENGTH:
        diagnostics.add_reason("length>300")
    if candidate.paragraph_count >= 2:
        diagnostics.add_reason("p-count>=2")
    if candidate.wrapped_plaintext:
        diagnostics.add_reason("wrapped-plaintext")
    if candidate.removed_boilerplate:
        diagnostics.add_reason("boilerplate-removed")


def _lead_similarity(body_text: str, lead_text: str) -> float:
    """
    Similarity between a lead and the body.

    Compares against the whole body and against the body's opening of the
    same token length, so a description that only repeats the first
    sentences of a long body still counts as a duplicate.
    """
    whole = jaccard_similarity(body_text, lead_text)
    if not body_text or not lead_text:
        return whole
    prefix = lead_text.rstrip("…. ")
    if prefix and body_text.startswith(prefix):
        return 1.0
    lead_tokens = lead_text.split()
    opening = " ".join(body_text.split()[:len(lead_tokens)])
    return max(whole, jaccard_similarity(opening, lead_text))


def _select_lead(
    evaluated: dict[str, _Candidate],
    body_html: str,
    diagnostics: SelectionDiagnostics,
    similarity_threshold: float,
) -> str | None:
    description = evaluated.get(SOURCE_DESCRIPTION)
    if description is None or diagnostics.chosen_source == SOURCE_DESCRIPTION:
        return None

    body_text = normalize_for_comparison(body_html)
    lead_text = normalize_for_comparison(description.html)
    diagnostics.dedupe_ratio = _lead_similarity(body_text, lead_text)

    if diagnostics.dedupe_ratio >= similarity_threshold:
        diagnostics.add_reason("description-similar-omitted")
        return None

    if len(lead_text) >= len(body_text):
        diagnostics.add_reason("description-longer-omitted")
        return None

    lead_html, truncated = truncate_by_text_length(description.html, LEAD_TEXT_LIMIT)
    if truncated:
        diagnostics.add_reason("lead-truncated-400")
    diagnostics.lead_used = True
    return lead_html.strip()


def select_body_and_lead(
    item: NormalizedFeedItem,
    lead_similarity_threshold: float = LEAD_SIMILARITY_THRESHOLD,
) -> SelectionResult:
    """
    Pick the body HTML and optional lead for a normalized item.

    Returns:
        SelectionResult with body_html ('' when every candidate is empty),
        lead_html (None when no lead is used) and diagnostics
        (chosen_source, content_score, lead_used, dedupe_ratio, reasons)
    """
    diagnostics = SelectionDiagnostics()
    evaluated: dict[str, _Candidate] = {}
    chosen: _Candidate | None = None
    largest: _Candidate | None = None

    for source in SOURCE_PRIORITY:
        candidate = _evaluate(source, item.raw_html_candidates.get(source))
        if candidate is None:
            continue
        evaluated[source] = candidate
        if largest is None or candidate.length > largest.length:
            largest = candidate
        if chosen is None and candidate.is_substantial:
            chosen = candidate

    if chosen is None and largest is not None:
        chosen = largest
        diagnostics.add_reason("fallback-largest")

    if chosen is None:
        return SelectionResult(body_html="", lead_html=None, diagnostics=diagnostics)

    diagnostics.chosen_source = chosen.source
    diagnostics.content_score = chosen.content_score
    _add_body_reasons(chosen, diagnostics)

    body_html, truncated = truncate_body_html(chosen.html)
    if truncated:
        diagnostics.add_reason("truncated-150kb")

    lead_html = _select_lead(evaluated, body_html, diagnostics, lead_similarity_threshold)
    return SelectionResult(body_html=body_html, lead_html=lead_html, diagnostics=diagnostics)
