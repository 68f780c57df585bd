"""
Item Normalizer - map one raw feed item (RSS 2.0, Atom, RDF) to a canonical shape.

Each field is resolved by an ordered list of small extractors; the first
one that yields a non-empty value wins. Raw HTML candidates are kept
untouched for the body/lead selector.
"""

import html
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from dateutil import parser as date_parser
from dateutil import tz

from .feed_parser import ATTR_PREFIX, TEXT_KEY, RawItem, ensure_list
from .html_fragments import image_sources
from .rss_logger import rss_logger
from .text_utils import clean_text, collapse_whitespace

TEXT_NODE_KEYS = (TEXT_KEY, "_text", "text", "value")

DATE_FIELDS = ("pubDate", "published", "updated", "lastBuildDate", "dc:date")

TZ_ALIASES = {
    "EST": tz.gettz("America/New_York"),
    "EDT": tz.gettz("America/New_York"),
    "CST": tz.gettz("America/Chicago"),
    "CDT": tz.gettz("America/Chicago"),
    "MST": tz.gettz("America/Denver"),
    "MDT": tz.gettz("America/Denver"),
    "PST": tz.gettz("America/Los_Angeles"),
    "PDT": tz.gettz("America/Los_Angeles"),
    "UTC": timezone.utc,
    "GMT": timezone.utc,
}

SOURCE_CONTENT_ENCODED = "contentEncoded"
SOURCE_CONTENT = "content"
SOURCE_DESCRIPTION = "descriptionOrSummary"


class NormalizationError(ValueError):
    """Raised when a raw item has a shape the normalizer cannot handle."""


@dataclass
class MediaResource:
    url: str
    width: int | None = None
    height: int | None = None


@dataclass
class EnclosureImage:
    url: str
    type: str


@dataclass
class MediaHints:
    media_content: list[MediaResource] = field(default_factory=list)
    media_thumbnail: list[MediaResource] = field(default_factory=list)
    enclosure_image: EnclosureImage | None = None
    inline_images: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.media_content or self.media_thumbnail or self.enclosure_image or self.inline_images
        )


@dataclass
class RawHtmlCandidates:
    content_encoded: str | None = None
    content: str | None = None
    description_or_summary: str | None = None

    def get(self, source: str) -> str | None:
        return {
            SOURCE_CONTENT_ENCODED: self.content_encoded,
            SOURCE_CONTENT: self.content,
            SOURCE_DESCRIPTION: self.description_or_summary,
        }.get(source)


@dataclass
class NormalizedFeedItem:
    title: str
    canonical_url: str | None
    published_at: datetime | None
    author: str | None
    categories: list[str]
    guid: str | None
    is_permalink: bool
    raw_html_candidates: RawHtmlCandidates
    media: MediaHints | None = None
    source_feed_url: str | None = None

    @property
    def published_at_iso(self) -> str | None:
        """Publish date as YYYY-MM-DD (UTC)."""
        if self.published_at is None:
            return None
        return self.published_at.astimezone(timezone.utc).date().isoformat()


# ─────────────────────────────────────────────────────────────
# Value helpers
# ─────────────────────────────────────────────────────────────

def extract_first_text(value: Any) -> str | None:
    """First non-empty text found in a tree value (string, list or node)."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    if isinstance(value, list):
        for entry in value:
            text = extract_first_text(entry)
            if text:
                return text
        return None
    if isinstance(value, dict):
        for key in TEXT_NODE_KEYS:
            if key in value:
                text = extract_first_text(value[key])
                if text:
                    return text
    return None


def decode_text(value: Any) -> str | None:
    raw = extract_first_text(value)
    if raw is None:
        return None
    decoded = html.unescape(raw).strip()
    return decoded or None


def decode_url(value: Any) -> str | None:
    return decode_text(value)


def attr(node: Any, name: str) -> Any:
    """Attribute of a tree node, tolerating un-prefixed keys."""
    if not isinstance(node, dict):
        return None
    value = node.get(f"{ATTR_PREFIX}{name}")
    return value if value is not None else node.get(name)


def parse_bool_attribute(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in ("true", "1", "yes"):
        return True
    if normalized in ("false", "0", "no"):
        return False
    return None


def parse_int_attribute(value: Any) -> int | None:
    if value is None:
        return None
    match = re.match(r"\s*([+-]?\d+)", str(value))
    return int(match.group(1)) if match else None


def parse_feed_date(value: str | None) -> datetime | None:
    """Parse an RFC 822 or ISO 8601 feed date into an aware UTC datetime."""
    if not value or not value.strip():
        return None
    try:
        parsed = date_parser.parse(value.strip(), tzinfos=TZ_ALIASES)
    except (ValueError, OverflowError, TypeError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def resolve_published_at(item: RawItem) -> datetime | None:
    """First resolvable date among the known date fields."""
    for key in DATE_FIELDS:
        parsed = parse_feed_date(extract_first_text(item.get(key)))
        if parsed:
            return parsed
    return None


# ─────────────────────────────────────────────────────────────
# Field extractors
# ─────────────────────────────────────────────────────────────

def extract_title(item: RawItem) -> str:
    raw = extract_first_text(item.get("title"))
    if not raw:
        return ""
    return clean_text(raw)


def _atom_link(links: Any) -> str | None:
    fallback = None
    for entry in ensure_list(links):
        if isinstance(entry, str):
            url = decode_url(entry)
            if url and not fallback:
                fallback = url
            continue
        if not isinstance(entry, dict):
            continue

        rel_raw = attr(entry, "rel")
        rel = rel_raw.strip().lower() if isinstance(rel_raw, str) else None
        href = decode_url(attr(entry, "href") or entry.get(TEXT_KEY))
        if not href:
            continue
        if rel == "alternate":
            return href
        if not fallback and not rel:
            fallback = href

    if fallback:
        return fallback

    for entry in ensure_list(links):
        if isinstance(entry, dict) and str(attr(entry, "rel") or "").strip().lower() == "self":
            href = decode_url(attr(entry, "href"))
            if href:
                return href
    return None


def _link_from_origlink(item: RawItem) -> str | None:
    return decode_url(item.get("feedburner:origLink"))


def _link_from_atom(item: RawItem) -> str | None:
    link = item.get("link")
    if isinstance(link, list) or (isinstance(link, dict) and attr(link, "href")):
        return _atom_link(link)
    return None


def _link_from_text(item: RawItem) -> str | None:
    link = item.get("link")
    if isinstance(link, dict):
        return decode_url(link.get(TEXT_KEY))
    return decode_url(link)


CANONICAL_URL_EXTRACTORS: list[Callable[[RawItem], str | None]] = [
    _link_from_origlink,
    _link_from_atom,
    _link_from_text,
]


def resolve_canonical_url(item: RawItem) -> str | None:
    link = item.get("link")
    if link is not None and not isinstance(link, (str, dict, list)):
        raise NormalizationError(f"Unsupported link structure: {type(link).__name__}")
    for extractor in CANONICAL_URL_EXTRACTORS:
        url = extractor(item)
        if url:
            return url
    return None


def _author_from_creator(item: RawItem) -> str | None:
    return decode_text(item.get("dc:creator"))


def _author_from_atom(item: RawItem) -> str | None:
    author = item.get("author")
    for entry in ensure_list(author):
        if isinstance(entry, dict) and "name" in entry:
            name = decode_text(entry.get("name"))
            if name:
                return name
    return None


def _author_from_text(item: RawItem) -> str | None:
    return decode_text(item.get("author"))


AUTHOR_EXTRACTORS: list[Callable[[RawItem], str | None]] = [
    _author_from_creator,
    _author_from_atom,
    _author_from_text,
]


def extract_author(item: RawItem) -> str | None:
    for extractor in AUTHOR_EXTRACTORS:
        author = extractor(item)
        if author:
            return collapse_whitespace(author)
    return None


def _category_strings(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float, bool)):
        return [str(value)]
    if isinstance(value, list):
        result = []
        for entry in value:
            result.extend(_category_strings(entry))
        return result
    if isinstance(value, dict):
        result = []
        for name in ("term", "label"):
            label = attr(value, name)
            if isinstance(label, str):
                result.append(label)
        for key in TEXT_NODE_KEYS:
            if key in value:
                result.extend(_category_strings(value[key]))
        return result
    return []


def extract_categories(item: RawItem) -> list[str]:
    """Ordered category labels, deduplicated case-insensitively (first casing wins)."""
    seen: dict[str, str] = {}
    for key in ("category", "categories", "dc:subject"):
        for value in _category_strings(item.get(key)):
            decoded = html.unescape(value).strip()
            if decoded and decoded.lower() not in seen:
                seen[decoded.lower()] = decoded
    return list(seen.values())


def extract_guid(item: RawItem) -> tuple[str | None, bool]:
    """GUID and permalink flag: RSS <guid>, then RDF about URI, then Atom <id>."""
    raw_guid = item.get("guid")
    guid = decode_text(raw_guid)
    if guid:
        flag = parse_bool_attribute(attr(raw_guid, "isPermaLink"))
        if flag is None:
            # RSS default: a guid is a permalink unless it says otherwise
            flag = guid.lower().startswith(("http://", "https://"))
        return guid, flag

    about = decode_text(item.get(f"{ATTR_PREFIX}rdf:about"))
    if about:
        return about, about.lower().startswith(("http://", "https://"))

    atom_id = decode_text(item.get("id"))
    if atom_id:
        return atom_id, False

    return None, False


def _raw_html(value: Any) -> str | None:
    raw = extract_first_text(value)
    return raw if isinstance(raw, str) and raw.strip() else None


def extract_raw_html_candidates(item: RawItem) -> RawHtmlCandidates:
    description = item.get("description")
    if description is None or description == "":
        description = item.get("summary")
    return RawHtmlCandidates(
        content_encoded=_raw_html(item.get("content:encoded")),
        content=_raw_html(item.get("content")),
        description_or_summary=_raw_html(description),
    )


# ─────────────────────────────────────────────────────────────
# Media hints
# ─────────────────────────────────────────────────────────────

def _media_resources(value: Any) -> list[MediaResource]:
    resources = []
    for entry in ensure_list(value):
        if not isinstance(entry, dict):
            continue
        url = decode_url(attr(entry, "url"))
        if not url:
            continue
        resources.append(MediaResource(
            url=url,
            width=parse_int_attribute(attr(entry, "width")),
            height=parse_int_attribute(attr(entry, "height")),
        ))
    return resources


def _media_groups(item: RawItem, key: str) -> list[Any]:
    values = ensure_list(item.get(key))
    for group in ensure_list(item.get("media:group")):
        if isinstance(group, dict):
            values.extend(ensure_list(group.get(key)))
    return values


def _enclosure_image(value: Any) -> EnclosureImage | None:
    for entry in ensure_list(value):
        if not isinstance(entry, dict):
            continue
        mime = decode_text(attr(entry, "type"))
        if not mime or not mime.lower().startswith("image/"):
            continue
        url = decode_url(attr(entry, "url"))
        if url:
            return EnclosureImage(url=url, type=mime)
    return None


def collect_inline_images(candidates: list[str | None]) -> list[str]:
    """<img src> values found in the raw HTML candidates, in order, deduplicated."""
    found: dict[str, None] = {}
    for markup in candidates:
        if not markup:
            continue
        for src in image_sources(markup):
            found.setdefault(src, None)
    return list(found)


def extract_media(item: RawItem, candidates: RawHtmlCandidates) -> MediaHints | None:
    media = MediaHints(
        media_content=_media_resources(_media_groups(item, "media:content")),
        media_thumbnail=_media_resources(_media_groups(item, "media:thumbnail")),
        enclosure_image=_enclosure_image(item.get("enclosure")),
        inline_images=collect_inline_images([
            candidates.content_encoded,
            candidates.content,
            candidates.description_or_summary,
        ]),
    )
    return None if media.is_empty() else media


# ─────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────

def normalize_item(raw_item: RawItem, feed_url: str | None = None) -> NormalizedFeedItem:
    """
    Normalize one raw feed item.

    Args:
        raw_item: Item record produced by feed_parser.extract_items()
        feed_url: URL of the feed the item came from

    Returns:
        NormalizedFeedItem. published_at is None when no date resolves;
        callers decide whether such an item is valid.

    Raises:
        NormalizationError: The item is not a mapping or has an unsupported shape
    """
    if not isinstance(raw_item, dict):
        raise NormalizationError("raw item must be a mapping")

    title = extract_title(raw_item)
    canonical_url = resolve_canonical_url(raw_item)
    guid, is_permalink = extract_guid(raw_item)
    candidates = extract_raw_html_candidates(raw_item)

    if not title:
        rss_logger.warning(f"Feed item missing title (feed={feed_url}, guid={guid})")
    if not canonical_url:
        rss_logger.warning(f"Feed item missing canonical URL (feed={feed_url}, guid={guid})")

    return NormalizedFeedItem(
        title=title,
        canonical_url=canonical_url,
        published_at=resolve_published_at(raw_item),
        author=extract_author(raw_item),
        categories=extract_categories(raw_item),
        guid=guid,
        is_permalink=is_permalink,
        raw_html_candidates=candidates,
        media=extract_media(raw_item, candidates),
        source_feed_url=feed_url,
    )
