"""
Article Assembler - build sanitized, size-bounded article HTML for one item.

Handles:
- Whitelist sanitization (unknown tags unwrapped, scripts/forms dropped)
- Embed policy (iframes kept only for allowed hosts when enabled)
- Known publisher boilerplate removal
- Link rewriting: relative URLs resolved, tracker params stripped,
  external anchors opened with rel="noopener noreferrer"
- Top image injection (media:content > media:thumbnail > enclosure > inline)
- Metadata block, plain-text excerpt and a byte budget with truncation notice
"""

import html
import re
from dataclasses import dataclass, field
from urllib.parse import SplitResult, unquote_plus, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

from .config import RssConfig
from .html_fragments import parse_fragment, starts_with_image, trim_to_budget, utf8_length
from .normalizer import MediaResource, NormalizedFeedItem, collect_inline_images
from .selector import SelectionResult
from .text_utils import collapse_whitespace

ALLOWED_TAGS = frozenset({
    "p", "h1", "h2", "h3", "ul", "ol", "li", "a", "img", "blockquote",
    "strong", "em", "code", "pre", "figure", "figcaption", "hr", "br",
})
VOID_TAGS = frozenset({"img", "hr", "br"})
EMBED_TAGS = frozenset({"iframe", "embed", "object"})
DROP_CONTENT_TAGS = frozenset({
    "script", "style", "noscript", "template", "form", "input", "button",
    "select", "textarea", "video", "audio", "svg", "head",
})

DEFAULT_TRACKER_PARAMS = frozenset({
    "ref", "fbclid", "gclid", "mc_eid", "mc_cid", "igshid", "spm", "xtor",
    "mkt_tok", "yclid", "vero_id",
})
UNSAFE_URL_PREFIXES = ("javascript:", "data:", "vbscript:")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")

BOILERPLATE_CLASSES = frozenset({"outpost-pub-container"})
READ_MORE_PHRASES = frozenset({"read more", "continue reading"})
READ_MORE_TRAILING_PUNCTUATION = re.compile(r"[.!?…›»→-]+$")

TRUNCATION_NOTICE = "<p><em>Content truncated.</em></p>"

IMAGE_SOURCE_MEDIA_CONTENT = "media:content"
IMAGE_SOURCE_MEDIA_THUMBNAIL = "media:thumbnail"
IMAGE_SOURCE_ENCLOSURE = "enclosure"
IMAGE_SOURCE_INLINE = "inline"
IMAGE_SOURCE_NONE = "none"


@dataclass
class AssemblerOptions:
    keep_embeds: bool = False
    allowed_iframe_hosts: list[str] = field(default_factory=list)
    inject_top_image: bool = True
    excerpt_max_chars: int = 220
    max_html_kb: int = 150
    strip_known_boilerplates: bool = True
    tracker_params_remove_list: list[str] | None = None

    @classmethod
    def from_config(cls, rss: RssConfig) -> "AssemblerOptions":
        return cls(
            keep_embeds=rss.keep_embeds,
            allowed_iframe_hosts=list(rss.allowed_iframe_hosts),
            inject_top_image=rss.inject_top_image,
            excerpt_max_chars=rss.excerpt_max_chars,
            max_html_kb=rss.max_html_kb,
            strip_known_boilerplates=rss.strip_known_boilerplates,
            tracker_params_remove_list=rss.tracker_params_remove_list,
        )


@dataclass
class AssemblyDiagnostics:
    image_source: str = IMAGE_SOURCE_NONE
    removed_embeds: int = 0
    link_fixes: int = 0
    tracker_params_removed: int = 0
    truncated: bool = False
    kept_embeds_hosts: list[str] = field(default_factory=list)


@dataclass
class AssemblyResult:
    article_html: str
    main_image_url: str | None
    excerpt: str
    diagnostics: AssemblyDiagnostics


@dataclass
class _Fragment:
    """One sanitized node: its serialized HTML and its visible text."""
    kind: str  # "text" or "element"
    html: str
    text: str
    tag: str | None = None
    css_class: str | None = None


@dataclass
class _ResolvedUrl:
    value: str
    parts: SplitResult | None


def escape_attr(value: str) -> str:
    return html.escape(value, quote=True)


def build_tracker_param_names(override: list[str] | None) -> frozenset[str]:
    """A custom list replaces the named defaults; utm_* is always stripped."""
    if not override:
        return DEFAULT_TRACKER_PARAMS
    names = frozenset(entry.strip().lower() for entry in override if entry and entry.strip())
    return names or DEFAULT_TRACKER_PARAMS


def is_likely_image_url(parts: SplitResult | None) -> bool:
    if parts is None or len(parts.path) <= 1:
        return False
    return parts.path.lower().endswith(IMAGE_EXTENSIONS)


def _sanitize_class(value) -> str | None:
    if isinstance(value, list):
        value = " ".join(value)
    if not isinstance(value, str):
        return None
    classes = value.split()
    return " ".join(classes) if classes else None


def _positive_int(value) -> int | None:
    if not isinstance(value, str):
        return None
    match = re.match(r"\s*(\d+)", value)
    if not match:
        return None
    number = int(match.group(1))
    return number if number > 0 else None


def add_lead_class(lead_html: str | None) -> str:
    """Render the lead as a paragraph carrying the 'lead' class."""
    if not lead_html or not lead_html.strip():
        return ""
    trimmed = lead_html.strip()
    soup = parse_fragment(trimmed)
    elements = soup.find_all(True, recursive=False)
    loose_text = [text for text in soup.find_all(string=True, recursive=False) if text.strip()]
    if len(elements) != 1 or elements[0].name != "p" or loose_text:
        return f'<p class="lead">{trimmed}</p>'

    paragraph = elements[0]
    classes = list(paragraph.get("class") or [])
    if "lead" not in classes:
        classes.append("lead")
    paragraph["class"] = classes
    return str(paragraph)


def build_meta_html(item: NormalizedFeedItem) -> str:
    """Author, date, source link and tags as article-meta paragraphs."""
    parts = []
    if item.author:
        parts.append(
            '<p class="article-meta article-meta-author">'
            f"<strong>Author:</strong> {html.escape(item.author)}</p>"
        )
    if item.published_at_iso:
        parts.append(
            '<p class="article-meta article-meta-date">'
            f"<strong>Published:</strong> {html.escape(item.published_at_iso)}</p>"
        )
    if item.canonical_url:
        url = escape_attr(item.canonical_url)
        parts.append(
            '<p class="article-meta article-meta-source">'
            f'<strong>Source:</strong> <a href="{url}">{html.escape(item.canonical_url)}</a></p>'
        )
    if item.categories:
        parts.append(
            '<p class="article-meta article-meta-tags">'
            f"<strong>Tags:</strong> {html.escape(', '.join(item.categories))}</p>"
        )
    return "\n".join(parts)


def build_fallback_html(title: str | None, link: str | None) -> str:
    """Minimal article: the title, plus a link to the original when known."""
    text = html.escape(title or "Untitled")
    if link:
        return f'<p>{text} <a href="{escape_attr(link)}">{html.escape(link)}</a></p>'
    return f"<p>{text}</p>"


# ─────────────────────────────────────────────────────────────
# Sanitizer
# ─────────────────────────────────────────────────────────────

class _Sanitizer:
    """Walks a parsed fragment and re-serializes only what is allowed."""

    def __init__(self, item: NormalizedFeedItem, options: AssemblerOptions, diagnostics: AssemblyDiagnostics):
        self.options = options
        self.diagnostics = diagnostics
        self.allowed_hosts = [
            host.strip().lower() for host in options.allowed_iframe_hosts if host and host.strip()
        ]
        self.tracker_names = build_tracker_param_names(options.tracker_params_remove_list)
        self.base_urls = [
            url for url in (item.canonical_url, item.source_feed_url)
            if url and urlsplit(url).scheme.lower() in ("http", "https")
        ]
        self.kept_hosts: dict[str, None] = {}

    # URL handling

    def strip_trackers(self, query: str) -> tuple[str, int]:
        if not query:
            return query, 0
        kept = []
        removed = 0
        for pair in query.split("&"):
            name = unquote_plus(pair.split("=", 1)[0]).strip().lower()
            if name and (name.startswith("utm_") or name in self.tracker_names):
                removed += 1
            else:
                kept.append(pair)
        if not removed:
            return query, 0
        return "&".join(pair for pair in kept if pair), removed

    def normalize_url(
        self,
        raw,
        allowed_schemes: frozenset[str],
        record: bool = True,
    ) -> _ResolvedUrl | None:
        if not isinstance(raw, str) or not raw.strip():
            return None
        value = raw.strip()
        lower = value.lower()
        if lower.startswith(UNSAFE_URL_PREFIXES):
            return None

        if lower.startswith("mailto:"):
            if "mailto" not in allowed_schemes:
                return None
            if record:
                self.diagnostics.link_fixes += 1
            return _ResolvedUrl(value=value, parts=None)

        if value.startswith("//"):
            value = f"https:{value}"

        try:
            parts = urlsplit(value)
            if not parts.scheme:
                if not self.base_urls:
                    return None
                parts = urlsplit(urljoin(self.base_urls[0], value))
        except ValueError:
            return None

        scheme = parts.scheme.lower()
        if scheme not in allowed_schemes or not parts.hostname:
            return None

        query, removed = self.strip_trackers(parts.query)
        parts = parts._replace(scheme=scheme, query=query)
        if record:
            self.diagnostics.link_fixes += 1
            self.diagnostics.tracker_params_removed += removed
        return _ResolvedUrl(value=urlunsplit(parts), parts=parts)

    # Tree walking

    def sanitize(self, markup: str) -> list[_Fragment]:
        if not markup:
            return []
        soup = BeautifulSoup(markup, "html.parser")
        fragments = self.children(soup)
        if self.options.strip_known_boilerplates:
            fragments = _strip_read_more_paragraphs(fragments)
        return fragments

    def children(self, node: Tag) -> list[_Fragment]:
        fragments = []
        for child in node.children:
            fragments.extend(self.node(child))
        return fragments

    def node(self, node) -> list[_Fragment]:
        if isinstance(node, Tag):
            return self.element(node)
        if isinstance(node, PreformattedString):
            # Comments, doctypes, CDATA, processing instructions
            return []
        if isinstance(node, NavigableString):
            text = str(node)
            if not text:
                return []
            return [_Fragment(kind="text", html=html.escape(text, quote=False), text=text)]
        return []

    def element(self, node: Tag) -> list[_Fragment]:
        name = (node.name or "").lower()
        if not name:
            return self.children(node)

        css_class = _sanitize_class(node.get("class"))
        if self.options.strip_known_boilerplates and css_class:
            if BOILERPLATE_CLASSES.intersection(css_class.lower().split()):
                return []

        if name in EMBED_TAGS:
            return self.embed(node, name)
        if name in DROP_CONTENT_TAGS:
            return []
        if name not in ALLOWED_TAGS:
            return self.children(node)

        if name == "a":
            return self.anchor(node, css_class)
        if name == "img":
            return self.image(node, css_class)
        if name in ("br", "hr"):
            return [_Fragment(kind="element", tag=name, html=f"<{name}>", text=" " if name == "br" else "")]
        return self.generic(node, name, css_class)

    def anchor(self, node: Tag, css_class: str | None) -> list[_Fragment]:
        resolved = self.normalize_url(node.get("href"), frozenset({"http", "https", "mailto"}))
        children = self.children(node)
        if resolved is None:
            return children

        attrs = [f'href="{escape_attr(resolved.value)}"']
        if css_class:
            attrs.append(f'class="{escape_attr(css_class)}"')
        title = node.get("title")
        if isinstance(title, str) and title.strip():
            attrs.append(f'title="{escape_attr(title.strip())}"')
        if resolved.parts is not None:
            attrs.append('target="_blank"')
            attrs.append('rel="noopener noreferrer"')

        inner = "".join(child.html for child in children)
        return [_Fragment(
            kind="element",
            tag="a",
            html=f"<a {' '.join(attrs)}>{inner}</a>",
            text="".join(child.text for child in children),
            css_class=css_class,
        )]

    def image(self, node: Tag, css_class: str | None) -> list[_Fragment]:
        resolved = self.normalize_url(node.get("src"), frozenset({"http", "https"}))
        if resolved is None or not is_likely_image_url(resolved.parts):
            return []

        attrs = [f'src="{escape_attr(resolved.value)}"']
        if css_class:
            attrs.append(f'class="{escape_attr(css_class)}"')
        alt = node.get("alt")
        attrs.append(f'alt="{escape_attr(alt)}"' if isinstance(alt, str) else 'alt=""')
        title = node.get("title")
        if isinstance(title, str) and title.strip():
            attrs.append(f'title="{escape_attr(title.strip())}"')
        for dimension in ("width", "height"):
            number = _positive_int(node.get(dimension))
            if number:
                attrs.append(f'{dimension}="{number}"')
        attrs.append('loading="lazy"')
        attrs.append('decoding="async"')

        return [_Fragment(kind="element", tag="img", html=f"<img {' '.join(attrs)}>", text="", css_class=css_class)]

    def embed(self, node: Tag, name: str) -> list[_Fragment]:
        # Only iframes can be kept; plugin embeds are always dropped
        if name != "iframe" or not self.options.keep_embeds:
            self.diagnostics.removed_embeds += 1
            return []

        resolved = self.normalize_url(node.get("src"), frozenset({"https"}))
        host = resolved.parts.hostname.lower() if resolved and resolved.parts else None
        if host is None or host not in self.allowed_hosts:
            self.diagnostics.removed_embeds += 1
            return []

        self.kept_hosts.setdefault(host, None)
        attrs = [f'src="{escape_attr(resolved.value)}"', 'loading="lazy"', "allowfullscreen"]
        css_class = _sanitize_class(node.get("class"))
        if css_class:
            attrs.append(f'class="{escape_attr(css_class)}"')
        title = node.get("title")
        if isinstance(title, str) and title.strip():
            attrs.append(f'title="{escape_attr(title.strip())}"')
        for dimension in ("width", "height"):
            number = _positive_int(node.get(dimension))
            if number:
                attrs.append(f'{dimension}="{number}"')

        return [_Fragment(kind="element", tag="iframe", html=f"<iframe {' '.join(attrs)}></iframe>", text="")]

    def generic(self, node: Tag, name: str, css_class: str | None) -> list[_Fragment]:
        children = self.children(node)
        attrs = f' class="{escape_attr(css_class)}"' if css_class else ""
        inner = "".join(child.html for child in children)
        closing = "" if name in VOID_TAGS else f"</{name}>"
        return [_Fragment(
            kind="element",
            tag=name,
            html=f"<{name}{attrs}>{inner}{closing}",
            text="".join(child.text for child in children),
            css_class=css_class,
        )]


def _is_read_more_paragraph(fragment: _Fragment) -> bool:
    if fragment.kind != "element" or fragment.tag != "p":
        return False
    text = collapse_whitespace(fragment.text).lower()
    return READ_MORE_TRAILING_PUNCTUATION.sub("", text).strip() in READ_MORE_PHRASES


def _strip_read_more_paragraphs(fragments: list[_Fragment]) -> list[_Fragment]:
    kept = [fragment for fragment in fragments if not _is_read_more_paragraph(fragment)]
    while kept and kept[-1].kind == "text" and not kept[-1].text.strip():
        kept.pop()
    return kept


# ─────────────────────────────────────────────────────────────
# Top image
# ─────────────────────────────────────────────────────────────

def _best_media_resource(resources: list[MediaResource], sanitizer: _Sanitizer) -> str | None:
    best_url = None
    best_area = -1
    for resource in resources:
        resolved = sanitizer.normalize_url(resource.url, frozenset({"http", "https"}), record=False)
        if resolved is None or not is_likely_image_url(resolved.parts):
            continue
        area = (resource.width or 0) * (resource.height or 0)
        if area > best_area:
            best_url, best_area = resolved.value, area
    return best_url


def select_top_image(
    item: NormalizedFeedItem,
    body_html: str,
    sanitizer: _Sanitizer,
) -> tuple[str, str] | None:
    """(image source, url) by tier priority, or None when no usable image exists."""
    media = item.media
    if media is not None:
        url = _best_media_resource(media.media_content, sanitizer)
        if url:
            return IMAGE_SOURCE_MEDIA_CONTENT, url

        url = _best_media_resource(media.media_thumbnail, sanitizer)
        if url:
            return IMAGE_SOURCE_MEDIA_THUMBNAIL, url

        if media.enclosure_image is not None:
            resolved = sanitizer.normalize_url(
                media.enclosure_image.url, frozenset({"http", "https"}), record=False
            )
            if resolved and is_likely_image_url(resolved.parts):
                return IMAGE_SOURCE_ENCLOSURE, resolved.value

    for src in collect_inline_images([body_html]):
        resolved = sanitizer.normalize_url(src, frozenset({"http", "https"}), record=False)
        if resolved and is_likely_image_url(resolved.parts):
            return IMAGE_SOURCE_INLINE, resolved.value
    return None


# ─────────────────────────────────────────────────────────────
# Size budget and excerpt
# ─────────────────────────────────────────────────────────────

def truncate_html(markup: str, max_html_kb: int) -> tuple[str, bool]:
    """
    Enforce the byte budget.

    Oversized HTML is cut at the deepest element boundary that fits, open
    elements are closed, and TRUNCATION_NOTICE is appended. The result,
    notice included, never exceeds max_html_kb * 1024 bytes.
    """
    if not markup:
        return markup, False
    limit = int((max_html_kb if max_html_kb and max_html_kb > 0 else 150) * 1024)
    if utf8_length(markup) <= limit:
        return markup, False

    budget = max(0, limit - utf8_length(TRUNCATION_NOTICE))
    trimmed = trim_to_budget(markup, budget, measure=utf8_length).rstrip()
    return f"{trimmed}{TRUNCATION_NOTICE}", True


def build_excerpt(fragments: list[_Fragment], max_chars: int) -> str:
    """Plain text excerpt, skipping figures and metadata, cut at a word boundary."""
    parts = []
    for fragment in fragments:
        if fragment.kind == "element":
            if fragment.tag == "figure":
                continue
            classes = (fragment.css_class or "").split()
            if any(name.startswith("article-meta") for name in classes):
                continue
        if fragment.text and fragment.text.strip():
            parts.append(fragment.text)

    text = collapse_whitespace(" ".join(parts))
    if not text:
        return ""
    limit = max_chars if max_chars and max_chars > 0 else 220
    if len(text) <= limit:
        return text

    cut = text[:limit]
    last_space = cut.rfind(" ")
    if last_space > int(limit * 0.6):
        cut = cut[:last_space]
    return f"{cut.rstrip()}…"


# ─────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────

def _serialize(fragments: list[_Fragment]) -> str:
    return "\n".join(fragment.html for fragment in fragments).strip()


def assemble_article(
    item: NormalizedFeedItem,
    selection: SelectionResult,
    options: AssemblerOptions | None = None,
) -> AssemblyResult:
    """
    Assemble the final article HTML for a normalized item.

    Args:
        item: Normalized feed item
        selection: Body/lead choice from select_body_and_lead()
        options: Assembler options (defaults when omitted)

    Returns:
        AssemblyResult with article_html, main_image_url, excerpt and diagnostics
    """
    options = options or AssemblerOptions()
    diagnostics = AssemblyDiagnostics()
    sanitizer = _Sanitizer(item, options, diagnostics)
    body_html = selection.body_html or ""

    if not body_html.strip():
        fragments = sanitizer.sanitize(build_fallback_html(item.title, item.canonical_url))
        article_html, diagnostics.truncated = truncate_html(_serialize(fragments), options.max_html_kb)
        diagnostics.kept_embeds_hosts = list(sanitizer.kept_hosts)
        return AssemblyResult(
            article_html=article_html,
            main_image_url=None,
            excerpt=build_excerpt(fragments, options.excerpt_max_chars),
            diagnostics=diagnostics,
        )

    top_image = select_top_image(item, body_html, sanitizer)
    segments = []
    lead_html = add_lead_class(selection.lead_html)
    if lead_html:
        segments.append(lead_html)
    if options.inject_top_image and top_image and not starts_with_image(body_html):
        segments.append(f'<figure><img src="{escape_attr(top_image[1])}" alt=""></figure>')
    segments.append(body_html)
    meta_html = build_meta_html(item)
    if meta_html:
        segments.append(meta_html)

    fragments = sanitizer.sanitize("\n".join(segments))
    article_html, diagnostics.truncated = truncate_html(_serialize(fragments), options.max_html_kb)

    if top_image:
        diagnostics.image_source = top_image[0]
    diagnostics.kept_embeds_hosts = list(sanitizer.kept_hosts)

    return AssemblyResult(
        article_html=article_html,
        main_image_url=top_image[1] if top_image else None,
        excerpt=build_excerpt(fragments, options.excerpt_max_chars),
        diagnostics=diagnostics,
    )
