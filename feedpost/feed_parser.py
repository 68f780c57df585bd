"""
Feed Parser - turn RSS 2.0 / Atom 1.0 / RDF (RSS 1.0) XML into raw items.

The document is converted into a generic dict tree instead of a typed
schema, because publishers mix dialects and extensions freely:

- element children become keys (repeated tags become lists)
- attributes are stored as "@name"
- text is stored as-is (trimmed, never coerced to numbers); elements that
  also carry attributes or children keep their text under "#text"
- namespaced tags use short prefixes ("content:encoded", "dc:creator",
  "media:content", "feedburner:origLink", "rdf:RDF")

extract_items() then checks the tree against the known item containers.
"""

import html.entities
import logging
import re
from typing import Any, Callable

from lxml import etree

from .exceptions import FeedXmlParseError

logger = logging.getLogger(__name__)

ATTR_PREFIX = "@"
TEXT_KEY = "#text"

ATOM_NS = "http://www.w3.org/2005/Atom"

NAMESPACE_PREFIXES = {
    "http://purl.org/rss/1.0/": "",
    "http://purl.org/rss/1.0/modules/content/": "content",
    "http://purl.org/dc/elements/1.1/": "dc",
    "http://purl.org/dc/terms/": "dcterms",
    "http://search.yahoo.com/mrss/": "media",
    "http://search.yahoo.com/mrss": "media",
    "http://www.w3.org/1999/02/22-rdf-syntax-ns#": "rdf",
    "http://rssnamespace.org/feedburner/ext/1.0": "feedburner",
    "http://www.itunes.com/dtds/podcast-1.0.dtd": "itunes",
    "http://purl.org/rss/1.0/modules/slash/": "slash",
    "http://www.w3.org/XML/1998/namespace": "xml",
    "http://www.w3.org/1999/xhtml": "xhtml",
}

XML_ENTITIES = frozenset({"amp", "lt", "gt", "quot", "apos"})
XML_DECLARATION_REGEX = re.compile(r"^<\?xml[^>]*\?>")
CDATA_REGEX = re.compile(r"(<!\[CDATA\[.*?\]\]>)", re.DOTALL)
ENTITY_REF_REGEX = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")
BARE_AMPERSAND_REGEX = re.compile(r"&(?!#[0-9]+;|#[xX][0-9a-fA-F]+;|[A-Za-z][A-Za-z0-9]*;)")

RawItem = dict[str, Any]


def ensure_list(value: Any) -> list:
    """Wrap a single tree value in a list; None becomes an empty list."""
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _split_tag(tag: str) -> tuple[str | None, str]:
    if tag.startswith("{"):
        uri, _, local = tag[1:].partition("}")
        return uri, local
    return None, tag


class _TreeBuilder:
    """Converts an lxml element into the generic dict tree."""

    def __init__(self, root_namespace: str | None):
        self._prefixes = dict(NAMESPACE_PREFIXES)
        # Atom elements are unprefixed in Atom documents and "atom:" elsewhere
        self._prefixes[ATOM_NS] = "" if root_namespace == ATOM_NS else "atom"

    def name(self, tag: str) -> str:
        uri, local = _split_tag(tag)
        if uri is None:
            return local
        prefix = self._prefixes.get(uri, "")
        return f"{prefix}:{local}" if prefix else local

    def convert(self, element: etree._Element) -> Any:
        attributes = {
            f"{ATTR_PREFIX}{self.name(key)}": value.strip()
            for key, value in element.attrib.items()
        }

        if attributes.get(f"{ATTR_PREFIX}type", "").lower() == "xhtml" and len(element):
            # Atom inline XHTML: keep the markup, not a tree of its children
            node: dict[str, Any] = dict(attributes)
            node[TEXT_KEY] = _inner_markup(element).strip()
            return node

        text = (element.text or "").strip()
        children = [child for child in element if isinstance(child.tag, str)]

        if not attributes and not children:
            return text

        node = dict(attributes)
        for child in children:
            key = self.name(child.tag)
            value = self.convert(child)
            if key in node:
                existing = node[key]
                if isinstance(existing, list):
                    existing.append(value)
                else:
                    node[key] = [existing, value]
            else:
                node[key] = value

        if text:
            node[TEXT_KEY] = text
        return node


def _strip_namespaces(element: etree._Element) -> None:
    for node in element.iter():
        if isinstance(node.tag, str):
            node.tag = _split_tag(node.tag)[1]
        for key in list(node.attrib):
            if key.startswith("{"):
                node.attrib[_split_tag(key)[1]] = node.attrib.pop(key)


def _detached_markup(child: etree._Element) -> str:
    """Serialize a child (with its tail) as namespace-free markup."""
    parent = child.getparent()
    if parent is not None:
        parent.remove(child)
    _strip_namespaces(child)
    etree.cleanup_namespaces(child)
    return etree.tostring(child, encoding="unicode")


def _inner_markup(element: etree._Element) -> str:
    children = [child for child in element if isinstance(child.tag, str)]
    # A single wrapping <div> is Atom's xhtml convention, not content
    if len(children) == 1 and not (element.text or "").strip():
        only = children[0]
        if _split_tag(only.tag)[1] == "div" and not (only.tail or "").strip():
            inner = [only.text or ""]
            inner.extend(_detached_markup(child) for child in list(only) if isinstance(child.tag, str))
            return "".join(inner)
    parts = [element.text or ""]
    parts.extend(_detached_markup(child) for child in children)
    return "".join(parts)


def _repair_entities(segment: str) -> str:
    segment = ENTITY_REF_REGEX.sub(_replace_entity, segment)
    return BARE_AMPERSAND_REGEX.sub("&amp;", segment)


def _replace_entity(match: re.Match) -> str:
    name = match.group(1)
    if name in XML_ENTITIES:
        return match.group(0)
    value = html.entities.html5.get(f"{name};")
    if value is None:
        return f"&amp;{name};"
    return "".join(f"&#{ord(char)};" for char in value)


def prepare_xml_text(raw_xml: str) -> str:
    """
    Make publisher XML digestible before parsing.

    HTML named entities outside CDATA become character references, unknown
    ones and bare ampersands are escaped, and the XML declaration is dropped
    because the body is already decoded text.
    """
    text = XML_DECLARATION_REGEX.sub("", raw_xml.lstrip("\ufeff \t\r\n"), count=1)
    parts = CDATA_REGEX.split(text)
    # Odd indices are the CDATA sections themselves
    return "".join(
        part if index % 2 else _repair_entities(part)
        for index, part in enumerate(parts)
    )


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(
        recover=True,
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
    )


def parse_feed(raw_xml: str) -> dict[str, Any]:
    """
    Parse feed XML into a generic dict tree keyed by the root element name.

    The parser recovers from the usual publisher mistakes (stray
    ampersands, HTML entities, unbalanced tags) as long as a root element
    can be found.

    Raises:
        FeedXmlParseError: No document element could be recovered
    """
    if not isinstance(raw_xml, str):
        raise FeedXmlParseError()

    text = prepare_xml_text(raw_xml)
    try:
        root = etree.fromstring(text, _xml_parser())
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.debug(f"Feed XML parse error: {e}")
        raise FeedXmlParseError()
    if root is None or not isinstance(root.tag, str):
        raise FeedXmlParseError()

    builder = _TreeBuilder(_split_tag(root.tag)[0])
    return {builder.name(root.tag): builder.convert(root)}



# ─────────────────────────────────────────────────────────────
# Item extraction (ordered shape checks)
# ─────────────────────────────────────────────────────────────

def _get(node: Any, key: str) -> Any:
    return node.get(key) if isinstance(node, dict) else None


def _atom_entries(tree: dict) -> list[RawItem] | None:
    entries = _get(_get(tree, "feed"), "entry")
    return ensure_list(entries) if entries else None


def _rss_channel_items(tree: dict) -> list[RawItem] | None:
    channels = _get(_get(tree, "rss"), "channel")
    if not channels:
        return None
    items: list[RawItem] = []
    for channel in ensure_list(channels):
        items.extend(ensure_list(_get(channel, "item")))
    return items


def _rdf_items(tree: dict) -> list[RawItem] | None:
    rdf = _get(tree, "rdf:RDF")
    if not isinstance(rdf, dict):
        return None
    # RSS 1.0 places items beside the channel; some producers nest them
    items = _get(rdf, "item") or _get(_get(rdf, "channel"), "item")
    return ensure_list(items) if items else None


def _bare_channel_items(tree: dict) -> list[RawItem] | None:
    items = _get(_get(tree, "channel"), "item")
    return ensure_list(items) if items else None


def _bare_items(tree: dict) -> list[RawItem] | None:
    items = _get(tree, "item")
    return ensure_list(items) if items else None


ITEM_SHAPES: list[Callable[[dict], list[RawItem] | None]] = [
    _atom_entries,
    _rss_channel_items,
    _rdf_items,
    _bare_channel_items,
    _bare_items,
]


def extract_items(tree: Any) -> list[RawItem]:
    """
    Return the raw item records of a parsed feed.

    Probes Atom, RSS 2.0 (all channels), RDF, bare channel and bare item
    shapes in that order. Unknown shapes yield an empty list.
    """
    if not isinstance(tree, dict):
        return []

    for shape in ITEM_SHAPES:
        items = shape(tree)
        if items is not None:
            return [item for item in items if isinstance(item, dict)]
    return []
