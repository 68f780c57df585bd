"""
HTML fragment helpers built on BeautifulSoup.

Feed bodies are fragments, not documents, so everything here parses with
the stdlib-backed "html.parser" builder and serializes back with str().
"""

from typing import Callable

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

BLOCK_TAGS = (
    "p", "div", "img", "h1", "h2", "h3", "ul", "ol", "li",
    "figure", "pre", "code", "blockquote",
)
IMAGE_WRAPPER_TAGS = frozenset({"figure", "p", "div", "a", "picture", "span"})

Measure = Callable[[str], int]


def parse_fragment(markup: str | None) -> BeautifulSoup:
    return BeautifulSoup(markup or "", "html.parser")


def fragment_text(markup: str | None, separator: str = " ") -> str:
    """Visible text of a fragment with entities decoded."""
    if not markup:
        return ""
    return parse_fragment(markup).get_text(separator)


def utf8_length(value: str) -> int:
    return len(value.encode("utf-8"))


def _is_text(node) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def has_any_tag(soup: BeautifulSoup) -> bool:
    return soup.find(True) is not None


def contains_block_tags(soup: BeautifulSoup) -> bool:
    return soup.find(BLOCK_TAGS) is not None


def count_paragraphs(soup: BeautifulSoup) -> int:
    return len(soup.find_all(["p", "figure"]))


def remove_by_class(soup: BeautifulSoup, class_names) -> int:
    """Decompose every element carrying one of the classes; returns how many went."""
    removed = 0
    for class_name in class_names:
        for element in soup.find_all(class_=class_name):
            if element.decomposed:
                continue
            element.decompose()
            removed += 1
    return removed


def last_significant_child(node: Tag):
    for child in reversed(node.contents):
        if _is_text(child) and not child.strip():
            continue
        return child
    return None


def starts_with_image(markup: str) -> bool:
    """True when the first visible thing is an <img>, possibly inside wrappers."""
    for node in parse_fragment(markup).descendants:
        if isinstance(node, Tag):
            if node.name == "img":
                return True
            if node.name not in IMAGE_WRAPPER_TAGS:
                return False
        elif _is_text(node) and node.strip():
            return False
    return False


def image_sources(markup: str | None) -> list[str]:
    sources = []
    for image in parse_fragment(markup).find_all("img", src=True):
        src = image["src"]
        if isinstance(src, str) and src.strip():
            sources.append(src.strip())
    return sources


def truncate_by_text_length(markup: str, limit: int) -> tuple[str, bool]:
    """
    Keep at most `limit` characters of visible text.

    Entities count as the character they decode to. A cut fragment ends
    with an ellipsis; elements open at the cut point are closed by
    serialization.
    """
    if not markup:
        return "", False

    soup = parse_fragment(markup)
    if len(soup.get_text()) <= limit:
        return markup, False

    length = 0
    cut_at = None
    for node in soup.descendants:
        if not _is_text(node):
            continue
        text = str(node)
        if length + len(text) > limit:
            cut_at = node
            break
        length += len(text)

    if cut_at is None:
        return markup, False

    kept = str(cut_at)[:limit - length].rstrip()
    current = cut_at
    while current is not None and current is not soup:
        for sibling in list(current.next_siblings):
            sibling.extract()
        current = current.parent
    cut_at.replace_with(f"{kept}…")
    return str(soup), True


def _serialized(node) -> str:
    if isinstance(node, NavigableString):
        return node.output_ready()
    return str(node)


def _fit_text(text: str, budget: int, measure: Measure) -> str:
    cut = text[:budget]
    while cut:
        overflow = measure(NavigableString(cut).output_ready()) - budget
        if overflow <= 0:
            break
        cut = cut[:len(cut) - overflow]
    return cut


def trim_to_budget(
    markup: str,
    budget: int,
    measure: Measure = len,
    count_closing_tags: bool = True,
) -> str:
    """
    Drop trailing content until the serialized fragment fits `budget`.

    Whole children are kept in document order; the first one that does
    not fit is entered and trimmed the same way, so the cut lands on the
    deepest element boundary that fits. Text is only cut when nothing
    before it fit. Closing tags are added back by serialization; with
    count_closing_tags=False they are not charged against the budget.
    """
    soup = parse_fragment(markup)
    remaining = budget
    kept_any = False
    entered: list[Tag] = []
    current: Tag | None = soup

    while current is not None:
        children = list(current.contents)
        next_node = None
        for index, child in enumerate(children):
            size = measure(_serialized(child))
            if size <= remaining:
                remaining -= size
                kept_any = True
                continue

            for later in children[index + 1:]:
                later.extract()

            if isinstance(child, Tag) and child.contents:
                closing = measure(f"</{child.name}>")
                opening = size - measure(child.decode_contents()) - closing
                overhead = opening + (closing if count_closing_tags else 0)
                if overhead < remaining:
                    remaining -= overhead
                    entered.append(child)
                    next_node = child
                    break
            elif _is_text(child) and not kept_any:
                cut = _fit_text(str(child), remaining, measure).rstrip()
                if cut:
                    child.replace_with(cut)
                    break

            child.extract()
            break
        current = next_node

    for element in reversed(entered):
        if not element.contents and element.parent is not None:
            element.extract()
    return str(soup)
