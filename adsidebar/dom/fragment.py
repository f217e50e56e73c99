"""Markup fragment parsing into document nodes.

Mirrors a contextual-fragment parse: a trailing tag that has not been
closed yet (``<scr``, ``<div class="a"``) is left out, so a payload cut
mid-tag yields no nodes rather than stray text.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

from adsidebar.dom.document import Document, Element, Node

_UNTERMINATED_TAG = re.compile(r"<[/!a-zA-Z][^<>]*$")
_SIZED_TAGS = frozenset({"iframe", "img"})


def parse_fragment(document: Document, markup: str) -> list[Node]:
    """Parse markup into detached nodes owned by document."""
    markup = _UNTERMINATED_TAG.sub("", markup)
    if not markup:
        return []
    soup = BeautifulSoup(markup, "html.parser")
    nodes = (_convert(document, item) for item in soup.contents)
    return [node for node in nodes if node is not None]


def _convert(document: Document, item: object) -> Node | None:
    if isinstance(item, Tag):
        attrs = {
            name: " ".join(value) if isinstance(value, list) else str(value)
            for name, value in item.attrs.items()
        }
        element = document.create_element(item.name, attrs)
        if element.tag in _SIZED_TAGS:
            element.width = _dimension(attrs.get("width"))
            element.height = _dimension(attrs.get("height"))
        for child in item.contents:
            converted = _convert(document, child)
            if converted is not None:
                element.append_child(converted)
        return element
    # Comments, doctypes and other declarations are not content.
    if isinstance(item, PreformattedString):
        return None
    if isinstance(item, NavigableString):
        return document.create_text(str(item))
    return None


def _dimension(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value.strip().removesuffix("px"))
    except ValueError:
        return None


def set_inner_markup(element: Element, markup: str) -> None:
    """Replace element's children with the parsed markup."""
    for child in list(element.children):
        element.remove_child(child)
    if element.document is None:
        raise ValueError("element has no owner document")
    for node in parse_fragment(element.document, markup):
        element.append_child(node)
