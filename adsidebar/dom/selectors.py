"""Simple selector matching for element-hiding rules.

Supports compound selectors built from a tag name, ``#id`` and
``.class`` parts (``div.ad``, ``#banner``, ``iframe.sponsor.top``).
Anything else is reported as unsupported and skipped by callers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from adsidebar.dom.document import Element

_COMPOUND = re.compile(r"^(?P<tag>[a-zA-Z][\w-]*|\*)?(?P<parts>(?:[#.][\w-]+)*)$")
_PART = re.compile(r"([#.])([\w-]+)")


@dataclass(frozen=True)
class SimpleSelector:
    tag: str | None
    element_id: str | None
    classes: frozenset[str]

    def matches(self, element: Element) -> bool:
        if self.tag is not None and element.tag != self.tag:
            return False
        if self.element_id is not None and element.get_attribute("id") != self.element_id:
            return False
        return self.classes.issubset(element.class_list)


def compile_selector(selector: str) -> SimpleSelector | None:
    """Compile selector, or return None if it uses unsupported syntax."""
    match = _COMPOUND.match(selector.strip())
    if match is None or not selector.strip():
        return None
    tag = match.group("tag")
    element_id: str | None = None
    classes: set[str] = set()
    for kind, name in _PART.findall(match.group("parts")):
        if kind == "#":
            if element_id is not None and element_id != name:
                return None
            element_id = name
        else:
            classes.add(name)
    return SimpleSelector(
        tag=None if tag in (None, "*") else tag.lower(),
        element_id=element_id,
        classes=frozenset(classes),
    )
