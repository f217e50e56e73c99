"""ContentRelocator: moves elements into wrappers inside the ad container."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from adsidebar.dom.document import Document, Element

logger = structlog.get_logger()


@dataclass
class ManagedNode:
    """A relocated element and its wrapper, re-measured every monitor cycle."""

    source: str
    wrapper: Element
    content: Element
    width: float | None = None
    height: float | None = None
    empty: bool | None = None
    scale: float = 1.0

    def measure(self) -> tuple[float | None, float | None]:
        self.width = self.content.offset_width
        self.height = self.content.offset_height
        return self.width, self.height


class ContentRelocator:
    """Wraps nodes in fresh elements appended to the destination container.

    The panel is the outermost sidebar element; anything inside it is
    never picked up again by find_outside.
    """

    def __init__(
        self,
        document: Document,
        container: Element,
        *,
        panel: Element | None = None,
        on_insert: Callable[[ManagedNode], None] | None = None,
    ) -> None:
        self.document = document
        self.container = container
        self.panel = panel or container
        self.on_insert = on_insert
        self._managed: list[ManagedNode] = []

    @property
    def managed(self) -> list[ManagedNode]:
        return list(self._managed)

    def insert(self, node: Element) -> ManagedNode:
        wrapper = self.document.create_element("div")
        self.container.append_child(wrapper)
        # Detaching cancels any pending load in the old location.
        node.detach()
        wrapper.append_child(node)

        managed = ManagedNode(source=_identity(node), wrapper=wrapper, content=node)
        self._managed.append(managed)
        logger.debug("node_relocated", source=managed.source, tag=node.tag)
        if self.on_insert is not None:
            self.on_insert(managed)
        return managed

    def find_outside(self, tag: str, source: str) -> Element | None:
        """First live element with this tag and source that is not already in the panel."""
        for element in self.document.root.query_all(tag):
            if element.src == source and not self.panel.contains(element):
                return element
        return None

    def teardown(self) -> None:
        self._managed.clear()


def _identity(node: Element) -> str:
    if node.src:
        return node.src
    element_id = node.get_attribute("id")
    return f"{node.tag}#{element_id}" if element_id else node.tag
