"""In-memory document model.

Reproduces the browser behaviour the sidebar pipeline depends on:
- an element has at most one parent; appending it elsewhere detaches it first
- load / error events dispatched to per-element listeners
- a script is handed to the loader only the first time it is connected
  ("already started"), so re-appending an existing script never re-runs it
- a frame gets a fresh FrameContext each time it is connected
- subtree change observers and a window-level message bus

Layout is approximate: an element reports its explicit box when it has one,
otherwise the widest child and the summed child heights; None means the
size is indeterminate ("auto").
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from adsidebar.dom.frame import FrameContext

if TYPE_CHECKING:
    from adsidebar.dom.loader import ResourceLoader

EventHandler = Callable[["Element"], None]
MessageHandler = Callable[[dict[str, Any]], None]
ObserverCallback = Callable[[], None]

_NON_RENDERED_TEXT = frozenset({"script", "style", "template"})


class Node:
    def __init__(self, document: Document | None = None) -> None:
        self.parent: Element | None = None
        self.document = document

    def detach(self) -> None:
        """Remove this node from its parent; no-op when it has none."""
        if self.parent is not None:
            self.parent.remove_child(self)

    @property
    def is_connected(self) -> bool:
        node: Node = self
        while node.parent is not None:
            node = node.parent
        return self.document is not None and node is self.document.root


class TextNode(Node):
    def __init__(self, data: str, document: Document | None = None) -> None:
        super().__init__(document)
        self.data = data

    def __repr__(self) -> str:
        return f"TextNode({self.data!r})"


class Element(Node):
    def __init__(
        self,
        tag: str,
        attrs: dict[str, str] | None = None,
        *,
        document: Document | None = None,
        width: float | None = None,
        height: float | None = None,
    ) -> None:
        super().__init__(document)
        self.tag = tag.lower()
        self.attrs: dict[str, str] = dict(attrs or {})
        self.children: list[Node] = []
        self.width = width
        self.height = height
        self.hidden = False
        self.started = False
        self.frame: FrameContext | None = None
        self._listeners: dict[str, list[EventHandler]] = {}

    def __repr__(self) -> str:
        src = self.attrs.get("src")
        return f"<{self.tag}{f' src={src!r}' if src else ''}>"

    # -- attributes ---------------------------------------------------------

    def get_attribute(self, name: str) -> str | None:
        return self.attrs.get(name)

    def set_attribute(self, name: str, value: str) -> None:
        self.attrs[name] = value
        if self.document is not None:
            self.document._notify(self)
            if name == "src" and self.tag in ("iframe", "img") and self.is_connected:
                self.document._reload(self)

    @property
    def src(self) -> str:
        return self.attrs.get("src", "")

    @src.setter
    def src(self, value: str) -> None:
        self.set_attribute("src", value)

    @property
    def class_list(self) -> list[str]:
        return self.attrs.get("class", "").split()

    def set_hidden(self, hidden: bool) -> None:
        if self.hidden != hidden:
            self.hidden = hidden
            if self.document is not None:
                self.document._notify(self)

    def set_box(self, width: float | None, height: float | None) -> None:
        self.width = width
        self.height = height
        if self.document is not None:
            self.document._notify(self)

    # -- tree ---------------------------------------------------------------

    def append_child(self, node: Node) -> Node:
        return self.insert_before(node, None)

    def insert_before(self, node: Node, reference: Node | None) -> Node:
        if node is self or (isinstance(node, Element) and node.contains(self)):
            raise ValueError("cannot insert a node into itself or its descendant")
        if reference is not None and reference.parent is not self:
            raise ValueError("reference node is not a child of this element")
        node.detach()
        index = len(self.children) if reference is None else self.children.index(reference)
        self.children.insert(index, node)
        node.parent = self
        doc = self.document
        if doc is not None:
            if self.is_connected:
                doc._connected(node)
            doc._notify(self)
        return node

    def insert_after(self, node: Node, reference: Node) -> Node:
        index = self.children.index(reference)
        following = self.children[index + 1] if index + 1 < len(self.children) else None
        return self.insert_before(node, following)

    def remove_child(self, node: Node) -> Node:
        was_connected = node.is_connected
        self.children.remove(node)
        node.parent = None
        doc = self.document
        if doc is not None:
            if was_connected:
                doc._disconnected(node)
            doc._notify(self)
        return node

    @property
    def first_child(self) -> Node | None:
        return self.children[0] if self.children else None

    def contains(self, node: Node | None) -> bool:
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def iter_elements(self) -> Iterator[Element]:
        """Depth-first, document-order walk over descendant elements."""
        for child in self.children:
            if isinstance(child, Element):
                yield child
                yield from child.iter_elements()

    def query_all(self, tag: str) -> list[Element]:
        tag = tag.lower()
        return [el for el in self.iter_elements() if el.tag == tag]

    @property
    def text_content(self) -> str:
        parts: list[str] = []
        for child in self.children:
            if isinstance(child, TextNode):
                parts.append(child.data)
            elif isinstance(child, Element):
                parts.append(child.text_content)
        return "".join(parts)

    @property
    def inner_text(self) -> str:
        """Rendered text only: hidden subtrees and script/style bodies are skipped."""
        if self.hidden:
            return ""
        parts: list[str] = []
        for child in self.children:
            if isinstance(child, TextNode):
                parts.append(child.data)
            elif isinstance(child, Element) and child.tag not in _NON_RENDERED_TEXT:
                parts.append(child.inner_text)
        return "".join(parts).strip()

    # -- layout -------------------------------------------------------------

    @property
    def is_rendered(self) -> bool:
        node: Element | None = self
        while node is not None:
            if node.hidden:
                return False
            node = node.parent
        return True

    @property
    def offset_width(self) -> float | None:
        if not self.is_rendered:
            return 0.0
        if self.width is not None:
            return self.width
        widths = [w for w in (c.offset_width for c in self._child_elements()) if w is not None]
        return max(widths) if widths else None

    @property
    def offset_height(self) -> float | None:
        if not self.is_rendered:
            return 0.0
        if self.height is not None:
            return self.height
        heights = [h for h in (c.offset_height for c in self._child_elements()) if h is not None]
        return sum(heights) if heights else None

    def _child_elements(self) -> Iterator[Element]:
        return (c for c in self.children if isinstance(c, Element))

    # -- events -------------------------------------------------------------

    def add_listener(self, event_type: str, handler: EventHandler) -> None:
        self._listeners.setdefault(event_type, []).append(handler)

    def remove_listener(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, []))

    def dispatch(self, event_type: str) -> None:
        for handler in list(self._listeners.get(event_type, [])):
            handler(self)


class Document:
    """A top-level document with head, body, observers and a message bus."""

    def __init__(
        self, location: str = "about:blank", *, loader: ResourceLoader | None = None
    ) -> None:
        self.location = location
        self.loader = loader
        self._observers: list[tuple[Element, ObserverCallback]] = []
        self._message_listeners: list[MessageHandler] = []
        self.root = Element("html", document=self)
        self.head = self.create_element("head")
        self.body = self.create_element("body")
        self.root.append_child(self.head)
        self.root.append_child(self.body)

    def create_element(
        self,
        tag: str,
        attrs: dict[str, str] | None = None,
        *,
        width: float | None = None,
        height: float | None = None,
    ) -> Element:
        return Element(tag, attrs, document=self, width=width, height=height)

    def create_text(self, data: str) -> TextNode:
        return TextNode(data, document=self)

    # -- change observation -------------------------------------------------

    def observe(self, target: Element, callback: ObserverCallback) -> Callable[[], None]:
        """Call callback on any change inside target's subtree; returns disconnect."""
        entry = (target, callback)
        self._observers.append(entry)

        def _disconnect() -> None:
            if entry in self._observers:
                self._observers.remove(entry)

        return _disconnect

    def _notify(self, changed: Element) -> None:
        for target, callback in list(self._observers):
            if target.contains(changed):
                callback()

    # -- message bus --------------------------------------------------------

    def add_message_listener(self, handler: MessageHandler) -> None:
        self._message_listeners.append(handler)

    def remove_message_listener(self, handler: MessageHandler) -> None:
        if handler in self._message_listeners:
            self._message_listeners.remove(handler)

    def post_message(self, data: dict[str, Any]) -> None:
        for handler in list(self._message_listeners):
            handler(dict(data))

    # -- resource lifecycle -------------------------------------------------

    def _connected(self, node: Node) -> None:
        if not isinstance(node, Element):
            return
        for el in (node, *node.iter_elements()):
            if el.tag == "script":
                if not el.started:
                    el.started = True
                    self._load(el)
            elif el.tag == "iframe":
                el.frame = FrameContext(el)
                self._load(el)
            elif el.tag == "img" and el.src:
                self._load(el)

    def _disconnected(self, node: Node) -> None:
        if not isinstance(node, Element):
            return
        for el in (node, *node.iter_elements()):
            if self.loader is not None and el.tag in ("script", "iframe", "img"):
                self.loader.cancel(el)
            if el.tag == "iframe" and el.frame is not None:
                el.frame.close()
                el.frame = None

    def _reload(self, el: Element) -> None:
        if self.loader is not None:
            self.loader.cancel(el)
        if el.tag == "iframe":
            if el.frame is not None:
                el.frame.close()
            el.frame = FrameContext(el)
        self._load(el)

    def _load(self, el: Element) -> None:
        if self.loader is not None:
            self.loader.load(el)
