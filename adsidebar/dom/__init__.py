"""Document model: elements, frames, loading and fragment parsing."""

from adsidebar.dom.document import Document, Element, Node, TextNode
from adsidebar.dom.fragment import parse_fragment
from adsidebar.dom.frame import FrameContext
from adsidebar.dom.loader import HeadlessLoader, ResourceLoader

__all__ = [
    "Document",
    "Element",
    "FrameContext",
    "HeadlessLoader",
    "Node",
    "ResourceLoader",
    "TextNode",
    "parse_fragment",
]
