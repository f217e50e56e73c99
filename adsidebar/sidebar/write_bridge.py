"""WriteBridge: reroutes document.write output into the admission target.

Page scripts admitted through the queue may emit markup with the legacy
write primitive. Each call arrives as a ``document-write`` message on the
page bus. Payloads are buffered until the buffer parses into at least one
node, so a tag split across two calls is only inserted once complete.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError

from adsidebar.constants import WRITE_MARKER_ATTR
from adsidebar.dom.document import Document, Node
from adsidebar.dom.fragment import parse_fragment
from adsidebar.sidebar.admission import NodeAdmissionQueue
from adsidebar.sidebar.messages import WriteNotification
from adsidebar.sidebar.relocator import ContentRelocator

logger = structlog.get_logger()


class WriteBridge:
    def __init__(
        self, document: Document, queue: NodeAdmissionQueue, relocator: ContentRelocator
    ) -> None:
        self._document = document
        self._queue = queue
        self._relocator = relocator
        self._installed = False
        self.buffer = ""
        self.write_count = 0

    def install(self) -> None:
        if not self._installed:
            self._document.add_message_listener(self._on_message)
            self._installed = True

    def uninstall(self) -> None:
        if self._installed:
            self._document.remove_message_listener(self._on_message)
            self._installed = False

    def _on_message(self, data: dict[str, Any]) -> None:
        if data.get("kind") != "document-write":
            return
        try:
            notification = WriteNotification.model_validate(data)
        except ValidationError:
            logger.warning("write_message_malformed")
            return
        self.write(notification.markup)

    def write(self, markup: str) -> list[Node]:
        """Buffer markup and insert whatever the buffer now parses into."""
        self.write_count += 1
        self.buffer += markup
        nodes = parse_fragment(self._document, self.buffer)
        if not nodes:
            logger.debug("write_buffered", buffered=len(self.buffer))
            return []
        self.buffer = ""

        target = self._queue.active_target
        if target is None or not target.is_connected:
            target = self._document.create_element("div")
            self._relocator.insert(target)
        for node in nodes:
            target.append_child(node)

        # The queue resumes when the marker loads, i.e. after everything
        # the written scripts themselves pull in.
        marker = self._document.create_element("script", {WRITE_MARKER_ATTR: "1"})
        self._queue.chain(marker)
        target.append_child(marker)
        logger.debug("write_inserted", nodes=len(nodes), target=target.tag)
        return nodes
