"""NodeAdmissionQueue: serial, document-order admission of blocked nodes.

Before the destination is load-eligible every request is queued. Once the
queue is opened it drains head first, admitting one node at a time: the
next entry is only taken after the armed node fires load or error. At most
one node carries the completion listeners at any moment; WriteBridge moves
them onto its marker node through chain().
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from typing import assert_never

import structlog

from adsidebar.constants import CACHE_BUST_SUFFIX
from adsidebar.dom.document import Document, Element
from adsidebar.sidebar.contracts import (
    Admission,
    AdmissionRequest,
    AnomalyKind,
    FrameAdmission,
    ImageAdmission,
    OtherAdmission,
    PageAnomalies,
    ScriptAdmission,
    classify,
)
from adsidebar.sidebar.relocator import ContentRelocator

logger = structlog.get_logger()


class NodeAdmissionQueue:
    def __init__(
        self,
        document: Document,
        relocator: ContentRelocator,
        *,
        anomalies: PageAnomalies,
        on_complete: Callable[[], None],
    ) -> None:
        self._document = document
        self._relocator = relocator
        self._anomalies = anomalies
        self._on_complete = on_complete
        self._pending: deque[Admission] = deque()
        self._armed: Element | None = None
        self._completed = False
        self._closed = False
        self.eligible = False
        self.active_target: Element | None = None
        self.admitted = 0

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def armed(self) -> Element | None:
        """The single node whose load/error currently advances the queue."""
        return self._armed

    @property
    def completed(self) -> bool:
        return self._completed

    def enqueue(self, request: AdmissionRequest) -> None:
        admission = classify(request)
        if self._closed:
            return
        if not self.eligible:
            self._pending.append(admission)
            logger.debug("admission_queued", source=request.source, queued=len(self._pending))
            return
        self.relocate_existing(admission)

    def relocate_existing(self, admission: Admission) -> Element | None:
        """Direct path after eligibility: move an already-live element, if any."""
        match admission:
            case ScriptAdmission():
                # A script only runs once, so there is nothing to move.
                return None
            case FrameAdmission(source=source):
                node = self._relocator.find_outside("iframe", source)
            case ImageAdmission(source=source):
                node = self._relocator.find_outside("img", source)
            case OtherAdmission():
                # Left to load in place.
                return None
            case _:
                assert_never(admission)
        if node is not None:
            self._relocator.insert(node)
        return node

    def open(self) -> None:
        """Mark the destination load-eligible and start draining."""
        if self._closed or self.eligible:
            return
        self.eligible = True
        logger.info("admission_queue_opened", queued=len(self._pending))
        self.drain()

    def drain(self) -> None:
        if self._closed or self._armed is not None:
            return
        while self._pending:
            admission = self._pending.popleft()
            self.admitted += 1
            if self._admit(admission):
                return
        if not self._completed:
            self._completed = True
            logger.info("admission_queue_complete", admitted=self.admitted)
            self._on_complete()

    def chain(self, node: Element) -> None:
        """Move the completion listeners onto node (script-manufactured content)."""
        if self._closed:
            return
        self._arm(node)

    def close(self) -> None:
        self._disarm()
        self._pending.clear()
        self._closed = True

    def _admit(self, admission: Admission) -> bool:
        """Relocate one entry; True when the queue must wait for its signal."""
        doc = self._document
        match admission:
            case ScriptAdmission(source=source):
                # A fresh node is required for the script to execute again.
                script = doc.create_element("script", {"src": source})
                holder = doc.create_element("div")
                holder.append_child(script)
                self.active_target = holder
                self._arm(script)
                self._relocator.insert(holder)
                return True
            case FrameAdmission(source=source):
                frame = self._relocator.find_outside("iframe", source)
                if frame is None:
                    frame = doc.create_element("iframe", {"src": source})
                self._arm(frame)
                self._relocator.insert(frame)
                return True
            case ImageAdmission(source=source):
                image = self._relocator.find_outside("img", source)
                if image is None:
                    image = doc.create_element("img", {"src": source})
                else:
                    image.src = source + CACHE_BUST_SUFFIX
                self._arm(image)
                self._relocator.insert(image)
                return True
            case OtherAdmission(source=source, tag=tag):
                node = self._relocator.find_outside(tag, source)
                if node is None:
                    node = doc.create_element(tag, {"src": source})
                # Nothing signals completion for these, so the queue moves on.
                self._relocator.insert(node)
                return False
            case _:
                assert_never(admission)

    def _arm(self, node: Element) -> None:
        self._disarm()
        self._armed = node
        node.add_listener("load", self._on_load)
        node.add_listener("error", self._on_error)

    def _disarm(self) -> None:
        node = self._armed
        if node is None:
            return
        node.remove_listener("load", self._on_load)
        node.remove_listener("error", self._on_error)
        self._armed = None

    def _on_load(self, node: Element) -> None:
        if node is not self._armed:
            return
        self._disarm()
        self.drain()

    def _on_error(self, node: Element) -> None:
        if node is not self._armed:
            return
        self._disarm()
        self._anomalies.record(
            AnomalyKind.resource_load_failure,
            node.src or node.tag,
            script=node.tag == "script",
        )
        logger.warning("admitted_node_failed", tag=node.tag, source=node.src)
        self.drain()
