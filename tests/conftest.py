"""Shared pytest fixtures for AdSidebar tests.

Provides deterministic stand-ins for the scheduling and transport
capabilities so every state machine can be driven step by step:
- ManualTimer: virtual clock advanced explicitly by the test
- SyntheticSignal: ChangeSignal fired by hand
- ScriptedTransport: probe transport with canned (or absent) replies
- RecordingLoader: ResourceLoader that records but never completes loads
"""

from __future__ import annotations

import heapq
import itertools
from collections.abc import Callable

import pytest

from adsidebar.config.settings import MonitorSettings
from adsidebar.constants import CONTAINER_ID, PANEL_ID
from adsidebar.dom.document import Document, Element
from adsidebar.dom.frame import FrameContext
from adsidebar.dom.loader import HeadlessLoader
from adsidebar.sidebar.messages import ProbeRequest, ProbeResponse
from adsidebar.sidebar.probe import FrameResponder


class ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimer:
    """Timer driven by advance(); callbacks run in due order, FIFO on ties."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = itertools.count()
        self._queue: list[tuple[float, int, Callable[[], None], ManualHandle]] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle()
        heapq.heappush(self._queue, (self.now + max(delay, 0), next(self._seq), callback, handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for *_, handle in self._queue if not handle.cancelled)

    def advance(self, units: float = 0) -> None:
        target = self.now + units
        while self._queue and self._queue[0][0] <= target:
            due, _, callback, handle = heapq.heappop(self._queue)
            self.now = due
            if not handle.cancelled:
                callback()
        self.now = target


class _SyntheticSubscription:
    def __init__(self, signal: SyntheticSignal, handler: Callable[[], None]) -> None:
        self._signal = signal
        self._handler = handler

    def cancel(self) -> None:
        if self._handler in self._signal.handlers:
            self._signal.handlers.remove(self._handler)


class SyntheticSignal:
    def __init__(self) -> None:
        self.handlers: list[Callable[[], None]] = []

    def subscribe(self, handler: Callable[[], None]) -> _SyntheticSubscription:
        self.handlers.append(handler)
        return _SyntheticSubscription(self, handler)

    def fire(self) -> None:
        for handler in list(self.handlers):
            handler()


class ScriptedTransport:
    """Replies synchronously from a table keyed by the frame owner's src.

    A source mapped to None (or missing) stays silent; its reply callback
    is kept in ``held`` so a test can deliver it late.
    """

    def __init__(self, responses: dict[str, ProbeResponse | None] | None = None) -> None:
        self.responses = dict(responses or {})
        self.sent: list[str] = []
        self.held: dict[str, Callable[[ProbeResponse], None]] = {}

    def send(
        self,
        target: FrameContext,
        request: ProbeRequest,
        reply: Callable[[ProbeResponse], None],
    ) -> None:
        self.sent.append(target.context_id)
        response = self.responses.get(target.owner.src)
        if response is None:
            self.held[target.context_id] = reply
            return
        reply(response)


class RecordingLoader:
    def __init__(self) -> None:
        self.loads: list[Element] = []
        self.cancels: list[Element] = []
        self.closed = False

    def load(self, element: Element) -> None:
        self.loads.append(element)

    def cancel(self, element: Element) -> None:
        self.cancels.append(element)

    def close(self) -> None:
        self.closed = True


def make_panel(document: Document) -> tuple[Element, Element]:
    """Attach a sidebar panel with its ad container to the document body."""
    panel = document.create_element("div", {"id": PANEL_ID})
    container = document.create_element("div", {"id": CONTAINER_ID})
    panel.append_child(container)
    document.body.append_child(panel)
    return panel, container


def response(ready_state: str, width: float | None, height: float | None) -> ProbeResponse:
    return ProbeResponse(ready_state=ready_state, width=width, height=height)


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def signal() -> SyntheticSignal:
    return SyntheticSignal()


@pytest.fixture
def loader() -> RecordingLoader:
    return RecordingLoader()


@pytest.fixture
def monitor_settings() -> MonitorSettings:
    return MonitorSettings()


@pytest.fixture
def headless_document(timer: ManualTimer) -> Document:
    """A page whose resources all load on the next timer turn."""
    loader = HeadlessLoader(timer, on_frame_ready=FrameResponder.install)
    return Document("https://news.example.com/story", loader=loader)
