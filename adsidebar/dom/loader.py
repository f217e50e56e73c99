"""Resource loading capability.

The document hands every connected script (once), frame and sourced image
to a ResourceLoader, and cancels the pending load when the element is
disconnected. The loader reports the outcome by dispatching "load" or
"error" on the element.
"""

from __future__ import annotations

from collections.abc import Callable, Collection
from typing import TYPE_CHECKING, Protocol

import structlog

if TYPE_CHECKING:
    from adsidebar.dom.document import Element
    from adsidebar.dom.frame import FrameContext
    from adsidebar.runtime.timer import Timer, TimerHandle

logger = structlog.get_logger()


class ResourceLoader(Protocol):
    def load(self, element: Element) -> None: ...

    def cancel(self, element: Element) -> None: ...

    def close(self) -> None: ...


class HeadlessLoader:
    """Completes every load on the next timer turn without fetching anything.

    Sources listed in failing_sources signal "error" instead. Frames finish
    with their owner's box as body size, then on_frame_ready runs inside
    the new context (used to install the probe responder).
    """

    def __init__(
        self,
        timer: Timer,
        *,
        failing_sources: Collection[str] = (),
        on_frame_ready: Callable[[FrameContext], None] | None = None,
    ) -> None:
        self._timer = timer
        self._failing = frozenset(failing_sources)
        self._on_frame_ready = on_frame_ready
        self._pending: dict[int, TimerHandle] = {}
        self._closed = False

    def load(self, element: Element) -> None:
        self.cancel(element)
        if self._closed:
            return
        key = id(element)
        self._pending[key] = self._timer.call_later(0, lambda: self._complete(element))

    def cancel(self, element: Element) -> None:
        handle = self._pending.pop(id(element), None)
        if handle is not None:
            handle.cancel()

    def close(self) -> None:
        """Cancel every outstanding load; later loads are dropped."""
        self._closed = True
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    def _complete(self, element: Element) -> None:
        self._pending.pop(id(element), None)
        if element.src and element.src in self._failing:
            logger.debug("headless_load_failed", tag=element.tag, source=element.src)
            element.dispatch("error")
            return
        if element.tag == "iframe" and element.frame is not None:
            element.frame.finish_loading(element.offset_width, element.offset_height)
            if self._on_frame_ready is not None:
                self._on_frame_ready(element.frame)
        element.dispatch("load")
