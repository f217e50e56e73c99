"""Isolated sub-context of a frame element.

The parent document can only talk to a FrameContext through post_message;
its ready state and body size are readable solely by code running inside
it (see FrameResponder in adsidebar.sidebar.probe).
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from adsidebar.dom.document import Element

ReplyFn = Callable[[dict[str, Any]], None]
FrameMessageHandler = Callable[[dict[str, Any], ReplyFn], None]

_context_ids = itertools.count(1)


class FrameContext:
    def __init__(self, owner: Element) -> None:
        self.context_id = f"frame-{next(_context_ids)}"
        self.owner = owner
        self.ready_state = "loading"
        self.body_width: float | None = None
        self.body_height: float | None = None
        self.closed = False
        self._handlers: list[FrameMessageHandler] = []

    def __repr__(self) -> str:
        return f"FrameContext({self.context_id}, {self.ready_state})"

    def add_message_handler(self, handler: FrameMessageHandler) -> None:
        self._handlers.append(handler)

    def remove_message_handler(self, handler: FrameMessageHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def post_message(self, data: dict[str, Any], reply: ReplyFn) -> None:
        """Deliver data to the sub-context; handlers may answer through reply."""
        if self.closed:
            return
        for handler in list(self._handlers):
            handler(dict(data), reply)

    def finish_loading(self, width: float | None, height: float | None) -> None:
        self.ready_state = "complete"
        self.body_width = width
        self.body_height = height

    def close(self) -> None:
        self.closed = True
        self._handlers.clear()
