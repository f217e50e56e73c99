"""Passive change notification capability.

A ChangeSignal only says "something under the target changed"; consumers
coalesce notifications (dirty flags, debounce timers) instead of reacting
to each one.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from adsidebar.dom.document import Element


class Subscription(Protocol):
    def cancel(self) -> None: ...


class ChangeSignal(Protocol):
    def subscribe(self, handler: Callable[[], None]) -> Subscription: ...


class _Observation:
    def __init__(self, disconnect: Callable[[], None]) -> None:
        self._disconnect: Callable[[], None] | None = disconnect

    def cancel(self) -> None:
        if self._disconnect is not None:
            self._disconnect()
            self._disconnect = None


class MutationSignal:
    """ChangeSignal over an element's subtree in the document model."""

    def __init__(self, target: Element) -> None:
        if target.document is None:
            raise ValueError("target element has no owner document")
        self._target = target

    def subscribe(self, handler: Callable[[], None]) -> _Observation:
        document = self._target.document
        assert document is not None
        return _Observation(document.observe(self._target, handler))
