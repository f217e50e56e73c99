"""Timer capability: the only way the pipeline schedules continuations.

Delays are expressed in scheduler units (a check tick is 1000 units).
Core components depend on the Timer protocol only; LoopTimer binds it to
the running asyncio loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay units unless the handle is cancelled."""
        ...


class LoopTimer:
    """Timer backed by the running asyncio event loop.

    Must be used from code running on the loop (the loop is looked up per call).
    """

    def __init__(self, unit_seconds: float = 0.001) -> None:
        self._unit_seconds = unit_seconds

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay, 0) * self._unit_seconds, callback)
