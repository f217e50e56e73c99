"""Scheduling capabilities: timers and passive change signals."""

from adsidebar.runtime.signals import ChangeSignal, MutationSignal, Subscription
from adsidebar.runtime.timer import LoopTimer, Timer, TimerHandle

__all__ = [
    "ChangeSignal",
    "LoopTimer",
    "MutationSignal",
    "Subscription",
    "Timer",
    "TimerHandle",
]
