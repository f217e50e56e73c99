"""DynamicChangeWatcher: relocates late-arriving blocked content.

Admissions that arrive after the queue is open, and elements matching the
element-hiding selectors, are moved into the container as they show up.
Document changes are debounced so one burst of DOM work costs one sweep.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from adsidebar.dom.document import Document, Element
from adsidebar.dom.selectors import SimpleSelector, compile_selector
from adsidebar.runtime.signals import MutationSignal, Subscription
from adsidebar.runtime.timer import Timer, TimerHandle
from adsidebar.sidebar.admission import NodeAdmissionQueue
from adsidebar.sidebar.contracts import AdmissionRequest, classify
from adsidebar.sidebar.relocator import ContentRelocator

logger = structlog.get_logger()


class DynamicChangeWatcher:
    def __init__(
        self,
        document: Document,
        relocator: ContentRelocator,
        queue: NodeAdmissionQueue,
        selectors: Iterable[str],
        timer: Timer,
        *,
        debounce_units: float = 100,
    ) -> None:
        self._document = document
        self._relocator = relocator
        self._queue = queue
        self._timer = timer
        self._debounce_units = debounce_units
        self._subscription: Subscription | None = None
        self._pending: TimerHandle | None = None
        self._sweeping = False
        self.sweeps = 0

        compiled: list[SimpleSelector] = []
        for raw in selectors:
            selector = compile_selector(raw)
            if selector is None:
                logger.debug("selector_unsupported", selector=raw)
                continue
            compiled.append(selector)
        self.selectors = compiled

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = MutationSignal(self._document.root).subscribe(self._on_change)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def admit(self, request: AdmissionRequest) -> Element | None:
        """Relocate the live element behind a late admission, if there is one."""
        return self._queue.relocate_existing(classify(request))

    def sweep(self) -> list[Element]:
        """Relocate every hide-matched element outside the panel."""
        if not self.selectors:
            return []
        panel = self._relocator.panel
        matches = [
            el
            for el in self._document.root.iter_elements()
            if not panel.contains(el) and any(s.matches(el) for s in self.selectors)
        ]
        # Moving the outermost match carries its matching descendants along.
        outermost = [
            el
            for el in matches
            if not any(other is not el and other.contains(el) for other in matches)
        ]
        self.sweeps += 1
        self._sweeping = True
        try:
            for element in outermost:
                self._relocator.insert(element)
        finally:
            self._sweeping = False
        if outermost:
            logger.info("hidden_elements_relocated", count=len(outermost))
        return outermost

    def _on_change(self) -> None:
        # Our own relocations are changes too; they never need another sweep.
        if self._sweeping or self._pending is not None:
            return
        self._pending = self._timer.call_later(self._debounce_units, self._run_debounced)

    def _run_debounced(self) -> None:
        self._pending = None
        if self._subscription is None:
            return
        self.sweep()
