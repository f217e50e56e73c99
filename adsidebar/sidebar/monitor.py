"""ReadinessMonitor: decides when relocated content has finished loading.

State machine:

    INIT -> LOADING -> CHECKING -> RETRY -> CHECKING ... -> STABLE -> DONE

- start() runs once the admission queue is complete: subscribe to passive
  changes on the container and arm the first tick.
- Every tick counts one cycle. A tick that finds the dirty flag set skips
  evaluation and rearms, so bursts of change collapse into one later check.
- A clean tick runs a probe round, re-measures every ManagedNode and
  classifies the regions. Anything empty or pending means RETRY until the
  cycle budget is spent; then STABLE -> DONE with whatever is known.
- After DONE, new insertions start a fresh pass with its own budget.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

from adsidebar.config.settings import MonitorSettings
from adsidebar.constants import AD_BOX_SIZE, AD_SCALE_FACTOR, REGION_CLASS
from adsidebar.dom.document import Element
from adsidebar.runtime.signals import ChangeSignal, Subscription
from adsidebar.runtime.timer import Timer, TimerHandle
from adsidebar.sidebar.contracts import AnomalyKind, PageAnomalies
from adsidebar.sidebar.probe import CrossBoundaryProbe, ProbeRound
from adsidebar.sidebar.regions import RegionVerdict, classify_region, discover_regions
from adsidebar.sidebar.relocator import ContentRelocator, ManagedNode

logger = structlog.get_logger()


class MonitorPhase(StrEnum):
    init = "init"
    loading = "loading"
    checking = "checking"
    retry = "retry"
    stable = "stable"
    done = "done"


@dataclass
class MonitorState:
    elapsed_cycles: int = 0
    dirty: bool = False
    last_known_region_count: int = 0


@dataclass(frozen=True)
class CycleReport:
    """Outcome of one evaluated check."""

    cycle: int
    regions: int
    empty: int
    pending: int


@dataclass(frozen=True)
class LoadingComplete:
    region_count: int  # monotonic across the session
    new_regions: int
    budget_exhausted: bool
    previous_last_wrapper: Element | None


class ReadinessMonitor:
    def __init__(
        self,
        *,
        relocator: ContentRelocator,
        probe: CrossBoundaryProbe,
        timer: Timer,
        change_signal: ChangeSignal,
        settings: MonitorSettings,
        anomalies: PageAnomalies,
        on_complete: Callable[[LoadingComplete], None],
        on_remediate: Callable[[], None] | None = None,
        ad_scaling: bool = True,
    ) -> None:
        self._relocator = relocator
        self._probe = probe
        self._timer = timer
        self._signal = change_signal
        self._settings = settings
        self._anomalies = anomalies
        self._on_complete = on_complete
        self._on_remediate = on_remediate
        self.ad_scaling = ad_scaling

        self.state = MonitorState()
        self.phase = MonitorPhase.init
        self.passes = 0
        self.last_report: CycleReport | None = None
        self._tick: TimerHandle | None = None
        self._subscription: Subscription | None = None
        self._remediated = False
        self._last_wrapper: Element | None = None
        self._closed = False

    @property
    def active(self) -> bool:
        return self.phase in (MonitorPhase.loading, MonitorPhase.checking, MonitorPhase.retry)

    def start(self) -> None:
        """Begin a monitoring pass (queue complete, or new content after DONE)."""
        if self._closed:
            return
        if self.active:
            self.notify_insert()
            return
        if self.phase == MonitorPhase.done:
            # Only content discovered after a prior DONE gets a fresh budget.
            self.state.elapsed_cycles = 0
        self.passes += 1
        self._remediated = False
        self.state.dirty = False
        self._subscription = self._signal.subscribe(self._on_change)
        self.phase = MonitorPhase.loading
        logger.info("readiness_monitor_started", pass_number=self.passes)
        self._arm()

    def notify_insert(self) -> None:
        """A node was relocated into the container."""
        if self._closed or self.phase == MonitorPhase.init:
            # The monitor never runs while the admission queue is draining.
            return
        if self.phase == MonitorPhase.done:
            self.start()
        else:
            # Leave the armed tick alone; a dirty tick still counts a cycle.
            self.state.dirty = True

    def teardown(self) -> None:
        self._closed = True
        self._cancel_tick()
        self._probe.forget()
        self._unsubscribe()

    def _on_change(self) -> None:
        self.state.dirty = True

    def _arm(self) -> None:
        self._cancel_tick()
        self._tick = self._timer.call_later(self._settings.tick_units, self._on_tick)

    def _cancel_tick(self) -> None:
        if self._tick is not None:
            self._tick.cancel()
            self._tick = None

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _on_tick(self) -> None:
        self._tick = None
        if self._closed:
            return
        state = self.state
        state.elapsed_cycles = min(state.elapsed_cycles + 1, self._settings.max_cycles)
        self.phase = MonitorPhase.checking

        dirty, state.dirty = state.dirty, False
        if dirty:
            logger.debug("readiness_check_deferred", elapsed_cycles=state.elapsed_cycles)
            if state.elapsed_cycles >= self._settings.max_cycles:
                self._complete(budget_exhausted=True)
            else:
                self.phase = MonitorPhase.retry
                self._arm()
            return

        targets = [
            frame.frame
            for node in self._relocator.managed
            for frame in node.wrapper.query_all("iframe")
            if frame.frame is not None
        ]
        self._probe.run_round(targets, self._on_probe_closed)

    def _on_probe_closed(self, rnd: ProbeRound) -> None:
        if self._closed or self.phase != MonitorPhase.checking:
            return
        if rnd.timed_out and rnd.pending:
            self._anomalies.record(
                AnomalyKind.probe_timeout, f"{len(rnd.pending)} frame(s) silent"
            )

        state = self.state
        regions, verdicts = self._classify()
        empty = sum(1 for v in verdicts if v == RegionVerdict.empty)
        pending = sum(1 for v in verdicts if v == RegionVerdict.pending)
        self.last_report = CycleReport(
            cycle=state.elapsed_cycles, regions=len(regions), empty=empty, pending=pending
        )
        logger.debug(
            "readiness_checked",
            elapsed_cycles=state.elapsed_cycles,
            regions=len(regions),
            empty=empty,
            pending=pending,
        )

        unresolved = bool(empty or pending)
        if unresolved and state.elapsed_cycles < self._settings.max_cycles:
            self.phase = MonitorPhase.retry
            if (
                empty * 2 > len(regions)
                and not self._anomalies.script_error
                and not self._remediated
                and self._on_remediate is not None
            ):
                self._remediated = True
                logger.info("readiness_remediation", empty=empty, regions=len(regions))
                self._on_remediate()
            self._arm()
            return

        self._complete(budget_exhausted=unresolved)

    def _classify(self) -> tuple[list[ManagedNode], list[RegionVerdict]]:
        min_size = self._settings.min_visible_size
        regions = discover_regions(self._relocator.managed, min_size)
        verdicts = [classify_region(node, self._probe.record, min_size) for node in regions]
        for node, verdict in zip(regions, verdicts, strict=True):
            node.empty = verdict == RegionVerdict.empty
        return regions, verdicts

    def _complete(self, *, budget_exhausted: bool) -> None:
        self.phase = MonitorPhase.stable
        self._cancel_tick()
        self._unsubscribe()
        state = self.state
        if budget_exhausted:
            self._anomalies.record(
                AnomalyKind.budget_exhausted, f"after {state.elapsed_cycles} cycles"
            )

        region_count = self._finalize()
        delta = region_count - state.last_known_region_count
        if delta > 0:
            state.last_known_region_count = region_count

        previous_last = self._last_wrapper
        self._last_wrapper = self._find_last_wrapper()
        self.phase = MonitorPhase.done
        logger.info(
            "readiness_done",
            region_count=state.last_known_region_count,
            new_regions=max(delta, 0),
            elapsed_cycles=state.elapsed_cycles,
            budget_exhausted=budget_exhausted,
        )
        self._on_complete(
            LoadingComplete(
                region_count=state.last_known_region_count,
                new_regions=max(delta, 0),
                budget_exhausted=budget_exhausted,
                previous_last_wrapper=previous_last,
            )
        )

    def _finalize(self) -> int:
        """Hide non-regions and empty regions; return the count of visible regions."""
        regions, verdicts = self._classify()
        region_ids = {id(node) for node in regions}
        for node in self._relocator.managed:
            if id(node) not in region_ids:
                node.wrapper.set_hidden(True)
        visible = 0
        for node, verdict in zip(regions, verdicts, strict=True):
            node.wrapper.set_attribute("class", REGION_CLASS)
            if verdict == RegionVerdict.empty:
                node.wrapper.set_hidden(True)
                continue
            visible += 1
            node.scale = self._scale_for(node)
        return visible

    def _scale_for(self, node: ManagedNode) -> float:
        w, h = node.width or 0, node.height or 0
        if self.ad_scaling and (w > AD_BOX_SIZE or h > AD_BOX_SIZE):
            return AD_SCALE_FACTOR
        return 1.0

    def _find_last_wrapper(self) -> Element | None:
        last: Element | None = None
        for node in self._relocator.managed:
            wrapper = node.wrapper
            if REGION_CLASS in wrapper.class_list and not wrapper.hidden:
                last = wrapper
        return last
