"""SidebarSession: one top-level document's sidebar lifecycle.

Owns the admission queue, relocator, write bridge, readiness monitor,
dynamic watcher and recovery for a single document, and is the only
object the registry and gateway talk to.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import IntEnum

import structlog

from adsidebar.config.settings import MonitorSettings, SiteOptions
from adsidebar.config.store import SidebarPrefs
from adsidebar.constants import CONTAINER_ID, PANEL_ID, STATUS_CLASS
from adsidebar.dom.document import Document, Element
from adsidebar.runtime.signals import MutationSignal
from adsidebar.runtime.timer import Timer, TimerHandle
from adsidebar.sidebar.admission import NodeAdmissionQueue
from adsidebar.sidebar.contracts import AdmissionRequest, AnomalyKind, PageAnomalies
from adsidebar.sidebar.monitor import LoadingComplete, ReadinessMonitor
from adsidebar.sidebar.probe import CrossBoundaryProbe, FrameTransport, ProbeTransport
from adsidebar.sidebar.recovery import ScriptErrorRecovery
from adsidebar.sidebar.relocator import ContentRelocator, ManagedNode
from adsidebar.sidebar.watcher import DynamicChangeWatcher
from adsidebar.sidebar.write_bridge import WriteBridge

logger = structlog.get_logger()


class SessionPhase(IntEnum):
    INIT = 0
    WINDOW_LOAD = 1
    PROCESS_NODES_START = 2
    PROCESS_NODES_COMPLETE = 3
    ADLOAD_START = 4
    ADLOAD_COMPLETE = 5
    DONE = 6


@dataclass(frozen=True)
class HostNotification:
    """Completion notification sent to the host UI."""

    session_id: str
    region_count: int
    ever_displayed: bool


@dataclass(frozen=True)
class SidebarData:
    enabled: bool
    displayed: bool


class SidebarSession:
    def __init__(
        self,
        session_id: str,
        document: Document,
        *,
        timer: Timer,
        prefs: SidebarPrefs,
        site_options: SiteOptions,
        monitor_settings: MonitorSettings,
        selectors: Iterable[str] = (),
        transport: ProbeTransport | None = None,
        notify: Callable[[HostNotification], None] | None = None,
    ) -> None:
        self.session_id = session_id
        self.document = document
        self.prefs = prefs
        self.site_options = site_options
        self.phase = SessionPhase.INIT
        self.displayed = False
        self.ever_displayed = False
        self.anomalies = PageAnomalies()
        self._timer = timer
        self._notify = notify
        self._autohide: TimerHandle | None = None
        self._closed = False
        self._log = logger.bind(session_id=session_id)

        # Built detached; window_load attaches the panel to the page body.
        self.panel = document.create_element("div", {"id": PANEL_ID})
        self.container = document.create_element("div", {"id": CONTAINER_ID})
        self.panel.append_child(self.container)
        self._set_displayed(False)

        self.relocator = ContentRelocator(
            document, self.container, panel=self.panel, on_insert=self._on_insert
        )
        self.queue = NodeAdmissionQueue(
            document,
            self.relocator,
            anomalies=self.anomalies,
            on_complete=self._on_queue_complete,
        )
        self.bridge = WriteBridge(document, self.queue, self.relocator)
        self.probe = CrossBoundaryProbe(
            transport or FrameTransport(),
            timer,
            timeout_units=monitor_settings.probe_timeout_units,
        )
        self.recovery = ScriptErrorRecovery(
            document, self.relocator, refresh_script_url=monitor_settings.refresh_script_url
        )
        self.monitor = ReadinessMonitor(
            relocator=self.relocator,
            probe=self.probe,
            timer=timer,
            change_signal=MutationSignal(self.container),
            settings=monitor_settings,
            anomalies=self.anomalies,
            on_complete=self._on_loading_complete,
            on_remediate=self.recovery.inject_refresh,
            ad_scaling=prefs.ad_scaling,
        )
        self.watcher = DynamicChangeWatcher(
            document,
            self.relocator,
            self.queue,
            selectors,
            timer,
            debounce_units=monitor_settings.dynamic_debounce_units,
        )

    @property
    def region_count(self) -> int:
        return self.monitor.state.last_known_region_count

    # ------------------------------------------------------------------
    # Page events
    # ------------------------------------------------------------------

    def route_admission(self, request: AdmissionRequest) -> None:
        """Policy gate entry point for one blocked resource."""
        if self._closed or not self.prefs.enabled:
            return
        if self.phase < SessionPhase.WINDOW_LOAD:
            self.queue.enqueue(request)
        elif self.phase >= SessionPhase.ADLOAD_COMPLETE:
            self.watcher.admit(request)
        else:
            # Resources are no longer blocked once the window has loaded.
            self._log.debug("admission_ignored", source=request.source, phase=self.phase.name)

    def window_load(self) -> None:
        if self._closed or self.phase >= SessionPhase.WINDOW_LOAD:
            return
        self.phase = SessionPhase.WINDOW_LOAD
        body = self.document.body
        body.insert_before(self.panel, body.first_child)
        self._log.info("sidebar_created", queued=len(self.queue))

        self.watcher.sweep()
        self.phase = SessionPhase.PROCESS_NODES_START
        self.bridge.install()
        self.watcher.start()
        self.queue.open()

    def record_script_error(self, detail: str = "") -> None:
        """A page script raised; recovery runs when the queue completes."""
        if self._closed:
            return
        self.anomalies.record(AnomalyKind.resource_load_failure, detail, script=True)
        if self.queue.completed:
            self.recovery.recover(self.site_options)

    def write(self, markup: str) -> None:
        """Deliver a document.write payload through the page message bus."""
        self.document.post_message({"kind": "document-write", "markup": markup})

    # ------------------------------------------------------------------
    # Pipeline callbacks
    # ------------------------------------------------------------------

    def _on_insert(self, node: ManagedNode) -> None:
        self.monitor.notify_insert()

    def _on_queue_complete(self) -> None:
        self.phase = SessionPhase.PROCESS_NODES_COMPLETE
        if self.anomalies.script_error:
            self.recovery.recover(self.site_options)
        self.monitor.start()
        self.phase = SessionPhase.ADLOAD_START

    def _on_loading_complete(self, result: LoadingComplete) -> None:
        self.phase = SessionPhase.ADLOAD_COMPLETE
        if result.new_regions > 0:
            if result.previous_last_wrapper is not None:
                self._insert_status(result.previous_last_wrapper)
            self.show()
            self._arm_autohide()

        notification = HostNotification(
            session_id=self.session_id,
            region_count=result.region_count,
            ever_displayed=self.ever_displayed,
        )
        self._log.info(
            "sidebar_loading_complete",
            region_count=result.region_count,
            new_regions=result.new_regions,
            budget_exhausted=result.budget_exhausted,
        )
        self.phase = SessionPhase.DONE
        if self._notify is not None:
            self._notify(notification)

    def _insert_status(self, after: Element) -> None:
        if after.parent is not self.container:
            return
        status = self.document.create_element("div", {"class": STATUS_CLASS})
        status.append_child(self.document.create_text("New ads were added to the sidebar"))
        self.container.insert_after(status, after)

    # ------------------------------------------------------------------
    # Host commands
    # ------------------------------------------------------------------

    def show(self) -> None:
        self._set_displayed(True)
        self.ever_displayed = True

    def hide(self) -> None:
        self._cancel_autohide()
        self._set_displayed(False)

    def toggle_visibility(self) -> bool:
        if self.displayed:
            self.hide()
        else:
            self.show()
        return self.displayed

    def data_request(self) -> SidebarData:
        return SidebarData(enabled=self.region_count > 0, displayed=self.displayed)

    def apply_prefs(self, prefs: SidebarPrefs) -> None:
        self.prefs = prefs
        self.monitor.ad_scaling = prefs.ad_scaling
        if prefs.autohide_seconds == 0:
            self._cancel_autohide()

    def teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.bridge.buffer:
            self.anomalies.record(
                AnomalyKind.malformed_fragment, f"{len(self.bridge.buffer)} chars never parsed"
            )
        self._cancel_autohide()
        self.monitor.teardown()
        self.watcher.stop()
        self.bridge.uninstall()
        self.queue.close()
        self.relocator.teardown()
        if self.document.loader is not None:
            self.document.loader.close()
        self._log.info("session_closed", anomalies=len(self.anomalies.entries))

    # ------------------------------------------------------------------

    def _set_displayed(self, displayed: bool) -> None:
        # Visibility is presentational; a hidden flag would zero every measurement.
        self.displayed = displayed
        self.panel.set_attribute("data-displayed", "true" if displayed else "false")

    def _arm_autohide(self) -> None:
        self._cancel_autohide()
        seconds = self.prefs.autohide_seconds
        if seconds:
            self._autohide = self._timer.call_later(seconds * 1000, self._autohide_fired)

    def _autohide_fired(self) -> None:
        self._autohide = None
        self.hide()

    def _cancel_autohide(self) -> None:
        if self._autohide is not None:
            self._autohide.cancel()
            self._autohide = None
