"""Tests for WriteBridge, DynamicChangeWatcher and ScriptErrorRecovery."""

from __future__ import annotations

import structlog
from conftest import ManualTimer, RecordingLoader, make_panel

from adsidebar.config.settings import SiteOptions
from adsidebar.constants import WRITE_MARKER_ATTR
from adsidebar.dom.document import Document, Element
from adsidebar.dom.fragment import set_inner_markup
from adsidebar.sidebar.admission import NodeAdmissionQueue
from adsidebar.sidebar.contracts import AdmissionRequest, PageAnomalies
from adsidebar.sidebar.recovery import ScriptErrorRecovery
from adsidebar.sidebar.relocator import ContentRelocator
from adsidebar.sidebar.watcher import DynamicChangeWatcher
from adsidebar.sidebar.write_bridge import WriteBridge


class _Page:
    def __init__(self) -> None:
        self.loader = RecordingLoader()
        self.doc = Document("https://news.example.com/", loader=self.loader)
        self.panel, self.container = make_panel(self.doc)
        self.relocator = ContentRelocator(self.doc, self.container, panel=self.panel)
        self.completed = 0
        self.queue = NodeAdmissionQueue(
            self.doc,
            self.relocator,
            anomalies=PageAnomalies(),
            on_complete=self._done,
        )
        self.bridge = WriteBridge(self.doc, self.queue, self.relocator)

    def _done(self) -> None:
        self.completed += 1

    def admit_script(self, source: str = "a.js") -> Element:
        self.queue.enqueue(AdmissionRequest.from_policy("SCRIPT", source))
        self.queue.open()
        assert self.queue.active_target is not None
        return self.queue.active_target


# ---------------------------------------------------------------------------
# WriteBridge
# ---------------------------------------------------------------------------


class TestWriteBridge:
    def test_split_tag_inserted_after_second_call(self) -> None:
        page = _Page()
        target = page.admit_script()
        before = list(target.children)

        assert page.bridge.write('<img src="ad.png" wid') == []
        assert target.children == before
        assert page.bridge.buffer

        nodes = page.bridge.write('th="300" height="250">')
        assert len(nodes) == 1
        assert page.bridge.buffer == ""
        image = target.children[len(before)]
        assert isinstance(image, Element) and image.src == "ad.png" and image.width == 300

    def test_zero_node_call_keeps_buffer(self) -> None:
        page = _Page()
        target = page.admit_script()
        before = list(target.children)
        page.bridge.write("<scr")
        assert page.bridge.buffer == "<scr"
        assert target.children == before
        assert page.queue.armed is not None
        assert page.queue.armed.get_attribute(WRITE_MARKER_ATTR) is None

    def test_marker_takes_over_completion(self) -> None:
        page = _Page()
        target = page.admit_script()
        script = page.queue.armed
        page.bridge.write('<script src="b.js"></script>')

        marker = target.children[-1]
        assert isinstance(marker, Element)
        assert marker.get_attribute(WRITE_MARKER_ATTR) is not None
        assert page.queue.armed is marker
        written = target.children[-2]
        assert isinstance(written, Element) and written.src == "b.js"
        assert written in page.loader.loads

        script.dispatch("load")
        assert page.completed == 0
        marker.dispatch("load")
        assert page.completed == 1

    def test_without_active_target_goes_through_relocator(self) -> None:
        page = _Page()
        page.bridge.write("<p>late</p>")
        assert len(page.relocator.managed) == 1
        holder = page.relocator.managed[0].content
        assert holder.text_content == "late"

    def test_message_bus_route(self) -> None:
        page = _Page()
        target = page.admit_script()
        page.bridge.install()
        page.doc.post_message({"kind": "document-write", "markup": "<p>hello</p>"})
        assert "hello" in target.text_content
        page.bridge.uninstall()
        page.doc.post_message({"kind": "document-write", "markup": "<p>ignored</p>"})
        assert "ignored" not in target.text_content
        assert page.bridge.write_count == 1

    def test_malformed_message_logged(self) -> None:
        page = _Page()
        page.bridge.install()
        cap = structlog.testing.LogCapture()
        structlog.configure(processors=[cap], wrapper_class=structlog.BoundLogger)
        try:
            page.doc.post_message({"kind": "document-write"})
            assert [e for e in cap.entries if e.get("event") == "write_message_malformed"]
            assert page.bridge.write_count == 0
        finally:
            structlog.reset_defaults()


# ---------------------------------------------------------------------------
# DynamicChangeWatcher
# ---------------------------------------------------------------------------


class TestWatcher:
    def _watcher(self, page: _Page, timer: ManualTimer, selectors: list[str]):
        return DynamicChangeWatcher(
            page.doc, page.relocator, page.queue, selectors, timer, debounce_units=100
        )

    def test_sweep_relocates_outermost_matches(self) -> None:
        page = _Page()
        set_inner_markup(
            page.doc.body,
            '<div class="ad" id="outer"><div class="ad" id="inner"></div></div>'
            '<p id="story">news</p><aside id="banner">x</aside>',
        )
        page.doc.body.append_child(page.panel)
        watcher = self._watcher(page, ManualTimer(), ["div.ad", "#banner", "div > p"])
        moved = watcher.sweep()
        assert [el.get_attribute("id") for el in moved] == ["outer", "banner"]
        assert all(page.panel.contains(el) for el in moved)
        assert len(watcher.selectors) == 2

    def test_debounced_sweep_on_change(self) -> None:
        page = _Page()
        timer = ManualTimer()
        watcher = self._watcher(page, timer, [".sponsor"])
        watcher.start()
        for i in range(3):
            sponsor = page.doc.create_element("div", {"class": "sponsor", "id": str(i)})
            page.doc.body.append_child(sponsor)
        assert timer.pending == 1
        timer.advance(99)
        assert watcher.sweeps == 0
        timer.advance(1)
        assert watcher.sweeps == 1
        assert len(page.relocator.managed) == 3

    def test_stop_cancels_pending_sweep(self) -> None:
        page = _Page()
        timer = ManualTimer()
        watcher = self._watcher(page, timer, [".sponsor"])
        watcher.start()
        page.doc.body.append_child(page.doc.create_element("div", {"class": "sponsor"}))
        watcher.stop()
        timer.advance(1000)
        assert watcher.sweeps == 0
        assert not watcher.running

    def test_admit_moves_live_frame(self) -> None:
        page = _Page()
        page.queue.open()
        frame = page.doc.create_element("iframe", {"src": "late.html"})
        page.doc.body.append_child(frame)
        watcher = self._watcher(page, ManualTimer(), [])
        assert watcher.admit(AdmissionRequest.from_policy("SUBDOCUMENT", "late.html")) is frame
        assert page.panel.contains(frame)


# ---------------------------------------------------------------------------
# ScriptErrorRecovery
# ---------------------------------------------------------------------------


class TestRecovery:
    def _recovery(self, page: _Page) -> ScriptErrorRecovery:
        return ScriptErrorRecovery(
            page.doc, page.relocator, refresh_script_url="adsidebar-resource://refresh.js"
        )

    def test_reruns_inline_scripts_once(self) -> None:
        page = _Page()
        set_inner_markup(
            page.doc.body, '<script>var slots = 2;</script><script src="ext.js"></script>'
        )
        page.doc.body.append_child(page.panel)
        recovery = self._recovery(page)

        assert recovery.recover(SiteOptions(run_local_scripts=True)) == 1
        (managed,) = page.relocator.managed
        assert managed.content.tag == "script"
        assert managed.content.text_content == "var slots = 2;"
        assert managed.content.started

        assert recovery.recover(SiteOptions(run_local_scripts=True)) == 0
        assert len(page.relocator.managed) == 1

    def test_refresh_vendor_injects_script(self) -> None:
        page = _Page()
        recovery = self._recovery(page)
        recovery.recover(SiteOptions(refresh_vendor=True))
        scripts = page.container.query_all("script")
        assert [s.src for s in scripts] == ["adsidebar-resource://refresh.js"]

    def test_no_options_does_nothing(self) -> None:
        page = _Page()
        recovery = self._recovery(page)
        assert recovery.recover(SiteOptions()) == 0
        assert page.container.children == []
        assert recovery.handled
