"""ScriptErrorRecovery: second chance for pages whose scripts failed.

A failed script usually means an earlier blocked dependency; once the
queue has put those dependencies back, re-running the inline scripts (and
asking the vendor library to refresh its slots) recovers most content.
Runs at most once per session.
"""

from __future__ import annotations

import structlog

from adsidebar.config.settings import SiteOptions
from adsidebar.constants import WRITE_MARKER_ATTR
from adsidebar.dom.document import Document, Element
from adsidebar.sidebar.relocator import ContentRelocator

logger = structlog.get_logger()


class ScriptErrorRecovery:
    def __init__(
        self, document: Document, relocator: ContentRelocator, *, refresh_script_url: str
    ) -> None:
        self._document = document
        self._relocator = relocator
        self._refresh_script_url = refresh_script_url
        self.handled = False

    def inject_refresh(self) -> Element:
        script = self._document.create_element("script", {"src": self._refresh_script_url})
        self._relocator.container.append_child(script)
        logger.info("refresh_script_injected", source=self._refresh_script_url)
        return script

    def recover(self, options: SiteOptions) -> int:
        """Apply the site's recovery options; returns the number of scripts re-run."""
        if self.handled:
            return 0
        self.handled = True

        rerun = 0
        if options.run_local_scripts:
            panel = self._relocator.panel
            inline = [
                el
                for el in self._document.root.query_all("script")
                if not el.src
                and el.get_attribute(WRITE_MARKER_ATTR) is None
                and not panel.contains(el)
            ]
            for original in inline:
                # A script element only ever runs once; copy it into a fresh one.
                attrs = {k: v for k, v in original.attrs.items() if k in ("type", "async")}
                fresh = self._document.create_element("script", attrs)
                fresh.append_child(self._document.create_text(original.text_content))
                self._relocator.insert(fresh)
                rerun += 1
        if options.refresh_vendor:
            self.inject_refresh()
        logger.info(
            "script_error_recovery",
            rerun=rerun,
            refresh_vendor=options.refresh_vendor,
        )
        return rerun
