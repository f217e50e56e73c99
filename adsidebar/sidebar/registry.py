"""SessionRegistry: explicit owner of every open SidebarSession."""

from __future__ import annotations

from collections.abc import Callable, Iterable

import structlog

from adsidebar.config.settings import MonitorSettings
from adsidebar.config.store import ConfigStore, SidebarPrefs
from adsidebar.dom.document import Document
from adsidebar.infra.errors import SessionExistsError, SessionNotFoundError
from adsidebar.runtime.timer import Timer
from adsidebar.sidebar.probe import ProbeTransport
from adsidebar.sidebar.session import HostNotification, SidebarSession

logger = structlog.get_logger()


class SessionRegistry:
    """Opens, looks up and closes sessions; fans live prefs out to all of them."""

    def __init__(
        self,
        config: ConfigStore,
        *,
        timer: Timer,
        monitor_settings: MonitorSettings | None = None,
        transport: ProbeTransport | None = None,
        notify: Callable[[HostNotification], None] | None = None,
    ) -> None:
        self._config = config
        self._timer = timer
        self._monitor_settings = monitor_settings or MonitorSettings()
        self._transport = transport
        self._notify = notify
        self._sessions: dict[str, SidebarSession] = {}
        self._unsubscribe: Callable[[], None] | None = config.subscribe(self._on_prefs)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def open(
        self, session_id: str, document: Document, *, selectors: Iterable[str] = ()
    ) -> SidebarSession:
        if session_id in self._sessions:
            raise SessionExistsError(session_id)
        session = SidebarSession(
            session_id,
            document,
            timer=self._timer,
            prefs=self._config.load(),
            site_options=self._config.site_options(document.location),
            monitor_settings=self._monitor_settings,
            selectors=selectors,
            transport=self._transport,
            notify=self._notify,
        )
        self._sessions[session_id] = session
        logger.info("session_opened", session_id=session_id, location=document.location)
        return session

    def get(self, session_id: str) -> SidebarSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.teardown()

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_prefs(self, prefs: SidebarPrefs) -> None:
        for session in self._sessions.values():
            session.apply_prefs(prefs)
