"""ConfigStore: preference source read at session start and on live update.

Persistence lives outside this package; SettingsConfigStore serves the
preferences from SidebarSettings (env / .env) and keeps live updates in
memory for the lifetime of the process.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Protocol
from urllib.parse import urlsplit

import structlog

from adsidebar.config.settings import SidebarSettings, SiteOptions

logger = structlog.get_logger()

PrefsListener = Callable[["SidebarPrefs"], None]


@dataclass(frozen=True)
class SidebarPrefs:
    enabled: bool = True
    autohide_seconds: int = 0
    ad_scaling: bool = True


class ConfigStore(Protocol):
    def load(self) -> SidebarPrefs: ...

    def site_options(self, location: str) -> SiteOptions: ...

    def subscribe(self, listener: PrefsListener) -> Callable[[], None]:
        """Register a live-update listener; returns the unsubscribe callable."""
        ...


class SettingsConfigStore:
    """ConfigStore backed by SidebarSettings with in-memory live updates."""

    def __init__(self, settings: SidebarSettings | None = None) -> None:
        settings = settings or SidebarSettings()
        self._prefs = SidebarPrefs(
            enabled=settings.enabled,
            autohide_seconds=settings.autohide_seconds,
            ad_scaling=settings.ad_scaling,
        )
        self._sites = {host.lower(): opts for host, opts in settings.site_options.items()}
        self._listeners: list[PrefsListener] = []

    def load(self) -> SidebarPrefs:
        return self._prefs

    def site_options(self, location: str) -> SiteOptions:
        """Options for the location's host, falling back to parent domains."""
        host = (urlsplit(location).hostname or "").lower()
        while host:
            if host in self._sites:
                return self._sites[host]
            _, _, host = host.partition(".")
        return SiteOptions()

    def subscribe(self, listener: PrefsListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(
        self,
        *,
        enabled: bool | None = None,
        autohide_seconds: int | None = None,
        ad_scaling: bool | None = None,
    ) -> SidebarPrefs:
        """Apply a live update and notify every listener."""
        changes: dict[str, object] = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if autohide_seconds is not None:
            if autohide_seconds < 0:
                raise ValueError(f"autohide_seconds must be >= 0, got {autohide_seconds}")
            changes["autohide_seconds"] = autohide_seconds
        if ad_scaling is not None:
            changes["ad_scaling"] = ad_scaling

        self._prefs = replace(self._prefs, **changes)
        logger.info("prefs_updated", **changes)
        for listener in list(self._listeners):
            listener(self._prefs)
        return self._prefs
