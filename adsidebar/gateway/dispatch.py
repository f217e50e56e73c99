"""Host command dispatch: RPC method -> session operation.

Transport agnostic; the websocket endpoint feeds parsed requests in and
sends the returned data back. Every method is synchronous because the
pipeline itself never blocks; continuations run on the shared Timer.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from adsidebar.config.store import SettingsConfigStore
from adsidebar.dom.document import Document
from adsidebar.dom.fragment import set_inner_markup
from adsidebar.dom.loader import HeadlessLoader
from adsidebar.gateway.protocol import (
    CompletionData,
    ConfigUpdateParams,
    PageErrorParams,
    PageWriteParams,
    PolicyAdmitParams,
    RPCNotification,
    RPCRequest,
    SessionOpenParams,
    SessionParams,
)
from adsidebar.infra.errors import GatewayError
from adsidebar.runtime.timer import Timer
from adsidebar.sidebar.contracts import AdmissionRequest
from adsidebar.sidebar.probe import FrameResponder
from adsidebar.sidebar.registry import SessionRegistry
from adsidebar.sidebar.session import HostNotification

logger = structlog.get_logger()

P = TypeVar("P", bound=BaseModel)


class NotificationHub:
    """Routes completion notifications to the connection that owns the session."""

    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue[RPCNotification]] = {}

    def attach(self, session_id: str, queue: asyncio.Queue[RPCNotification]) -> None:
        self._queues[session_id] = queue

    def detach(self, session_id: str) -> None:
        self._queues.pop(session_id, None)

    def publish(self, notification: HostNotification) -> None:
        queue = self._queues.get(notification.session_id)
        if queue is None:
            logger.debug("notification_dropped", session_id=notification.session_id)
            return
        queue.put_nowait(
            RPCNotification(
                data=CompletionData(
                    session_id=notification.session_id,
                    region_count=notification.region_count,
                    ever_displayed=notification.ever_displayed,
                )
            )
        )


def _parse(model: type[P], params: dict[str, Any]) -> P:
    try:
        return model.model_validate(params)
    except ValidationError as e:
        raise GatewayError(str(e), code="INVALID_PARAMS") from e


class HostDispatcher:
    """One per connection; sessions opened here are closed with it."""

    def __init__(
        self,
        registry: SessionRegistry,
        config: SettingsConfigStore,
        timer: Timer,
        *,
        hub: NotificationHub | None = None,
        outbox: asyncio.Queue[RPCNotification] | None = None,
    ) -> None:
        self._registry = registry
        self._config = config
        self._timer = timer
        self._hub = hub
        self._outbox = outbox
        self.owned: set[str] = set()
        self._methods: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            "session.open": self._session_open,
            "session.load": self._session_load,
            "session.close": self._session_close,
            "policy.admit": self._policy_admit,
            "page.write": self._page_write,
            "page.error": self._page_error,
            "config.update": self._config_update,
            "sidebar.toggle": self._sidebar_toggle,
            "sidebar.data": self._sidebar_data,
        }

    @property
    def methods(self) -> list[str]:
        return sorted(self._methods)

    def handle(self, request: RPCRequest) -> dict[str, Any]:
        """Run one request. Raises AdSidebarError subclasses for host-visible failures."""
        method = self._methods.get(request.method)
        if method is None:
            raise GatewayError(f"Unknown method: {request.method}", code="METHOD_NOT_FOUND")
        return method(request.params)

    def close(self) -> None:
        for session_id in list(self.owned):
            self._close_session(session_id)

    # -- methods ------------------------------------------------------------

    def _session_open(self, params: dict[str, Any]) -> dict[str, Any]:
        parsed = _parse(SessionOpenParams, params)
        loader = HeadlessLoader(
            self._timer,
            failing_sources=parsed.failing_sources,
            on_frame_ready=FrameResponder.install,
        )
        document = Document(parsed.location, loader=loader)
        session = self._registry.open(parsed.session_id, document, selectors=parsed.selectors)
        # Page markup goes in after the session exists so its resources can be admitted.
        set_inner_markup(document.body, parsed.markup)
        self.owned.add(parsed.session_id)
        if self._hub is not None and self._outbox is not None:
            self._hub.attach(parsed.session_id, self._outbox)
        return {"session_id": session.session_id, "phase": session.phase.name}

    def _session_load(self, params: dict[str, Any]) -> dict[str, Any]:
        session = self._registry.get(_parse(SessionParams, params).session_id)
        session.window_load()
        return {"phase": session.phase.name, "queued": len(session.queue)}

    def _session_close(self, params: dict[str, Any]) -> dict[str, Any]:
        session_id = _parse(SessionParams, params).session_id
        self._registry.get(session_id)
        self._close_session(session_id)
        return {"closed": True}

    def _policy_admit(self, params: dict[str, Any]) -> dict[str, Any]:
        parsed = _parse(PolicyAdmitParams, params)
        session = self._registry.get(parsed.session_id)
        request = AdmissionRequest.from_policy(
            parsed.resource_kind, parsed.source, tag_kind=parsed.tag_kind
        )
        session.route_admission(request)
        return {"phase": session.phase.name, "queued": len(session.queue)}

    def _page_write(self, params: dict[str, Any]) -> dict[str, Any]:
        parsed = _parse(PageWriteParams, params)
        session = self._registry.get(parsed.session_id)
        session.write(parsed.markup)
        return {"buffered": len(session.bridge.buffer)}

    def _page_error(self, params: dict[str, Any]) -> dict[str, Any]:
        parsed = _parse(PageErrorParams, params)
        self._registry.get(parsed.session_id).record_script_error(parsed.detail)
        return {"recorded": True}

    def _config_update(self, params: dict[str, Any]) -> dict[str, Any]:
        parsed = _parse(ConfigUpdateParams, params)
        prefs = self._config.update(
            enabled=parsed.enabled,
            autohide_seconds=parsed.autohide_seconds,
            ad_scaling=parsed.ad_scaling,
        )
        return {
            "enabled": prefs.enabled,
            "autohide_seconds": prefs.autohide_seconds,
            "ad_scaling": prefs.ad_scaling,
        }

    def _sidebar_toggle(self, params: dict[str, Any]) -> dict[str, Any]:
        session = self._registry.get(_parse(SessionParams, params).session_id)
        return {"displayed": session.toggle_visibility()}

    def _sidebar_data(self, params: dict[str, Any]) -> dict[str, Any]:
        data = self._registry.get(_parse(SessionParams, params).session_id).data_request()
        return {"enabled": data.enabled, "displayed": data.displayed}

    def _close_session(self, session_id: str) -> None:
        self.owned.discard(session_id)
        if self._hub is not None:
            self._hub.detach(session_id)
        if session_id in self._registry:
            self._registry.close(session_id)
