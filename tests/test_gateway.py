"""Tests for HostDispatcher, NotificationHub and the RPC protocol models.

Covers:
- Method routing, METHOD_NOT_FOUND / INVALID_PARAMS / SESSION_NOT_FOUND
- Full open -> admit -> load -> complete flow on the headless loader
- Completion notifications routed to the owning connection's outbox
- Closing a connection closes only the sessions it opened
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import ManualTimer

from adsidebar.config.settings import SidebarSettings
from adsidebar.config.store import SettingsConfigStore
from adsidebar.gateway.dispatch import HostDispatcher, NotificationHub
from adsidebar.gateway.protocol import RPCNotification, RPCRequest, parse_rpc_request
from adsidebar.infra.errors import GatewayError, SessionNotFoundError
from adsidebar.sidebar.registry import SessionRegistry
from adsidebar.sidebar.session import HostNotification

PAGE = (
    '<div id="story">news</div>'
    '<iframe src="https://ads.example/f1" width="300" height="250"></iframe>'
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Gateway:
    def __init__(self) -> None:
        self.timer = ManualTimer()
        self.config = SettingsConfigStore(SidebarSettings())
        self.hub = NotificationHub()
        self.registry = SessionRegistry(self.config, timer=self.timer, notify=self.hub.publish)

    def connect(self) -> tuple[HostDispatcher, asyncio.Queue[RPCNotification]]:
        outbox: asyncio.Queue[RPCNotification] = asyncio.Queue()
        dispatcher = HostDispatcher(
            self.registry, self.config, self.timer, hub=self.hub, outbox=outbox
        )
        return dispatcher, outbox


def _call(dispatcher: HostDispatcher, method: str, **params) -> dict:
    return dispatcher.handle(RPCRequest(method=method, params=params))


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class TestParseRequest:
    def test_valid_request(self) -> None:
        request = parse_rpc_request('{"type": "request", "id": "r1", "method": "sidebar.data"}')
        assert request.id == "r1"
        assert request.params == {}

    def test_invalid_json(self) -> None:
        with pytest.raises(GatewayError) as exc_info:
            parse_rpc_request("{not json")
        assert exc_info.value.code == "PARSE_ERROR"

    def test_schema_mismatch(self) -> None:
        with pytest.raises(GatewayError) as exc_info:
            parse_rpc_request('{"type": "request", "id": "r1"}')
        assert exc_info.value.code == "PARSE_ERROR"


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatchErrors:
    def test_unknown_method(self) -> None:
        dispatcher, _ = _Gateway().connect()
        with pytest.raises(GatewayError) as exc_info:
            _call(dispatcher, "sidebar.explode")
        assert exc_info.value.code == "METHOD_NOT_FOUND"

    def test_missing_params(self) -> None:
        dispatcher, _ = _Gateway().connect()
        with pytest.raises(GatewayError) as exc_info:
            _call(dispatcher, "session.open")
        assert exc_info.value.code == "INVALID_PARAMS"

    def test_empty_resource_kind(self) -> None:
        gw = _Gateway()
        dispatcher, _ = gw.connect()
        _call(dispatcher, "session.open", session_id="s1")
        with pytest.raises(GatewayError) as exc_info:
            _call(dispatcher, "policy.admit", session_id="s1", resource_kind=" ", source="a.js")
        assert exc_info.value.code == "INVALID_PARAMS"

    def test_negative_autohide(self) -> None:
        dispatcher, _ = _Gateway().connect()
        with pytest.raises(GatewayError) as exc_info:
            _call(dispatcher, "config.update", autohide_seconds=-1)
        assert exc_info.value.code == "INVALID_PARAMS"

    def test_unknown_session(self) -> None:
        dispatcher, _ = _Gateway().connect()
        with pytest.raises(SessionNotFoundError) as exc_info:
            _call(dispatcher, "sidebar.data", session_id="ghost")
        assert exc_info.value.code == "SESSION_NOT_FOUND"

    def test_methods_listed(self) -> None:
        dispatcher, _ = _Gateway().connect()
        assert "policy.admit" in dispatcher.methods
        assert len(dispatcher.methods) == 9


class TestDispatchFlow:
    def test_open_admit_load_complete(self) -> None:
        gw = _Gateway()
        dispatcher, outbox = gw.connect()

        opened = _call(
            dispatcher,
            "session.open",
            session_id="s1",
            location="https://news.example.com/story",
            markup=PAGE,
        )
        assert opened == {"session_id": "s1", "phase": "INIT"}

        admitted = _call(
            dispatcher,
            "policy.admit",
            session_id="s1",
            resource_kind="subdocument",
            source="https://ads.example/f1",
        )
        assert admitted == {"phase": "INIT", "queued": 1}

        loaded = _call(dispatcher, "session.load", session_id="s1")
        assert loaded == {"phase": "PROCESS_NODES_START", "queued": 0}

        gw.timer.advance(0)
        gw.timer.advance(1000)
        notification = outbox.get_nowait()
        assert notification.method == "sidebar.complete"
        assert notification.data.session_id == "s1"
        assert notification.data.region_count == 1
        assert notification.data.ever_displayed

        assert _call(dispatcher, "sidebar.data", session_id="s1") == {
            "enabled": True,
            "displayed": True,
        }
        assert _call(dispatcher, "sidebar.toggle", session_id="s1") == {"displayed": False}

    def test_page_write_buffers_partial_markup(self) -> None:
        gw = _Gateway()
        dispatcher, _ = gw.connect()
        _call(dispatcher, "session.open", session_id="s1")
        _call(dispatcher, "session.load", session_id="s1")
        assert _call(dispatcher, "page.write", session_id="s1", markup="<im") == {"buffered": 3}
        assert _call(dispatcher, "page.write", session_id="s1", markup='g src="x.png">') == {
            "buffered": 0
        }

    def test_page_error_recorded(self) -> None:
        gw = _Gateway()
        dispatcher, _ = gw.connect()
        _call(dispatcher, "session.open", session_id="s1")
        assert _call(dispatcher, "page.error", session_id="s1", detail="boom") == {
            "recorded": True
        }
        assert gw.registry.get("s1").anomalies.script_error

    def test_config_update_reaches_sessions(self) -> None:
        gw = _Gateway()
        dispatcher, _ = gw.connect()
        _call(dispatcher, "session.open", session_id="s1")
        prefs = _call(dispatcher, "config.update", ad_scaling=False)
        assert prefs == {"enabled": True, "autohide_seconds": 0, "ad_scaling": False}
        assert gw.registry.get("s1").monitor.ad_scaling is False

    def test_close_only_owned_sessions(self) -> None:
        gw = _Gateway()
        first, _ = gw.connect()
        second, _ = gw.connect()
        _call(first, "session.open", session_id="a")
        _call(second, "session.open", session_id="b")

        first.close()
        assert "a" not in gw.registry
        assert "b" in gw.registry

        assert _call(second, "session.close", session_id="b") == {"closed": True}
        assert len(gw.registry) == 0
        assert second.owned == set()


class TestNotificationHub:
    def test_routes_by_session(self) -> None:
        hub = NotificationHub()
        a: asyncio.Queue[RPCNotification] = asyncio.Queue()
        b: asyncio.Queue[RPCNotification] = asyncio.Queue()
        hub.attach("a", a)
        hub.attach("b", b)
        hub.publish(HostNotification(session_id="b", region_count=2, ever_displayed=False))
        assert a.empty()
        assert b.get_nowait().data.region_count == 2

    def test_unattached_session_dropped(self) -> None:
        hub = NotificationHub()
        queue: asyncio.Queue[RPCNotification] = asyncio.Queue()
        hub.attach("a", queue)
        hub.detach("a")
        hub.publish(HostNotification(session_id="a", region_count=1, ever_displayed=True))
        assert queue.empty()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


class TestMain:
    def test_serves_on_configured_host_and_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from adsidebar.gateway import __main__ as entry

        calls: list[tuple[str, dict]] = []
        monkeypatch.setenv("GATEWAY_HOST", "0.0.0.0")
        monkeypatch.setenv("GATEWAY_PORT", "8123")
        monkeypatch.setattr(entry.uvicorn, "run", lambda app, **kw: calls.append((app, kw)))

        entry.main()

        assert len(calls) == 1
        app, kwargs = calls[0]
        assert app == "adsidebar.gateway.app:app"
        assert (kwargs["host"], kwargs["port"]) == ("0.0.0.0", 8123)
