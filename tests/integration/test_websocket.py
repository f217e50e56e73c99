"""WebSocket integration tests for the gateway RPC protocol.

Drives the real app through Starlette's TestClient with a fast LoopTimer:
- Health endpoint
- Open -> admit -> load, then the pushed sidebar.complete notification
- Error frames for unknown methods, invalid JSON and unknown sessions
"""

from __future__ import annotations

import json

import pytest
from starlette.testclient import TestClient

pytestmark = pytest.mark.integration

PAGE = '<iframe src="https://ads.example/f1" width="300" height="250"></iframe>'


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch):
    # 1000-unit tick == 0.1s
    monkeypatch.setenv("MONITOR_UNIT_SECONDS", "0.0001")
    from adsidebar.gateway import app as app_module

    # Leave the process-wide structlog configuration alone.
    monkeypatch.setattr(app_module, "setup_logging", lambda *args, **kwargs: None)
    with TestClient(app_module.app) as test_client:
        yield test_client


def _send_rpc(ws, *, method: str, params: dict | None = None, request_id: str = "req-1"):
    """Helper to send an RPC request over WebSocket."""
    msg = {"type": "request", "id": request_id, "method": method, "params": params or {}}
    ws.send_text(json.dumps(msg))


def _receive(ws) -> dict:
    return json.loads(ws.receive_text())


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestCompletionFlow:
    def test_notification_pushed_after_load(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            _send_rpc(
                ws,
                method="session.open",
                params={
                    "session_id": "tab-1",
                    "location": "https://news.example.com/",
                    "markup": PAGE,
                },
            )
            opened = _receive(ws)
            assert opened["type"] == "response"
            assert opened["data"] == {"session_id": "tab-1", "phase": "INIT"}

            _send_rpc(
                ws,
                method="policy.admit",
                params={
                    "session_id": "tab-1",
                    "resource_kind": "SUBDOCUMENT",
                    "source": "https://ads.example/f1",
                },
                request_id="req-2",
            )
            assert _receive(ws)["data"] == {"phase": "INIT", "queued": 1}

            _send_rpc(ws, method="session.load", params={"session_id": "tab-1"}, request_id="r3")
            loaded = _receive(ws)
            assert loaded["id"] == "r3"

            notification = _receive(ws)
            assert notification["type"] == "notification"
            assert notification["method"] == "sidebar.complete"
            assert notification["data"] == {
                "session_id": "tab-1",
                "region_count": 1,
                "ever_displayed": True,
            }

            _send_rpc(ws, method="sidebar.data", params={"session_id": "tab-1"}, request_id="r4")
            assert _receive(ws)["data"] == {"enabled": True, "displayed": True}


class TestErrorFrames:
    def test_unknown_method(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="sidebar.explode")
            frame = _receive(ws)
            assert frame["type"] == "error"
            assert frame["id"] == "req-1"
            assert frame["error"]["code"] == "METHOD_NOT_FOUND"

    def test_invalid_json(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{broken")
            frame = _receive(ws)
            assert frame["id"] == "unknown"
            assert frame["error"]["code"] == "PARSE_ERROR"

    def test_unknown_session(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="session.load", params={"session_id": "nope"})
            assert _receive(ws)["error"]["code"] == "SESSION_NOT_FOUND"
