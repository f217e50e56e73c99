from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from adsidebar.config.settings import get_settings
from adsidebar.config.store import SettingsConfigStore
from adsidebar.gateway.dispatch import HostDispatcher, NotificationHub
from adsidebar.gateway.protocol import (
    RPCError,
    RPCErrorData,
    RPCNotification,
    RPCResponse,
    parse_rpc_request,
)
from adsidebar.infra.errors import AdSidebarError
from adsidebar.infra.logging import setup_logging
from adsidebar.runtime.timer import LoopTimer
from adsidebar.sidebar.registry import SessionRegistry

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize shared state on startup."""
    settings = get_settings()
    setup_logging(settings.log)

    config = SettingsConfigStore(settings.sidebar)
    timer = LoopTimer(unit_seconds=settings.monitor.unit_seconds)
    hub = NotificationHub()
    registry = SessionRegistry(
        config,
        timer=timer,
        monitor_settings=settings.monitor,
        notify=hub.publish,
    )

    app.state.config_store = config
    app.state.timer = timer
    app.state.hub = hub
    app.state.registry = registry
    logger.info(
        "gateway_started",
        host=settings.gateway.host,
        port=settings.gateway.port,
        tick_units=settings.monitor.tick_units,
    )

    yield

    registry.close_all()
    logger.info("gateway_stopped")


app = FastAPI(title="AdSidebar Gateway", version="0.1.0", lifespan=lifespan)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    logger.info("ws_connected")
    outbox: asyncio.Queue[RPCNotification] = asyncio.Queue()
    dispatcher = HostDispatcher(
        websocket.app.state.registry,
        websocket.app.state.config_store,
        websocket.app.state.timer,
        hub=websocket.app.state.hub,
        outbox=outbox,
    )
    pump = asyncio.create_task(_pump_notifications(websocket, outbox))
    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_rpc_message(websocket, dispatcher, raw)
    except WebSocketDisconnect:
        logger.info("ws_disconnected", sessions=len(dispatcher.owned))
    finally:
        pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump
        dispatcher.close()


async def _pump_notifications(
    websocket: WebSocket, outbox: asyncio.Queue[RPCNotification]
) -> None:
    """Forward completion notifications to the host as they are produced."""
    while True:
        notification = await outbox.get()
        await websocket.send_text(notification.model_dump_json())


async def _handle_rpc_message(websocket: WebSocket, dispatcher: HostDispatcher, raw: str) -> None:
    """Parse RPC request, run it against the session registry, send the result back."""
    request_id = "unknown"
    try:
        request = parse_rpc_request(raw)
        request_id = request.id
        data = dispatcher.handle(request)
        response = RPCResponse(id=request_id, data=data)
        await websocket.send_text(response.model_dump_json())

    except AdSidebarError as e:
        logger.warning("rpc_rejected", code=e.code, error=str(e), request_id=request_id)
        await _send_error(websocket, request_id, e.code, str(e))
    except Exception:
        # Reported as a frame; the connection and its sessions stay open.
        logger.exception("rpc_failed", request_id=request_id)
        await _send_error(websocket, request_id, "INTERNAL_ERROR", "An internal error occurred")


async def _send_error(websocket: WebSocket, request_id: str, code: str, message: str) -> None:
    frame = RPCError(id=request_id, error=RPCErrorData(code=code, message=message))
    await websocket.send_text(frame.model_dump_json())
