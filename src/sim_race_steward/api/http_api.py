from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from sim_race_steward.logging import get_logger
from ..broadcast.hub import BroadcastMessage, Connection
from ..ingest.gateway import RELAY_EVENTS, Ack

if TYPE_CHECKING:
    from ..service import StewardService

"""Read-only live view plus the websocket used by dashboards and relays.

Endpoints:
    GET /health           -> service status counters
    GET /sessions/active  -> {"sessions": [{sessionId, trackName, sessionType, driverCount, lastUpdate}]}
    WS  /ws               -> frames {"event": str, "data": {...}}
                             room:join / room:leave {"sessionId"} for dashboards,
                             any relay event (telemetry, session_metadata, ...) for relays
"""

_LOG = get_logger("http_api")


async def _pump(websocket: WebSocket, conn: Connection) -> None:
    while True:
        msg = await conn.next()
        await websocket.send_json(msg.to_frame())


async def _dispatch(service: "StewardService", conn: Connection, frame: dict) -> None:
    event = frame.get("event")
    data = frame.get("data")
    if not isinstance(data, dict):
        data = {}
    if event in ("room:join", "room:leave"):
        sid = data.get("sessionId")
        if not isinstance(sid, str) or not sid:
            return
        if event == "room:join":
            service.hub.join(conn, sid)
            conn.deliver(BroadcastMessage("room:joined", {"sessionId": sid}, sid))
        else:
            service.hub.leave(conn, sid)
            conn.deliver(BroadcastMessage("room:left", {"sessionId": sid}, sid))
        return
    if event in RELAY_EVENTS:

        async def _reply(ack: Ack) -> None:
            conn.deliver(BroadcastMessage("ack", ack.to_dict()))

        await service.gateway.handle(conn, event, data, _reply)
        return
    _LOG.debug("[http] %s sent unknown event %r", conn.connection_id, event)


def create_app(service: "StewardService", manage_lifecycle: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.stop()

    app = FastAPI(title="Sim Race Steward", version="0.1", lifespan=lifespan)
    app.state.service = service

    @app.get("/health")
    async def health():
        return service.status()

    @app.get("/sessions/active")
    async def active_sessions():
        return {"sessions": [s.to_dict() for s in service.registry.list_active()]}

    @app.websocket("/ws")
    async def socket(websocket: WebSocket):
        await websocket.accept()
        conn = service.hub.register(f"ws:{uuid.uuid4().hex[:12]}")
        _LOG.info("[http] client connected %s", conn.connection_id)
        pump = asyncio.create_task(_pump(websocket, conn), name=f"ws_pump:{conn.connection_id}")
        try:
            while True:
                try:
                    frame = await websocket.receive_json()
                except ValueError:
                    _LOG.debug("[http] %s sent non-JSON frame", conn.connection_id)
                    continue
                if not isinstance(frame, dict):
                    continue
                try:
                    await _dispatch(service, conn, frame)
                except Exception:
                    _LOG.exception("[http] %s failed handling %r", conn.connection_id, frame.get("event"))
        except WebSocketDisconnect:
            pass
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            service.hub.unregister(conn.connection_id)
            _LOG.info("[http] client disconnected %s", conn.connection_id)

    return app
