"""
HTTP / WebSocket surface for the display, speech and SMS front-ends.

Endpoints:
    GET    /health              → liveness
    GET    /status              → device + peer state
    GET    /history             → unified stream, newest first
    DELETE /history             → clear history (also resets dedup)
    POST   /messages            → ingest local speech input (origin=user)
    POST   /send                → forward text to the peer
    POST   /device/connect      → explicit device connect
    POST   /device/disconnect   → release the device
    POST   /device/error/clear  → dismiss the device error
    POST   /peer/connect        → (client) connect to a host identity
    POST   /peer/disconnect     → drop the peer connection and retry context
    PUT    /settings            → runtime-mutable router settings
    WS     /events              → every bus event as {"topic", "data"}
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from signlink.core.event_bus import ALL_TOPICS
from signlink.models import Origin
from signlink.runtime import RoleConflict, SignLinkRuntime

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _encode(payload: Any) -> Any:
    if hasattr(payload, "to_dict"):
        return payload.to_dict()
    return payload


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def create_signlink_router(runtime: SignLinkRuntime) -> APIRouter:
    """Create the REST + WebSocket router bound to one runtime."""

    router = APIRouter()

    @router.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": VERSION})

    @router.get("/status")
    async def status() -> JSONResponse:
        return JSONResponse(runtime.status())

    # ─── Unified stream ───────────────────────────────────────

    @router.get("/history")
    async def history() -> JSONResponse:
        return JSONResponse(
            {"messages": [m.to_dict() for m in runtime.router.history]}
        )

    @router.delete("/history")
    async def clear_history() -> JSONResponse:
        await runtime.router.clear_history()
        return JSONResponse({"cleared": True})

    @router.post("/messages")
    async def ingest(request: Request) -> JSONResponse:
        """Local speech-to-text input joins the stream as user text."""
        body = await _json_body(request)
        text = body.get("text")
        if not isinstance(text, str) or not text.strip():
            return JSONResponse({"error": "text is required"}, status_code=400)
        message = await runtime.router.ingest(text, Origin.USER)
        return JSONResponse({"message": message.to_dict() if message else None}, status_code=201)

    @router.post("/send")
    async def send(request: Request) -> JSONResponse:
        body = await _json_body(request)
        text = body.get("text")
        if not isinstance(text, str) or not text.strip():
            return JSONResponse({"error": "text is required"}, status_code=400)
        return JSONResponse({"sent": runtime.router.send(text.strip())})

    # ─── Device ───────────────────────────────────────────────

    @router.post("/device/connect")
    async def device_connect() -> JSONResponse:
        if runtime.device is None:
            return JSONResponse({"error": "Device input is disabled"}, status_code=409)
        connected = await runtime.device.connect()
        return JSONResponse({"connected": connected, **runtime.status()["device"]})

    @router.post("/device/disconnect")
    async def device_disconnect() -> JSONResponse:
        if runtime.device is None:
            return JSONResponse({"error": "Device input is disabled"}, status_code=409)
        await runtime.device.disconnect()
        return JSONResponse(runtime.status()["device"])

    @router.post("/device/error/clear")
    async def device_error_clear() -> JSONResponse:
        if runtime.device is not None:
            runtime.device.clear_error()
        return JSONResponse({"cleared": True})

    # ─── Peer ─────────────────────────────────────────────────

    @router.post("/peer/connect")
    async def peer_connect(request: Request) -> JSONResponse:
        body = await _json_body(request)
        target = str(body.get("target") or "").strip()
        if not target:
            return JSONResponse({"error": "target is required"}, status_code=400)
        try:
            await runtime.connect_peer(target)
        except RoleConflict as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        return JSONResponse(runtime.status()["peer"], status_code=202)

    @router.post("/peer/disconnect")
    async def peer_disconnect() -> JSONResponse:
        await runtime.disconnect_peer()
        return JSONResponse(runtime.status()["peer"])

    @router.put("/settings")
    async def settings(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if "allow_duplicates" in body:
            if not isinstance(body["allow_duplicates"], bool):
                return JSONResponse({"error": "allow_duplicates must be a boolean"}, status_code=400)
            runtime.router.allow_duplicates = body["allow_duplicates"]
        return JSONResponse({"allow_duplicates": runtime.router.allow_duplicates})

    # ─── Event stream ─────────────────────────────────────────

    @router.websocket("/events")
    async def events(ws: WebSocket) -> None:
        queue = runtime.bus.subscribe(ALL_TOPICS)
        try:
            await ws.accept()
            logger.info("Event stream client connected")
            async for event in runtime.bus.listen(queue):
                await ws.send_json({"topic": event.topic, "data": _encode(event.payload)})
        except WebSocketDisconnect:
            logger.info("Event stream client disconnected")
        finally:
            runtime.bus.unsubscribe(ALL_TOPICS, queue)

    return router


def create_app(runtime: SignLinkRuntime) -> FastAPI:
    """FastAPI app whose lifespan starts and stops the runtime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await runtime.start()
        logger.info(f"SignLink ready (role={runtime.role.value})")
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="SignLink", version=VERSION, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_signlink_router(runtime))
    return app
