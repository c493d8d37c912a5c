"""Session output stream: WebSocket subscriptions plus HTTP ingestion for producers."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from devrelay.models.error import RelayErrorBody
from devrelay.models.stream import SessionInfo
from devrelay.services.relay_errors import UnknownSession
from devrelay.services.stream_hub import StreamHub
from devrelay.services.subscription_broker import Subscriber

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionOpenRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    id: Optional[str] = Field(default=None, min_length=1, max_length=200)


class SessionOutputRequest(BaseModel):
    data: str


def _hub(request: Request) -> StreamHub:
    return request.app.state.stream_hub


@router.get("/stream/health")
async def stream_health(request: Request) -> dict:
    counts = _hub(request).status()
    return {"status": "ok", **counts, "timestamp": int(time.time() * 1000)}


@router.get("/stream/sessions", response_model=list[SessionInfo])
async def list_sessions(request: Request) -> list[SessionInfo]:
    return [session.info() for session in _hub(request).registry.sessions()]


@router.post("/stream/sessions", status_code=201, response_model=SessionInfo)
async def open_session(data: SessionOpenRequest, request: Request) -> SessionInfo:
    """Report a session-opened event. Idempotent for an existing id."""
    return _hub(request).open_session(data.name, data.id).info()


@router.post(
    "/stream/sessions/{session_id}/output",
    responses={404: {"model": RelayErrorBody, "description": "Session is not tracked"}},
)
async def write_output(session_id: str, data: SessionOutputRequest, request: Request) -> dict:
    hub = _hub(request)
    if not hub.write(session_id, data.data):
        raise UnknownSession(session_id)
    session = hub.registry.get(session_id)
    return {"success": True, "sessionId": session_id, "bufferedLines": len(session.buffer) if session else 0}


@router.delete(
    "/stream/sessions/{session_id}",
    responses={404: {"model": RelayErrorBody, "description": "Session is not tracked"}},
)
async def close_session(session_id: str, request: Request) -> dict:
    hub = _hub(request)
    if session_id not in hub.registry:
        raise UnknownSession(session_id)
    hub.close_session(session_id)
    return {"success": True, "sessionId": session_id}


async def _drain_outbox(websocket: WebSocket, subscriber: Subscriber) -> None:
    while True:
        frame = await subscriber.outbox.get()
        if frame is None:
            # Broker dropped this subscriber (overflow or shutdown).
            await websocket.close(code=status.WS_1001_GOING_AWAY)
            return
        await websocket.send_json(frame)


def _on_writer_done(hub: StreamHub, subscriber: Subscriber):
    def _callback(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("stream_writer_failed client=%s error=%s", subscriber.label, error)
        hub.broker.disconnect(subscriber)

    return _callback


@router.websocket("/stream/ws")
async def stream_socket(websocket: WebSocket) -> None:
    hub: StreamHub = websocket.app.state.stream_hub
    await websocket.accept()
    client = websocket.client.host if websocket.client else "unknown"
    subscriber = hub.broker.connect(label=client)
    writer = asyncio.create_task(_drain_outbox(websocket, subscriber))
    writer.add_done_callback(_on_writer_done(hub, subscriber))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
            # Clients may send their JSON commands as text or binary frames.
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            hub.broker.handle_message(subscriber, raw)
    except WebSocketDisconnect:
        pass
    finally:
        hub.broker.disconnect(subscriber)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
