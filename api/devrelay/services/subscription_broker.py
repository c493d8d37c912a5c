"""Per-connection subscription sets and output fan-out.

Each connection is a ``Subscriber`` with its own bounded outbox. Broadcasting
only enqueues frames, so producers never wait on slow clients; the WebSocket
writer drains the outbox in order. A subscriber whose outbox overflows is
disconnected rather than allowed to grow without limit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Protocol
from uuid import uuid4

from pydantic import ValidationError

from devrelay.models.stream import (
    CLIENT_MESSAGE_ADAPTER,
    WILDCARD,
    ListRequest,
    ServerMessage,
    SessionInfo,
    SubscribeAllRequest,
    SubscribeRequest,
    UnsubscribeRequest,
)
from devrelay.services.relay_errors import ProtocolError, RelayError, UnknownSession

logger = logging.getLogger(__name__)

DEFAULT_OUTBOX_FRAMES = 1000


class SessionView(Protocol):
    id: str
    name: str

    def backlog(self) -> str: ...

    def info(self) -> SessionInfo: ...


class SessionDirectory(Protocol):
    def get(self, session_id: str) -> Optional[SessionView]: ...

    def sessions(self) -> list[SessionView]: ...


class Subscriber:
    """One connection. ``None`` in the outbox marks end of stream for the writer."""

    def __init__(self, label: str = "", max_pending: int = DEFAULT_OUTBOX_FRAMES) -> None:
        self.id = uuid4().hex[:12]
        self.label = label or self.id
        self.subscriptions: set[str] = set()
        # One extra slot so the end-of-stream marker always fits.
        self.outbox: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue(maxsize=max(1, max_pending) + 1)
        self.max_pending = max(1, max_pending)
        self.closed = False

    def wants(self, session_id: str) -> bool:
        return WILDCARD in self.subscriptions or session_id in self.subscriptions

    def deliver(self, message: ServerMessage) -> bool:
        """Enqueue a frame. False when closed or when ``max_pending`` frames are already waiting."""
        if self.closed or self.outbox.qsize() >= self.max_pending:
            return False
        self.outbox.put_nowait(message.to_wire())
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.subscriptions.clear()
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self.outbox.put_nowait(None)

    def drain(self) -> list[dict[str, Any]]:
        """Pop every pending frame without waiting."""
        frames: list[dict[str, Any]] = []
        while True:
            try:
                frame = self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                return frames
            if frame is not None:
                frames.append(frame)


class SubscriptionBroker:
    def __init__(self, outbox_frames: int = DEFAULT_OUTBOX_FRAMES) -> None:
        self._subscribers: dict[str, Subscriber] = {}
        self._directory: Optional[SessionDirectory] = None
        self.outbox_frames = outbox_frames

    def bind(self, directory: SessionDirectory) -> None:
        self._directory = directory

    @property
    def directory(self) -> SessionDirectory:
        if self._directory is None:
            raise RuntimeError("subscription broker is not bound to a session registry")
        return self._directory

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribers(self) -> list[Subscriber]:
        return list(self._subscribers.values())

    def connect(self, label: str = "") -> Subscriber:
        subscriber = Subscriber(label, max_pending=self.outbox_frames)
        self._subscribers[subscriber.id] = subscriber
        logger.info("stream_client_connected client=%s clients=%s", subscriber.label, len(self._subscribers))
        self.send_sessions(subscriber)
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        subscriber.close()
        if self._subscribers.pop(subscriber.id, None) is not None:
            logger.info(
                "stream_client_disconnected client=%s clients=%s",
                subscriber.label,
                len(self._subscribers),
            )

    def _send(self, subscriber: Subscriber, message: ServerMessage) -> bool:
        if subscriber.deliver(message):
            return True
        if not subscriber.closed:
            logger.warning(
                "stream_client_overflow client=%s pending=%s",
                subscriber.label,
                subscriber.outbox.qsize(),
            )
            self.disconnect(subscriber)
        return False

    def send_sessions(self, subscriber: Subscriber) -> None:
        infos = [session.info() for session in self.directory.sessions()]
        self._send(subscriber, ServerMessage(type="sessions", sessions=infos))

    def send_error(self, subscriber: Subscriber, message: str) -> None:
        self._send(subscriber, ServerMessage(type="error", data=message))

    def subscribe(self, subscriber: Subscriber, session_id: str) -> None:
        session = self.directory.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        subscriber.subscriptions.add(session_id)
        logger.info("stream_subscribed client=%s session_id=%s", subscriber.label, session_id)
        self._send(subscriber, ServerMessage(type="subscribed", session_id=session.id, session_name=session.name))
        self._replay(subscriber, session)

    def subscribe_all(self, subscriber: Subscriber) -> None:
        subscriber.subscriptions.add(WILDCARD)
        logger.info("stream_subscribed client=%s session_id=%s", subscriber.label, WILDCARD)
        self._send(subscriber, ServerMessage(type="subscribed", session_id=WILDCARD, data="Subscribed to all sessions"))
        for session in self.directory.sessions():
            self._replay(subscriber, session)

    def unsubscribe(self, subscriber: Subscriber, session_id: str) -> None:
        subscriber.subscriptions.discard(session_id)
        logger.info("stream_unsubscribed client=%s session_id=%s", subscriber.label, session_id)
        self._send(subscriber, ServerMessage(type="unsubscribed", session_id=session_id))

    def _replay(self, subscriber: Subscriber, session: SessionView) -> None:
        backlog = session.backlog()
        if not backlog:
            return
        self._send(
            subscriber,
            ServerMessage(
                type="output",
                session_id=session.id,
                session_name=session.name,
                data=backlog,
                backlog=True,
            ),
        )

    def broadcast_output(self, session_id: str, session_name: str, data: str) -> int:
        """Deliver to subscribers of ``session_id`` or the wildcard. Returns the fan-out count."""
        message = ServerMessage(type="output", session_id=session_id, session_name=session_name, data=data)
        delivered = 0
        for subscriber in self.subscribers():
            if subscriber.wants(session_id) and self._send(subscriber, message):
                delivered += 1
        return delivered

    def broadcast_all(self, message: ServerMessage) -> int:
        """Lifecycle events go to every connection regardless of subscriptions."""
        return sum(1 for subscriber in self.subscribers() if self._send(subscriber, message))

    def purge(self, session_id: str) -> None:
        for subscriber in self.subscribers():
            subscriber.subscriptions.discard(session_id)

    def handle_message(self, subscriber: Subscriber, raw: str | bytes | dict[str, Any]) -> None:
        """Parse one client frame and apply it. Errors go back to this subscriber only."""
        try:
            payload = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            message = CLIENT_MESSAGE_ADAPTER.validate_python(payload)
        except (ValueError, ValidationError) as exc:
            error = ProtocolError(f"Invalid message format: {_describe(exc)}")
            logger.info("stream_protocol_error client=%s error=%s", subscriber.label, error.message)
            self.send_error(subscriber, error.message)
            return

        try:
            if isinstance(message, ListRequest):
                self.send_sessions(subscriber)
            elif isinstance(message, SubscribeRequest):
                self.subscribe(subscriber, message.session_id)
            elif isinstance(message, SubscribeAllRequest):
                self.subscribe_all(subscriber)
            elif isinstance(message, UnsubscribeRequest):
                self.unsubscribe(subscriber, message.session_id)
            else:
                raise ProtocolError(f"Unknown message type: {type(message).__name__}")
        except RelayError as exc:
            self.send_error(subscriber, exc.message)


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        loc = ".".join(str(part) for part in first.get("loc", ()))
        msg = first.get("msg", str(exc))
        return f"{loc}: {msg}" if loc else msg
    return str(exc)
