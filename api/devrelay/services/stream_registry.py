"""Live output sessions, each with a bounded buffer of recent lines."""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from typing import Optional

from devrelay.models.stream import ServerMessage, SessionInfo
from devrelay.services.subscription_broker import SubscriptionBroker

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"\r?\n")


class StreamSession:
    def __init__(self, session_id: str, name: str, capacity: int) -> None:
        self.id = session_id
        self.name = name
        self.created_at = int(time.time() * 1000)
        # deque(maxlen) evicts the oldest line on append.
        self.buffer: deque[str] = deque(maxlen=capacity)

    def append_lines(self, chunk: str) -> int:
        added = 0
        for line in _LINE_SPLIT.split(chunk):
            if line:
                self.buffer.append(line)
                added += 1
        return added

    def backlog(self) -> str:
        return "\n".join(self.buffer)

    def info(self) -> SessionInfo:
        return SessionInfo(id=self.id, name=self.name, created_at=self.created_at)


class StreamRegistry:
    def __init__(self, broker: SubscriptionBroker, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("buffer capacity must be at least 1")
        self.capacity = capacity
        self.broker = broker
        self._sessions: dict[str, StreamSession] = {}
        broker.bind(self)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Optional[StreamSession]:
        return self._sessions.get(session_id)

    def sessions(self) -> list[StreamSession]:
        return list(self._sessions.values())

    def track_session(self, session_id: str, name: str) -> StreamSession:
        """Idempotent. A new session is announced to every connected client."""
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing
        session = StreamSession(session_id, name or session_id, self.capacity)
        self._sessions[session_id] = session
        logger.info("stream_session_tracked session_id=%s name=%s", session_id, session.name)
        self.broker.broadcast_all(
            ServerMessage(type="session_opened", session_id=session.id, session_name=session.name)
        )
        return session

    def append_output(self, session_id: str, chunk: str) -> bool:
        """Buffer the chunk's lines and fan the raw chunk out. False for untracked sessions."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("stream_output_dropped session_id=%s reason=untracked", session_id)
            return False
        session.append_lines(chunk)
        self.broker.broadcast_output(session.id, session.name, chunk)
        return True

    def untrack_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self.broker.purge(session_id)
        name = session.name if session is not None else session_id
        self.broker.broadcast_all(ServerMessage(type="session_closed", session_id=session_id, session_name=name))
        if session is not None:
            logger.info("stream_session_untracked session_id=%s", session_id)
        return session is not None
