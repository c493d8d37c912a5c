"""Owner of the stream registry and subscription table for one app instance."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import AsyncIterable, Optional

from devrelay.services.session_source import (
    SessionClosed,
    SessionEvent,
    SessionEventPump,
    SessionOpened,
    SessionOutput,
    apply_event,
    session_id_for,
)
from devrelay.services.stream_registry import StreamRegistry, StreamSession
from devrelay.services.subscription_broker import DEFAULT_OUTBOX_FRAMES, SubscriptionBroker

logger = logging.getLogger(__name__)


class StreamHub:
    def __init__(self, capacity: int = 100, outbox_frames: int = DEFAULT_OUTBOX_FRAMES) -> None:
        self.broker = SubscriptionBroker(outbox_frames=outbox_frames)
        self.registry = StreamRegistry(self.broker, capacity=capacity)
        self._counter = itertools.count()
        self._pumps: list[asyncio.Task[int]] = []

    def apply(self, event: SessionEvent) -> bool:
        return apply_event(self.registry, event)

    def open_session(self, name: str, session_id: Optional[str] = None) -> StreamSession:
        sid = (session_id or "").strip() or session_id_for(name, next(self._counter))
        self.apply(SessionOpened(session_id=sid, name=name))
        session = self.registry.get(sid)
        if session is None:
            raise RuntimeError(f"session {sid} was not registered")
        return session

    def write(self, session_id: str, data: str) -> bool:
        return self.apply(SessionOutput(session_id=session_id, data=data))

    def close_session(self, session_id: str) -> bool:
        return self.apply(SessionClosed(session_id=session_id))

    def attach_source(self, source: AsyncIterable[SessionEvent]) -> asyncio.Task[int]:
        """Run a Session Source in the background until it ends or the hub shuts down."""
        pump = SessionEventPump(self.registry)
        task = asyncio.create_task(pump.run(source), name="devrelay-session-source")
        self._pumps.append(task)
        task.add_done_callback(self._pump_finished)
        return task

    def _pump_finished(self, task: asyncio.Task[int]) -> None:
        if task in self._pumps:
            self._pumps.remove(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("session_source_failed error=%s", error, exc_info=error)

    def status(self) -> dict[str, int]:
        return {"sessions": len(self.registry), "clients": len(self.broker)}

    async def shutdown(self) -> None:
        pumps, self._pumps = self._pumps, []
        for task in pumps:
            task.cancel()
        # Failures are logged by _pump_finished.
        await asyncio.gather(*pumps, return_exceptions=True)
        for subscriber in self.broker.subscribers():
            self.broker.disconnect(subscriber)
        logger.info("stream_hub_shutdown pumps=%s", len(pumps))
