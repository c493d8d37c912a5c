"""Session Source binding: open/close/output events applied to the stream registry.

A source is any async iterable of session events. The HTTP ingestion routes
build the same events, so both paths share ``apply_event``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import AsyncIterable, Union

from devrelay.services.stream_registry import StreamRegistry

logger = logging.getLogger(__name__)

_SLUG = re.compile(r"\s+")


@dataclass(frozen=True)
class SessionOpened:
    session_id: str
    name: str


@dataclass(frozen=True)
class SessionClosed:
    session_id: str


@dataclass(frozen=True)
class SessionOutput:
    session_id: str
    data: str


SessionEvent = Union[SessionOpened, SessionClosed, SessionOutput]


def session_id_for(name: str, index: int) -> str:
    """Stable id for a producer that does not name its sessions: ``session-<n>-<slug>``."""
    slug = _SLUG.sub("-", (name or "").strip()).lower() or "session"
    return f"session-{index}-{slug}"


def apply_event(registry: StreamRegistry, event: SessionEvent) -> bool:
    if isinstance(event, SessionOpened):
        registry.track_session(event.session_id, event.name)
        return True
    if isinstance(event, SessionOutput):
        return registry.append_output(event.session_id, event.data)
    if isinstance(event, SessionClosed):
        return registry.untrack_session(event.session_id)
    raise TypeError(f"unsupported session event: {type(event).__name__}")


class SessionEventPump:
    """Consume a Session Source until it is exhausted or the pump is cancelled."""

    def __init__(self, registry: StreamRegistry) -> None:
        self.registry = registry
        self.applied = 0

    async def run(self, source: AsyncIterable[SessionEvent]) -> int:
        async for event in source:
            try:
                apply_event(self.registry, event)
            except TypeError:
                logger.warning("session_event_ignored event=%r", event)
                continue
            self.applied += 1
        return self.applied
