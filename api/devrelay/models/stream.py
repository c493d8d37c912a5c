"""WebSocket protocol messages for the session output stream."""

from __future__ import annotations

import time
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

WILDCARD = "*"


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class _Frame(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- client -> server ---


class ListRequest(_Frame):
    type: Literal["list"]


class SubscribeRequest(_Frame):
    type: Literal["subscribe"]
    session_id: str = Field(..., min_length=1)


class SubscribeAllRequest(_Frame):
    type: Literal["subscribe_all"]


class UnsubscribeRequest(_Frame):
    type: Literal["unsubscribe"]
    session_id: str = Field(..., min_length=1)


ClientMessage = Annotated[
    Union[ListRequest, SubscribeRequest, SubscribeAllRequest, UnsubscribeRequest],
    Field(discriminator="type"),
]

CLIENT_MESSAGE_ADAPTER: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


# --- server -> client ---


class SessionInfo(_Frame):
    id: str
    name: str
    created_at: int


class ServerMessage(_Frame):
    type: Literal[
        "sessions",
        "subscribed",
        "unsubscribed",
        "output",
        "session_opened",
        "session_closed",
        "error",
    ]
    session_id: Optional[str] = None
    session_name: Optional[str] = None
    data: Optional[str] = None
    backlog: Optional[bool] = None
    sessions: Optional[List[SessionInfo]] = None
    timestamp: int = Field(default_factory=_epoch_ms)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
