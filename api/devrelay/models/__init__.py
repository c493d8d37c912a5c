"""Pydantic models."""

from devrelay.models.error import RelayErrorBody
from devrelay.models.stream import ClientMessage, ServerMessage, SessionInfo
from devrelay.models.task import (
    Attachment,
    ExecutionResult,
    QueueStatus,
    TaskAccepted,
    TaskCreate,
    TaskSnapshot,
    TaskStatus,
)

__all__ = [
    "Attachment",
    "ClientMessage",
    "ExecutionResult",
    "QueueStatus",
    "RelayErrorBody",
    "ServerMessage",
    "SessionInfo",
    "TaskAccepted",
    "TaskCreate",
    "TaskSnapshot",
    "TaskStatus",
]
