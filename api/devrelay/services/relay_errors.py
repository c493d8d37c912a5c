"""Error taxonomy shared by the task queue and the session stream."""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base error rendered as ``{success: false, error, message, ...extra}``."""

    code = "RELAY_ERROR"
    status_code = 500

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.code, "message": self.message}
        payload.update(self.extra)
        return payload


class InvalidRequest(RelayError):
    code = "INVALID_REQUEST"
    status_code = 400


class NotReady(RelayError):
    code = "NOT_READY"
    status_code = 503

    def __init__(self, message: str, *, reason: str = "NOT_READY", **extra: Any) -> None:
        super().__init__(message, **extra)
        # Readiness gates report their own machine-readable reason (NO_WORKSPACE, ...).
        self.code = reason


class NotFound(RelayError):
    code = "NOT_FOUND"
    status_code = 404


class TaskNotFound(NotFound):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"No task found with id: {task_id}", stop_polling=True)
        self.task_id = task_id


class QueueFull(RelayError):
    code = "QUEUE_FULL"
    status_code = 429


class UnknownSession(NotFound):
    code = "UNKNOWN_SESSION"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ProtocolError(RelayError):
    code = "PROTOCOL_ERROR"
    status_code = 400


class ExecutorFailure(RelayError):
    """Executor raised or timed out. Recorded on the task, never returned to a caller."""

    code = "EXECUTOR_FAILURE"
