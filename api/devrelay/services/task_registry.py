"""In-memory task registry and FIFO task queue.

Tasks are plain dicts, keyed by id, in insertion order. Status changes go
through ``task_state.transition`` so the lifecycle cannot be bypassed.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from devrelay.models.task import ExecutionResult, TaskCreate, TaskStatus
from devrelay.services import task_state
from devrelay.services.relay_errors import TaskNotFound

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_PREVIEW_CHARS = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_task_id() -> str:
    """``<epoch-millis>-<9 base36 chars>``; collisions are not checked."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


def _duration_ms(task: dict[str, Any]) -> Optional[int]:
    completed_at = task.get("completed_at")
    if completed_at is None:
        return None
    return max(0, int((completed_at - task["created_at"]).total_seconds() * 1000))


class TaskQueue:
    """FIFO of task ids awaiting dispatch. Duplicate ids are rejected."""

    def __init__(self) -> None:
        self._ids: deque[str] = deque()
        self._members: set[str] = set()

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._members

    def append(self, task_id: str) -> int:
        """Append and return the 1-based position."""
        if task_id in self._members:
            raise ValueError(f"task {task_id} is already queued")
        self._ids.append(task_id)
        self._members.add(task_id)
        return len(self._ids)

    def popleft(self) -> Optional[str]:
        if not self._ids:
            return None
        task_id = self._ids.popleft()
        self._members.discard(task_id)
        return task_id


class TaskRegistry:
    """Map of task id -> task record, retained until restart (or the retention cap)."""

    def __init__(self, retention: int = 0) -> None:
        self._tasks: dict[str, dict[str, Any]] = {}
        self._processing_id: Optional[str] = None
        self.retention = max(0, int(retention))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    @property
    def processing_id(self) -> Optional[str]:
        return self._processing_id

    def create(self, request: TaskCreate, *, status: TaskStatus, queue_position: int) -> dict[str, Any]:
        if status not in task_state.WAITING_STATUSES:
            raise ValueError(f"new tasks start pending or queued, not {status.value}")
        task_id = generate_task_id()
        task = {
            "id": task_id,
            "status": status,
            "request": request,
            "created_at": _now(),
            "started_at": None,
            "completed_at": None,
            "queue_position": queue_position,
            "result": None,
        }
        self._tasks[task_id] = task
        return task

    def get(self, task_id: str) -> Optional[dict[str, Any]]:
        return self._tasks.get(task_id)

    def require(self, task_id: str) -> dict[str, Any]:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def set_queue_position(self, task_id: str, position: int) -> None:
        task = self.require(task_id)
        if task_state.is_terminal(task["status"]):
            return
        task["queue_position"] = max(0, position)

    def mark_processing(self, task_id: str) -> dict[str, Any]:
        task = self.require(task_id)
        if self._processing_id is not None and self._processing_id != task_id:
            raise RuntimeError(f"task {self._processing_id} is already processing")
        task["status"] = task_state.transition(task["status"], TaskStatus.PROCESSING)
        task["started_at"] = _now()
        task["queue_position"] = 0
        self._processing_id = task_id
        return task

    def mark_finished(self, task_id: str, result: ExecutionResult) -> dict[str, Any]:
        task = self.require(task_id)
        target = TaskStatus.COMPLETED if result.success else TaskStatus.FAILED
        task["status"] = task_state.transition(task["status"], target)
        task["completed_at"] = _now()
        task["result"] = result
        if self._processing_id == task_id:
            self._processing_id = None
        self._prune()
        return task

    def _prune(self) -> None:
        if not self.retention:
            return
        terminal = [task_id for task_id, task in self._tasks.items() if task_state.is_terminal(task["status"])]
        overflow = len(terminal) - self.retention
        for task_id in terminal[: max(0, overflow)]:
            del self._tasks[task_id]
        if overflow > 0:
            logger.info("task_registry_pruned removed=%s retention=%s", overflow, self.retention)

    def snapshot(self, task_id: str) -> dict[str, Any]:
        task = self.require(task_id)
        request: TaskCreate = task["request"]
        prompt = request.prompt or ""
        return {
            "id": task["id"],
            "status": task["status"],
            "task": prompt[:_PREVIEW_CHARS],
            "created_at": task["created_at"],
            "started_at": task["started_at"],
            "completed_at": task["completed_at"],
            "queue_position": task["queue_position"],
            "duration": _duration_ms(task),
            "attachments": len(request.attachments),
            "result": task["result"],
        }
