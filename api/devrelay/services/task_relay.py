"""Task ingress: submission, status polling and queue inspection.

``TaskRelay`` owns the registry/queue pair together with the dispatcher. The
registry is mutated by the dispatcher only; this class creates tasks and
reads state.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from devrelay.models.task import TaskCreate, TaskStatus
from devrelay.services.dispatcher import Dispatcher
from devrelay.services.executors import ActionExecutor
from devrelay.services.readiness import ReadinessGate, ReadinessReport
from devrelay.services.relay_errors import InvalidRequest, QueueFull
from devrelay.services.task_registry import TaskQueue, TaskRegistry

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 100


class TaskRelay:
    def __init__(
        self,
        readiness: ReadinessGate,
        plain_executor: ActionExecutor,
        multimodal_executor: Optional[ActionExecutor] = None,
        *,
        cooldown_seconds: float = 2.0,
        timeout_seconds: Optional[float] = None,
        max_queue_length: int = 0,
        task_retention: int = 0,
    ) -> None:
        self.readiness = readiness
        self.registry = TaskRegistry(retention=task_retention)
        self.queue = TaskQueue()
        self.max_queue_length = max(0, int(max_queue_length))
        self.dispatcher = Dispatcher(
            self.registry,
            self.queue,
            plain_executor,
            multimodal_executor,
            cooldown_seconds=cooldown_seconds,
            timeout_seconds=timeout_seconds,
        )

    async def start(self) -> None:
        await self.dispatcher.start()

    async def stop(self) -> None:
        await self.dispatcher.stop()

    def check_readiness(self) -> ReadinessReport:
        return self.readiness.check()

    def submit(self, request: TaskCreate) -> dict[str, Any]:
        """Accept a task and return ``{id, status, queue_position, ...}`` immediately.

        Raises NotReady, InvalidRequest or QueueFull; in those cases nothing is enqueued.
        """
        report = self.readiness.check()
        if not report.ready:
            logger.warning("task_rejected reason=%s", report.reason)
            raise report.as_error()
        prompt = (request.prompt or "").strip()
        if not prompt:
            raise InvalidRequest("Missing required field: prompt", field="prompt")
        if self.max_queue_length and len(self.queue) >= self.max_queue_length:
            logger.warning("task_rejected reason=QUEUE_FULL queue_length=%s", len(self.queue))
            raise QueueFull(
                f"Task queue is full ({self.max_queue_length} waiting). Retry after queued work drains.",
                queue_length=len(self.queue),
            )

        runnable_now = len(self.queue) == 0 and self.dispatcher.is_idle
        if runnable_now:
            task = self.registry.create(request, status=TaskStatus.PENDING, queue_position=0)
        else:
            task = self.registry.create(request, status=TaskStatus.QUEUED, queue_position=len(self.queue) + 1)
        self.queue.append(task["id"])

        accepted = {
            "id": task["id"],
            "status": task["status"],
            "queue_position": task["queue_position"],
            "message": (
                "Task received and processing"
                if runnable_now
                else f"Task queued at position {task['queue_position']}. Another task is currently processing."
            ),
            "queue": {
                "position": task["queue_position"],
                "total": len(self.queue),
                "current_task": self.dispatcher.current_task_id,
                "is_processing": self.dispatcher.is_processing,
            },
        }
        logger.info(
            "task_submitted task_id=%s status=%s position=%s attachments=%s preview=%r",
            task["id"],
            task["status"].value,
            task["queue_position"],
            len(request.attachments),
            prompt[:_PREVIEW_CHARS],
        )
        self.dispatcher.notify()
        return accepted

    def get_status(self, task_id: str) -> dict[str, Any]:
        snapshot = self.registry.snapshot(task_id)
        snapshot["queue"] = self.get_queue_status()
        return snapshot

    def get_queue_status(self) -> dict[str, Any]:
        queued: list[dict[str, Any]] = []
        for position, task_id in enumerate(self.queue, start=1):
            task = self.registry.get(task_id)
            prompt = task["request"].prompt if task else ""
            queued.append({"id": task_id, "position": position, "task": (prompt or "")[:_PREVIEW_CHARS]})
        return {
            "is_processing": self.dispatcher.is_processing,
            "current_task_id": self.dispatcher.current_task_id,
            "queue_length": len(self.queue),
            "queued_tasks": queued,
        }
