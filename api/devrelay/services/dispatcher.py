"""Single cooperative worker that runs queued tasks one at a time.

At most one executor call is in flight. The executor drives a stateful
external resource that cannot service concurrent requests, so tasks are
serialized here and separated by a cooldown when more work is waiting.

``notify()`` claims the head of the queue synchronously when the dispatcher is
idle; the scheduler loop then performs the executor call, records the result
and, after the cooldown, claims the next task.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from devrelay.models.task import ExecutionResult, TaskCreate
from devrelay.services.executors import ActionExecutor
from devrelay.services.relay_errors import ExecutorFailure, NotFound
from devrelay.services.task_registry import TaskQueue, TaskRegistry
from devrelay.services.task_state import IllegalTransition

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _failure(message: str, error: ExecutorFailure) -> ExecutionResult:
    return ExecutionResult(
        success=False,
        message=message,
        error=error.message,
        output={"errorCode": error.code, **error.extra},
    )


class Dispatcher:
    def __init__(
        self,
        registry: TaskRegistry,
        queue: TaskQueue,
        plain_executor: ActionExecutor,
        multimodal_executor: Optional[ActionExecutor] = None,
        *,
        cooldown_seconds: float = 2.0,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._queue = queue
        self.plain_executor = plain_executor
        self.multimodal_executor = multimodal_executor
        self.cooldown_seconds = max(0.0, float(cooldown_seconds))
        self.timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
        self._current_id: Optional[str] = None
        self._cooling = False
        self._wake: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task[None]] = None
        self.last_activity: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_processing(self) -> bool:
        return self._current_id is not None

    @property
    def is_idle(self) -> bool:
        return self._current_id is None and not self._cooling

    @property
    def current_task_id(self) -> Optional[str]:
        return self._current_id

    def state(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "isProcessing": self.is_processing,
            "currentTaskId": self._current_id,
            "coolingDown": self._cooling,
            "cooldownSeconds": self.cooldown_seconds,
            "timeoutSeconds": self.timeout_seconds,
            "lastActivity": self.last_activity.isoformat() if self.last_activity else None,
        }

    async def start(self) -> None:
        if self.is_running:
            return
        self._wake = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run(), name="devrelay-dispatcher")
        logger.info(
            "dispatcher_started cooldown_s=%s timeout_s=%s queued=%s",
            self.cooldown_seconds,
            self.timeout_seconds,
            len(self._queue),
        )
        self.notify()

    async def stop(self) -> None:
        loop_task = self._loop_task
        if loop_task is None:
            return
        self._loop_task = None
        loop_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await loop_task
        self._cooling = False
        if self._current_id is not None:
            task_id = self._current_id
            self._finish(
                task_id,
                _failure("Dispatcher stopped", ExecutorFailure("dispatcher stopped before the task finished")),
            )
        logger.info("dispatcher_stopped queued=%s", len(self._queue))

    def notify(self) -> bool:
        """Claim the next task if the dispatcher is idle. Returns True when one was claimed."""
        if not self.is_running or not self.is_idle:
            return False
        if self._wake is None:
            raise RuntimeError("dispatcher is not started")
        if self._claim_next() is None:
            return False
        self._wake.set()
        return True

    def _claim_next(self) -> Optional[str]:
        if self._current_id is not None:
            return None
        while True:
            task_id = self._queue.popleft()
            if task_id is None:
                return None
            try:
                self._registry.mark_processing(task_id)
            except (NotFound, IllegalTransition):
                logger.warning("dispatcher_skip_unrunnable task_id=%s", task_id, exc_info=True)
                continue
            break
        self._current_id = task_id
        for position, queued_id in enumerate(self._queue, start=1):
            self._registry.set_queue_position(queued_id, position)
        self.last_activity = _now()
        logger.info("task_dispatch_started task_id=%s remaining=%s", task_id, len(self._queue))
        return task_id

    async def _run(self) -> None:
        if self._wake is None:
            raise RuntimeError("dispatcher is not started")
        while True:
            await self._wake.wait()
            self._wake.clear()
            while self._current_id is not None:
                await self._execute(self._current_id)
                if not len(self._queue):
                    break
                logger.info(
                    "dispatcher_cooldown remaining=%s seconds=%s",
                    len(self._queue),
                    self.cooldown_seconds,
                )
                self._cooling = True
                try:
                    await asyncio.sleep(self.cooldown_seconds)
                finally:
                    self._cooling = False
                self._claim_next()

    def _select_executor(self, request: TaskCreate) -> tuple[ActionExecutor, str]:
        if request.has_attachments and self.multimodal_executor is not None:
            return self.multimodal_executor, "multimodal"
        return self.plain_executor, "plain"

    async def _execute(self, task_id: str) -> None:
        request: TaskCreate = self._registry.require(task_id)["request"]
        executor, path = self._select_executor(request)
        logger.info(
            "task_execute task_id=%s path=%s attachments=%s",
            task_id,
            path,
            len(request.attachments),
        )
        try:
            call = executor.execute(request)
            if self.timeout_seconds is not None:
                result = await asyncio.wait_for(call, timeout=self.timeout_seconds)
            else:
                result = await call
            if not isinstance(result, ExecutionResult):
                result = ExecutionResult.model_validate(result)
        except asyncio.TimeoutError:
            logger.warning("task_execute_timeout task_id=%s timeout_s=%s", task_id, self.timeout_seconds)
            result = _failure(
                "Processing timed out",
                ExecutorFailure(f"executor did not finish within {self.timeout_seconds:g}s"),
            )
        except Exception as exc:
            logger.warning("task_execute_error task_id=%s error=%s", task_id, exc, exc_info=True)
            result = _failure(
                "Processing failed",
                ExecutorFailure(str(exc) or exc.__class__.__name__, exception=exc.__class__.__name__),
            )
        self._finish(task_id, result)

    def _finish(self, task_id: str, result: ExecutionResult) -> None:
        try:
            task = self._registry.mark_finished(task_id, result)
        finally:
            self._current_id = None
            self.last_activity = _now()
        logger.info(
            "task_dispatch_finished task_id=%s status=%s message=%s error=%s",
            task_id,
            task["status"].value,
            result.message,
            result.error or "none",
        )
