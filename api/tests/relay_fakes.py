"""Fake action executors and polling helpers shared by the relay tests."""

from __future__ import annotations

import asyncio
from typing import Callable

from devrelay.models.task import ExecutionResult, TaskCreate


class GatedExecutor:
    """Every call blocks until ``release()``; records concurrency so tests can assert serialization."""

    def __init__(self, *, success: bool = True) -> None:
        self.success = success
        self.requests: list[TaskCreate] = []
        self.active = 0
        self.max_active = 0
        self._gate = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def execute(self, request: TaskCreate) -> ExecutionResult:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self._gate.wait()
        finally:
            self.active -= 1
        return ExecutionResult(
            success=self.success,
            message="done" if self.success else "rejected",
            output={"prompt": request.prompt},
            error=None if self.success else "executor rejected the task",
        )


class SteppedExecutor:
    """Each call waits on its own gate; ``release_next()`` opens them one at a time in call order."""

    def __init__(self) -> None:
        self.requests: list[TaskCreate] = []
        self._gates: list[asyncio.Event] = []
        self._released = 0

    def _gate(self, index: int) -> asyncio.Event:
        while len(self._gates) <= index:
            self._gates.append(asyncio.Event())
        return self._gates[index]

    def release_next(self) -> None:
        self._gate(self._released).set()
        self._released += 1

    async def execute(self, request: TaskCreate) -> ExecutionResult:
        index = len(self.requests)
        self.requests.append(request)
        await self._gate(index).wait()
        return ExecutionResult(success=True, message=f"step {index}", output={"step": index})


class InstantExecutor:
    def __init__(self, label: str = "plain") -> None:
        self.label = label
        self.requests: list[TaskCreate] = []

    async def execute(self, request: TaskCreate) -> ExecutionResult:
        self.requests.append(request)
        return ExecutionResult(success=True, message=f"handled by {self.label}", output={"executor": self.label})


class RaisingExecutor:
    async def execute(self, request: TaskCreate) -> ExecutionResult:
        raise RuntimeError("executor crashed")


class HangingExecutor:
    def __init__(self) -> None:
        self.cancelled = False

    async def execute(self, request: TaskCreate) -> ExecutionResult:
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ExecutionResult(success=True, message="unreachable")


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
