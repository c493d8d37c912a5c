"""Task lifecycle: pending|queued -> processing -> completed|failed."""

from __future__ import annotations

from devrelay.models.task import TaskStatus

_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.QUEUED: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})
WAITING_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.QUEUED})


class IllegalTransition(ValueError):
    def __init__(self, current: TaskStatus, target: TaskStatus) -> None:
        super().__init__(f"illegal task transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_targets(status: TaskStatus) -> frozenset[TaskStatus]:
    return _TRANSITIONS[status]


def transition(current: TaskStatus, target: TaskStatus) -> TaskStatus:
    """Return ``target`` when the move is legal, else raise IllegalTransition."""
    if target not in allowed_targets(current):
        raise IllegalTransition(current, target)
    return target
