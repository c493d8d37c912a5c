"""Task lifecycle transitions."""

import pytest

from devrelay.models.task import TaskStatus
from devrelay.services import task_state
from devrelay.services.task_state import IllegalTransition


@pytest.mark.parametrize("start", [TaskStatus.PENDING, TaskStatus.QUEUED])
def test_waiting_tasks_can_only_start_processing(start: TaskStatus):
    assert task_state.transition(start, TaskStatus.PROCESSING) == TaskStatus.PROCESSING
    for target in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.QUEUED):
        with pytest.raises(IllegalTransition):
            task_state.transition(start, target)


def test_processing_ends_completed_or_failed():
    assert task_state.allowed_targets(TaskStatus.PROCESSING) == {TaskStatus.COMPLETED, TaskStatus.FAILED}
    with pytest.raises(IllegalTransition):
        task_state.transition(TaskStatus.PROCESSING, TaskStatus.PENDING)


@pytest.mark.parametrize("terminal", [TaskStatus.COMPLETED, TaskStatus.FAILED])
def test_terminal_states_are_final(terminal: TaskStatus):
    assert task_state.is_terminal(terminal)
    assert task_state.allowed_targets(terminal) == frozenset()
    for target in TaskStatus:
        with pytest.raises(IllegalTransition):
            task_state.transition(terminal, target)


def test_illegal_transition_message_names_both_states():
    with pytest.raises(IllegalTransition) as excinfo:
        task_state.transition(TaskStatus.COMPLETED, TaskStatus.PROCESSING)
    assert "completed -> processing" in str(excinfo.value)
    assert isinstance(excinfo.value, ValueError)
