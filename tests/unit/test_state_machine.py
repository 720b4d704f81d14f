"""Unit tests for the run status state machine.

Illegal transitions must fail loudly; terminal states accept nothing.
"""

from __future__ import annotations

import pytest

from flowpilot.automation.workflow.models import RunStatus
from flowpilot.automation.workflow.state_machine import (
    IllegalTransitionError,
    is_terminal,
    transition,
)


@pytest.mark.parametrize(
    ("current", "to"),
    [
        (RunStatus.PENDING, RunStatus.RUNNING),
        (RunStatus.PENDING, RunStatus.FAILED),
        (RunStatus.RUNNING, RunStatus.COMPLETED),
        (RunStatus.RUNNING, RunStatus.FAILED),
    ],
)
def test_allowed_transitions(current: RunStatus, to: RunStatus) -> None:
    assert transition(current=current, to=to) is to


@pytest.mark.parametrize(
    ("current", "to"),
    [
        (RunStatus.PENDING, RunStatus.COMPLETED),
        (RunStatus.RUNNING, RunStatus.PENDING),
        (RunStatus.COMPLETED, RunStatus.FAILED),
        (RunStatus.FAILED, RunStatus.RUNNING),
        (RunStatus.COMPLETED, RunStatus.COMPLETED),
    ],
)
def test_transition_rejects_illegal_transitions(current: RunStatus, to: RunStatus) -> None:
    with pytest.raises(IllegalTransitionError):
        transition(current=current, to=to)


def test_terminal_states() -> None:
    assert is_terminal(RunStatus.COMPLETED)
    assert is_terminal(RunStatus.FAILED)
    assert not is_terminal(RunStatus.PENDING)
    assert not is_terminal(RunStatus.RUNNING)
