from __future__ import annotations

from .models import RunStatus

ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED},
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def is_terminal(status: RunStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def transition(*, current: RunStatus, to: RunStatus) -> RunStatus:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to
