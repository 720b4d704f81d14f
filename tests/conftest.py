"""Test configuration and fixtures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from flowpilot.automation.storage import RunStore
from flowpilot.automation.workflow.actions import MessageRequest, MessageSendError, SendResult
from flowpilot.automation.workflow.engine import ExecutionEngine
from flowpilot.automation.workflow.models import Edge, Flow, Node, NodeType
from flowpilot.automation.workflow.scheduler import Continuation


@dataclass
class _Timer:
    due_ms: int
    seq: int
    run_id: str
    node_id: str
    callback: Continuation


class VirtualClockScheduler:
    """Scheduler driven by `advance()` instead of wall-clock time."""

    def __init__(self) -> None:
        self.now_ms = 0
        self._seq = 0
        self._timers: list[_Timer] = []
        self.scheduled: list[tuple[str, str, int]] = []

    def schedule(self, run_id: str, node_id: str, delay_ms: int, callback: Continuation) -> None:
        self._seq += 1
        self._timers.append(_Timer(self.now_ms + delay_ms, self._seq, run_id, node_id, callback))
        self.scheduled.append((run_id, node_id, delay_ms))

    def cancel(self, run_id: str, node_id: str) -> int:
        keep = [t for t in self._timers if (t.run_id, t.node_id) != (run_id, node_id)]
        cancelled = len(self._timers) - len(keep)
        self._timers = keep
        return cancelled

    def cancel_all(self, run_id: str) -> int:
        keep = [t for t in self._timers if t.run_id != run_id]
        cancelled = len(self._timers) - len(keep)
        self._timers = keep
        return cancelled

    def pending(self, run_id: str) -> int:
        return sum(1 for t in self._timers if t.run_id == run_id)

    async def advance(self, ms: int) -> None:
        """Move the clock forward, firing due continuations in due order."""

        self.now_ms += ms
        while True:
            due = [t for t in self._timers if t.due_ms <= self.now_ms]
            if not due:
                return
            timer = min(due, key=lambda t: (t.due_ms, t.seq))
            self._timers.remove(timer)
            await timer.callback()


class RecordingSender:
    """Message sender that records requests and can be told to fail."""

    def __init__(self, *, channel: str = "test", fail_with: str | None = None) -> None:
        self.channel = channel
        self.fail_with = fail_with
        self.sent: list[MessageRequest] = []
        self.on_send: Any = None

    async def send_message(self, request: MessageRequest) -> SendResult:
        if self.on_send is not None:
            self.on_send(request)
        if self.fail_with is not None:
            raise MessageSendError(self.fail_with)
        self.sent.append(request)
        return SendResult(ok=True, id=f"msg_{len(self.sent)}")


@pytest.fixture
def scheduler() -> VirtualClockScheduler:
    return VirtualClockScheduler()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def run_store() -> RunStore:
    return RunStore()


@pytest.fixture
def engine(
    run_store: RunStore, scheduler: VirtualClockScheduler, sender: RecordingSender
) -> ExecutionEngine:
    return ExecutionEngine(run_store=run_store, scheduler=scheduler, sender=sender)


@pytest.fixture
def welcome_flow() -> Flow:
    """TRIGGER -> ACTION -> END, valid and active."""
    return Flow(
        id="flow_welcome",
        name="Welcome",
        active=True,
        nodes=[
            Node(id="t", label="New order", type=NodeType.TRIGGER),
            Node(
                id="a",
                label="Send",
                type=NodeType.ACTION,
                config={"toField": "customer.phone", "body": "Hi {{customer.name}}"},
            ),
            Node(id="e", label="Done", type=NodeType.END),
        ],
        edges=[
            Edge(id="e1", source="t", target="a"),
            Edge(id="e2", source="a", target="e"),
        ],
    )


@pytest.fixture
def branching_flow() -> Flow:
    """TRIGGER -> CONDITION(order.total > 100) -> ACTION A (true) / ACTION B (false)."""
    return Flow(
        id="flow_branch",
        name="Big spenders",
        active=True,
        nodes=[
            Node(id="t", label="New order", type=NodeType.TRIGGER),
            Node(
                id="c",
                label="Big order?",
                type=NodeType.CONDITION,
                config={
                    "logic": {
                        "type": "AND",
                        "clauses": [{"left": "order.total", "op": "greater_than", "right": 100}],
                    }
                },
            ),
            Node(id="a", label="VIP", type=NodeType.ACTION, config={"toField": "+1", "body": "vip"}),
            Node(id="b", label="Regular", type=NodeType.ACTION, config={"toField": "+2", "body": "hi"}),
        ],
        edges=[
            Edge(id="e1", source="t", target="c"),
            Edge(id="e2", source="c", target="a", condition_path="true"),
            Edge(id="e3", source="c", target="b", condition_path="false"),
        ],
    )


@pytest.fixture
def delayed_flow() -> Flow:
    """TRIGGER -> DELAY(2 minutes) -> ACTION -> END."""
    return Flow(
        id="flow_delay",
        name="Follow up",
        active=True,
        nodes=[
            Node(id="t", label="Checkout abandoned", type=NodeType.TRIGGER),
            Node(
                id="d",
                label="Wait",
                type=NodeType.DELAY,
                config={"delay": {"amount": 2, "unit": "minutes"}},
            ),
            Node(id="a", label="Remind", type=NodeType.ACTION, config={"toField": "+1", "body": "b"}),
            Node(id="e", label="Done", type=NodeType.END),
        ],
        edges=[
            Edge(id="e1", source="t", target="d"),
            Edge(id="e2", source="d", target="a"),
            Edge(id="e3", source="a", target="e"),
        ],
    )
