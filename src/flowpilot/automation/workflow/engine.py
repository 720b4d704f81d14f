"""Asynchronous flow interpreter.

A run walks the graph from its trigger's successors using an explicit work
stack, dispatching on node type. DELAY nodes hand the rest of their branch to
the scheduler. A run is COMPLETED once the initial walk has returned and no
delayed continuation is outstanding; any error in a node fails the whole run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, NamedTuple, cast

from flowpilot.automation.storage import RunStore, new_id

from .actions import (
    MessageRequest,
    MessageSender,
    MessageSendError,
    render_template,
    resolve_recipient,
)
from .conditions import evaluate_condition
from .events import TriggerPayload
from .models import (
    Edge,
    ExecutionHistory,
    Flow,
    LogEntry,
    LogLevel,
    Node,
    NodeType,
    RunStatus,
    utc_now,
)
from .node_config import (
    ActionConfig,
    ConditionConfig,
    DelayConfig,
    NodeConfigError,
    delay_to_milliseconds,
    parse_node_config,
)
from .scheduler import Scheduler
from .state_machine import is_terminal, transition

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_BODY = "Default message"
RUN_CANCELLED = "Run cancelled"

_BRANCH_ALIASES = {True: ("true", "yes"), False: ("false", "no")}


class _Step(NamedTuple):
    node_id: str
    path: tuple[str, ...]


@dataclass
class _ActiveRun:
    flow: Flow
    context: dict[str, Any]
    pending_delays: int = 0
    initial_walk_done: bool = False
    current: dict[str, int] = field(default_factory=dict)
    done: asyncio.Event = field(default_factory=asyncio.Event)


def edge_matches_branch(edge: Edge, result: bool) -> bool:
    return edge.condition_path in _BRANCH_ALIASES[result]


class ExecutionEngine:
    def __init__(
        self, *, run_store: RunStore, scheduler: Scheduler, sender: MessageSender
    ) -> None:
        self._runs = run_store
        self._scheduler = scheduler
        self._sender = sender
        self._active: dict[str, _ActiveRun] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    async def start_run(self, flow: Flow, payload: TriggerPayload) -> str:
        """Create the run and start walking it in the background.

        The caller is responsible for checking ``flow.active`` and the payload
        shape beforehand.
        """

        run_id = new_id("run")
        self._runs.create(ExecutionHistory(id=run_id, flow_id=flow.id, started_at=utc_now()))
        self._active[run_id] = _ActiveRun(flow=flow, context=dict(payload.context))
        self._log(run_id, LogLevel.INFO, f"Starting run for flow: {flow.name}")

        task = asyncio.get_running_loop().create_task(
            self._execute_flow(run_id, flow, payload), name=f"flow-run-{run_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Run started", extra={"run_id": run_id, "flow_id": flow.id})
        return run_id

    async def wait_for_run(self, run_id: str, timeout: float | None = None) -> ExecutionHistory:
        active = self._active.get(run_id)
        if active is not None:
            await asyncio.wait_for(active.done.wait(), timeout)
        run = self._runs.get(run_id)
        if run is None:
            raise KeyError(run_id)
        return run

    def cancel_run(self, run_id: str) -> bool:
        """Cancel pending delays and fail the run. False if it was not live."""

        cancelled = self._scheduler.cancel_all(run_id)
        active = self._active.get(run_id)
        if active is None:
            return False
        active.pending_delays -= cancelled
        self._fail(run_id, RUN_CANCELLED)
        return True

    def cancel_delay(self, run_id: str, node_id: str) -> int:
        """Drop the pending continuations of one DELAY node."""

        cancelled = self._scheduler.cancel(run_id, node_id)
        active = self._active.get(run_id)
        if active is None or not cancelled:
            return cancelled
        active.pending_delays -= cancelled
        for _ in range(cancelled):
            self._leave_node(run_id, active, node_id)
        self._log(run_id, LogLevel.WARN, f"Delay cancelled for node {node_id}")
        self._maybe_complete(run_id, active)
        return cancelled

    def cancel_flow_runs(self, flow_id: str) -> list[str]:
        run_ids = [rid for rid, active in self._active.items() if active.flow.id == flow_id]
        for run_id in run_ids:
            self.cancel_run(run_id)
        return run_ids

    def active_run_ids(self) -> list[str]:
        return list(self._active)

    async def _execute_flow(self, run_id: str, flow: Flow, payload: TriggerPayload) -> None:
        active = self._active.get(run_id)
        if active is None:
            # Cancelled before the walk started.
            return
        try:
            self._set_status(run_id, RunStatus.RUNNING)

            triggers = flow.trigger_nodes()
            if not triggers:
                self._fail(run_id, "No TRIGGER node found")
                return

            trigger = triggers[0]
            self._log(
                run_id,
                LogLevel.INFO,
                f"Triggered by: {trigger.label}",
                {"payload": payload.to_json()},
            )
            await self._walk(
                run_id, active, [_Step(t, (trigger.id,)) for t in flow.successors(trigger.id)]
            )
        except Exception as e:
            logger.exception("Run failed", extra={"run_id": run_id, "flow_id": flow.id})
            self._fail(run_id, str(e) or type(e).__name__)
            return

        active.initial_walk_done = True
        self._maybe_complete(run_id, active)

    async def _walk(self, run_id: str, active: _ActiveRun, steps: list[_Step]) -> None:
        stack = list(reversed(steps))
        while stack:
            if not self._is_live(run_id, active):
                return
            step = stack.pop()
            next_steps = await self._process_node(run_id, active, step)
            stack.extend(reversed(next_steps))

    async def _process_node(self, run_id: str, active: _ActiveRun, step: _Step) -> list[_Step]:
        flow = active.flow
        node = flow.node_by_id(step.node_id)
        if node is None:
            self._log(run_id, LogLevel.ERROR, f"Node {step.node_id} not found")
            return []
        if node.id in step.path:
            self._log(
                run_id,
                LogLevel.WARN,
                f"Node {node.label} already visited on this branch; branch stopped",
            )
            return []

        self._log(run_id, LogLevel.INFO, f"Processing node: {node.label} ({node.type.value})")
        self._enter_node(run_id, active, node.id)
        suspended = False
        try:
            if node.type is NodeType.ACTION:
                await self._execute_action(run_id, active, node)
                targets = flow.successors(node.id)
            elif node.type is NodeType.CONDITION:
                targets = self._execute_condition(run_id, active, node)
            elif node.type is NodeType.DELAY:
                suspended = self._execute_delay(run_id, active, node, step.path + (node.id,))
                targets = []
            elif node.type is NodeType.END:
                self._log(run_id, LogLevel.INFO, f"Reached END node: {node.label}")
                targets = []
            else:
                targets = flow.successors(node.id)
        except Exception as e:
            if self._is_live(run_id, active):
                self._log(run_id, LogLevel.ERROR, f"Error in node {node.label}: {e}")
            raise
        finally:
            if not suspended:
                self._leave_node(run_id, active, node.id)

        path = step.path + (node.id,)
        return [_Step(target, path) for target in targets]

    async def _execute_action(self, run_id: str, active: _ActiveRun, node: Node) -> None:
        try:
            config = cast(ActionConfig, parse_node_config(node))
        except NodeConfigError as e:
            self._log(run_id, LogLevel.WARN, f"ACTION node has invalid config: {e}")
            return

        request = MessageRequest(
            to=resolve_recipient(config.to_field, active.context),
            body=render_template(config.body or DEFAULT_MESSAGE_BODY, active.context),
            template=config.template,
        )
        result = await self._sender.send_message(request)
        if not self._is_live(run_id, active):
            return
        if not result.ok:
            raise MessageSendError(f"Message send to {request.to} was not accepted")
        self._log(
            run_id,
            LogLevel.INFO,
            f"Sent message via {self._sender.channel}",
            {"result": result.model_dump()},
        )

    def _execute_condition(self, run_id: str, active: _ActiveRun, node: Node) -> list[str]:
        try:
            config = cast(ConditionConfig, parse_node_config(node))
        except NodeConfigError as e:
            self._log(run_id, LogLevel.ERROR, f"CONDITION node has invalid config: {e}")
            return []

        result = evaluate_condition(config.logic, active.context)
        self._log(run_id, LogLevel.INFO, f"Condition evaluated to: {str(result).lower()}")
        # No matching edge is a dead end, not an error.
        return [
            e.target for e in active.flow.outgoing_edges(node.id) if edge_matches_branch(e, result)
        ]

    def _execute_delay(
        self, run_id: str, active: _ActiveRun, node: Node, path: tuple[str, ...]
    ) -> bool:
        try:
            config = cast(DelayConfig, parse_node_config(node))
        except NodeConfigError as e:
            self._log(run_id, LogLevel.ERROR, f"DELAY node has invalid config: {e}")
            return False

        amount, unit = config.delay.amount, config.delay.unit
        delay_ms = delay_to_milliseconds(amount, unit)
        self._log(run_id, LogLevel.INFO, f"Delaying for {amount} {unit.value} ({delay_ms}ms)")

        async def resume() -> None:
            await self._resume_after_delay(run_id, active, node, path)

        active.pending_delays += 1
        self._scheduler.schedule(run_id, node.id, delay_ms, resume)
        return True

    async def _resume_after_delay(
        self, run_id: str, active: _ActiveRun, node: Node, path: tuple[str, ...]
    ) -> None:
        if not self._is_live(run_id, active):
            return
        try:
            self._leave_node(run_id, active, node.id)
            self._log(run_id, LogLevel.INFO, f"Delay completed for {node.label}")
            await self._walk(
                run_id, active, [_Step(t, path) for t in active.flow.successors(node.id)]
            )
        except Exception as e:
            logger.exception(
                "Delayed branch failed", extra={"run_id": run_id, "node_id": node.id}
            )
            active.pending_delays -= 1
            self._fail(run_id, str(e) or type(e).__name__)
            return
        active.pending_delays -= 1
        self._maybe_complete(run_id, active)

    def _log(
        self, run_id: str, level: LogLevel, message: str, payload: Any = None
    ) -> None:
        self._runs.append_log(
            run_id, LogEntry(timestamp=utc_now(), level=level, message=message, payload=payload)
        )

    def _is_live(self, run_id: str, active: _ActiveRun) -> bool:
        return self._active.get(run_id) is active

    def _enter_node(self, run_id: str, active: _ActiveRun, node_id: str) -> None:
        active.current[node_id] = active.current.get(node_id, 0) + 1
        self._runs.update(run_id, current_node_ids=sorted(active.current))

    def _leave_node(self, run_id: str, active: _ActiveRun, node_id: str) -> None:
        remaining = active.current.get(node_id, 0) - 1
        if remaining > 0:
            active.current[node_id] = remaining
        else:
            active.current.pop(node_id, None)
        # Terminal runs are frozen.
        if self._is_live(run_id, active):
            self._runs.update(run_id, current_node_ids=sorted(active.current))

    def _set_status(self, run_id: str, status: RunStatus, **updates: object) -> None:
        run = self._runs.get(run_id)
        if run is None:
            raise KeyError(run_id)
        self._runs.update(run_id, status=transition(current=run.status, to=status), **updates)

    def _maybe_complete(self, run_id: str, active: _ActiveRun) -> None:
        if not self._is_live(run_id, active):
            return
        if not active.initial_walk_done or active.pending_delays > 0:
            return
        self._log(run_id, LogLevel.INFO, "Run completed successfully")
        self._set_status(
            run_id, RunStatus.COMPLETED, finished_at=utc_now(), current_node_ids=[]
        )
        self._finish(run_id)
        logger.info("Run completed", extra={"run_id": run_id, "flow_id": active.flow.id})

    def _fail(self, run_id: str, error: str) -> None:
        run = self._runs.get(run_id)
        if run is None or is_terminal(run.status):
            logger.warning(
                "Ignoring failure for finished run", extra={"run_id": run_id, "error": error}
            )
            return
        self._scheduler.cancel_all(run_id)
        self._log(run_id, LogLevel.ERROR, f"Run failed: {error}")
        self._set_status(
            run_id, RunStatus.FAILED, finished_at=utc_now(), error=error, current_node_ids=[]
        )
        self._finish(run_id)
        logger.warning("Run failed", extra={"run_id": run_id, "error": error})

    def _finish(self, run_id: str) -> None:
        active = self._active.pop(run_id, None)
        if active is not None:
            active.done.set()
