"""In-memory stores for flows and runs.

Both are constructed once per process and handed to the services that need
them. Reads return copies so observers never see a run mid-update.
"""

from __future__ import annotations

import builtins
import threading
import uuid

from flowpilot.automation.workflow.models import ExecutionHistory, Flow, LogEntry


def new_id(prefix: str = "") -> str:
    token = uuid.uuid4().hex[:16]
    return f"{prefix}_{token}" if prefix else token


class FlowStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flows: dict[str, Flow] = {}

    def list(self, active: bool | None = None) -> builtins.list[Flow]:
        with self._lock:
            flows = [f.model_copy(deep=True) for f in self._flows.values()]
        if active is not None:
            flows = [f for f in flows if f.active is active]
        flows.sort(key=lambda f: f.updated_at, reverse=True)
        return flows

    def get(self, flow_id: str) -> Flow | None:
        with self._lock:
            flow = self._flows.get(flow_id)
            return flow.model_copy(deep=True) if flow is not None else None

    def create(self, flow: Flow) -> Flow:
        with self._lock:
            self._flows[flow.id] = flow.model_copy(deep=True)
        return flow

    def update(self, flow: Flow) -> Flow:
        with self._lock:
            if flow.id not in self._flows:
                raise KeyError(flow.id)
            self._flows[flow.id] = flow.model_copy(deep=True)
        return flow

    def delete(self, flow_id: str) -> bool:
        with self._lock:
            return self._flows.pop(flow_id, None) is not None


class RunStore:
    """Run state keyed by run id, with a per-flow index in creation order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[str, ExecutionHistory] = {}
        self._by_flow: dict[str, builtins.list[str]] = {}

    def create(self, run: ExecutionHistory) -> ExecutionHistory:
        with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)
            self._by_flow.setdefault(run.flow_id, []).append(run.id)
        return run

    def get(self, run_id: str) -> ExecutionHistory | None:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run is not None else None

    def update(self, run_id: str, **updates: object) -> ExecutionHistory:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise KeyError(run_id)
            merged = run.model_copy(update=updates)
            self._runs[run_id] = merged
            return merged.model_copy(deep=True)

    def append_log(self, run_id: str, entry: LogEntry) -> None:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise KeyError(run_id)
            run.logs.append(entry)

    def list_by_flow_id(self, flow_id: str) -> builtins.list[ExecutionHistory]:
        with self._lock:
            return [
                self._runs[run_id].model_copy(deep=True)
                for run_id in self._by_flow.get(flow_id, [])
                if run_id in self._runs
            ]
