"""Flow lifecycle: CRUD, activation gating, triggering and run queries."""

from __future__ import annotations

import logging
from typing import Any

from flowpilot.automation.errors import BadRequestError, ConflictError, NotFoundError
from flowpilot.automation.storage import FlowStore, RunStore, new_id
from flowpilot.automation.workflow.engine import ExecutionEngine
from flowpilot.automation.workflow.events import TriggerPayload
from flowpilot.automation.workflow.models import (
    Edge,
    ExecutionHistory,
    Flow,
    Node,
    ValidationResult,
    utc_now,
)
from flowpilot.automation.workflow.validator import validate_flow

logger = logging.getLogger(__name__)


def _findings_json(result: ValidationResult) -> list[dict[str, Any]]:
    return [f.to_json() for f in result.errors]


class FlowsService:
    def __init__(
        self,
        *,
        flow_store: FlowStore,
        run_store: RunStore,
        engine: ExecutionEngine | None = None,
    ) -> None:
        self._flows = flow_store
        self._runs = run_store
        self._engine = engine

    def list_flows(self, active: bool | None = None) -> list[Flow]:
        return self._flows.list(active)

    def get_flow(self, flow_id: str) -> Flow:
        flow = self._flows.get(flow_id)
        if flow is None:
            raise NotFoundError(f"Flow with id '{flow_id}' not found")
        return flow

    def create_flow(self, name: str) -> Flow:
        now = utc_now()
        flow = Flow(id=new_id("flow"), name=name, created_at=now, updated_at=now)
        self._flows.create(flow)
        logger.info("Flow created", extra={"flow_id": flow.id})
        return flow

    def update_flow(
        self,
        flow_id: str,
        *,
        name: str | None = None,
        nodes: list[Node] | None = None,
        edges: list[Edge] | None = None,
    ) -> Flow:
        existing = self.get_flow(flow_id)
        changes: dict[str, Any] = {"updated_at": utc_now()}
        if name is not None:
            changes["name"] = name
        if nodes is not None:
            changes["nodes"] = nodes
        if edges is not None:
            changes["edges"] = edges
        updated = existing.model_copy(update=changes)

        if updated.active:
            result = validate_flow(updated)
            if not result.valid:
                raise BadRequestError(
                    "Cannot save a graph with validation errors on an active flow; "
                    "deactivate it first",
                    _findings_json(result),
                )

        self._flows.update(updated)
        return updated

    def delete_flow(self, flow_id: str) -> None:
        if not self._flows.delete(flow_id):
            raise NotFoundError(f"Flow with id '{flow_id}' not found")
        self._cancel_runs(flow_id)
        logger.info("Flow deleted", extra={"flow_id": flow_id})

    def validate_flow(self, flow_id: str) -> ValidationResult:
        return validate_flow(self.get_flow(flow_id))

    def activate_flow(self, flow_id: str) -> Flow:
        flow = self.get_flow(flow_id)
        result = validate_flow(flow)
        if not result.valid:
            raise BadRequestError(
                "Cannot activate flow with validation errors", _findings_json(result)
            )
        activated = flow.model_copy(update={"active": True, "updated_at": utc_now()})
        self._flows.update(activated)
        logger.info("Flow activated", extra={"flow_id": flow_id})
        return activated

    def deactivate_flow(self, flow_id: str) -> Flow:
        flow = self.get_flow(flow_id)
        deactivated = flow.model_copy(update={"active": False, "updated_at": utc_now()})
        self._flows.update(deactivated)
        self._cancel_runs(flow_id)
        logger.info("Flow deactivated", extra={"flow_id": flow_id})
        return deactivated

    def get_flow_analytics(self, flow_id: str) -> dict[str, object]:
        self.get_flow(flow_id)
        runs = self._runs.list_by_flow_id(flow_id)
        return {
            "runs": len(runs),
            "lastRunAt": runs[-1].started_at.isoformat() if runs else None,
        }

    async def trigger_flow(self, flow_id: str, payload: TriggerPayload) -> str:
        if self._engine is None:
            raise RuntimeError("FlowsService was created without an execution engine")
        flow = self.get_flow(flow_id)
        if not flow.active:
            raise BadRequestError("Flow is not active")
        return await self._engine.start_run(flow, payload)

    def get_run(self, run_id: str) -> ExecutionHistory:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Execution with id '{run_id}' not found")
        return run

    def list_runs(self, flow_id: str) -> list[ExecutionHistory]:
        return self._runs.list_by_flow_id(flow_id)

    def cancel_run(self, run_id: str) -> ExecutionHistory:
        run = self.get_run(run_id)
        if self._engine is None or not self._engine.cancel_run(run_id):
            raise ConflictError(f"Run '{run_id}' is not in progress")
        return self.get_run(run.id)

    def _cancel_runs(self, flow_id: str) -> None:
        if self._engine is None:
            return
        cancelled = self._engine.cancel_flow_runs(flow_id)
        if cancelled:
            logger.info(
                "Cancelled live runs", extra={"flow_id": flow_id, "count": len(cancelled)}
            )
