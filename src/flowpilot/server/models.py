"""Request/response models for the REST server."""

from __future__ import annotations

from pydantic import Field

from flowpilot.automation.workflow.models import Edge, Node, WireModel


class CreateFlowRequest(WireModel):
    name: str = Field(min_length=1)


class UpdateFlowRequest(WireModel):
    """Partial update of a flow. Activation has dedicated endpoints."""

    name: str | None = Field(default=None, min_length=1)
    nodes: list[Node] | None = None
    edges: list[Edge] | None = None


class TriggerResponse(WireModel):
    run_id: str


class FlowAnalytics(WireModel):
    runs: int
    last_run_at: str | None = None
