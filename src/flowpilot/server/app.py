"""FastAPI app factory.

Endpoints are thin wrappers over `FlowsService`; every collaborator (stores,
scheduler, sender, engine) is built here once per app instance.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from flowpilot import __version__
from flowpilot.automation.errors import AppError, BadRequestError
from flowpilot.automation.flows import FlowsService
from flowpilot.automation.storage import FlowStore, RunStore
from flowpilot.automation.workflow.actions import build_message_sender
from flowpilot.automation.workflow.engine import ExecutionEngine
from flowpilot.automation.workflow.events import TriggerPayload
from flowpilot.automation.workflow.models import ExecutionHistory, Flow, ValidationResult
from flowpilot.automation.workflow.scheduler import AsyncioScheduler
from flowpilot.server.config import ServerSettings
from flowpilot.server.models import (
    CreateFlowRequest,
    FlowAnalytics,
    TriggerResponse,
    UpdateFlowRequest,
)

logger = logging.getLogger(__name__)


def create_app(settings: ServerSettings | None = None) -> FastAPI:
    settings = settings or ServerSettings()

    scheduler = AsyncioScheduler()
    run_store = RunStore()
    sender = build_message_sender(settings)
    engine = ExecutionEngine(run_store=run_store, scheduler=scheduler, sender=sender)
    service = FlowsService(flow_store=FlowStore(), run_store=run_store, engine=engine)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await scheduler.shutdown()
        close = getattr(sender, "close", None)
        if close is not None:
            close()

    app = FastAPI(
        title="flowpilot",
        version=__version__,
        description="Build, validate and run marketing-automation flows.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    # Expose collaborators for request handlers and tests.
    app.state.settings = settings
    app.state.service = service
    app.state.engine = engine
    app.state.sender = sender

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def _app_error(_request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed", extra={"code": exc.code, "error": exc.message})
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.get("/api/flows", response_model=list[Flow])
    def list_flows(active: bool | None = None) -> list[Flow]:
        return service.list_flows(active)

    @app.post("/api/flows", response_model=Flow, status_code=201)
    def create_flow(req: CreateFlowRequest) -> Flow:
        return service.create_flow(req.name)

    @app.get("/api/flows/{flow_id}", response_model=Flow)
    def get_flow(flow_id: str) -> Flow:
        return service.get_flow(flow_id)

    @app.put("/api/flows/{flow_id}", response_model=Flow)
    def update_flow(flow_id: str, req: UpdateFlowRequest) -> Flow:
        return service.update_flow(flow_id, name=req.name, nodes=req.nodes, edges=req.edges)

    # Delete, deactivate and cancel are async: they cancel scheduler tasks
    # owned by the event loop.
    @app.delete("/api/flows/{flow_id}", status_code=204)
    async def delete_flow(flow_id: str) -> Response:
        service.delete_flow(flow_id)
        return Response(status_code=204)

    @app.post("/api/flows/{flow_id}/activate", response_model=Flow)
    def activate_flow(flow_id: str) -> Flow:
        return service.activate_flow(flow_id)

    @app.post("/api/flows/{flow_id}/deactivate", response_model=Flow)
    async def deactivate_flow(flow_id: str) -> Flow:
        return service.deactivate_flow(flow_id)

    @app.post("/api/flows/{flow_id}/validate", response_model=ValidationResult)
    def validate(flow_id: str) -> ValidationResult:
        return service.validate_flow(flow_id)

    @app.get("/api/flows/{flow_id}/analytics", response_model=FlowAnalytics)
    def analytics(flow_id: str) -> FlowAnalytics:
        return FlowAnalytics.model_validate(service.get_flow_analytics(flow_id))

    # Async so the run's background task lands on the server's event loop.
    @app.post("/api/triggers/{flow_id}", response_model=TriggerResponse)
    async def trigger_flow(flow_id: str, body: dict[str, Any] = Body(...)) -> TriggerResponse:
        try:
            payload = TriggerPayload.model_validate(body)
        except ValidationError as e:
            raise BadRequestError(
                "Invalid trigger payload", e.errors(include_url=False, include_context=False)
            ) from e
        run_id = await service.trigger_flow(flow_id, payload)
        return TriggerResponse(run_id=run_id)

    @app.get("/api/executions/{flow_id}", response_model=list[ExecutionHistory])
    def list_executions(flow_id: str) -> list[ExecutionHistory]:
        return service.list_runs(flow_id)

    @app.get("/api/runs/{run_id}", response_model=ExecutionHistory)
    def get_run(run_id: str) -> ExecutionHistory:
        return service.get_run(run_id)

    @app.post("/api/runs/{run_id}/cancel", response_model=ExecutionHistory)
    async def cancel_run(run_id: str) -> ExecutionHistory:
        return service.cancel_run(run_id)

    return app
