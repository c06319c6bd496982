"""
FastAPI Routes for the Workflow Engine.

Provides REST API endpoints for:
- Importing, validating and exporting workflow documents
- Running workflows (blocking or in the background)
- Querying run state
- Chatting with the workflow assistant

and a WebSocket endpoint streaming execution events per run.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from .models import (
    AncestorInfo,
    AncestorsResponse,
    AssistantRequest,
    AssistantResponse,
    ErrorResponse,
    ImportWorkflowRequest,
    ListRunsResponse,
    ListWorkflowsResponse,
    RunAsyncResponse,
    RunWorkflowResponse,
    ValidateWorkflowRequest,
    ValidateWorkflowResponse,
    WorkflowDocument,
    WorkflowSummary,
)
from ..core.assistant import AssistantIntent, WorkflowAssistant, apply_update
from ..core.document import export_workflow, is_valid_workflow, load_workflow
from ..core.engine import WorkflowEngine
from ..core.errors import (
    AssistantError,
    ConfigurationError,
    InvalidWorkflowError,
    MissingStartNodeError,
    RunInProgressError,
    TransportError,
)
from ..core.expressions import build_node_expression
from ..core.graph import WorkflowGraph
from ..core.state import ExecutionEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])
run_router = APIRouter(prefix="/runs", tags=["Runs"])

# Global engine instance (initialized in main.py)
_engine: Optional[WorkflowEngine] = None
_assistant: Optional[WorkflowAssistant] = None


def get_engine() -> WorkflowEngine:
    """Get the workflow engine instance."""
    global _engine
    if _engine is None:
        _engine = WorkflowEngine()
    return _engine


def get_assistant() -> WorkflowAssistant:
    global _assistant
    if _assistant is None:
        _assistant = WorkflowAssistant(get_engine().services.chat_model)
    return _assistant


def _require_graph(graph_id: str) -> WorkflowGraph:
    graph = get_engine().get_graph(graph_id)
    if not graph:
        raise HTTPException(status_code=404, detail=f"Workflow not found: {graph_id}")
    return graph


def _summary(graph: WorkflowGraph) -> WorkflowSummary:
    return WorkflowSummary(**graph.to_dict())


# ============================================================================
# Workflow Management Endpoints
# ============================================================================


@router.post(
    "/import",
    response_model=WorkflowSummary,
    responses={400: {"model": ErrorResponse}},
    summary="Import a workflow document",
    description="Validate a {nodes, edges} document and register it as a workflow.",
)
async def import_workflow(request: ImportWorkflowRequest) -> WorkflowSummary:
    """
    Import a workflow.

    The document is sanitized (coordinates coerced, missing configs defaulted)
    and validated before anything is registered. Passing **graph_id**
    replaces that workflow in place.
    """
    try:
        graph = load_workflow(request.document, name=request.name, graph_id=request.graph_id)
    except InvalidWorkflowError as e:
        raise HTTPException(status_code=400, detail=str(e))
    get_engine().register_graph(graph)
    return _summary(graph)


@router.post(
    "/validate",
    response_model=ValidateWorkflowResponse,
    summary="Validate a workflow document",
)
async def validate_workflow(request: ValidateWorkflowRequest) -> ValidateWorkflowResponse:
    return ValidateWorkflowResponse(valid=is_valid_workflow(request.document))


@router.get(
    "/list",
    response_model=ListWorkflowsResponse,
    summary="List all workflows",
)
async def list_workflows() -> ListWorkflowsResponse:
    return ListWorkflowsResponse(workflows=get_engine().list_graphs())


@router.get(
    "/{graph_id}",
    response_model=WorkflowDocument,
    responses={404: {"model": ErrorResponse}},
    summary="Export a workflow",
    description="Return the workflow document without runtime fields.",
)
async def export(graph_id: str) -> WorkflowDocument:
    return WorkflowDocument(**export_workflow(_require_graph(graph_id)))


@router.get(
    "/{graph_id}/nodes/{node_id}/ancestors",
    response_model=AncestorsResponse,
    responses={404: {"model": ErrorResponse}},
    summary="List upstream nodes",
    description="Nodes whose outputs a node may reference, nearest first.",
)
async def node_ancestors(graph_id: str, node_id: str) -> AncestorsResponse:
    graph = _require_graph(graph_id)
    if graph.get_node(node_id) is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    return AncestorsResponse(
        node_id=node_id,
        ancestors=[
            AncestorInfo(
                id=node.id,
                label=node.label,
                node_type=node.node_type,
                expression=build_node_expression(node.label),
            )
            for node in graph.find_ancestors(node_id)
        ],
    )


# ============================================================================
# Execution Endpoints
# ============================================================================


@router.post(
    "/{graph_id}/run",
    response_model=RunWorkflowResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Run a workflow",
    description="Execute the workflow to completion and return its final run state.",
)
async def run_workflow(graph_id: str) -> RunWorkflowResponse:
    """
    Run a workflow.

    A run that halts on a failing node still returns 200; the failure is
    reported in **status** and in the failing node's runtime.
    """
    _require_graph(graph_id)
    try:
        result = await get_engine().run(graph_id)
    except MissingStartNodeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RunWorkflowResponse(**result)


@router.post(
    "/{graph_id}/run_async",
    response_model=RunAsyncResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Run a workflow in background",
    description=(
        "Start execution and return run_id immediately. "
        "Poll /runs/{run_id} or use the websocket for events."
    ),
)
async def run_workflow_async(graph_id: str) -> RunAsyncResponse:
    _require_graph(graph_id)
    try:
        run_id = get_engine().run_background(graph_id)
    except MissingStartNodeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RunAsyncResponse(run_id=run_id, graph_id=graph_id, status="running")


# ============================================================================
# Assistant Endpoint
# ============================================================================


@router.post(
    "/{graph_id}/assistant",
    response_model=AssistantResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Chat with the workflow assistant",
    description=(
        "Send a message about the workflow. An UPDATE_WORKFLOW reply replaces "
        "the workflow only if the proposed document passes validation."
    ),
)
async def assistant_chat(graph_id: str, request: AssistantRequest) -> AssistantResponse:
    graph = _require_graph(graph_id)
    history = [turn.model_dump() for turn in request.history]
    try:
        reply = await get_assistant().send_message(history, request.prompt, graph)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (AssistantError, TransportError) as e:
        raise HTTPException(status_code=502, detail=str(e))

    if reply.intent != AssistantIntent.UPDATE_WORKFLOW:
        return AssistantResponse(**reply.to_dict())

    try:
        updated = apply_update(reply, graph)
    except InvalidWorkflowError as e:
        raise HTTPException(status_code=422, detail=str(e))
    get_engine().register_graph(updated)
    return AssistantResponse(
        **reply.to_dict(),
        applied=True,
        workflow=WorkflowDocument(**export_workflow(updated)),
    )


# ============================================================================
# Run State Endpoints
# ============================================================================


@run_router.get(
    "/list",
    response_model=ListRunsResponse,
    summary="List all runs",
)
async def list_runs() -> ListRunsResponse:
    return ListRunsResponse(runs=get_engine().list_runs())


@run_router.get(
    "/{run_id}",
    response_model=RunWorkflowResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get run state",
    description="Get the state of an ongoing or finished run.",
)
async def get_run(run_id: str) -> RunWorkflowResponse:
    state = get_engine().get_run_state(run_id)
    if not state:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return RunWorkflowResponse(**state)


# ============================================================================
# WebSocket Endpoint for Execution Events
# ============================================================================


class ConnectionManager:
    """Manages WebSocket connections for real-time event streaming."""

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, run_id: str):
        await websocket.accept()
        if run_id not in self.active_connections:
            self.active_connections[run_id] = []
        self.active_connections[run_id].append(websocket)

    def disconnect(self, websocket: WebSocket, run_id: str):
        if run_id in self.active_connections:
            if websocket in self.active_connections[run_id]:
                self.active_connections[run_id].remove(websocket)
            if not self.active_connections[run_id]:
                del self.active_connections[run_id]

    async def broadcast(self, run_id: str, message: dict):
        for connection in list(self.active_connections.get(run_id, [])):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug("Dropping websocket for run %s: %s", run_id, e)
                self.disconnect(connection, run_id)

    async def publish_event(self, event: ExecutionEvent):
        await self.broadcast(event.run_id, event.to_dict())


manager = ConnectionManager()


@run_router.websocket("/ws/{run_id}")
async def websocket_events(websocket: WebSocket, run_id: str):
    """
    WebSocket endpoint for streaming execution events.

    Connect to receive node_started / node_succeeded / node_failed /
    edge_activated / run_* events for a specific run. Send "ping" to get
    "pong" back.
    """
    await manager.connect(websocket, run_id)

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")

    except WebSocketDisconnect:
        manager.disconnect(websocket, run_id)


def get_websocket_manager() -> ConnectionManager:
    """Get the WebSocket connection manager."""
    return manager
