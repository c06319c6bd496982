"""
Pydantic models for API requests and responses.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Workflow Document Models
# ============================================================================


class WorkflowDocument(BaseModel):
    """A workflow as exchanged with the editor: node and edge lists."""

    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)


class ImportWorkflowRequest(BaseModel):
    """Request body for importing a workflow document."""

    name: str = Field(default="workflow", description="Name of the workflow")
    graph_id: Optional[str] = Field(
        default=None, description="Replace the workflow with this id instead of creating one"
    )
    document: Dict[str, Any] = Field(..., description="Workflow document {nodes, edges}")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "hello",
                    "document": {
                        "nodes": [
                            {
                                "id": "1",
                                "type": "start",
                                "position": {"x": 50, "y": 150},
                                "data": {
                                    "nodeType": "start",
                                    "label": "Start",
                                    "config": {"outputData": "{\"message\": \"Hello\"}"},
                                },
                            },
                            {
                                "id": "2",
                                "type": "logOutput",
                                "position": {"x": 300, "y": 150},
                                "data": {"nodeType": "logOutput", "label": "Log", "config": {}},
                            },
                        ],
                        "edges": [{"id": "e1-2", "source": "1", "target": "2"}],
                    },
                }
            ]
        }
    }


class WorkflowSummary(BaseModel):
    """Brief information about a registered workflow."""

    graph_id: str
    name: str
    node_count: int
    edge_count: int
    start_node: Optional[str] = None


class ListWorkflowsResponse(BaseModel):
    workflows: List[WorkflowSummary]


class ValidateWorkflowRequest(BaseModel):
    document: Any = Field(..., description="Untrusted workflow document")


class ValidateWorkflowResponse(BaseModel):
    valid: bool


class AncestorInfo(BaseModel):
    """A node upstream of another, with a ready-made output expression."""

    id: str
    label: str
    node_type: str
    expression: str


class AncestorsResponse(BaseModel):
    node_id: str
    ancestors: List[AncestorInfo]


# ============================================================================
# Run Models
# ============================================================================


class RunWorkflowResponse(BaseModel):
    """Response for a completed workflow run."""

    run_id: str = Field(..., description="Unique identifier for this run")
    graph_id: str = Field(..., description="ID of the executed workflow")
    status: str = Field(..., description="Run status: running, succeeded, halted")
    state: Dict[str, Any] = Field(..., description="Per-node runtime state")
    execution_log: Dict[str, Any] = Field(..., description="Ordered execution events")


class RunAsyncResponse(BaseModel):
    run_id: str
    graph_id: str
    status: str


class RunInfo(BaseModel):
    """Brief information about a workflow run."""

    run_id: str
    graph_id: str
    status: str


class ListRunsResponse(BaseModel):
    runs: List[RunInfo]


# ============================================================================
# Assistant Models
# ============================================================================


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AssistantRequest(BaseModel):
    prompt: str = Field(..., description="The user's message")
    history: List[ChatTurn] = Field(
        default_factory=list, description="Earlier turns of the conversation"
    )


class AssistantResponse(BaseModel):
    intent: str
    payload: Any
    explanation: Optional[str] = None
    applied: bool = Field(
        default=False, description="True when the workflow was replaced by the update"
    )
    workflow: Optional[WorkflowDocument] = None


# ============================================================================
# Error Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(
        default=None, description="Detailed error information"
    )
