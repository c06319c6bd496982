"""
Run State Management.

The engine never writes runtime fields onto the workflow graph. Instead it
publishes immutable ExecutionEvent records, and a RunState is built by
folding those events in order with ``RunState.apply``. Any subscriber that
replays the same events ends up with the same view the engine reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from .graph import ExecutionStatus, WorkflowGraph


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    RUN_STARTED = "run_started"
    NODE_STARTED = "node_started"
    NODE_SUCCEEDED = "node_succeeded"
    NODE_FAILED = "node_failed"
    EDGE_ACTIVATED = "edge_activated"
    RUN_COMPLETED = "run_completed"
    RUN_HALTED = "run_halted"


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    HALTED = "halted"


@dataclass(frozen=True)
class ExecutionEvent:
    """One state transition of a run."""

    type: EventType
    run_id: str
    graph_id: str
    sequence: int
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        event: Dict[str, Any] = {
            "type": self.type.value,
            "run_id": self.run_id,
            "graph_id": self.graph_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.node_id is not None:
            event["node_id"] = self.node_id
        if self.edge_id is not None:
            event["edge_id"] = self.edge_id
        if self.type == EventType.NODE_STARTED:
            event["input"] = self.input
        if self.type == EventType.NODE_SUCCEEDED:
            event["output"] = self.output
        if self.error is not None:
            event["error"] = self.error
        return event


class NodeRuntime(BaseModel):
    """Per-node runtime fields: status, input, output, error."""

    status: ExecutionStatus = ExecutionStatus.IDLE
    input: Any = None
    output: Any = None
    error: Optional[str] = None


class RunState(BaseModel):
    """
    View of a run, built only from its events.

    Every node starts idle and no edge is activated.
    """

    run_id: str
    graph_id: str
    status: RunStatus = RunStatus.IDLE
    nodes: Dict[str, NodeRuntime] = Field(default_factory=dict)
    activated_edges: List[str] = Field(default_factory=list)
    execution_order: List[str] = Field(default_factory=list)
    failed_node: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def initial(cls, run_id: str, graph: WorkflowGraph) -> "RunState":
        return cls(
            run_id=run_id,
            graph_id=graph.graph_id,
            nodes={node.id: NodeRuntime() for node in graph.nodes},
        )

    def _node(self, node_id: str) -> NodeRuntime:
        if node_id not in self.nodes:
            self.nodes[node_id] = NodeRuntime()
        return self.nodes[node_id]

    def apply(self, event: ExecutionEvent) -> "RunState":
        """Fold one event into this state and return it."""
        if event.type == EventType.RUN_STARTED:
            self.status = RunStatus.RUNNING
            self.started_at = event.timestamp
        elif event.type == EventType.NODE_STARTED:
            runtime = self._node(event.node_id)
            runtime.status = ExecutionStatus.RUNNING
            runtime.input = event.input
        elif event.type == EventType.NODE_SUCCEEDED:
            runtime = self._node(event.node_id)
            runtime.status = ExecutionStatus.SUCCESS
            runtime.output = event.output
            self.execution_order.append(event.node_id)
        elif event.type == EventType.NODE_FAILED:
            runtime = self._node(event.node_id)
            runtime.status = ExecutionStatus.ERROR
            runtime.error = event.error
        elif event.type == EventType.EDGE_ACTIVATED:
            self.activated_edges.append(event.edge_id)
        elif event.type == EventType.RUN_COMPLETED:
            self.status = RunStatus.SUCCEEDED
            self.completed_at = event.timestamp
        elif event.type == EventType.RUN_HALTED:
            self.status = RunStatus.HALTED
            self.failed_node = event.node_id
            self.error = event.error
            self.completed_at = event.timestamp
        return self

    def to_output(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class ExecutionContext:
    """Scratch data for one run, discarded when the run ends."""

    node_outputs: Dict[str, Any] = field(default_factory=dict)
    visited: Set[str] = field(default_factory=set)

    def record(self, node_id: str, output: Any) -> None:
        self.node_outputs[node_id] = output
        self.visited.add(node_id)


class ExecutionLog:
    """Ordered list of the events published for a run."""

    def __init__(self, run_id: str, graph_id: str):
        self.run_id = run_id
        self.graph_id = graph_id
        self.events: List[ExecutionEvent] = []

    def log_event(self, event: ExecutionEvent) -> Dict[str, Any]:
        self.events.append(event)
        return event.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "graph_id": self.graph_id,
            "events": [e.to_dict() for e in self.events],
        }
