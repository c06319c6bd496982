"""
Workflow graph model.

Nodes and edges mirror the JSON document exchanged with the editor and the
workflow assistant, so field names on the wire (nodeType, sourceHandle) are
kept as aliases. Unknown keys are preserved.
"""

from __future__ import annotations

import uuid
from collections import deque
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class NodeType(str, Enum):
    """Node types understood by the engine."""

    START = "start"
    API_REQUEST = "apiRequest"
    LOG_OUTPUT = "logOutput"
    IF = "if"
    SET_DATA = "setData"
    GEMINI_TEXT = "geminiText"
    AI_AGENT = "aiAgent"


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


START_LABEL = "Start"
RUNTIME_KEYS = ("status", "input", "output", "error")


class Position(BaseModel):
    x: Union[int, float] = 0
    y: Union[int, float] = 0


class NodeData(BaseModel):
    node_type: str = Field(..., alias="nodeType")
    label: str
    config: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow", "populate_by_name": True}

    def to_dict(self) -> Dict[str, Any]:
        data = {"nodeType": self.node_type, "label": self.label, "config": self.config}
        data.update(self.model_extra or {})
        return data


class WorkflowNode(BaseModel):
    id: str
    type: str
    position: Position = Field(default_factory=Position)
    data: NodeData

    model_config = {"extra": "allow"}

    @property
    def label(self) -> str:
        return self.data.label

    @property
    def node_type(self) -> str:
        return self.data.node_type

    def to_dict(self) -> Dict[str, Any]:
        node = {
            "id": self.id,
            "type": self.type,
            "position": self.position.model_dump(),
            "data": self.data.to_dict(),
        }
        node.update(self.model_extra or {})
        return node


class WorkflowEdge(BaseModel):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")

    model_config = {"extra": "allow", "populate_by_name": True}

    def to_dict(self) -> Dict[str, Any]:
        edge: Dict[str, Any] = {"id": self.id, "source": self.source, "target": self.target}
        if self.source_handle is not None:
            edge["sourceHandle"] = self.source_handle
        edge.update(self.model_extra or {})
        return edge


class WorkflowGraph(BaseModel):
    """A workflow: nodes plus the edges connecting them."""

    graph_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "workflow"
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def find_start_node(self) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.node_type == NodeType.START.value:
                return node
        return None

    def find_node_by_label(self, label: str) -> Optional[WorkflowNode]:
        """First node whose label matches. Labels are not enforced unique."""
        for node in self.nodes:
            if node.label == label:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> List[WorkflowEdge]:
        """Edges leaving a node, in graph order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> List[WorkflowEdge]:
        return [e for e in self.edges if e.target == node_id]

    def find_ancestors(self, node_id: str) -> List[WorkflowNode]:
        """
        All nodes upstream of ``node_id``, nearest first.

        Used to offer data sources for a node's expressions without
        creating circular references.
        """
        ancestors: Dict[str, WorkflowNode] = {}
        queue = deque([node_id])
        seen = set()
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            for edge in self.get_incoming_edges(current):
                parent = self.get_node(edge.source)
                if parent is not None and parent.id not in ancestors:
                    ancestors[parent.id] = parent
                    queue.append(parent.id)
        return list(ancestors.values())

    def to_dict(self) -> Dict[str, Any]:
        """Summary used by listing endpoints."""
        start = self.find_start_node()
        return {
            "graph_id": self.graph_id,
            "name": self.name,
            "node_count": len(self.nodes),
            "edge_count": len(self.edges),
            "start_node": start.id if start else None,
        }
