"""
Sample workflow registered at startup.

Start -> Fetch Todo -> Log Response: the Start node emits a greeting, the
API node fetches a placeholder todo item and the log node records it.
"""

from __future__ import annotations

import json

from ..core.graph import NodeType, WorkflowGraph

SAMPLE_GRAPH_ID = "sample"


def _node(node_id: str, node_type: NodeType, label: str, x: int, config: dict) -> dict:
    return {
        "id": node_id,
        "type": node_type.value,
        "position": {"x": x, "y": 150},
        "data": {"nodeType": node_type.value, "label": label, "config": config},
    }


def create_sample_workflow() -> WorkflowGraph:
    nodes = [
        _node(
            "1",
            NodeType.START,
            "Start",
            50,
            {"outputData": json.dumps({"message": "Hello from the Start Node!"}, indent=2)},
        ),
        _node(
            "2",
            NodeType.API_REQUEST,
            "Fetch Todo",
            300,
            {
                "method": "GET",
                "url": "https://jsonplaceholder.typicode.com/todos/1",
                "headers": "{}",
                "bodyTemplate": "",
            },
        ),
        _node("3", NodeType.LOG_OUTPUT, "Log Response", 550, {}),
    ]
    edges = [
        {"id": "e1-2", "source": "1", "target": "2"},
        {"id": "e2-3", "source": "2", "target": "3"},
    ]
    return WorkflowGraph.model_validate(
        {"graph_id": SAMPLE_GRAPH_ID, "name": "sample_workflow", "nodes": nodes, "edges": edges}
    )
