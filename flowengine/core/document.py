"""
Workflow documents.

Import/export of the ``{nodes, edges}`` JSON document, and the validator
every externally supplied document (file import, assistant update) passes
through before it can replace a registered graph.
"""

from __future__ import annotations

import copy
import logging
import math
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .errors import InvalidWorkflowError
from .graph import RUNTIME_KEYS, WorkflowGraph

logger = logging.getLogger(__name__)

IMPORT_DEFAULT_POSITION = {"x": 50, "y": 50}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_valid_node(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    position = node.get("position")
    data = node.get("data")
    return (
        isinstance(node.get("id"), str)
        and isinstance(node.get("type"), str)
        and isinstance(position, dict)
        and _is_number(position.get("x"))
        and _is_number(position.get("y"))
        and isinstance(data, dict)
        and isinstance(data.get("label"), str)
        and isinstance(data.get("nodeType"), str)
        and isinstance(data.get("config"), dict)
    )


def is_valid_workflow(doc: Any) -> bool:
    """True if ``doc`` is a structurally sound workflow document."""
    if not isinstance(doc, dict):
        return False
    nodes, edges = doc.get("nodes"), doc.get("edges")
    if not isinstance(nodes, list) or not isinstance(edges, list):
        return False

    for node in nodes:
        if not _is_valid_node(node):
            logger.warning("Invalid node in workflow document: %r", node)
            return False

    node_ids = {node["id"] for node in nodes}
    for edge in edges:
        if not (
            isinstance(edge, dict)
            and isinstance(edge.get("id"), str)
            and isinstance(edge.get("source"), str)
            and isinstance(edge.get("target"), str)
            and edge["source"] in node_ids
            and edge["target"] in node_ids
            and isinstance(edge.get("sourceHandle"), (str, type(None)))
        ):
            logger.warning("Invalid edge in workflow document: %r", edge)
            return False
    return True


def _coerce_coordinate(value: Any) -> Any:
    if _is_number(value):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0
        if not math.isfinite(number):
            return 0
        return int(number) if number.is_integer() else number
    return 0


def sanitize_workflow(
    doc: Any, default_position: Optional[Dict[str, Any]] = None
) -> Any:
    """
    Return a sanitized copy of ``doc``.

    Coordinates become numbers (0 when not numeric), a missing position gets
    ``default_position`` if one is given, and a missing or non-object config
    becomes ``{}``. Anything that is not a document is returned unchanged so
    the validator can reject it.
    """
    if not isinstance(doc, dict) or not isinstance(doc.get("nodes"), list):
        return doc
    doc = copy.deepcopy(doc)
    for node in doc["nodes"]:
        if not isinstance(node, dict):
            continue
        position = node.get("position")
        if isinstance(position, dict):
            position["x"] = _coerce_coordinate(position.get("x"))
            position["y"] = _coerce_coordinate(position.get("y"))
        elif default_position is not None:
            node["position"] = dict(default_position)
        data = node.get("data")
        if isinstance(data, dict) and not isinstance(data.get("config"), dict):
            data["config"] = {}
    return doc


def graph_from_document(
    doc: Dict[str, Any], name: str = "workflow", graph_id: Optional[str] = None
) -> WorkflowGraph:
    """
    Build a graph from a validated document with runtime fields cleared.

    Raises:
        InvalidWorkflowError: If the document does not fit the graph model.
    """
    nodes = []
    for node in doc["nodes"]:
        node = dict(node)
        node["data"] = {k: v for k, v in node["data"].items() if k not in RUNTIME_KEYS}
        nodes.append(node)
    fields: Dict[str, Any] = {"name": name, "nodes": nodes, "edges": doc["edges"]}
    if graph_id:
        fields["graph_id"] = graph_id
    try:
        return WorkflowGraph.model_validate(fields)
    except ValidationError as e:
        raise InvalidWorkflowError(f"Invalid workflow file format. {e}") from e


def load_workflow(
    doc: Any, name: str = "workflow", graph_id: Optional[str] = None
) -> WorkflowGraph:
    """
    Load an imported workflow document.

    Raises:
        InvalidWorkflowError: If the sanitized document fails validation.
    """
    doc = sanitize_workflow(doc, default_position=IMPORT_DEFAULT_POSITION)
    if not is_valid_workflow(doc):
        raise InvalidWorkflowError("Invalid workflow file format.")
    return graph_from_document(doc, name=name, graph_id=graph_id)


def export_workflow(graph: WorkflowGraph) -> Dict[str, Any]:
    """Serialize ``graph`` to a document without runtime fields."""
    nodes = []
    for node in graph.nodes:
        data = {k: v for k, v in node.data.to_dict().items() if k not in RUNTIME_KEYS}
        nodes.append(
            {
                "id": node.id,
                "type": node.type,
                "position": node.position.model_dump(),
                "data": data,
            }
        )
    return {"nodes": nodes, "edges": [edge.to_dict() for edge in graph.edges]}
