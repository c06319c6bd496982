"""
Expression resolution.

Node configuration fields may reference data with two expression forms:

- ``{{input}}``: the direct input of the node being executed.
- ``{{$node['Label'].output.path}}``: the recorded output of another node,
  looked up by label. The optional path is a chain of ``.key``,
  ``['key']`` and ``[index]`` segments.

A template that is exactly one expression (ignoring surrounding
whitespace) resolves to the referenced value with its type intact.
Anything else is treated as text: each expression is replaced by its value,
serialized as compact JSON when it is not already a string. Expressions that
cannot be resolved are left in place verbatim, so a partially configured
workflow still shows what it was trying to reference.

Templates are scanned into a small AST before evaluation rather than matched
with regular expressions.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple, Union

from .graph import WorkflowGraph

OPEN = "{{"
CLOSE = "}}"
INPUT_KEYWORD = "input"
NODE_PREFIX = "$node['"
LABEL_CLOSE = "']"
OUTPUT_ACCESSOR = ".output"


# ============================================================================
# AST
# ============================================================================


@dataclass(frozen=True)
class PathSegment:
    key: str
    index: bool = False


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class InputRef:
    source: str


@dataclass(frozen=True)
class NodeOutputRef:
    label: str
    path: Tuple[PathSegment, ...]
    source: str


Part = Union[Literal, InputRef, NodeOutputRef]


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


# ============================================================================
# Parsing
# ============================================================================


def parse_path(raw: str) -> Optional[Tuple[PathSegment, ...]]:
    """
    Split an accessor chain into segments.

    ``a.b['c.d'][0]`` becomes ``a``, ``b``, ``c.d`` and index ``0``.
    Returns None if a bracket is left unclosed.
    """
    raw = raw.strip()
    segments: List[PathSegment] = []
    i, n = 0, len(raw)
    while i < n:
        ch = raw[i]
        if ch == ".":
            i += 1
            continue
        if ch == "[":
            if i + 1 < n and raw[i + 1] in ("'", '"'):
                quote = raw[i + 1]
                end = raw.find(quote + "]", i + 2)
                if end == -1:
                    return None
                segments.append(PathSegment(raw[i + 2 : end]))
                i = end + 2
            else:
                end = raw.find("]", i + 1)
                if end == -1:
                    return None
                token = raw[i + 1 : end].strip()
                segments.append(PathSegment(token, index=token.isdigit()))
                i = end + 1
            continue
        if ch == "]":
            return None
        j = i
        while j < n and raw[j] not in ".[]":
            j += 1
        segments.append(PathSegment(raw[i:j].strip()))
        i = j
    return tuple(segments)


def _parse_expression(inner: str, source: str) -> Optional[Part]:
    text = inner.strip()
    if text == INPUT_KEYWORD:
        return InputRef(source)
    if not text.startswith(NODE_PREFIX):
        return None
    close = text.find(LABEL_CLOSE, len(NODE_PREFIX))
    if close == -1:
        return None
    label = text[len(NODE_PREFIX) : close]
    rest = text[close + len(LABEL_CLOSE) :]
    if not rest.startswith(OUTPUT_ACCESSOR):
        return None
    path = parse_path(rest[len(OUTPUT_ACCESSOR) :])
    if path is None:
        return None
    return NodeOutputRef(label, path, source)


def parse_template(template: str) -> List[Part]:
    """Scan a template into literal text and expression references."""
    parts: List[Part] = []
    literal_start = 0
    pos = 0
    while True:
        start = template.find(OPEN, pos)
        if start == -1:
            break
        end = template.find(CLOSE, start + len(OPEN))
        if end == -1:
            break
        source = template[start : end + len(CLOSE)]
        expr = _parse_expression(template[start + len(OPEN) : end], source)
        if expr is None:
            pos = start + 1
            continue
        if start > literal_start:
            parts.append(Literal(template[literal_start:start]))
        parts.append(expr)
        literal_start = pos = end + len(CLOSE)
    if literal_start < len(template):
        parts.append(Literal(template[literal_start:]))
    return parts


# ============================================================================
# Evaluation
# ============================================================================


def _lookup(value: Any, segment: PathSegment) -> Any:
    if isinstance(value, dict):
        return value.get(segment.key, MISSING)
    if isinstance(value, list) and segment.key.isdigit():
        idx = int(segment.key)
        return value[idx] if idx < len(value) else MISSING
    return MISSING


def walk_path(value: Any, path: Tuple[PathSegment, ...]) -> Any:
    """Follow ``path`` into ``value``; MISSING if any step is absent."""
    current = value
    for segment in path:
        if current is None or current is MISSING:
            return MISSING
        current = _lookup(current, segment)
    return current


def _evaluate_node_ref(
    ref: NodeOutputRef, graph: WorkflowGraph, node_outputs: Mapping[str, Any]
) -> Any:
    node = graph.find_node_by_label(ref.label)
    if node is None or node.id not in node_outputs:
        return MISSING
    return walk_path(node_outputs[node.id], ref.path)


def stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def resolve(
    template: Any,
    graph: WorkflowGraph,
    node_outputs: Mapping[str, Any],
    direct_input: Any,
) -> Any:
    """
    Resolve expressions in ``template``.

    Args:
        template: Configuration value. Non-strings are returned unchanged.
        graph: Workflow the expressions refer into (labels are looked up here).
        node_outputs: Recorded outputs of already executed nodes, by node id.
        direct_input: Input handed to the node being executed.

    Returns:
        The referenced value when the template is a single expression,
        otherwise the template text with expressions substituted.
    """
    if not isinstance(template, str):
        return template

    whole = parse_template(template.strip())
    if len(whole) == 1 and not isinstance(whole[0], Literal):
        expr = whole[0]
        if isinstance(expr, InputRef):
            return direct_input
        value = _evaluate_node_ref(expr, graph, node_outputs)
        return template if value is MISSING else value

    out: List[str] = []
    for part in parse_template(template):
        if isinstance(part, Literal):
            out.append(part.text)
        elif isinstance(part, InputRef):
            out.append(stringify(direct_input))
        else:
            value = _evaluate_node_ref(part, graph, node_outputs)
            out.append(part.source if value is MISSING else stringify(value))
    return "".join(out)


def build_node_expression(label: str, path: str = "") -> str:
    """Build a ``{{$node['Label'].output...}}`` reference for a node."""
    expression = f"{NODE_PREFIX}{label}{LABEL_CLOSE}{OUTPUT_ACCESSOR}"
    if path:
        if not path.startswith("["):
            expression += "."
        expression += path
    return f"{OPEN}{expression}{CLOSE}"
