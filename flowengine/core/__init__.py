"""Core workflow engine components."""

from .engine import WorkflowEngine
from .expressions import resolve
from .graph import NodeType, WorkflowGraph
from .state import ExecutionEvent, RunState
from .tools import ToolRegistry, tool

__all__ = [
    "WorkflowEngine",
    "WorkflowGraph",
    "NodeType",
    "ExecutionEvent",
    "RunState",
    "ToolRegistry",
    "resolve",
    "tool",
]
