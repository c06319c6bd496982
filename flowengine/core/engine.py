"""
Workflow Engine.

Executes workflow graphs breadth-first from the Start node:
- Nodes run one at a time in order of first reachability
- A node reachable through several paths runs once, with the first input
- If nodes only follow edges whose branch handle matches their result
- The first failing node halts the run; the remaining nodes stay idle

Progress is published as immutable ExecutionEvent records to subscribers
registered with ``on_event``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .config import Settings
from .errors import MissingStartNodeError, RunInProgressError
from .graph import NodeType, WorkflowEdge, WorkflowGraph, WorkflowNode
from .nodes import NodeContext, NodeServices, dispatch
from .state import (
    EventType,
    ExecutionContext,
    ExecutionEvent,
    ExecutionLog,
    RunState,
)

logger = logging.getLogger(__name__)


@dataclass
class BackgroundTaskHandle:
    """Unified handle for background workflow runs."""

    run_id: str
    future: Any


def branch_handle(output: Any) -> str:
    """Branch handle selected by an If node's result."""
    return "true" if output else "false"


class WorkflowEngine:
    """
    The workflow execution engine.

    Keeps registered graphs and their runs in memory. Only one run may be
    active at a time.
    """

    def __init__(
        self,
        services: Optional[NodeServices] = None,
        settings: Optional[Settings] = None,
        step_delay: Optional[float] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.services = services or NodeServices.from_settings(self.settings)
        self.step_delay = self.settings.step_delay if step_delay is None else step_delay
        self._graphs: Dict[str, WorkflowGraph] = {}
        self._runs: Dict[str, Dict[str, Any]] = {}
        self._background_tasks: Dict[str, BackgroundTaskHandle] = {}
        self._event_callbacks: List[Callable] = []
        self._active_run: Optional[str] = None
        self._lock = threading.Lock()
        self._bg_loop: Optional[asyncio.AbstractEventLoop] = None

    # ------------------------------------------------------------------
    # Graph registry
    # ------------------------------------------------------------------

    def register_graph(self, graph: WorkflowGraph) -> str:
        """Register a graph, replacing any graph with the same id."""
        with self._lock:
            self._graphs[graph.graph_id] = graph
        return graph.graph_id

    def get_graph(self, graph_id: str) -> Optional[WorkflowGraph]:
        with self._lock:
            return self._graphs.get(graph_id)

    def list_graphs(self) -> List[Dict[str, Any]]:
        with self._lock:
            graphs = list(self._graphs.values())
        return [graph.to_dict() for graph in graphs]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_event(self, callback: Callable) -> None:
        """Register a callback receiving every ExecutionEvent."""
        self._event_callbacks.append(callback)

    async def _emit(
        self, run: Dict[str, Any], event_type: EventType, **fields: Any
    ) -> ExecutionEvent:
        state: RunState = run["state"]
        log: ExecutionLog = run["log"]
        event = ExecutionEvent(
            type=event_type,
            run_id=state.run_id,
            graph_id=state.graph_id,
            sequence=len(log.events),
            **fields,
        )
        with self._lock:
            log.log_event(event)
            state.apply(event)
        for callback in list(self._event_callbacks):
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    callback(event)
            except Exception:
                logger.exception(
                    "Event subscriber %r failed on %s", callback, event.type.value
                )
        return event

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _begin_run(
        self, graph_id: str, run_id: Optional[str]
    ) -> Tuple[WorkflowGraph, WorkflowNode, Dict[str, Any]]:
        """Check preconditions and reserve the engine for a new run."""
        graph = self.get_graph(graph_id)
        if not graph:
            raise ValueError(f"Graph not found: {graph_id}")
        start = graph.find_start_node()
        if start is None:
            raise MissingStartNodeError(graph_id)

        run_id = run_id or str(uuid.uuid4())
        with self._lock:
            if self._active_run is not None:
                raise RunInProgressError(self._active_run)
            self._active_run = run_id
            run = {
                "state": RunState.initial(run_id, graph),
                "log": ExecutionLog(run_id, graph_id),
            }
            self._runs[run_id] = run
        return graph, start, run

    def _select_edges(
        self, graph: WorkflowGraph, node: WorkflowNode, output: Any
    ) -> List[WorkflowEdge]:
        edges = graph.get_outgoing_edges(node.id)
        if node.node_type == NodeType.IF.value:
            handle = branch_handle(output)
            return [e for e in edges if e.source_handle == handle]
        return edges

    async def _traverse(
        self, graph: WorkflowGraph, start: WorkflowNode, run: Dict[str, Any]
    ) -> None:
        run_id = run["state"].run_id
        ctx = ExecutionContext()
        queue: Deque[Tuple[str, Any]] = deque([(start.id, None)])

        await self._emit(run, EventType.RUN_STARTED)
        logger.info("Run %s started on graph %s", run_id, graph.graph_id)

        while queue:
            node_id, node_input = queue.popleft()
            if node_id in ctx.visited:
                continue
            node = graph.get_node(node_id)
            if node is None:
                continue

            if self.step_delay > 0:
                await asyncio.sleep(self.step_delay)

            await self._emit(run, EventType.NODE_STARTED, node_id=node_id, input=node_input)
            try:
                output = await dispatch(
                    NodeContext(
                        node=node,
                        input=node_input,
                        node_outputs=ctx.node_outputs,
                        graph=graph,
                        services=self.services,
                    )
                )
            except Exception as e:
                message = str(e) or e.__class__.__name__
                logger.error("Run %s: node %s (%s) failed: %s", run_id, node.label, node_id, message)
                await self._emit(run, EventType.NODE_FAILED, node_id=node_id, error=message)
                await self._emit(run, EventType.RUN_HALTED, node_id=node_id, error=message)
                return

            ctx.record(node_id, output)
            await self._emit(run, EventType.NODE_SUCCEEDED, node_id=node_id, output=output)

            for edge in self._select_edges(graph, node, output):
                await self._emit(run, EventType.EDGE_ACTIVATED, node_id=node_id, edge_id=edge.id)
                queue.append((edge.target, output))

        await self._emit(run, EventType.RUN_COMPLETED)
        logger.info("Run %s completed", run_id)

    async def _execute(
        self, graph: WorkflowGraph, start: WorkflowNode, run: Dict[str, Any]
    ) -> Dict[str, Any]:
        run_id = run["state"].run_id
        try:
            await self._traverse(graph, start, run)
        finally:
            with self._lock:
                if self._active_run == run_id:
                    self._active_run = None
                self._background_tasks.pop(run_id, None)
        return self.get_run_state(run_id)

    async def run(self, graph_id: str, run_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Execute a workflow graph to completion.

        Raises:
            ValueError: If the graph is not registered.
            MissingStartNodeError: If the graph has no Start node.
            RunInProgressError: If another run is active.

        Returns:
            Dictionary with the run status, final run state and event log.
        """
        graph, start, run = self._begin_run(graph_id, run_id)
        return await self._execute(graph, start, run)

    def _start_background_loop(self) -> None:
        asyncio.set_event_loop(self._bg_loop)
        self._bg_loop.run_forever()

    def _ensure_background_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._bg_loop is None:
                self._bg_loop = asyncio.new_event_loop()
                threading.Thread(target=self._start_background_loop, daemon=True).start()
            return self._bg_loop

    def run_background(self, graph_id: str, run_id: Optional[str] = None) -> str:
        """
        Start a workflow run in the background and return its run_id.

        Preconditions are checked before returning, so a missing Start node
        or an active run raises here rather than inside the task.
        """
        graph, start, run = self._begin_run(graph_id, run_id)
        run_id = run["state"].run_id

        try:
            loop = asyncio.get_running_loop()
            future = loop.create_task(self._execute(graph, start, run))
            handle = BackgroundTaskHandle(run_id=run_id, future=future)
        except RuntimeError:
            bg_loop = self._ensure_background_loop()
            future = asyncio.run_coroutine_threadsafe(self._execute(graph, start, run), bg_loop)
            handle = BackgroundTaskHandle(run_id=run_id, future=future)

        with self._lock:
            if not future.done():
                self._background_tasks[run_id] = handle
        return run_id

    # ------------------------------------------------------------------
    # Run registry
    # ------------------------------------------------------------------

    @property
    def active_run(self) -> Optional[str]:
        with self._lock:
            return self._active_run

    def get_run_state(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            run = self._runs.get(run_id)
            if not run:
                return None
            state: RunState = run["state"]
            return {
                "run_id": run_id,
                "graph_id": state.graph_id,
                "status": state.status.value,
                "state": state.to_output(),
                "execution_log": run["log"].to_dict(),
            }

    def get_events(self, run_id: str) -> List[ExecutionEvent]:
        with self._lock:
            run = self._runs.get(run_id)
            return list(run["log"].events) if run else []

    def list_runs(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    "run_id": run_id,
                    "graph_id": run["state"].graph_id,
                    "status": run["state"].status.value,
                }
                for run_id, run in self._runs.items()
            ]
