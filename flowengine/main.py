"""
Flow Engine service.

Wires the workflow and run routers into a FastAPI app and serves it with uvicorn.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import RedirectResponse

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s"
)

from .api.routes import (  # noqa: E402
    router as workflow_router,
    run_router,
    get_engine,
    get_websocket_manager,
)
from .core.tools import get_global_registry  # noqa: E402
from .workflows.samples import create_sample_workflow  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Startup and shutdown.

    Sets up the workflow engine, registers the sample workflow and streams
    execution events to WebSocket clients.
    """
    logger = logging.getLogger("flowengine")

    logger.info("Starting Flow Engine...")

    engine = get_engine()
    sample = create_sample_workflow()
    engine.register_graph(sample)
    logger.info("Registered workflow: %s (ID: %s)", sample.name, sample.graph_id)

    ws_manager = get_websocket_manager()
    engine.on_event(ws_manager.publish_event)

    tools = get_global_registry().list_tools()
    logger.info("Registered %s agent tools: %s", len(tools), [t["name"] for t in tools])
    if engine.services.chat_model is None:
        logger.warning("OPENROUTER_API_KEY not set: agent nodes and the assistant are disabled")

    yield

    logger.info("Shutting down Flow Engine...")


app = FastAPI(
    title="Flow Engine",
    description="""
Executes node-based workflows: directed graphs of typed processing nodes
that call HTTP APIs, branch on conditions, transform data, generate text and
run a tool-using agent.

## Node types

- **start**: emits its configured JSON data
- **apiRequest**: HTTP call with templated url, headers and body
- **if**: compares two values and follows the `true` or `false` branch
- **setData**: builds structured data from a JSON template
- **geminiText**: sends a prompt to a text-generation model
- **aiAgent**: runs a goal through an agent that can call HTTP APIs
- **logOutput**: records its input

## Expressions

Configuration fields may reference `{{input}}` (the node's direct input) or
`{{$node['Label'].output.path}}` (another node's output).

## Events

Connect to `/runs/ws/{run_id}` to stream execution events for a run.
    """,
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(workflow_router)
app.include_router(run_router)


@app.get("/", tags=["Health"])
async def root():
    """Send browsers to the interactive docs."""
    return RedirectResponse(url="/docs")


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
