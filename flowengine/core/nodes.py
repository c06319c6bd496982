"""
Node behaviors.

One async handler per NodeType, registered in HANDLERS with the ``handles``
decorator. Every handler receives a NodeContext and returns the node's
output, or raises a WorkflowError subclass that halts the run.

Handlers:
- start: parses ``outputData`` JSON (empty config gives ``{}``)
- apiRequest: resolves url/headers/body templates and calls the HTTP client
- logOutput: passes its input through and logs it
- if: compares two resolved operands, output is a boolean branch selector
- setData: resolves a JSON template into structured data
- geminiText: sends a resolved prompt to the text-generation endpoint
- aiAgent: runs the tool-calling agent on a resolved goal
"""

from __future__ import annotations

import json
import logging
import math
import operator
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from .agent import ToolCallingAgent
from .config import Settings
from .errors import ConfigurationError, DispatchError
from .expressions import resolve, stringify
from .graph import NodeType, WorkflowGraph, WorkflowNode
from .http_client import BODY_METHODS, HttpClient
from .llm import ChatModel, TextGenerator
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

_NUMBER_PREFIX = re.compile(r"\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))")


# ============================================================================
# Services and context
# ============================================================================


@dataclass
class NodeServices:
    """External collaborators available to node handlers."""

    http: HttpClient = field(default_factory=HttpClient)
    text_generator: Optional[TextGenerator] = None
    chat_model: Optional[ChatModel] = None
    tools: Optional[ToolRegistry] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "NodeServices":
        chat_model = None
        if settings.openrouter_api_key:
            chat_model = ChatModel(
                settings.agent_model, settings.openrouter_api_key, settings.llm_timeout
            )
        return cls(
            http=HttpClient(timeout=settings.http_timeout),
            text_generator=TextGenerator(
                settings.text_model, settings.gemini_api_key, settings.llm_timeout
            ),
            chat_model=chat_model,
        )


@dataclass
class NodeContext:
    node: WorkflowNode
    input: Any
    node_outputs: Dict[str, Any]
    graph: WorkflowGraph
    services: NodeServices

    @property
    def config(self) -> Dict[str, Any]:
        return self.node.data.config

    def resolve(self, template: Any) -> Any:
        return resolve(template, self.graph, self.node_outputs, self.input)


# ============================================================================
# Config shapes
# ============================================================================


class _NodeConfig(BaseModel):
    model_config = {"extra": "allow", "populate_by_name": True}


class StartConfig(_NodeConfig):
    output_data: Any = Field(default=None, alias="outputData")


class ApiRequestConfig(_NodeConfig):
    url: Any = ""
    method: str = "GET"
    headers: Any = None
    body_template: Any = Field(default=None, alias="bodyTemplate")


class IfConfig(_NodeConfig):
    value1: Any = ""
    operator: str = "==="
    value2: Any = ""


class SetDataConfig(_NodeConfig):
    data: Any = ""


class TextGenerateConfig(_NodeConfig):
    prompt_template: Any = Field(default=None, alias="promptTemplate")


class AgentConfig(_NodeConfig):
    goal_template: Any = Field(default=None, alias="goalTemplate")


C = TypeVar("C", bound=_NodeConfig)


def _load_config(model: Type[C], ctx: NodeContext) -> C:
    try:
        return model.model_validate(ctx.config)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration for node '{ctx.node.label}': {e}"
        ) from e


# ============================================================================
# Handler table
# ============================================================================

Handler = Callable[[NodeContext], Awaitable[Any]]
HANDLERS: Dict[NodeType, Handler] = {}


def handles(node_type: NodeType) -> Callable[[Handler], Handler]:
    def decorator(func: Handler) -> Handler:
        HANDLERS[node_type] = func
        return func

    return decorator


@handles(NodeType.START)
async def run_start(ctx: NodeContext) -> Any:
    cfg = _load_config(StartConfig, ctx)
    if not cfg.output_data:
        return {}
    if not isinstance(cfg.output_data, str):
        return cfg.output_data
    try:
        return json.loads(cfg.output_data)
    except ValueError as e:
        raise ConfigurationError("Start node's Initial Output Data is not valid JSON.") from e


def _resolve_headers(ctx: NodeContext, template: Any) -> Optional[Dict[str, Any]]:
    resolved = ctx.resolve(template)
    if isinstance(resolved, str):
        try:
            resolved = json.loads(resolved)
        except ValueError as e:
            raise ConfigurationError(f"Headers are not valid. {e}") from e
    if not isinstance(resolved, dict):
        raise ConfigurationError(
            "Headers are not valid. Resolved headers are not a valid object or JSON string."
        )
    return resolved


@handles(NodeType.API_REQUEST)
async def run_api_request(ctx: NodeContext) -> Any:
    cfg = _load_config(ApiRequestConfig, ctx)
    method = (cfg.method or "GET").upper()

    url = ctx.resolve(cfg.url)
    if url is None or not stringify(url).strip():
        raise ConfigurationError("API Request URL is not configured.")
    url = stringify(url).strip()

    body = None
    if cfg.body_template and method in BODY_METHODS:
        body = stringify(ctx.resolve(cfg.body_template))

    headers = _resolve_headers(ctx, cfg.headers) if cfg.headers else None
    return await ctx.services.http.request(url, method, headers, body)


@handles(NodeType.LOG_OUTPUT)
async def run_log_output(ctx: NodeContext) -> Any:
    logger.info("LOG [%s]: %s", ctx.node.label, stringify(ctx.input))
    return ctx.input


def parse_number(value: Any) -> Optional[float]:
    """
    Numeric value of an operand, or None if it is not a number.

    Strings yield their leading numeric prefix, so "10px" is 10 and
    "abc" is not a number.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _NUMBER_PREFIX.match(value)
        if match is None:
            return None
        number = float(match.group(1).replace("Infinity", "inf"))
    else:
        return None
    return None if math.isnan(number) else number


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "===": operator.eq,
    "!==": operator.ne,
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}


def compare(left: Any, op: str, right: Any) -> bool:
    """Compare numerically when both sides are numbers, else as strings."""
    fn = _COMPARATORS.get(op)
    if fn is None:
        raise ConfigurationError(f"Unknown IF operator: {op}")
    a, b = parse_number(left), parse_number(right)
    if a is not None and b is not None:
        return bool(fn(a, b))
    return bool(fn(stringify(left), stringify(right)))


@handles(NodeType.IF)
async def run_if(ctx: NodeContext) -> bool:
    cfg = _load_config(IfConfig, ctx)
    return compare(ctx.resolve(cfg.value1), cfg.operator, ctx.resolve(cfg.value2))


@handles(NodeType.SET_DATA)
async def run_set_data(ctx: NodeContext) -> Any:
    cfg = _load_config(SetDataConfig, ctx)
    resolved = ctx.resolve(cfg.data)
    if not isinstance(resolved, str):
        return resolved
    try:
        return json.loads(resolved)
    except ValueError as e:
        raise ConfigurationError("The data in the Set Data node is not valid JSON.") from e


@handles(NodeType.GEMINI_TEXT)
async def run_text_generate(ctx: NodeContext) -> str:
    cfg = _load_config(TextGenerateConfig, ctx)
    if not cfg.prompt_template:
        raise ConfigurationError("Prompt template is not configured.")
    generator = ctx.services.text_generator
    if generator is None:
        raise ConfigurationError("Text generation endpoint is not configured.")
    prompt = stringify(ctx.resolve(cfg.prompt_template))
    return await generator.generate(prompt)


@handles(NodeType.AI_AGENT)
async def run_agent(ctx: NodeContext) -> str:
    chat_model = ctx.services.chat_model
    if chat_model is None:
        raise ConfigurationError(
            "OpenRouter API Key is not configured. Set OPENROUTER_API_KEY."
        )
    cfg = _load_config(AgentConfig, ctx)
    if not cfg.goal_template:
        raise ConfigurationError("Agent goal is not configured.")
    goal = stringify(ctx.resolve(cfg.goal_template))
    agent = ToolCallingAgent(chat_model, ctx.services.http, registry=ctx.services.tools)
    return await agent.run(goal)


_unhandled = [t.value for t in NodeType if t not in HANDLERS]
if _unhandled:
    raise RuntimeError(f"No handler registered for node types: {_unhandled}")


async def dispatch(ctx: NodeContext) -> Any:
    """Run the handler for the context's node type."""
    try:
        node_type = NodeType(ctx.node.node_type)
    except ValueError:
        raise DispatchError(f"Unknown node type: {ctx.node.node_type}") from None
    return await HANDLERS[node_type](ctx)
