"""Builders and fakes shared by the test modules."""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx

from flowengine.core.config import Settings
from flowengine.core.engine import WorkflowEngine
from flowengine.core.graph import WorkflowGraph
from flowengine.core.http_client import HttpClient
from flowengine.core.llm import ChatReply, ToolCall
from flowengine.core.nodes import NodeServices


def node(node_id: str, node_type: str, label: str, config: Optional[dict] = None, x=0, y=0) -> dict:
    return {
        "id": node_id,
        "type": node_type,
        "position": {"x": x, "y": y},
        "data": {"nodeType": node_type, "label": label, "config": config or {}},
    }


def edge(source: str, target: str, handle: Optional[str] = None) -> dict:
    data = {"id": f"e{source}-{target}", "source": source, "target": target}
    if handle is not None:
        data["id"] = f"e{source}{handle[0]}-{target}"
        data["sourceHandle"] = handle
    return data


def build_graph(nodes: List[dict], edges: List[dict], graph_id: Optional[str] = None) -> WorkflowGraph:
    fields: Dict[str, Any] = {"nodes": nodes, "edges": edges}
    if graph_id:
        fields["graph_id"] = graph_id
    return WorkflowGraph.model_validate(fields)


def http_client(handler: Callable[[httpx.Request], httpx.Response]) -> HttpClient:
    return HttpClient(timeout=5.0, transport=httpx.MockTransport(handler))


def tool_call(call_id: str, url: str, **extra: Any) -> ToolCall:
    return ToolCall(id=call_id, name="make_api_request", arguments=json.dumps({"url": url, **extra}))


class FakeChatModel:
    """Replays canned replies; the last one repeats once the list is exhausted."""

    def __init__(self, replies: List[ChatReply]):
        self.replies = replies
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, messages, tools=None, tool_choice="auto", max_tokens=None) -> ChatReply:
        self.calls.append(
            {
                "messages": list(messages),
                "tools": tools,
                "tool_choice": tool_choice,
                "max_tokens": max_tokens,
            }
        )
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        return self.replies[index]


class FakeTextGenerator:
    def __init__(self, text: str = "generated"):
        self.text = text
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.text


def not_found(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404, text="no route")


def make_services(
    handler: Callable[[httpx.Request], httpx.Response] = not_found,
    chat_model: Any = None,
    text_generator: Any = None,
) -> NodeServices:
    return NodeServices(
        http=http_client(handler),
        text_generator=text_generator or FakeTextGenerator(),
        chat_model=chat_model,
    )


def make_engine(services: Optional[NodeServices] = None) -> WorkflowEngine:
    settings = Settings(openrouter_api_key=None, gemini_api_key=None, step_delay=0.0)
    return WorkflowEngine(services=services or make_services(), settings=settings)
