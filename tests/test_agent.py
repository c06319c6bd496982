import asyncio
import json

import httpx

from flowengine.core.agent import MAX_ROUNDS, MAX_ROUNDS_MESSAGE, NO_OUTPUT_MESSAGE, ToolCallingAgent
from flowengine.core.llm import ChatReply, ToolCall
from flowengine.core.tools import ToolRegistry, get_global_registry

from factories import FakeChatModel, http_client, tool_call


def todo_api(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/todos/1":
        return httpx.Response(200, json={"id": 1, "title": "buy milk"})
    return httpx.Response(500, text="boom")


def test_tool_call_then_final_answer():
    chat = FakeChatModel(
        [
            ChatReply(content=None, tool_calls=[tool_call("c1", "https://api.test/todos/1")]),
            ChatReply(content="The todo is: buy milk"),
        ]
    )
    agent = ToolCallingAgent(chat, http_client(todo_api))

    assert asyncio.run(agent.run("What is todo 1?")) == "The todo is: buy milk"
    assert len(chat.calls) == 2

    second = chat.calls[1]["messages"]
    assert second[0]["role"] == "system"
    assert second[1] == {"role": "user", "content": "What is todo 1?"}
    assert second[2]["role"] == "assistant"
    assert second[2]["tool_calls"][0]["function"]["name"] == "make_api_request"
    assert second[3]["role"] == "tool"
    assert second[3]["tool_call_id"] == "c1"
    assert json.loads(second[3]["content"]) == {"id": 1, "title": "buy milk"}
    assert chat.calls[0]["tool_choice"] == "auto"


def test_always_calling_tools_hits_round_limit():
    chat = FakeChatModel([ChatReply(content=None, tool_calls=[tool_call("c", "https://api.test/todos/1")])])
    agent = ToolCallingAgent(chat, http_client(todo_api))

    assert asyncio.run(agent.run("loop forever")) == MAX_ROUNDS_MESSAGE
    assert len(chat.calls) == MAX_ROUNDS == 5


def test_empty_final_reply():
    agent = ToolCallingAgent(FakeChatModel([ChatReply(content="")]), http_client(todo_api))
    assert asyncio.run(agent.run("anything")) == NO_OUTPUT_MESSAGE


def test_failures_become_tool_results():
    chat = FakeChatModel(
        [
            ChatReply(
                content=None,
                tool_calls=[
                    tool_call("bad-status", "https://api.test/explode"),
                    ToolCall(id="bad-json", name="make_api_request", arguments="{not json"),
                    ToolCall(id="unknown", name="launch_rockets", arguments="{}"),
                ],
            ),
            ChatReply(content="recovered"),
        ]
    )
    agent = ToolCallingAgent(chat, http_client(todo_api))

    assert asyncio.run(agent.run("try things")) == "recovered"
    tool_messages = [m for m in chat.calls[1]["messages"] if m.get("role") == "tool"]
    assert [m["tool_call_id"] for m in tool_messages] == ["bad-status", "bad-json", "unknown"]
    for message in tool_messages:
        assert message["content"].startswith("Error: Failed to execute tool call.")
    assert "API Error: 500" in tool_messages[0]["content"]


def test_unparseable_headers_are_dropped():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = dict(request.headers)
        seen["body"] = request.content
        return httpx.Response(200, text="created")

    chat = FakeChatModel(
        [
            ChatReply(
                content=None,
                tool_calls=[
                    tool_call("c1", "https://api.test/items", method="POST", headers="{bad", body={"n": 1})
                ],
            ),
            ChatReply(content="ok"),
        ]
    )
    agent = ToolCallingAgent(chat, http_client(handler))

    assert asyncio.run(agent.run("create")) == "ok"
    assert json.loads(seen["body"]) == {"n": 1}
    tool_message = chat.calls[1]["messages"][-1]
    assert tool_message["content"] == "created"


def test_make_api_request_schema_is_declared():
    schemas = get_global_registry().schemas()
    names = [s["function"]["name"] for s in schemas]
    assert "make_api_request" in names
    params = schemas[names.index("make_api_request")]["function"]["parameters"]
    assert params["required"] == ["url"]
    assert params["properties"]["method"]["enum"] == ["GET", "POST", "PUT", "DELETE", "PATCH"]


def test_custom_registry_derives_schema_from_signature():
    registry = ToolRegistry()

    @registry.register(description="Echo a value")
    async def echo(value: str, times: int = 1, *, http=None) -> str:
        return value * times

    schema = registry.get("echo").parameters
    assert schema == {
        "type": "object",
        "properties": {"value": {"type": "string"}, "times": {"type": "integer"}},
        "required": ["value"],
    }
    assert asyncio.run(registry.invoke("echo", {"value": "ab", "times": 2, "junk": 1}, http=None)) == "abab"
