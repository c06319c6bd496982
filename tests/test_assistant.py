import asyncio
import json

import pytest

from flowengine.core.assistant import (
    MAX_TOKENS,
    AssistantIntent,
    WorkflowAssistant,
    apply_update,
    extract_json,
    parse_reply,
)
from flowengine.core.document import export_workflow
from flowengine.core.errors import AssistantError, ConfigurationError, InvalidWorkflowError
from flowengine.core.llm import ChatReply
from flowengine.workflows.samples import create_sample_workflow

from factories import FakeChatModel, edge, node


def test_extract_json_from_fence_and_prose():
    fenced = 'Sure!\n```json\n{"intent": "CONVERSE", "payload": "hi"}\n```\nBye'
    assert json.loads(extract_json(fenced)) == {"intent": "CONVERSE", "payload": "hi"}
    prose = 'Here you go: {"intent": "CONVERSE", "payload": "{x}"} thanks'
    assert json.loads(extract_json(prose))["payload"] == "{x}"


def test_parse_reply_validates_shape():
    reply = parse_reply('{"intent": "CONVERSE", "payload": "Hello"}')
    assert reply.intent == AssistantIntent.CONVERSE
    assert reply.payload == "Hello"

    for bad in ["", "not json", '{"payload": "x"}', '{"intent": "DANCE", "payload": "x"}',
                '{"intent": "CONVERSE", "payload": {"nodes": []}}',
                '{"intent": "UPDATE_WORKFLOW", "payload": "text"}']:
        with pytest.raises(AssistantError):
            parse_reply(bad)


def test_send_message_builds_context():
    chat = FakeChatModel([ChatReply(content='{"intent": "CONVERSE", "payload": "It fetches a todo."}')])
    graph = create_sample_workflow()
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

    reply = asyncio.run(WorkflowAssistant(chat).send_message(history, "What does this do?", graph))

    assert reply.payload == "It fetches a todo."
    call = chat.calls[0]
    assert call["max_tokens"] == MAX_TOKENS
    messages = call["messages"]
    assert messages[0]["role"] == "system"
    assert messages[1:3] == history
    assert "Fetch Todo" in messages[-1]["content"]
    assert messages[-1]["content"].endswith("User Request: What does this do?")


def test_send_message_requires_credential():
    with pytest.raises(ConfigurationError):
        asyncio.run(WorkflowAssistant(None).send_message([], "hi", create_sample_workflow()))


def test_apply_update_returns_new_graph():
    current = create_sample_workflow()
    payload = {
        "nodes": [node("1", "start", "Start", x="5", y=7), node("9", "logOutput", "Only Log", {"junk": 1})],
        "edges": [edge("1", "9")],
    }
    reply = parse_reply(json.dumps({"intent": "UPDATE_WORKFLOW", "payload": payload, "explanation": "Simplified"}))

    updated = apply_update(reply, current)

    assert updated.graph_id == current.graph_id
    assert [n.id for n in updated.nodes] == ["1", "9"]
    assert updated.nodes[0].position.x == 5
    assert reply.explanation == "Simplified"
    assert len(current.nodes) == 3


def test_rejected_update_leaves_current_untouched():
    current = create_sample_workflow()
    before = export_workflow(current)
    payload = {"nodes": [node("1", "start", "Start")], "edges": [edge("1", "404")]}
    reply = parse_reply(json.dumps({"intent": "UPDATE_WORKFLOW", "payload": payload}))

    with pytest.raises(InvalidWorkflowError):
        apply_update(reply, current)
    assert export_workflow(current) == before


def test_update_without_position_is_rejected():
    payload = {"nodes": [node("1", "start", "Start")], "edges": []}
    del payload["nodes"][0]["position"]
    reply = parse_reply(json.dumps({"intent": "UPDATE_WORKFLOW", "payload": payload}))
    with pytest.raises(InvalidWorkflowError):
        apply_update(reply, create_sample_workflow())
