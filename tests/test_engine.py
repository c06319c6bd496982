import asyncio
import json
import time

import httpx
import pytest

from flowengine.core.errors import MissingStartNodeError, RunInProgressError
from flowengine.core.state import EventType, RunState

from factories import build_graph, edge, make_engine, make_services, node


def start(output: dict) -> dict:
    return node("1", "start", "Start", {"outputData": json.dumps(output)})


def run(engine, graph):
    engine.register_graph(graph)
    return asyncio.run(engine.run(graph.graph_id))


def test_end_to_end_start_api_log():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"message": "Hello"}
        return httpx.Response(200, json={"echo": "Hello", "id": 101})

    graph = build_graph(
        [
            start({"message": "Hello"}),
            node("2", "apiRequest", "Post It", {"url": "https://api.test/posts", "method": "POST", "bodyTemplate": "{{input}}"}),
            node("3", "logOutput", "Log"),
        ],
        [edge("1", "2"), edge("2", "3")],
    )
    engine = make_engine(make_services(handler))
    result = run(engine, graph)

    nodes = result["state"]["nodes"]
    assert result["status"] == "succeeded"
    assert nodes["2"]["output"] == {"echo": "Hello", "id": 101}
    assert nodes["3"]["output"] == nodes["2"]["output"]
    assert nodes["3"]["input"] == nodes["2"]["output"]
    assert result["state"]["execution_order"] == ["1", "2", "3"]
    assert result["state"]["activated_edges"] == ["e1-2", "e2-3"]


def test_raw_text_response_flows_to_log():
    graph = build_graph(
        [start({}), node("2", "apiRequest", "Get", {"url": "https://api.test/", "method": "GET"}), node("3", "logOutput", "Log")],
        [edge("1", "2"), edge("2", "3")],
    )
    engine = make_engine(make_services(lambda request: httpx.Response(200, text="plain")))
    nodes = run(engine, graph)["state"]["nodes"]
    assert nodes["2"]["output"] == "plain"
    assert nodes["3"]["output"] == "plain"


def test_missing_start_node_executes_nothing():
    engine = make_engine()
    graph = build_graph([node("3", "logOutput", "Log")], [])
    engine.register_graph(graph)
    with pytest.raises(MissingStartNodeError):
        asyncio.run(engine.run(graph.graph_id))
    assert engine.list_runs() == []
    assert engine.active_run is None


def test_fan_in_node_runs_once_with_first_input():
    graph = build_graph(
        [
            start({"v": 0}),
            node("2", "setData", "A", {"data": '{"from": "A"}'}),
            node("3", "setData", "B", {"data": '{"from": "B"}'}),
            node("4", "logOutput", "Join"),
        ],
        [edge("1", "2"), edge("1", "3"), edge("2", "4"), edge("3", "4")],
    )
    engine = make_engine()
    result = run(engine, graph)

    assert result["state"]["execution_order"] == ["1", "2", "3", "4"]
    assert result["state"]["nodes"]["4"]["input"] == {"from": "A"}
    events = engine.get_events(result["run_id"])
    started = [e.node_id for e in events if e.type == EventType.NODE_STARTED]
    assert started.count("4") == 1


def test_if_node_follows_matching_branch_only():
    graph = build_graph(
        [
            start({"count": 10}),
            node("2", "if", "Big?", {"value1": "{{$node['Start'].output.count}}", "operator": ">", "value2": "9"}),
            node("3", "setData", "Yes", {"data": '"big"'}),
            node("4", "setData", "No", {"data": '"small"'}),
        ],
        [edge("1", "2"), edge("2", "3", "true"), edge("2", "4", "false")],
    )
    engine = make_engine()
    state = run(engine, graph)["state"]

    assert state["nodes"]["2"]["output"] is True
    assert state["nodes"]["3"]["output"] == "big"
    assert state["nodes"]["4"]["status"] == "idle"
    assert state["activated_edges"] == ["e1-2", "e2t-3"]


def test_false_condition_without_false_edge_ends_quietly():
    graph = build_graph(
        [
            start({}),
            node("2", "if", "Never", {"value1": "a", "operator": "===", "value2": "b"}),
            node("3", "logOutput", "Log"),
        ],
        [edge("1", "2"), edge("2", "3", "true")],
    )
    result = run(make_engine(), graph)
    assert result["status"] == "succeeded"
    assert result["state"]["nodes"]["3"]["status"] == "idle"


def test_failure_halts_run_and_leaves_rest_idle():
    graph = build_graph(
        [
            start({}),
            node("2", "setData", "Broken", {"data": "{nope"}),
            node("3", "setData", "Sibling", {"data": "1"}),
            node("4", "logOutput", "After"),
        ],
        [edge("1", "2"), edge("1", "3"), edge("2", "4")],
    )
    result = run(make_engine(), graph)
    state = result["state"]

    assert result["status"] == "halted"
    assert state["failed_node"] == "2"
    assert state["nodes"]["2"]["status"] == "error"
    assert "not valid JSON" in state["nodes"]["2"]["error"]
    assert state["nodes"]["3"]["status"] == "idle"
    assert state["nodes"]["4"]["status"] == "idle"


def test_events_fold_into_reported_state():
    graph = build_graph(
        [start({"a": 1}), node("2", "logOutput", "Log")],
        [edge("1", "2")],
    )
    engine = make_engine()
    received = []
    engine.on_event(received.append)
    result = run(engine, graph)

    replayed = RunState.initial(result["run_id"], graph)
    for event in received:
        replayed.apply(event)
    assert replayed.to_output() == result["state"]
    assert [e.type for e in received] == [
        EventType.RUN_STARTED,
        EventType.NODE_STARTED,
        EventType.NODE_SUCCEEDED,
        EventType.EDGE_ACTIVATED,
        EventType.NODE_STARTED,
        EventType.NODE_SUCCEEDED,
        EventType.RUN_COMPLETED,
    ]
    assert [e.sequence for e in received] == list(range(len(received)))


def test_runs_are_deterministic():
    graph = build_graph(
        [start({}), node("2", "logOutput", "A"), node("3", "logOutput", "B"), node("4", "logOutput", "C")],
        [edge("1", "3"), edge("1", "2"), edge("3", "4")],
    )
    engine = make_engine()
    first = run(engine, graph)["state"]
    second = run(engine, graph)["state"]
    assert first["execution_order"] == second["execution_order"] == ["1", "3", "2", "4"]
    assert first["activated_edges"] == second["activated_edges"]


def test_second_run_rejected_while_active():
    async def scenario():
        gate = asyncio.Event()

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await gate.wait()
            return httpx.Response(200, json={})

        engine = make_engine(make_services(slow_handler))
        graph = build_graph(
            [start({}), node("2", "apiRequest", "Slow", {"url": "https://api.test/", "method": "GET"})],
            [edge("1", "2")],
        )
        engine.register_graph(graph)
        first = asyncio.create_task(engine.run(graph.graph_id))
        while engine.active_run is None:
            await asyncio.sleep(0)
        with pytest.raises(RunInProgressError):
            await engine.run(graph.graph_id)
        gate.set()
        result = await first
        return engine, result

    engine, result = asyncio.run(scenario())
    assert result["status"] == "succeeded"
    assert engine.active_run is None
    assert len(engine.list_runs()) == 1


def test_background_run():
    engine = make_engine()
    graph = build_graph([start({"x": 1}), node("2", "logOutput", "Log")], [edge("1", "2")])
    engine.register_graph(graph)

    run_id = engine.run_background(graph.graph_id)
    assert run_id
    deadline = time.time() + 5
    while engine.get_run_state(run_id)["status"] != "succeeded" and time.time() < deadline:
        time.sleep(0.01)

    state = engine.get_run_state(run_id)
    assert state["status"] == "succeeded"
    assert state["state"]["nodes"]["2"]["output"] == {"x": 1}
    assert engine.active_run is None


def test_unknown_graph():
    with pytest.raises(ValueError, match="Graph not found"):
        asyncio.run(make_engine().run("nope"))


def test_failing_subscriber_does_not_stall_run():
    graph = build_graph([start({"a": 1}), node("2", "logOutput", "Log")], [edge("1", "2")])
    engine = make_engine()
    received = []

    def flaky(event):
        if event.type == EventType.NODE_STARTED and event.node_id == "2":
            raise RuntimeError("subscriber went away")

    async def collector(event):
        received.append(event.type)

    engine.on_event(flaky)
    engine.on_event(collector)
    result = run(engine, graph)

    assert result["status"] == "succeeded"
    assert result["state"]["nodes"]["2"]["output"] == {"a": 1}
    assert engine.list_runs()[0]["status"] == "succeeded"
    assert received[-1] == EventType.RUN_COMPLETED
    assert engine.active_run is None
