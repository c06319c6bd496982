import asyncio

import httpx
import pytest

from flowengine.core.errors import HttpStatusError, TransportError
from flowengine.core.http_client import HttpClient

from factories import http_client


def test_json_response_is_parsed():
    client = http_client(lambda request: httpx.Response(200, json={"id": 1, "title": "t"}))
    assert asyncio.run(client.request("https://api.test/todos/1")) == {"id": 1, "title": "t"}


def test_non_json_response_is_returned_as_text():
    client = http_client(lambda request: httpx.Response(200, text="plain body"))
    assert asyncio.run(client.request("https://api.test/")) == "plain body"


def test_body_only_sent_for_payload_methods():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.content, request.headers.get("x-token")))
        return httpx.Response(200, json={})

    client = http_client(handler)
    asyncio.run(client.request("https://api.test/", "GET", {"X-Token": 7}, '{"a":1}'))
    asyncio.run(client.request("https://api.test/", "post", None, '{"a":1}'))
    asyncio.run(client.request("https://api.test/", "DELETE", None, '{"a":1}'))

    assert seen[0] == ("GET", b"", "7")
    assert seen[1] == ("POST", b'{"a":1}', None)
    assert seen[2] == ("DELETE", b"", None)


def test_error_status_carries_code_and_body():
    client = http_client(lambda request: httpx.Response(404, text="missing"))
    with pytest.raises(HttpStatusError) as exc:
        asyncio.run(client.request("https://api.test/nope"))
    assert exc.value.status_code == 404
    assert exc.value.body == "missing"
    assert str(exc.value) == "API Error: 404 Not Found - missing"


def test_network_failure_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = http_client(handler)
    with pytest.raises(TransportError) as exc:
        asyncio.run(client.request("https://api.test/"))
    assert not isinstance(exc.value, HttpStatusError)


def test_timeout_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    client = HttpClient(timeout=0.5, transport=httpx.MockTransport(handler))
    with pytest.raises(TransportError, match="timeout"):
        asyncio.run(client.request("https://api.test/"))
