"""
Outbound HTTP client used by ApiRequest nodes and the agent's tool.

Responses are parsed as JSON when possible and returned as raw text
otherwise. Non-2xx statuses and network failures raise typed errors.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import HttpStatusError, TransportError

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")


class HttpClient:
    """Async HTTP client.

    Args:
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._transport = transport

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, Any]] = None,
        body: Optional[str] = None,
    ) -> Any:
        method = (method or "GET").upper()
        send_headers = {str(k): str(v) for k, v in (headers or {}).items()}
        content = body if body and method in BODY_METHODS else None

        logger.debug("HTTP %s %s", method, url)
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            try:
                resp = await client.request(
                    method, url, headers=send_headers, content=content
                )
            except httpx.TimeoutException as e:
                raise TransportError(f"Request Failed: timeout after {self._timeout}s: {url}") from e
            except httpx.HTTPError as e:
                raise TransportError(f"Request Failed: {e}") from e

        if not resp.is_success:
            raise HttpStatusError(resp.status_code, resp.reason_phrase, resp.text)

        text = resp.text
        try:
            return json.loads(text)
        except ValueError:
            return text
