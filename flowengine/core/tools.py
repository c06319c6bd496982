"""
Agent Tool Registry.

Tools are async Python functions the tool-calling agent may ask to run.
Each tool carries a JSON-schema description that is handed to the model in
the OpenAI function-calling format. Tools are registered with the
``register`` decorator (or ``tool`` for the global registry).

Runtime dependencies (the HTTP client) are passed to tools as keyword-only
context arguments and are never described to the model.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .expressions import stringify
from .http_client import HttpClient

logger = logging.getLogger(__name__)

_JSON_TYPES = {str: "string", int: "integer", float: "number", bool: "boolean", dict: "object", list: "array"}


@dataclass
class AgentTool:
    name: str
    description: str
    func: Callable
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def _schema_from_signature(func: Callable) -> Dict[str, Any]:
    """Derive a JSON schema from positional-or-keyword parameters."""
    sig = inspect.signature(func)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param in sig.parameters.values():
        if param.kind is not inspect.Parameter.POSITIONAL_OR_KEYWORD:
            continue
        annotation = param.annotation
        if isinstance(annotation, str):
            json_type = {"str": "string", "int": "integer", "float": "number", "bool": "boolean"}.get(
                annotation, "string"
            )
        else:
            json_type = _JSON_TYPES.get(annotation, "string")
        properties[param.name] = {"type": json_type}
        if param.default is inspect.Parameter.empty:
            required.append(param.name)
    return {"type": "object", "properties": properties, "required": required}


class ToolRegistry:
    """A registry of tools the agent can call."""

    def __init__(self):
        self._tools: Dict[str, AgentTool] = {}

    def register(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> Callable:
        """
        Decorator to register an async function as a tool.

        Args:
            name: Tool name. Defaults to the function name.
            description: Defaults to the function docstring.
            parameters: JSON schema for the arguments. Derived from the
                signature when omitted.
        """

        def decorator(func: Callable) -> Callable:
            tool_name = name or func.__name__
            self._tools[tool_name] = AgentTool(
                name=tool_name,
                description=(description or func.__doc__ or "").strip(),
                func=func,
                parameters=parameters or _schema_from_signature(func),
            )
            return func

        return decorator

    def get(self, name: str) -> Optional[AgentTool]:
        return self._tools.get(name)

    async def invoke(self, name: str, arguments: Dict[str, Any], **context: Any) -> Any:
        """
        Invoke a tool by name.

        Arguments the tool's schema does not declare are dropped.

        Raises:
            KeyError: If the tool is not found.
        """
        tool = self._tools.get(name)
        if not tool:
            raise KeyError(f"Tool not found: {name}")
        declared = tool.parameters.get("properties")
        if declared:
            arguments = {k: v for k, v in arguments.items() if k in declared}
        result = tool.func(**arguments, **context)
        if inspect.isawaitable(result):
            result = await result
        return result

    def schemas(self) -> List[Dict[str, Any]]:
        return [t.to_schema() for t in self._tools.values()]

    def list_tools(self) -> List[Dict[str, Any]]:
        return [
            {"name": t.name, "description": t.description, "parameters": t.parameters}
            for t in self._tools.values()
        ]


# Global tool registry instance
_global_registry = ToolRegistry()


def tool(
    name: Optional[str] = None,
    description: Optional[str] = None,
    parameters: Optional[Dict[str, Any]] = None,
) -> Callable:
    """Decorator to register a function as a tool in the global registry."""
    return _global_registry.register(name=name, description=description, parameters=parameters)


def get_global_registry() -> ToolRegistry:
    return _global_registry


MAKE_API_REQUEST_PARAMETERS = {
    "type": "object",
    "properties": {
        "url": {"type": "string", "description": "The URL to make the request to."},
        "method": {
            "type": "string",
            "enum": ["GET", "POST", "PUT", "DELETE", "PATCH"],
            "description": "The HTTP method.",
            "default": "GET",
        },
        "headers": {
            "type": "string",
            "description": "A JSON string representing the request headers.",
        },
        "body": {
            "type": "string",
            "description": "A JSON string representing the request body. Used for POST, PUT, PATCH.",
        },
    },
    "required": ["url"],
}


def _parse_tool_headers(headers: Any) -> Optional[Dict[str, Any]]:
    if not headers:
        return None
    if isinstance(headers, dict):
        return headers
    try:
        parsed = json.loads(headers)
    except (TypeError, ValueError) as e:
        logger.warning("make_api_request: could not parse headers JSON, ignoring: %s", e)
        return None
    if not isinstance(parsed, dict):
        logger.warning("make_api_request: headers JSON is not an object, ignoring")
        return None
    return parsed


@tool(
    name="make_api_request",
    description=(
        "Makes an HTTP request to a specified URL. "
        "Use this to fetch data from any API on the internet."
    ),
    parameters=MAKE_API_REQUEST_PARAMETERS,
)
async def make_api_request(
    url: str,
    method: str = "GET",
    headers: Any = None,
    body: Any = None,
    *,
    http: HttpClient,
) -> str:
    if body is not None and not isinstance(body, str):
        body = json.dumps(body)
    result = await http.request(url, method or "GET", _parse_tool_headers(headers), body)
    return stringify(result)
