"""
Tool-calling agent loop.

The agent sends the goal to a chat model with the registered tools declared.
Whenever the model answers with tool calls, each call is executed and its
result appended to the conversation; the first reply without tool calls is
the final answer. The exchange is capped at MAX_ROUNDS model calls.

Tool failures never fail the loop. They are reported back to the model as
the tool's result so it can recover or explain.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from .http_client import HttpClient
from .llm import ChatModel, ToolCall
from .tools import ToolRegistry, get_global_registry

logger = logging.getLogger(__name__)

MAX_ROUNDS = 5
NO_OUTPUT_MESSAGE = "Agent finished with no output."
MAX_ROUNDS_MESSAGE = "Agent reached maximum iterations without a final answer."

AGENT_SYSTEM_PROMPT = """You are an AI agent that accomplishes the user's goal.
You can call tools to gather the information you need.
Work step by step:
1. Work out what the goal requires.
2. When you need data from the web, call the 'make_api_request' tool. You may call it more than once.
3. When you have what you need, write the final answer.
4. The final answer must be plain text that directly addresses the goal, with no tool calls.
"""


class ToolCallingAgent:
    """
    Bounded tool-calling loop.

    Args:
        chat_model: Chat-completion endpoint.
        http: HTTP client handed to tools.
        registry: Tools offered to the model. Defaults to the global registry.
        max_rounds: Maximum number of model calls.
    """

    def __init__(
        self,
        chat_model: ChatModel,
        http: HttpClient,
        registry: Optional[ToolRegistry] = None,
        max_rounds: int = MAX_ROUNDS,
    ):
        self.chat_model = chat_model
        self.http = http
        self.registry = registry or get_global_registry()
        self.max_rounds = max_rounds

    async def run(self, goal: str) -> str:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": AGENT_SYSTEM_PROMPT},
            {"role": "user", "content": goal},
        ]
        tools = self.registry.schemas()

        for round_no in range(1, self.max_rounds + 1):
            logger.info("Agent round %d/%d", round_no, self.max_rounds)
            reply = await self.chat_model.complete(messages, tools=tools, tool_choice="auto")

            if not reply.tool_calls:
                return reply.content or NO_OUTPUT_MESSAGE

            messages.append(reply.to_message())
            for call in reply.tool_calls:
                messages.append(
                    {
                        "tool_call_id": call.id,
                        "role": "tool",
                        "content": await self._execute(call),
                    }
                )

        return MAX_ROUNDS_MESSAGE

    async def _execute(self, call: ToolCall) -> str:
        try:
            arguments = json.loads(call.arguments or "{}")
            if not isinstance(arguments, dict):
                raise ValueError("tool arguments must be a JSON object")
            result = await self.registry.invoke(call.name, arguments, http=self.http)
        except Exception as e:
            logger.warning("Agent tool call %s failed: %s", call.name, e)
            return (
                "Error: Failed to execute tool call. Invalid arguments provided. "
                f"Details: {e}"
            )
        return result if isinstance(result, str) else json.dumps(result)
