"""
LLM endpoints.

Two thin wrappers over ``litellm.acompletion``:

- ChatModel: chat completion with optional tool declarations. Used by the
  agent loop and the workflow assistant.
- TextGenerator: single prompt in, text out. Used by text-generation nodes.

Both return plain dataclasses so callers (and test fakes) never touch
provider response objects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import litellm

from .errors import ConfigurationError, TextGenerationError, TransportError

logger = logging.getLogger(__name__)

EMPTY_GENERATION_MESSAGE = "The model returned an empty or blocked response."


@dataclass
class ToolCall:
    """A tool invocation requested by the model. ``arguments`` is raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ChatReply:
    content: Optional[str]
    tool_calls: List[ToolCall] = field(default_factory=list)
    model: str = ""

    def to_message(self) -> Dict[str, Any]:
        """Assistant message in the shape the chat endpoint expects back in history."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return message


def _parse_reply(response: Any, model: str) -> ChatReply:
    message = response.choices[0].message
    calls = []
    for tc in getattr(message, "tool_calls", None) or []:
        calls.append(
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )
        )
    return ChatReply(
        content=getattr(message, "content", None),
        tool_calls=calls,
        model=getattr(response, "model", model) or model,
    )


class ChatModel:
    """Chat-completion endpoint."""

    def __init__(self, model: str, api_key: Optional[str] = None, timeout: float = 120.0):
        self.model = model
        self.api_key = api_key
        self.timeout = timeout

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: str = "auto",
        max_tokens: Optional[int] = None,
    ) -> ChatReply:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "timeout": self.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = tool_choice
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise TransportError(f"Chat completion failed ({self.model}): {e}") from e
        return _parse_reply(response, self.model)


class TextGenerator:
    """Text-generation endpoint: one prompt, one text reply."""

    def __init__(self, model: str, api_key: Optional[str] = None, timeout: float = 120.0):
        self.model = model
        self.api_key = api_key
        self.timeout = timeout

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "Text generation API key is not configured. Set GEMINI_API_KEY."
            )
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                api_key=self.api_key,
                timeout=self.timeout,
            )
        except Exception as e:
            raise TextGenerationError(f"Text generation error: {e}") from e

        text = _parse_reply(response, self.model).content
        if not text:
            raise TextGenerationError(EMPTY_GENERATION_MESSAGE)
        return text
