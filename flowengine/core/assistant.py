"""
Workflow assistant.

A chat endpoint that either answers questions about the current workflow
(CONVERSE) or returns a complete replacement workflow (UPDATE_WORKFLOW).
Replacement workflows go through the same sanitize-and-validate path as
imported files; a rejected update never touches the current graph.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .document import export_workflow, graph_from_document, is_valid_workflow, sanitize_workflow
from .errors import AssistantError, ConfigurationError, InvalidWorkflowError
from .graph import NodeType, WorkflowGraph
from .llm import ChatModel

logger = logging.getLogger(__name__)

MAX_TOKENS = 4096
_FENCED_JSON = re.compile(r"```json\s*\n([\s\S]*?)\n\s*```")
_NODE_TYPE_NAMES = ", ".join(f'"{t.value}"' for t in NodeType)

SYSTEM_INSTRUCTION = f"""You are the assistant of a visual workflow builder.
You help the user by answering questions and by editing the workflow on the canvas.

Every user request is preceded by the current workflow, serialized as JSON:
```json
{{"nodes": [...], "edges": [...]}}
```
Read it to understand what is currently on the canvas.

Reply with a single JSON object and nothing else:
{{
  "intent": "CONVERSE" | "UPDATE_WORKFLOW",
  "payload": "string" | {{"nodes": [...], "edges": [...]}},
  "explanation": "Short summary of the changes (UPDATE_WORKFLOW only)"
}}

- CONVERSE: the user asks a question, wants help, or makes a general remark.
  The payload is your answer as a string.
- UPDATE_WORKFLOW: the user asks to create, add, change, connect, delete or
  modify part of the workflow. The payload is the ENTIRE new workflow, with
  every node and edge that should remain, not just the changes.

Rules for updates:
1. Start from the current workflow unless asked to start over.
2. Keep the positions of existing nodes; place new nodes next to related ones.
3. Node and edge ids must be unique. Edge ids look like 'e<source>-<target>'.
   Edges leaving an 'if' node carry "sourceHandle": "true" or "false".
4. Available node types (set data.nodeType): {_NODE_TYPE_NAMES}.
   "geminiText" sends a prompt to a text-generation model and outputs its reply.
   "aiAgent" runs a goal through a tool-using agent that can call HTTP APIs.
"""


class AssistantIntent(str, Enum):
    CONVERSE = "CONVERSE"
    UPDATE_WORKFLOW = "UPDATE_WORKFLOW"


@dataclass
class AssistantReply:
    intent: AssistantIntent
    payload: Any
    explanation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.value,
            "payload": self.payload,
            "explanation": self.explanation,
        }


def extract_json(text: str) -> str:
    """Pull the JSON object out of a model reply that may wrap it in prose or fences."""
    match = _FENCED_JSON.search(text)
    if match:
        return match.group(1)
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        return text[first : last + 1]
    return text


def parse_reply(text: Optional[str]) -> AssistantReply:
    if not text:
        raise AssistantError("The AI model returned an empty response.")
    try:
        data = json.loads(extract_json(text))
    except ValueError as e:
        raise AssistantError(f"The AI model returned invalid JSON. Details: {e}") from e
    if not isinstance(data, dict) or not data.get("intent") or "payload" not in data:
        raise AssistantError("AI response is not in the expected format (intent/payload).")

    try:
        intent = AssistantIntent(data["intent"])
    except ValueError:
        raise AssistantError(f"Unknown assistant intent: {data['intent']}") from None
    payload = data["payload"]
    if intent == AssistantIntent.CONVERSE and not isinstance(payload, str):
        raise AssistantError("The AI returned an invalid response structure.")
    if intent == AssistantIntent.UPDATE_WORKFLOW and not isinstance(payload, dict):
        raise AssistantError("The AI returned an invalid response structure.")
    explanation = data.get("explanation")
    return AssistantReply(
        intent=intent,
        payload=payload,
        explanation=explanation if isinstance(explanation, str) else None,
    )


def apply_update(reply: AssistantReply, current: WorkflowGraph) -> WorkflowGraph:
    """
    Build the graph an UPDATE_WORKFLOW reply describes.

    The returned graph keeps the current graph's id and name. ``current`` is
    never modified.

    Raises:
        InvalidWorkflowError: If the payload fails validation.
    """
    if reply.intent != AssistantIntent.UPDATE_WORKFLOW:
        raise InvalidWorkflowError("Assistant reply does not contain a workflow update.")
    doc = sanitize_workflow(reply.payload)
    if not is_valid_workflow(doc):
        raise InvalidWorkflowError(
            "The AI assistant returned a workflow with an invalid format. "
            "The changes could not be applied."
        )
    return graph_from_document(doc, name=current.name, graph_id=current.graph_id)


class WorkflowAssistant:
    """
    Args:
        chat_model: Chat-completion endpoint. None means no credential is configured.
    """

    def __init__(self, chat_model: Optional[ChatModel]):
        self.chat_model = chat_model

    def build_messages(
        self, history: List[Dict[str, str]], prompt: str, graph: WorkflowGraph
    ) -> List[Dict[str, Any]]:
        context = (
            "This is the current workflow state on the canvas:\n```json\n"
            f"{json.dumps(export_workflow(graph), indent=2)}\n```\n\n"
            f"User Request: {prompt}"
        )
        messages: List[Dict[str, Any]] = [{"role": "system", "content": SYSTEM_INSTRUCTION}]
        for turn in history:
            role = turn.get("role")
            if role in ("user", "assistant"):
                messages.append({"role": role, "content": turn.get("content", "")})
        messages.append({"role": "user", "content": context})
        return messages

    async def send_message(
        self, history: List[Dict[str, str]], prompt: str, graph: WorkflowGraph
    ) -> AssistantReply:
        if self.chat_model is None:
            raise ConfigurationError(
                "OpenRouter API Key is not configured for the AI Assistant."
            )
        reply = await self.chat_model.complete(
            self.build_messages(history, prompt, graph), max_tokens=MAX_TOKENS
        )
        parsed = parse_reply(reply.content)
        logger.info("Assistant replied with intent %s", parsed.intent.value)
        return parsed
