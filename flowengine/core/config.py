"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_AGENT_MODEL = "openrouter/google/gemma-2-9b-it"
DEFAULT_TEXT_MODEL = "gemini/gemini-2.5-flash"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _gemini_key() -> Optional[str]:
    return os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")


@dataclass
class Settings:
    """
    Engine settings.

    Every field falls back to an environment variable so the service can be
    configured without code changes:

    - OPENROUTER_API_KEY / FLOW_AGENT_MODEL: chat-completion endpoint used by
      agent nodes and the workflow assistant.
    - GEMINI_API_KEY (or API_KEY) / FLOW_TEXT_MODEL: text-generation endpoint.
    - FLOW_HTTP_TIMEOUT / FLOW_LLM_TIMEOUT: per-call timeouts in seconds.
    - FLOW_STEP_DELAY: pause between nodes so status changes stay observable.
    """

    openrouter_api_key: Optional[str] = field(
        default_factory=lambda: os.environ.get("OPENROUTER_API_KEY")
    )
    agent_model: str = field(
        default_factory=lambda: os.environ.get("FLOW_AGENT_MODEL", DEFAULT_AGENT_MODEL)
    )
    gemini_api_key: Optional[str] = field(default_factory=_gemini_key)
    text_model: str = field(
        default_factory=lambda: os.environ.get("FLOW_TEXT_MODEL", DEFAULT_TEXT_MODEL)
    )
    http_timeout: float = field(
        default_factory=lambda: _env_float("FLOW_HTTP_TIMEOUT", 30.0)
    )
    llm_timeout: float = field(
        default_factory=lambda: _env_float("FLOW_LLM_TIMEOUT", 120.0)
    )
    step_delay: float = field(
        default_factory=lambda: _env_float("FLOW_STEP_DELAY", 0.1)
    )

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()
