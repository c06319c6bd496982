"""
Error taxonomy for workflow execution.

Configuration and transport errors are fatal to the node that raised them
and halt the run. Validation errors are raised before any engine state is
touched. Expression misses are never errors.
"""

from __future__ import annotations

from typing import Optional


class WorkflowError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(WorkflowError):
    """A node is misconfigured (bad JSON, missing field, unknown operator)."""


class DispatchError(ConfigurationError):
    """No behavior is registered for a node type."""


class TransportError(WorkflowError):
    """An outbound call failed before a usable response arrived."""


class HttpStatusError(TransportError):
    """An HTTP call returned a non-success status."""

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        message = f"API Error: {status_code} {reason}".rstrip()
        if body:
            message = f"{message} - {body}"
        super().__init__(message)


class TextGenerationError(WorkflowError):
    """The text-generation endpoint returned nothing usable."""


class InvalidWorkflowError(WorkflowError):
    """An externally supplied workflow document failed validation."""


class PreconditionError(WorkflowError):
    """A run could not be started."""


class MissingStartNodeError(PreconditionError):
    def __init__(self, graph_id: Optional[str] = None):
        self.graph_id = graph_id
        super().__init__("No Start node found in the workflow.")


class RunInProgressError(PreconditionError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Another run is already in progress: {run_id}")


class AssistantError(WorkflowError):
    """The workflow assistant returned an unusable reply."""
