"""
Error types for the task-graph engine.

Every error carries a stable ``code`` so callers can branch on it without
parsing messages. Structural errors are raised before anything is
dispatched; per-node errors are captured into the session instead of
propagating.
"""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable error codes exposed to callers."""

    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    INVALID_WORKFLOW_STRUCTURE = "INVALID_WORKFLOW_STRUCTURE"
    NO_START_NODE = "NO_START_NODE"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    NODE_EXECUTION_ERROR = "NODE_EXECUTION_ERROR"
    NODE_TIMEOUT = "NODE_TIMEOUT"
    CIRCUIT_BREAKER_TRIPPED = "CIRCUIT_BREAKER_TRIPPED"
    NOT_FOUND = "NOT_FOUND"
    ANALYSIS_IN_PROGRESS = "ANALYSIS_IN_PROGRESS"
    RESULT_NOT_FOUND = "RESULT_NOT_FOUND"
    ANALYSIS_NOT_COMPLETE = "ANALYSIS_NOT_COMPLETE"


class SiteflowError(Exception):
    """Base class for all engine errors."""

    code: ErrorCode = ErrorCode.NODE_EXECUTION_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render as ``{code, message, details}``."""
        return {"code": str(self.code), "message": self.message, "details": self.details}


# ---------------------------------------------------------------------------
# Request / graph structure
# ---------------------------------------------------------------------------


class InvalidParametersError(SiteflowError):
    """Missing or malformed request parameters."""

    code = ErrorCode.INVALID_PARAMETERS


class InvalidWorkflowStructureError(SiteflowError):
    """Workflow nodes/connections are not well-formed."""

    code = ErrorCode.INVALID_WORKFLOW_STRUCTURE


class NoStartNodeError(SiteflowError):
    """Every node in the workflow has an incoming connection."""

    code = ErrorCode.NO_START_NODE


# ---------------------------------------------------------------------------
# Node execution
# ---------------------------------------------------------------------------


class ToolNotFoundError(SiteflowError):
    """A node references an executor that is not registered."""

    code = ErrorCode.TOOL_NOT_FOUND


class NodeExecutionError(SiteflowError):
    """An executor reported failure or raised."""

    code = ErrorCode.NODE_EXECUTION_ERROR


class NodeTimeoutError(SiteflowError):
    """An executor did not settle within the node timeout."""

    code = ErrorCode.NODE_TIMEOUT


class CircuitBreakerTrippedError(SiteflowError):
    """Too many node failures; the run was aborted."""

    code = ErrorCode.CIRCUIT_BREAKER_TRIPPED


# ---------------------------------------------------------------------------
# Session API
# ---------------------------------------------------------------------------


class SessionNotFoundError(SiteflowError):
    """Unknown or expired session id."""

    code = ErrorCode.NOT_FOUND


class AnalysisInProgressError(SiteflowError):
    """Results requested while the session is still running."""

    code = ErrorCode.ANALYSIS_IN_PROGRESS


class ResultNotFoundError(SiteflowError):
    """No result recorded for the requested node."""

    code = ErrorCode.RESULT_NOT_FOUND


class AnalysisNotCompleteError(SiteflowError):
    """Export requested for a session that did not complete."""

    code = ErrorCode.ANALYSIS_NOT_COMPLETE
