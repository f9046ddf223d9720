"""
Session Schema - State of one task-graph run.

An ExecutionSession is created when a run is submitted, mutated by the
Scheduler and TaskRunner while it runs, and left untouched once it reaches a
terminal status. Checkpoints and memo entries live alongside it.
"""

import math
import time
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class SessionStatus(StrEnum):
    """Status of a session execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED})


class ExecutionMode(StrEnum):
    """Concurrency discipline used by the Scheduler."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class GraphMode(StrEnum):
    """How the graph was described by the caller."""

    CATALOG = "catalog"  # Selection from the fixed task/dependency table
    WORKFLOW = "workflow"  # Explicit nodes + connections


class Impact(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


IMPACT_RANK = {Impact.HIGH: 0, Impact.MEDIUM: 1, Impact.LOW: 2}


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Checkpoint(BaseModel):
    """Context snapshot taken immediately before a node runs."""

    node_id: str
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    model_config = {"extra": "allow"}


class MemoEntry(BaseModel):
    """A memoized executor result."""

    key: str
    value: Any = None
    inserted_at: float = Field(default_factory=time.monotonic)
    ttl_seconds: float

    def is_expired(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.inserted_at >= self.ttl_seconds


class Suggestion(BaseModel):
    """A cross-cutting finding derived from completed node results."""

    type: str
    category: str = "general"
    message: str
    detail: str = ""
    confidence: Confidence = Confidence.MEDIUM
    impact: Impact = Impact.MEDIUM
    related_nodes: list[str] = Field(default_factory=list)


class SessionProgress(BaseModel):
    """Execution progress tracking."""

    completed: int = 0
    total: int = 0
    current_node: str | None = None


class ExecutionSession(BaseModel):
    """
    Complete state for one run.

    ``results`` and ``errors`` are keyed by node id; a node appears in at most
    one of them. Nodes never dispatched (circuit breaker, untaken branches)
    appear in neither.
    """

    id: str
    status: SessionStatus = SessionStatus.PENDING
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    graph_mode: GraphMode = GraphMode.CATALOG

    nodes: list[str] = Field(default_factory=list)
    progress: SessionProgress = Field(default_factory=SessionProgress)

    results: dict[str, Any] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)

    # Shared context as it stood when the run ended
    context: dict[str, Any] = Field(default_factory=dict)

    # Aggregate error for failed sessions
    error: str | None = None
    error_code: str | None = None

    # Caller-supplied data (site_id, user_id, ...)
    metadata: dict[str, Any] = Field(default_factory=dict)

    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    ttl_seconds: float = 300.0

    model_config = {"extra": "allow"}

    @computed_field
    @property
    def max_failures(self) -> int:
        """Circuit breaker threshold: a third of the nodes, rounded up."""
        return math.ceil(len(self.nodes) / 3) if self.nodes else 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def touch(self) -> None:
        self.updated_at = datetime.now().isoformat()

    def mark_running(self) -> None:
        self.status = SessionStatus.RUNNING
        self.touch()

    def mark_completed(self) -> None:
        self.status = SessionStatus.COMPLETED
        self.progress.current_node = None
        self.touch()

    def mark_failed(self, error: str, code: str | None = None) -> None:
        self.status = SessionStatus.FAILED
        self.error = error
        self.error_code = code
        self.progress.current_node = None
        self.touch()

    def record_success(self, node_id: str, data: Any) -> None:
        """Record a settled, successful node."""
        self.results[node_id] = data
        self._settle()

    def record_failure(self, node_id: str, message: str) -> None:
        """Record a settled, failed node."""
        self.errors[node_id] = message
        self._settle()

    def _settle(self) -> None:
        if self.progress.completed < self.progress.total:
            self.progress.completed += 1
        self.touch()

    @property
    def settled_nodes(self) -> list[str]:
        return [n for n in self.nodes if n in self.results or n in self.errors]
