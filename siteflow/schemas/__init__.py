"""Schemas for sessions, checkpoints, memo entries and suggestions."""

from siteflow.schemas.session import (
    Checkpoint,
    Confidence,
    ExecutionMode,
    ExecutionSession,
    GraphMode,
    Impact,
    MemoEntry,
    SessionProgress,
    SessionStatus,
    Suggestion,
)

__all__ = [
    "Checkpoint",
    "Confidence",
    "ExecutionMode",
    "ExecutionSession",
    "GraphMode",
    "Impact",
    "MemoEntry",
    "SessionProgress",
    "SessionStatus",
    "Suggestion",
]
