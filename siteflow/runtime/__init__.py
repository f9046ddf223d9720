"""Runtime: context store, memo cache, task runner, scheduler and engine."""

from siteflow.runtime.context_store import ContextChange, ContextStore, deep_merge
from siteflow.runtime.engine import ResultSink, SessionHandle, TaskGraphEngine
from siteflow.runtime.memo_cache import MemoCache
from siteflow.runtime.scheduler import Scheduler
from siteflow.runtime.task_runner import NodeOutcome, TaskRunner

__all__ = [
    "ContextChange",
    "ContextStore",
    "deep_merge",
    "MemoCache",
    "NodeOutcome",
    "TaskRunner",
    "Scheduler",
    "ResultSink",
    "SessionHandle",
    "TaskGraphEngine",
]
