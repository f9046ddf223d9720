"""
siteflow - run dependency-ordered task graphs over a shared context.

Typical use:
    engine = TaskGraphEngine()
    engine.registry.register_function(generate_sitemap, name="sitemap")
    handle = await engine.start_analysis("site-1", "user-1")
"""

from siteflow.errors import ErrorCode, SiteflowError
from siteflow.graph import BranchRoute, BranchSelector, DependencyGraph, GraphBuilder, TaskNode
from siteflow.runner import ExecutorRegistry, ExecutorResult
from siteflow.runtime import TaskGraphEngine
from siteflow.schemas import ExecutionMode, ExecutionSession, SessionStatus

__all__ = [
    "TaskGraphEngine",
    "ExecutorRegistry",
    "ExecutorResult",
    "GraphBuilder",
    "DependencyGraph",
    "TaskNode",
    "BranchRoute",
    "BranchSelector",
    "ExecutionMode",
    "ExecutionSession",
    "SessionStatus",
    "ErrorCode",
    "SiteflowError",
]
