"""Executor registry and the executor interface."""

from siteflow.runner.executor_registry import (
    ExecutorRegistry,
    ExecutorResult,
    FunctionExecutor,
    TaskExecutor,
)

__all__ = ["ExecutorRegistry", "ExecutorResult", "FunctionExecutor", "TaskExecutor"]
