"""Executor discovery and registration for the task runner."""

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ExecutorResult(BaseModel):
    """Outcome reported by an executor."""

    success: bool
    data: Any = None
    error: str | None = None

    model_config = {"extra": "allow"}

    @classmethod
    def coerce(cls, raw: Any) -> "ExecutorResult":
        """
        Normalise whatever an executor returned.

        Accepts an ExecutorResult, a ``{"success", "data", "error"}`` envelope
        (``error`` may itself be ``{"message": ...}``), or any other value,
        which is treated as successful data. A dict is only an envelope when
        its ``success`` is a bool; ``{"success": 3, "pages": 12}`` is data.
        """
        if isinstance(raw, ExecutorResult):
            return raw
        if isinstance(raw, dict) and isinstance(raw.get("success"), bool):
            error = raw.get("error")
            if isinstance(error, dict):
                error = error.get("message") or str(error)
            return cls(
                success=raw["success"],
                data=raw.get("data"),
                error=str(error) if error is not None else None,
            )
        return cls(success=True, data=raw)


@runtime_checkable
class TaskExecutor(Protocol):
    """
    The one capability every tool exposes.

    ``input`` is the node's static parameters overlaid with live context.
    ``context`` is the live shared context of the run; executors may read it
    and, like any collaborator, may mutate it. The runner rolls such
    mutations back if the node fails.
    """

    name: str

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> Any: ...


class FunctionExecutor:
    """Adapts a plain function ``func(input, context)`` to TaskExecutor."""

    def __init__(self, func: Callable[..., Any], name: str | None = None):
        self.func = func
        self.name = name or func.__name__
        self._is_async = inspect.iscoroutinefunction(func)

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> Any:
        if self._is_async:
            return await self.func(input, context)
        return await asyncio.to_thread(self.func, input, context)

    def __repr__(self) -> str:
        return f"FunctionExecutor({self.name!r})"


@dataclass
class RegisteredExecutor:
    """An executor with its registry name."""

    name: str
    executor: TaskExecutor
    description: str = ""


class ExecutorRegistry:
    """
    Name -> executor lookup, built once at startup.

    Example:
        registry = ExecutorRegistry()
        registry.register(SitemapExecutor())
        registry.register_function(audit_content, name="content_audit")
    """

    def __init__(self):
        self._executors: dict[str, RegisteredExecutor] = {}

    def register(
        self,
        executor: TaskExecutor,
        name: str | None = None,
        description: str = "",
    ) -> None:
        """
        Register a single executor.

        Args:
            executor: Object with an ``execute(input, context)`` method
            name: Registry key (defaults to ``executor.name``)
            description: Free-form description
        """
        if not callable(getattr(executor, "execute", None)):
            raise TypeError(f"Executor {executor!r} has no execute() method")

        key = name or getattr(executor, "name", None)
        if not key:
            raise ValueError("Executor name is required")

        if key in self._executors:
            logger.warning(f"Replacing registered executor '{key}'")
        self._executors[key] = RegisteredExecutor(name=key, executor=executor, description=description)

    def register_function(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> None:
        """
        Register a function as an executor.

        Args:
            func: ``func(input, context)``, sync or async
            name: Registry key (defaults to function name)
            description: Defaults to the docstring
        """
        executor = FunctionExecutor(func, name=name)
        self.register(executor, name=executor.name, description=description or func.__doc__ or "")

    def get(self, name: str) -> TaskExecutor | None:
        """Return the executor registered under ``name``, or None."""
        registered = self._executors.get(name)
        return registered.executor if registered else None

    def has_executor(self, name: str) -> bool:
        return name in self._executors

    def get_registered_names(self) -> list[str]:
        """Get list of registered executor names."""
        return list(self._executors.keys())

    def __len__(self) -> int:
        return len(self._executors)
