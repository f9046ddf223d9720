"""
Task Runner - Executes one node against a context store.

For each node:
1. Resolve the executor by name (TOOL_NOT_FOUND if unregistered)
2. Answer from the memo cache when (node, context) was seen recently
3. Otherwise checkpoint the context, build the call input and dispatch
   under a timeout
4. On success merge the output into the context and memoize it
5. On failure restore the node's checkpoint

The runner reports an outcome; recording it on the session is the
scheduler's job, so a parallel wave can be folded in one place.
"""

import asyncio
import copy
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any

from siteflow.config import DEFAULT_NODE_TIMEOUT_SECONDS
from siteflow.errors import ErrorCode
from siteflow.graph.node import TaskNode, memo_key
from siteflow.observability import set_trace_context
from siteflow.runner.executor_registry import ExecutorRegistry, ExecutorResult, TaskExecutor
from siteflow.runtime.context_store import ContextStore
from siteflow.runtime.memo_cache import MemoCache

logger = logging.getLogger(__name__)


@dataclass
class NodeOutcome:
    """Result of settling one node."""

    node_id: str
    success: bool
    data: Any = None
    error: str | None = None
    error_code: ErrorCode | None = None
    from_cache: bool = False
    latency_ms: int = 0


class TaskRunner:
    """
    Runs single nodes.

    Example:
        runner = TaskRunner(registry=registry, memo_cache=MemoCache())
        outcome = await runner.run(node, ContextStore({"site_id": "s1"}))
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        memo_cache: MemoCache | None = None,
        timeout_seconds: float = DEFAULT_NODE_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.memo_cache = memo_cache
        self.timeout_seconds = timeout_seconds

    async def run(self, node: TaskNode, store: ContextStore) -> NodeOutcome:
        """Settle ``node`` against ``store``. Never raises for node-level failures."""
        set_trace_context(node_id=node.id)

        executor = self.registry.get(node.executor.name)
        if executor is None:
            message = f"Tool not found: {node.executor.name}"
            logger.error(f"✗ {node.id}: {message}")
            return NodeOutcome(
                node_id=node.id,
                success=False,
                error=message,
                error_code=ErrorCode.TOOL_NOT_FOUND,
            )

        key = memo_key(node, store.data)
        if self.memo_cache is not None:
            hit, cached = self.memo_cache.lookup(key)
            if hit:
                if isinstance(cached, dict):
                    store.merge(cached)
                logger.info(f"✓ {node.id}: served from memo cache", extra={"event": "memo_hit"})
                return NodeOutcome(node_id=node.id, success=True, data=cached, from_cache=True)

        checkpoint = store.checkpoint(node.id)
        call_input = self._build_input(node, store)

        logger.info(f"▶ {node.id}: dispatching to '{node.executor.name}'")
        started = time.perf_counter()
        deadline = asyncio.timeout(self.timeout_seconds)
        try:
            async with deadline:
                raw = await self._dispatch(executor, call_input, store.data)
            result = ExecutorResult.coerce(raw)
        except Exception as e:
            store.restore(checkpoint)
            # A TimeoutError raised inside the executor is an execution error.
            if isinstance(e, TimeoutError) and deadline.expired():
                message = (
                    f"Tool execution timed out after {self.timeout_seconds}s: "
                    f"{node.executor.name}"
                )
                code = ErrorCode.NODE_TIMEOUT
                logger.error(f"✗ {node.id}: {message}")
            else:
                message = str(e) or type(e).__name__
                code = ErrorCode.NODE_EXECUTION_ERROR
                logger.error(f"✗ {node.id}: executor raised {type(e).__name__}: {e}")
            return NodeOutcome(
                node_id=node.id,
                success=False,
                error=message,
                error_code=code,
                latency_ms=self._elapsed_ms(started),
            )

        latency_ms = self._elapsed_ms(started)
        if not result.success:
            store.restore(checkpoint)
            message = result.error or f"Tool execution failed: {node.executor.name}"
            logger.error(f"✗ {node.id}: {message}")
            return NodeOutcome(
                node_id=node.id,
                success=False,
                error=message,
                error_code=ErrorCode.NODE_EXECUTION_ERROR,
                latency_ms=latency_ms,
            )

        if isinstance(result.data, dict):
            store.merge(result.data)
        else:
            logger.debug(f"{node.id}: non-mapping output not merged into context")

        if self.memo_cache is not None:
            self.memo_cache.set(key, result.data)

        logger.info(f"✓ {node.id}: success", extra={"latency_ms": latency_ms})
        return NodeOutcome(node_id=node.id, success=True, data=result.data, latency_ms=latency_ms)

    @staticmethod
    def _build_input(node: TaskNode, store: ContextStore) -> dict[str, Any]:
        """Static params overlaid with live context; the node's action always wins."""
        call_input = copy.deepcopy(node.executor.params)
        call_input.update(store.snapshot())
        if node.executor.action:
            call_input["action"] = node.executor.action
        return call_input

    @staticmethod
    async def _dispatch(
        executor: TaskExecutor,
        call_input: dict[str, Any],
        context: dict[str, Any],
    ) -> Any:
        # Coroutine executors are cancelled on timeout; sync ones run in a
        # worker thread that is abandoned, not stopped.
        execute = executor.execute
        if inspect.iscoroutinefunction(execute):
            return await execute(call_input, context)
        result = await asyncio.to_thread(execute, call_input, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
