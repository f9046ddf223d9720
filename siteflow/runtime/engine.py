"""
Task Graph Engine - Session-level API over the scheduler.

Callers submit a catalog selection or an explicit workflow and get a
session id back immediately; the run continues as a detached asyncio task.
Status, results and suggestions are then read by session id until the
session expires from the store.

Structural problems (bad parameters, malformed workflows) raise a
SiteflowError before any session is created. Node-level failures never
raise; they end up in the session.
"""

import asyncio
import inspect
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

from siteflow.analysis.suggestions import SuggestionReducer
from siteflow.config import EngineConfig
from siteflow.errors import (
    AnalysisInProgressError,
    AnalysisNotCompleteError,
    InvalidParametersError,
    ResultNotFoundError,
    SessionNotFoundError,
)
from siteflow.graph.branch import BranchStrategy
from siteflow.graph.builder import DependencyGraph, GraphBuilder
from siteflow.observability import set_trace_context
from siteflow.runner.executor_registry import ExecutorRegistry
from siteflow.runtime.memo_cache import MemoCache
from siteflow.runtime.scheduler import Scheduler
from siteflow.runtime.task_runner import TaskRunner
from siteflow.schemas.session import (
    ExecutionMode,
    ExecutionSession,
    GraphMode,
    SessionProgress,
    SessionStatus,
)
from siteflow.storage.session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionHandle(BaseModel):
    """Returned by ``start``: enough to poll the session."""

    session_id: str
    status: SessionStatus
    progress: SessionProgress
    message: str = ""


@runtime_checkable
class ResultSink(Protocol):
    """Destination for exported results (design document, database, ...)."""

    def save(self, payload: dict[str, Any]) -> Any: ...


class TaskGraphEngine:
    """
    Entry point for running task graphs.

    Example:
        engine = TaskGraphEngine()
        engine.registry.register_function(generate_sitemap, name="sitemap")

        handle = await engine.start_analysis("site-1", "user-1", tools=["sitemap"])
        await engine.wait_for_completion(handle.session_id)
        engine.get_results(handle.session_id)
    """

    def __init__(
        self,
        registry: ExecutorRegistry | None = None,
        config: EngineConfig | None = None,
        builder: GraphBuilder | None = None,
        memo_cache: MemoCache | None = None,
        session_store: SessionStore | None = None,
        reducer: SuggestionReducer | None = None,
    ):
        self.config = config or EngineConfig()
        self.registry = registry or ExecutorRegistry()
        self.builder = builder or GraphBuilder()
        self.memo_cache = memo_cache or MemoCache(
            max_entries=self.config.memo_max_entries,
            ttl_seconds=self.config.memo_ttl_seconds,
        )
        self.sessions = session_store or SessionStore(
            max_entries=self.config.session_max_entries,
            ttl_seconds=self.config.session_ttl_seconds,
        )
        self.reducer = reducer or SuggestionReducer()
        self.branch_strategies: dict[str, BranchStrategy] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def register_branch_strategy(self, name: str, strategy: BranchStrategy) -> None:
        """Make ``strategy`` available to workflow nodes as ``{"branch": name}``."""
        if name in self.branch_strategies:
            logger.warning(f"Replacing branch strategy '{name}'")
        self.branch_strategies[name] = strategy

    # === STARTING RUNS ===

    async def start(
        self,
        graph: DependencyGraph | Mapping[str, Any] | list[str] | None = None,
        initial_context: dict[str, Any] | None = None,
        mode: ExecutionMode | str = ExecutionMode.SEQUENTIAL,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SessionHandle:
        """
        Validate the graph, create a session and launch the run in the background.

        Args:
            graph: A built DependencyGraph, a workflow ``{"nodes", "connections"}``
                mapping, or a catalog selection (None selects every task)
            initial_context: Starting shared context
            mode: "sequential" or "parallel"
            session_id: Explicit id (generated if omitted)
            metadata: Caller data stored on the session

        Raises:
            SiteflowError: the request or graph is malformed
        """
        try:
            mode = ExecutionMode(mode)
        except ValueError as e:
            raise InvalidParametersError(
                f"Unknown execution mode: {mode}", {"supported": [m.value for m in ExecutionMode]}
            ) from e

        context = dict(initial_context or {})
        dependency_graph = self._resolve_graph(graph, context)

        session = ExecutionSession(
            id=session_id or self.sessions.generate_session_id(),
            mode=mode,
            graph_mode=dependency_graph.mode,
            nodes=dependency_graph.node_ids,
            progress=SessionProgress(total=len(dependency_graph)),
            metadata=dict(metadata or {}),
        )
        self.sessions.create(session)

        task = asyncio.create_task(self._run_session(dependency_graph, session, context))
        self._tasks[session.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(session.id, None))

        logger.info(
            f"▶ Session {session.id} started: {len(dependency_graph)} nodes, {mode} mode"
        )
        return SessionHandle(
            session_id=session.id,
            status=session.status,
            progress=session.progress.model_copy(),
            message=f"Started {dependency_graph.mode} run of {len(dependency_graph)} nodes",
        )

    async def start_analysis(
        self,
        site_id: str,
        user_id: str,
        tools: list[str] | None = None,
        run_parallel: bool = False,
    ) -> SessionHandle:
        """Run catalog tasks against a site."""
        if not site_id or not user_id:
            raise InvalidParametersError(
                "Missing required parameters: site_id and user_id are required",
                {"required": ["site_id", "user_id"]},
            )
        return await self.start(
            tools,
            initial_context={"site_id": site_id, "user_id": user_id},
            mode=ExecutionMode.PARALLEL if run_parallel else ExecutionMode.SEQUENTIAL,
            metadata={"site_id": site_id, "user_id": user_id},
        )

    async def start_workflow(
        self,
        workflow: Mapping[str, Any],
        input_context: dict[str, Any] | None = None,
        mode: ExecutionMode | str = ExecutionMode.SEQUENTIAL,
    ) -> SessionHandle:
        """Run an explicit ``{"nodes", "connections"}`` workflow."""
        if not isinstance(workflow, Mapping):
            raise InvalidParametersError("Missing required parameter: workflow")
        return await self.start(workflow, initial_context=input_context, mode=mode)

    def _resolve_graph(
        self,
        graph: DependencyGraph | Mapping[str, Any] | list[str] | None,
        context: dict[str, Any],
    ) -> DependencyGraph:
        if isinstance(graph, DependencyGraph):
            if graph.mode != GraphMode.WORKFLOW:
                self.builder.check_acyclic(graph)
            return graph
        if isinstance(graph, Mapping):
            return self.builder.build_workflow(graph.get("nodes"), graph.get("connections"))
        return self.builder.build_catalog(graph, site_id=context.get("site_id"))

    async def _run_session(
        self,
        graph: DependencyGraph,
        session: ExecutionSession,
        context: dict[str, Any],
    ) -> None:
        set_trace_context(session_id=session.id, graph_mode=str(graph.mode))
        scheduler = Scheduler(
            runner=TaskRunner(
                self.registry,
                memo_cache=self.memo_cache,
                timeout_seconds=self.config.node_timeout_seconds,
            ),
            reducer=self.reducer,
            branch_strategies=self.branch_strategies,
            on_update=self.sessions.update,
        )
        try:
            await scheduler.run(graph, session, initial_context=context)
        except asyncio.CancelledError:
            session.mark_failed("Run cancelled")
            self.sessions.update(session)
            raise
        except Exception as e:
            logger.exception(f"✗ Session {session.id} crashed: {e}")
            session.mark_failed(str(e) or type(e).__name__)
            self.sessions.update(session)

    # === READING SESSIONS ===

    def get_session(self, session_id: str) -> ExecutionSession:
        """Return the live session or raise SessionNotFoundError."""
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(
                f"Analysis session not found: {session_id}", {"session_id": session_id}
            )
        return session

    def get_status(self, session_id: str) -> dict[str, Any]:
        session = self.get_session(session_id)
        status: dict[str, Any] = {
            "session_id": session.id,
            "status": str(session.status),
            "progress": session.progress.model_dump(),
            "completed_nodes": list(session.results),
        }
        if session.error:
            status["error"] = session.error
            status["error_code"] = session.error_code
        return status

    def get_results(self, session_id: str, node_id: str | None = None) -> dict[str, Any]:
        """
        Results of a finished session, or of one node in it.

        Raises:
            SessionNotFoundError: unknown or expired session
            AnalysisInProgressError: session not finished yet
            ResultNotFoundError: ``node_id`` has no recorded result
        """
        session = self.get_session(session_id)
        if not session.is_terminal:
            raise AnalysisInProgressError(
                "Analysis is still in progress",
                {
                    "session_id": session.id,
                    "progress": session.progress.model_dump(),
                    "completed_nodes": list(session.results),
                },
            )

        if node_id is not None:
            if node_id not in session.results:
                details: dict[str, Any] = {
                    "session_id": session.id,
                    "available_nodes": list(session.results),
                }
                if node_id in session.errors:
                    details["error"] = session.errors[node_id]
                raise ResultNotFoundError(f"Results for node {node_id} not found", details)
            return {"session_id": session.id, "node_id": node_id, "result": session.results[node_id]}

        return {
            "session_id": session.id,
            "status": str(session.status),
            "results": session.results,
            "errors": session.errors,
            "suggestions": [s.model_dump(mode="json") for s in session.suggestions],
        }

    def generate_suggestions(self, session_id: str) -> list[dict[str, Any]]:
        """Recompute suggestions from whatever results the session holds now."""
        session = self.get_session(session_id)
        session.suggestions = self.reducer.reduce(session.results)
        self.sessions.update(session)
        return [s.model_dump(mode="json") for s in session.suggestions]

    async def wait_for_completion(
        self,
        session_id: str,
        timeout: float | None = None,
    ) -> ExecutionSession | None:
        """
        Wait for a session to finish.

        Args:
            session_id: Session to wait for
            timeout: Maximum time to wait (seconds)

        Returns:
            The terminal session, or None if it is still running after
            ``timeout`` (the run itself keeps going)
        """
        session = self.get_session(session_id)
        task = self._tasks.get(session_id)
        if task is None or task.done():
            return session

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except TimeoutError:
            return None
        return session

    async def export_results(self, session_id: str, sink: ResultSink) -> Any:
        """Hand a completed session's results to ``sink``."""
        session = self.get_session(session_id)
        if session.status != SessionStatus.COMPLETED:
            raise AnalysisNotCompleteError(
                f"Analysis is not complete: {session.status}",
                {"session_id": session.id, "status": str(session.status)},
            )

        payload = {
            "id": session.id,
            "timestamp": datetime.now().isoformat(),
            "nodes": list(session.nodes),
            "metadata": dict(session.metadata),
            "results": session.results,
            "suggestions": [s.model_dump(mode="json") for s in session.suggestions],
        }
        result = sink.save(payload)
        if inspect.isawaitable(result):
            result = await result
        logger.info(f"✓ Exported session {session.id} via {type(sink).__name__}")
        return result

    # === HOUSEKEEPING ===

    def clear_cache(self, session_id: str | None = None) -> int:
        """Forget one session (or all). Running tasks are not cancelled."""
        removed = self.sessions.clear(session_id)
        logger.info(f"Cleared {removed} cached sessions")
        return removed

    async def shutdown(self) -> None:
        """Cancel every in-flight run and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
