"""
Scheduler - Drives a DependencyGraph to completion.

Repeatedly computes the frontier (ready, unsettled nodes) and dispatches it:
one node at a time in sequential mode, the whole frontier as a wave in
parallel mode. Failed nodes count as settled so the rest of the graph keeps
draining; once failures reach a third of the graph, the run is aborted.

Workflow graphs are walked from their start nodes. Only activated nodes are
eligible: start nodes, then the successors of settled nodes (or whatever a
node's branch selector picked). A node is activated at most once, which is
what keeps cyclic workflows finite.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from siteflow.analysis.suggestions import SuggestionReducer
from siteflow.errors import CircuitBreakerTrippedError, InvalidParametersError, SiteflowError
from siteflow.graph.branch import BranchStrategy
from siteflow.graph.builder import DependencyGraph
from siteflow.observability import set_trace_context
from siteflow.runtime.context_store import ContextStore
from siteflow.runtime.task_runner import NodeOutcome, TaskRunner
from siteflow.schemas.session import ExecutionMode, ExecutionSession, GraphMode

logger = logging.getLogger(__name__)


class _Walk:
    """Mutable bookkeeping for one run."""

    def __init__(self, graph: DependencyGraph):
        self.graph = graph
        self.settled: set[str] = set()
        self.activated: list[str] = []
        self._seen: set[str] = set()
        self.failure_count = 0
        if graph.mode == GraphMode.WORKFLOW:
            self.activate(graph.start_nodes)

    def activate(self, node_ids: list[str]) -> None:
        for node_id in node_ids:
            if node_id not in self.graph.nodes:
                logger.warning(f"Branch selected unknown node '{node_id}', skipping")
                continue
            if node_id in self._seen:
                continue
            self._seen.add(node_id)
            self.activated.append(node_id)

    def frontier(self) -> list[str]:
        if self.graph.mode != GraphMode.WORKFLOW:
            return self.graph.ready_nodes(self.settled)

        pending = [n for n in self.activated if n not in self.settled]
        ready = []
        for candidate in pending:
            others = [n for n in pending if n != candidate]
            blocking = self.graph.reachable_from(others, blocked=candidate)
            if not any(
                pred not in self.settled and pred in blocking
                for pred in self.graph.predecessors(candidate)
            ):
                ready.append(candidate)

        if pending and not ready:
            # Pending nodes wait on each other through a cycle; run the
            # earliest activated one to break it.
            logger.warning(f"Cycle among pending nodes {pending}, releasing '{pending[0]}'")
            ready = [pending[0]]
        return ready


class Scheduler:
    """
    Runs a graph against one session.

    Example:
        scheduler = Scheduler(runner=TaskRunner(registry))
        session = await scheduler.run(graph, session, initial_context={"site_id": "s1"})
    """

    def __init__(
        self,
        runner: TaskRunner,
        reducer: SuggestionReducer | None = None,
        branch_strategies: dict[str, BranchStrategy] | None = None,
        on_update: Callable[[ExecutionSession], None] | None = None,
    ):
        """
        Args:
            runner: Settles individual nodes
            reducer: Builds suggestions once the run completes
            branch_strategies: Named strategies for ``BranchSelector.strategy``
            on_update: Called after every wave (e.g. to refresh a session store)
        """
        self.runner = runner
        self.reducer = reducer or SuggestionReducer()
        self.branch_strategies = branch_strategies if branch_strategies is not None else {}
        self.on_update = on_update

    async def run(
        self,
        graph: DependencyGraph,
        session: ExecutionSession,
        initial_context: dict[str, Any] | None = None,
    ) -> ExecutionSession:
        """
        Execute ``graph``, recording everything on ``session``.

        Node failures never raise; the session ends ``completed`` or, if the
        circuit breaker trips, ``failed`` with partial results retained.
        """
        store = ContextStore(initial_context, journal=session.checkpoints)
        walk = _Walk(graph)
        max_failures = session.max_failures

        session.mark_running()
        self._notify(session)
        logger.info(
            f"🚀 Starting {session.mode} run: {len(graph)} nodes, "
            f"circuit breaker at {max_failures} failures"
        )

        frontier = walk.frontier()
        while frontier and walk.failure_count < max_failures:
            if session.mode == ExecutionMode.PARALLEL:
                wave = frontier
                session.progress.current_node = ", ".join(wave)
                logger.info(f"⑂ Dispatching wave of {len(wave)}", extra={"wave_size": len(wave)})
                outcomes = await self._run_wave(wave, graph, store)
            else:
                wave = frontier[:1]
                session.progress.current_node = wave[0]
                outcomes = [await self.runner.run(graph.nodes[wave[0]], store)]
            set_trace_context(node_id=None)

            for outcome in outcomes:
                self._settle(outcome, walk, session, store)
            self._notify(session)
            frontier = walk.frontier()

        if frontier:
            return self._abort(
                session,
                store,
                CircuitBreakerTrippedError(
                    f"Run aborted after {walk.failure_count} node failures "
                    f"(threshold {max_failures}); {len(frontier)} ready nodes not dispatched",
                    {"failures": dict(session.errors), "skipped": frontier},
                ),
                failure_count=walk.failure_count,
            )

        if graph.mode != GraphMode.WORKFLOW:
            unsettled = [n for n in graph.node_ids if n not in walk.settled]
            if unsettled:
                return self._abort(
                    session,
                    store,
                    InvalidParametersError(
                        f"Run stalled: dependencies of {unsettled} can never settle",
                        {"unsettled": unsettled},
                    ),
                    failure_count=walk.failure_count,
                )

        session.context = store.snapshot()
        session.mark_completed()
        session.suggestions = self.reducer.reduce(session.results)
        logger.info(
            f"✓ Run completed: {len(session.results)} succeeded, {len(session.errors)} failed",
            extra={"failure_count": walk.failure_count},
        )
        self._notify(session)
        return session

    async def _run_wave(
        self,
        wave: list[str],
        graph: DependencyGraph,
        store: ContextStore,
    ) -> list[NodeOutcome]:
        """Run every wave member on its own fork, then fold successes back in order."""
        base = store.snapshot()
        forks = [store.fork() for _ in wave]
        outcomes = await asyncio.gather(
            *[self.runner.run(graph.nodes[node_id], fork) for node_id, fork in zip(wave, forks)]
        )
        for outcome, fork in zip(outcomes, forks):
            if outcome.success:
                store.apply(ContextStore.diff(base, fork.data))
        return list(outcomes)

    def _settle(
        self,
        outcome: NodeOutcome,
        walk: _Walk,
        session: ExecutionSession,
        store: ContextStore,
    ) -> None:
        node_id = outcome.node_id
        walk.settled.add(node_id)

        if outcome.success:
            session.record_success(node_id, outcome.data)
        else:
            walk.failure_count += 1
            session.record_failure(node_id, outcome.error or "Unknown error")
            logger.warning(
                f"Node '{node_id}' failed ({walk.failure_count} failures so far)",
                extra={"failure_count": walk.failure_count},
            )

        if walk.graph.mode != GraphMode.WORKFLOW:
            return

        node = walk.graph.nodes[node_id]
        chosen = None
        if outcome.success and node.branch is not None:
            chosen = node.branch.select(store.data, self.branch_strategies)
            if chosen is not None:
                logger.info(f"   → {node_id} branched to {chosen or 'nothing'}")
        walk.activate(chosen if chosen is not None else walk.graph.successors(node_id))

    def _abort(
        self,
        session: ExecutionSession,
        store: ContextStore,
        error: SiteflowError,
        failure_count: int,
    ) -> ExecutionSession:
        """Fail the session with partial results and context retained."""
        logger.error(f"✗ {error.message}", extra={"failure_count": failure_count})
        session.context = store.snapshot()
        session.mark_failed(error.message, code=error.code)
        self._notify(session)
        return session

    def _notify(self, session: ExecutionSession) -> None:
        if self.on_update is not None:
            self.on_update(session)
