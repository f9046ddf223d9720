"""
Tests for TaskGraphEngine: the session API end to end.

Fake site-analysis executors stand in for the real tools.
"""

import asyncio

import pytest

from siteflow.config import EngineConfig
from siteflow.errors import (
    AnalysisInProgressError,
    AnalysisNotCompleteError,
    ErrorCode,
    InvalidParametersError,
    InvalidWorkflowStructureError,
    NoStartNodeError,
    ResultNotFoundError,
    SessionNotFoundError,
)
from siteflow.graph import DependencyGraph, ExecutorRef, TaskNode
from siteflow.runtime import TaskGraphEngine
from siteflow.schemas import GraphMode, SessionStatus


class FakeTool:
    """Records calls in a shared log and returns canned data."""

    def __init__(self, name: str, log: list, output: dict, gate: asyncio.Event | None = None):
        self.name = name
        self.log = log
        self.output = output
        self.gate = gate

    async def execute(self, input, context):
        self.log.append((self.name, dict(input)))
        if self.gate is not None:
            await self.gate.wait()
        return {"success": True, "data": self.output}


class FailingTool:
    def __init__(self, name: str):
        self.name = name

    async def execute(self, input, context):
        return {"success": False, "error": {"message": f"{self.name} unavailable"}}


class ListSink:
    def __init__(self):
        self.saved: list[dict] = []

    async def save(self, payload):
        self.saved.append(payload)
        return {"saved": payload["id"]}


def _config() -> EngineConfig:
    return EngineConfig(
        node_timeout_seconds=5.0,
        memo_max_entries=100,
        memo_ttl_seconds=300.0,
        session_max_entries=50,
        session_ttl_seconds=300.0,
    )


@pytest.fixture
def log():
    return []


@pytest.fixture
def engine(log):
    engine = TaskGraphEngine(config=_config())
    engine.registry.register(FakeTool("sitemap", log, {"pages": 12, "maxDepth": 5}))
    engine.registry.register(FakeTool("full_hierarchy", log, {"templates": 3}))
    engine.registry.register(FakeTool("content_audit", log, {"qualityIssues": [{"type": "thin"}]}))
    return engine


# ---- end to end ----


@pytest.mark.asyncio
async def test_catalog_analysis_end_to_end(engine, log):
    handle = await engine.start_analysis("site-1", "user-1", tools=["content", "hierarchy", "sitemap"])
    assert handle.progress.total == 3

    session = await engine.wait_for_completion(handle.session_id, timeout=5)

    assert [name for name, _ in log] == ["sitemap", "full_hierarchy", "content_audit"]
    assert session.status == SessionStatus.COMPLETED
    assert session.progress.completed == 3
    assert log[0][1]["site_id"] == "site-1"
    assert log[0][1]["action"] == "generate"
    # Later tools see earlier output through the shared context
    assert log[2][1]["maxDepth"] == 5
    assert log[2][1]["templates"] == 3

    status = engine.get_status(handle.session_id)
    assert status["status"] == "completed"
    assert status["completed_nodes"] == ["sitemap", "hierarchy", "content"]

    results = engine.get_results(handle.session_id)
    assert set(results["results"]) == {"sitemap", "hierarchy", "content"}
    assert results["errors"] == {}
    assert results["suggestions"][0]["impact"] == "high"


@pytest.mark.asyncio
async def test_parallel_analysis_matches_sequential(engine):
    sequential = await engine.start_analysis("site-1", "user-1", tools=["sitemap", "hierarchy", "content"])
    await engine.wait_for_completion(sequential.session_id, timeout=5)
    engine.memo_cache.clear()
    parallel = await engine.start_analysis(
        "site-1", "user-1", tools=["sitemap", "hierarchy", "content"], run_parallel=True
    )
    await engine.wait_for_completion(parallel.session_id, timeout=5)

    assert (
        engine.get_results(sequential.session_id)["results"]
        == engine.get_results(parallel.session_id)["results"]
    )


@pytest.mark.asyncio
async def test_workflow_run(engine, log):
    workflow = {
        "nodes": [
            {"id": "crawl", "tool": "sitemap", "action": "generate", "params": {"depth": 2}},
            {"id": "audit", "tool": "content_audit", "action": "audit"},
        ],
        "connections": [{"from": "crawl", "to": "audit"}],
    }

    handle = await engine.start_workflow(workflow, {"site_id": "site-9"})
    session = await engine.wait_for_completion(handle.session_id, timeout=5)

    assert session.status == SessionStatus.COMPLETED
    assert log[0] == ("sitemap", {"depth": 2, "site_id": "site-9", "action": "generate"})
    assert engine.get_results(handle.session_id, node_id="audit")["result"] == {
        "qualityIssues": [{"type": "thin"}]
    }


@pytest.mark.asyncio
async def test_unregistered_tool_is_recorded_as_node_failure(engine):
    workflow = {
        "nodes": [
            {"id": "a", "tool": "sitemap"},
            {"id": "b", "tool": "missing_tool"},
            {"id": "c", "tool": "content_audit"},
            {"id": "d", "tool": "full_hierarchy"},
        ],
        "connections": [{"from": "a", "to": "b"}, {"from": "b", "to": "c"}, {"from": "c", "to": "d"}],
    }

    handle = await engine.start_workflow(workflow)
    session = await engine.wait_for_completion(handle.session_id, timeout=5)

    assert session.status == SessionStatus.COMPLETED
    assert session.errors == {"b": "Tool not found: missing_tool"}
    assert set(session.results) == {"a", "c", "d"}


@pytest.mark.asyncio
async def test_circuit_breaker_marks_session_failed(log):
    engine = TaskGraphEngine(config=_config())
    for name in ("sitemap", "design_tokens", "full_hierarchy"):
        engine.registry.register(FailingTool(name))

    handle = await engine.start_analysis("site-1", "user-1")
    session = await engine.wait_for_completion(handle.session_id, timeout=5)

    assert session.status == SessionStatus.FAILED
    status = engine.get_status(handle.session_id)
    assert status["error_code"] == ErrorCode.CIRCUIT_BREAKER_TRIPPED
    assert len(session.errors) == session.max_failures == 3

    with pytest.raises(AnalysisNotCompleteError):
        await engine.export_results(handle.session_id, ListSink())


# ---- API errors ----


@pytest.mark.asyncio
@pytest.mark.parametrize("site_id,user_id", [("", "user-1"), ("site-1", None)])
async def test_start_analysis_requires_ids(engine, site_id, user_id):
    with pytest.raises(InvalidParametersError):
        await engine.start_analysis(site_id, user_id)


@pytest.mark.asyncio
async def test_start_rejects_unknown_mode(engine):
    with pytest.raises(InvalidParametersError):
        await engine.start(["sitemap"], mode="eventually")


@pytest.mark.asyncio
async def test_structural_errors_raise_before_session_exists(engine):
    with pytest.raises(InvalidWorkflowStructureError):
        await engine.start_workflow({"nodes": [{"id": "a", "tool": "sitemap"}]})
    with pytest.raises(NoStartNodeError):
        await engine.start_workflow(
            {
                "nodes": [{"id": "a", "tool": "sitemap"}, {"id": "b", "tool": "sitemap"}],
                "connections": [{"from": "a", "to": "b"}, {"from": "b", "to": "a"}],
            }
        )
    assert len(engine.sessions) == 0


@pytest.mark.asyncio
async def test_cyclic_prebuilt_graph_is_rejected_before_session_exists(engine):
    nodes = {
        "sitemap": TaskNode(
            id="sitemap", executor=ExecutorRef(name="sitemap"), depends_on=["content"]
        ),
        "content": TaskNode(
            id="content", executor=ExecutorRef(name="content_audit"), depends_on=["sitemap"]
        ),
    }
    graph = DependencyGraph(
        mode=GraphMode.CATALOG,
        nodes=nodes,
        dependencies={"sitemap": ["content"], "content": ["sitemap"]},
        adjacency={"sitemap": ["content"], "content": ["sitemap"]},
    )

    with pytest.raises(InvalidParametersError) as exc_info:
        await engine.start(graph)

    assert exc_info.value.details["cycle"] == ["sitemap", "content", "sitemap"]
    assert len(engine.sessions) == 0


def test_unknown_session(engine):
    with pytest.raises(SessionNotFoundError) as exc_info:
        engine.get_status("session_missing")
    assert exc_info.value.to_dict()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_results_unavailable_while_running(log):
    gate = asyncio.Event()
    engine = TaskGraphEngine(config=_config())
    engine.registry.register(FakeTool("sitemap", log, {"pages": 1}, gate=gate))

    handle = await engine.start_analysis("site-1", "user-1", tools=["sitemap"])
    await asyncio.sleep(0)

    with pytest.raises(AnalysisInProgressError):
        engine.get_results(handle.session_id)
    with pytest.raises(AnalysisNotCompleteError):
        await engine.export_results(handle.session_id, ListSink())
    assert engine.get_status(handle.session_id)["status"] == "running"

    gate.set()
    await engine.wait_for_completion(handle.session_id, timeout=5)
    assert engine.get_results(handle.session_id)["status"] == "completed"


@pytest.mark.asyncio
async def test_wait_for_completion_times_out(log):
    engine = TaskGraphEngine(config=_config())
    engine.registry.register(FakeTool("sitemap", log, {}, gate=asyncio.Event()))
    handle = await engine.start_analysis("site-1", "user-1", tools=["sitemap"])

    assert await engine.wait_for_completion(handle.session_id, timeout=0.05) is None

    await engine.shutdown()
    assert engine.get_status(handle.session_id)["status"] == "failed"


@pytest.mark.asyncio
async def test_missing_node_result(engine):
    handle = await engine.start_analysis("site-1", "user-1", tools=["sitemap"])
    await engine.wait_for_completion(handle.session_id, timeout=5)

    with pytest.raises(ResultNotFoundError) as exc_info:
        engine.get_results(handle.session_id, node_id="forms")
    assert exc_info.value.details["available_nodes"] == ["sitemap"]


# ---- housekeeping ----


@pytest.mark.asyncio
async def test_generate_suggestions_and_export(engine):
    handle = await engine.start_analysis("site-1", "user-1", tools=["sitemap", "content"])
    await engine.wait_for_completion(handle.session_id, timeout=5)

    suggestions = engine.generate_suggestions(handle.session_id)
    messages = [s["message"] for s in suggestions]
    assert "Site navigation is too deep and may confuse users" in messages
    assert "Content quality issues detected on multiple pages" in messages

    sink = ListSink()
    assert await engine.export_results(handle.session_id, sink) == {"saved": handle.session_id}
    payload = sink.saved[0]
    assert payload["metadata"] == {"site_id": "site-1", "user_id": "user-1"}
    assert payload["nodes"] == ["sitemap", "content"]


@pytest.mark.asyncio
async def test_clear_cache(engine):
    first = await engine.start_analysis("site-1", "user-1", tools=["sitemap"])
    second = await engine.start_analysis("site-2", "user-1", tools=["sitemap"])
    await engine.wait_for_completion(first.session_id, timeout=5)
    await engine.wait_for_completion(second.session_id, timeout=5)

    assert engine.clear_cache(first.session_id) == 1
    with pytest.raises(SessionNotFoundError):
        engine.get_status(first.session_id)
    assert engine.clear_cache() == 1
