"""Tests for GraphBuilder: catalog selection and workflow validation."""

import pytest

from siteflow.errors import (
    ErrorCode,
    InvalidParametersError,
    InvalidWorkflowStructureError,
    NoStartNodeError,
)
from siteflow.graph import GraphBuilder, SITE_ANALYSIS_CATALOG, TaskNode
from siteflow.graph.node import ExecutorRef
from siteflow.schemas import GraphMode


@pytest.fixture
def builder():
    return GraphBuilder()


def _node(node_id: str, tool: str = "noop", **extra) -> dict:
    return {"id": node_id, "tool": tool, **extra}


# ---- catalog mode ----


def test_empty_selection_selects_whole_catalog(builder):
    assert builder.select_tasks(None) == list(SITE_ANALYSIS_CATALOG)
    assert builder.select_tasks([]) == list(SITE_ANALYSIS_CATALOG)


def test_unknown_tasks_are_filtered(builder):
    assert builder.select_tasks(["sitemap", "bogus", "sitemap"]) == ["sitemap"]


def test_all_unknown_selection_rejected(builder):
    with pytest.raises(InvalidParametersError) as exc_info:
        builder.select_tasks(["bogus"])
    assert exc_info.value.code == ErrorCode.INVALID_PARAMETERS


def test_dependencies_outside_selection_are_dropped(builder):
    graph = builder.build_catalog(["content", "sitemap"], site_id="s1")

    assert graph.mode == GraphMode.CATALOG
    assert graph.predecessors("content") == ["sitemap"]
    assert graph.start_nodes == ["sitemap"]


def test_site_id_only_added_to_site_scoped_tasks(builder):
    graph = builder.build_catalog(["sitemap", "hierarchy"], site_id="s1")

    assert graph.nodes["sitemap"].executor.params == {"site_id": "s1"}
    assert "site_id" not in graph.nodes["hierarchy"].executor.params
    assert graph.nodes["hierarchy"].executor.params["data"]["contentTypes"] == ["all"]


def test_ready_nodes_follow_declaration_order(builder):
    graph = builder.build_catalog(None)

    assert graph.ready_nodes(set()) == ["sitemap", "design_tokens"]
    assert graph.ready_nodes({"sitemap", "design_tokens"}) == ["wireframe", "hierarchy", "design"]


def test_duplicate_dependency_node_rejected(builder):
    nodes = [TaskNode(id="a", executor=ExecutorRef(name="x"))] * 2
    with pytest.raises(InvalidParametersError):
        builder.build_dependencies(nodes)


# ---- workflow mode ----


def test_workflow_start_nodes_and_adjacency(builder):
    graph = builder.build_workflow(
        [_node("a"), _node("b"), _node("c")],
        [{"from": "a", "to": "b"}, {"from": "a", "to": "c"}, {"from": "b", "to": "c"}],
    )

    assert graph.mode == GraphMode.WORKFLOW
    assert graph.start_nodes == ["a"]
    assert graph.successors("a") == ["b", "c"]
    assert graph.predecessors("c") == ["a", "b"]


@pytest.mark.parametrize(
    "nodes,connections",
    [
        (None, []),
        ([], [{"from": "a", "to": "b"}]),
        ([_node("a")], []),
        ("nodes", [{"from": "a", "to": "b"}]),
    ],
)
def test_workflow_requires_non_empty_lists(builder, nodes, connections):
    with pytest.raises(InvalidWorkflowStructureError):
        builder.build_workflow(nodes, connections)


def test_workflow_node_without_tool_rejected(builder):
    with pytest.raises(InvalidWorkflowStructureError, match="missing a tool"):
        builder.build_workflow([_node("a"), {"id": "b"}], [{"from": "a", "to": "b"}])


def test_workflow_duplicate_id_rejected(builder):
    with pytest.raises(InvalidWorkflowStructureError, match="Duplicate"):
        builder.build_workflow([_node("a"), _node("a")], [{"from": "a", "to": "a"}])


def test_workflow_connection_to_unknown_node_rejected(builder):
    with pytest.raises(InvalidWorkflowStructureError, match="unknown node 'z'"):
        builder.build_workflow([_node("a"), _node("b")], [{"from": "a", "to": "z"}])


def test_workflow_without_start_node_rejected(builder):
    with pytest.raises(NoStartNodeError) as exc_info:
        builder.build_workflow(
            [_node("a"), _node("b")],
            [{"from": "a", "to": "b"}, {"from": "b", "to": "a"}],
        )
    assert exc_info.value.code == ErrorCode.NO_START_NODE


def test_workflow_branch_to_unknown_node_rejected(builder):
    branching = _node("a", conditional={"routes": [{"key": "x", "targets": ["ghost"]}]})
    with pytest.raises(InvalidWorkflowStructureError, match="ghost"):
        builder.build_workflow([branching, _node("b")], [{"from": "a", "to": "b"}])


def test_workflow_parses_branch_and_params(builder):
    graph = builder.build_workflow(
        [
            _node(
                "check",
                tool="site_info",
                action="get",
                params={"fields": ["plan"]},
                branch={"routes": [{"key": "plan", "op": "eq", "value": "pro", "targets": ["pro"]}]},
            ),
            _node("pro"),
            _node("named", branch="pick_audit"),
        ],
        [{"from": "check", "to": "pro"}, {"from": "check", "to": "named"}],
    )

    check = graph.nodes["check"]
    assert check.executor.action == "get"
    assert check.executor.params == {"fields": ["plan"]}
    assert check.branch.routes[0].targets == ["pro"]
    assert graph.nodes["named"].branch.strategy == "pick_audit"


def test_reachable_from_respects_blocked_node(builder):
    graph = builder.build_workflow(
        [_node("s"), _node("a"), _node("b")],
        [{"from": "s", "to": "a"}, {"from": "a", "to": "b"}, {"from": "b", "to": "a"}],
    )

    assert graph.reachable_from(["b"]) == {"a", "b"}
    assert graph.reachable_from(["b"], blocked="a") == {"b"}


def test_reachable_from_follows_declared_branch_targets(builder):
    graph = builder.build_workflow(
        [
            _node("s", branch={"routes": [{"key": "x", "op": "exists", "targets": ["r"]}]}),
            _node("d", branch={"default": ["q"]}),
            _node("r"),
            _node("q"),
            _node("t"),
        ],
        [{"from": "s", "to": "d"}, {"from": "q", "to": "t"}],
    )

    assert graph.reachable_from(["s"]) == {"s", "d", "r", "q", "t"}
    assert graph.reachable_from(["s"], blocked="d") == {"s", "r"}


# ---- dependency cycles ----


def _dep(node_id: str, *deps: str) -> TaskNode:
    return TaskNode(id=node_id, executor=ExecutorRef(name="noop"), depends_on=list(deps))


def test_dependency_cycle_is_rejected(builder):
    with pytest.raises(InvalidParametersError) as exc_info:
        builder.build_dependencies([_dep("a", "b"), _dep("b", "a"), _dep("c")])

    assert exc_info.value.code == ErrorCode.INVALID_PARAMETERS
    assert exc_info.value.details["cycle"] == ["a", "b", "a"]
    assert "a -> b -> a" in exc_info.value.message


def test_longer_dependency_cycle_is_named(builder):
    with pytest.raises(InvalidParametersError) as exc_info:
        builder.build_dependencies(
            [_dep("root"), _dep("x", "root", "z"), _dep("y", "x"), _dep("z", "y")]
        )

    assert exc_info.value.details["cycle"] == ["x", "z", "y", "x"]


def test_acyclic_dependencies_have_no_cycle(builder):
    graph = builder.build_dependencies([_dep("a"), _dep("b", "a"), _dep("c", "a", "b")])

    assert graph.find_dependency_cycle() is None
    assert graph.start_nodes == ["a"]
