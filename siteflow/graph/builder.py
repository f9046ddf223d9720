"""
Graph Builder - Turns a task selection or a workflow into a validated graph.

Two input modes:
1. Catalog: a subset of a fixed task -> dependency table. Dependencies that
   point outside the subset are dropped.
2. Workflow: explicit nodes plus ``{"from", "to"}`` connections. Start nodes
   are the nodes nothing points at.

Structural problems raise before anything runs. Executor names are *not*
checked here; the TaskRunner resolves them when a node is dispatched.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from siteflow.errors import InvalidParametersError, InvalidWorkflowStructureError, NoStartNodeError
from siteflow.graph.branch import BranchSelector
from siteflow.graph.catalog import SITE_ANALYSIS_CATALOG, CatalogTask
from siteflow.graph.node import ExecutorRef, TaskNode
from siteflow.schemas.session import GraphMode

logger = logging.getLogger(__name__)


class DependencyGraph(BaseModel):
    """
    Validated graph for one run. Built once, never mutated.

    ``dependencies`` maps a node to the nodes that must settle first;
    ``adjacency`` maps a node to its ordered successors. Both are always
    populated, whichever mode produced the graph.
    """

    mode: GraphMode
    nodes: dict[str, TaskNode] = Field(default_factory=dict)
    dependencies: dict[str, list[str]] = Field(default_factory=dict)
    adjacency: dict[str, list[str]] = Field(default_factory=dict)
    start_nodes: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def node_ids(self) -> list[str]:
        return list(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def get_node(self, node_id: str) -> TaskNode | None:
        return self.nodes.get(node_id)

    def predecessors(self, node_id: str) -> list[str]:
        return self.dependencies.get(node_id, [])

    def successors(self, node_id: str) -> list[str]:
        return self.adjacency.get(node_id, [])

    def ready_nodes(self, settled: set[str]) -> list[str]:
        """Unsettled nodes whose dependencies have all settled, in declaration order."""
        return [
            node_id
            for node_id in self.nodes
            if node_id not in settled
            and all(dep in settled for dep in self.dependencies.get(node_id, []))
        ]

    def branch_targets(self, node_id: str) -> list[str]:
        """Nodes a declared route or default may activate. Named strategies are opaque."""
        node = self.nodes.get(node_id)
        if node is None or node.branch is None:
            return []
        targets = [t for route in node.branch.routes for t in route.targets]
        targets.extend(node.branch.default or [])
        return targets

    def reachable_from(self, sources: Iterable[str], blocked: str | None = None) -> set[str]:
        """
        Nodes reachable from ``sources``, not passing through ``blocked``.

        Follows static edges and declared branch targets, since a branch may
        activate a node that has no static edge from its selector.
        """
        reachable: set[str] = set()
        to_visit = [s for s in sources if s != blocked]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            for target in (*self.adjacency.get(current, []), *self.branch_targets(current)):
                if target != blocked and target not in reachable:
                    to_visit.append(target)
        return reachable

    def find_dependency_cycle(self) -> list[str] | None:
        """Return one cycle through ``dependencies`` as ``[a, b, ..., a]``, or None."""
        visiting: set[str] = set()
        done: set[str] = set()
        path: list[str] = []

        def visit(node_id: str) -> list[str] | None:
            visiting.add(node_id)
            path.append(node_id)
            for dep in self.dependencies.get(node_id, []):
                if dep in visiting:
                    return path[path.index(dep) :] + [dep]
                if dep not in done:
                    cycle = visit(dep)
                    if cycle:
                        return cycle
            visiting.discard(node_id)
            done.add(node_id)
            path.pop()
            return None

        for node_id in self.nodes:
            if node_id not in done:
                cycle = visit(node_id)
                if cycle:
                    return cycle
        return None


class GraphBuilder:
    """
    Builds DependencyGraphs.

    Example:
        builder = GraphBuilder()
        graph = builder.build_catalog(["sitemap", "content"], site_id="site-1")

        graph = builder.build_workflow(
            nodes=[{"id": "a", "tool": "sitemap", "action": "generate"},
                   {"id": "b", "tool": "content_audit", "action": "audit"}],
            connections=[{"from": "a", "to": "b"}],
        )
    """

    def __init__(self, catalog: Mapping[str, CatalogTask] | None = None):
        self.catalog = dict(catalog) if catalog is not None else dict(SITE_ANALYSIS_CATALOG)

    # === CATALOG MODE ===

    def select_tasks(self, selection: Iterable[str] | None) -> list[str]:
        """Filter a selection down to known tasks; empty/None selects everything."""
        if selection is None or isinstance(selection, str | bytes):
            selected = [] if selection is None else [selection]
        else:
            selected = list(selection)

        if not selected:
            return list(self.catalog)

        unknown = [name for name in selected if name not in self.catalog]
        if unknown:
            logger.warning(f"Ignoring unknown tasks in selection: {unknown}")

        tasks: list[str] = []
        for name in selected:
            if name in self.catalog and name not in tasks:
                tasks.append(name)

        if not tasks:
            raise InvalidParametersError(
                "No valid tasks selected",
                {"selection": selected, "available": list(self.catalog)},
            )
        return tasks

    def build_catalog(
        self,
        selection: Iterable[str] | None = None,
        site_id: str | None = None,
    ) -> DependencyGraph:
        """Build a graph restricted to the selected catalog tasks."""
        tasks = self.select_tasks(selection)
        nodes = []
        for name in tasks:
            entry = self.catalog[name]
            params = dict(entry.params)
            if entry.site_scoped and site_id is not None:
                params["site_id"] = site_id
            nodes.append(
                TaskNode(
                    id=name,
                    executor=ExecutorRef(name=entry.executor, action=entry.action, params=params),
                    depends_on=[dep for dep in entry.depends_on if dep in tasks],
                )
            )
        return self.build_dependencies(nodes, mode=GraphMode.CATALOG)

    def build_dependencies(
        self,
        nodes: Iterable[TaskNode],
        mode: GraphMode = GraphMode.CATALOG,
    ) -> DependencyGraph:
        """
        Build a dependency-ordered graph from nodes carrying ``depends_on``.

        Raises:
            InvalidParametersError: duplicate ids or a dependency cycle
        """
        node_map: dict[str, TaskNode] = {}
        for node in nodes:
            if node.id in node_map:
                raise InvalidParametersError(f"Duplicate task id '{node.id}'", {"id": node.id})
            node_map[node.id] = node

        dependencies = {
            node_id: [dep for dep in node.depends_on if dep in node_map and dep != node_id]
            for node_id, node in node_map.items()
        }
        adjacency: dict[str, list[str]] = {node_id: [] for node_id in node_map}
        for node_id, deps in dependencies.items():
            for dep in deps:
                adjacency[dep].append(node_id)

        start_nodes = [node_id for node_id, deps in dependencies.items() if not deps]
        graph = DependencyGraph(
            mode=mode,
            nodes=node_map,
            dependencies=dependencies,
            adjacency=adjacency,
            start_nodes=start_nodes,
        )
        self.check_acyclic(graph)
        return graph

    @staticmethod
    def check_acyclic(graph: DependencyGraph) -> None:
        """
        Raise if ``depends_on`` edges form a cycle.

        Raises:
            InvalidParametersError: names the nodes on the cycle
        """
        cycle = graph.find_dependency_cycle()
        if cycle:
            raise InvalidParametersError(
                f"Dependency cycle: {' -> '.join(cycle)}", {"cycle": cycle}
            )

    # === WORKFLOW MODE ===

    def build_workflow(self, nodes: Any, connections: Any) -> DependencyGraph:
        """
        Build a graph from an explicit node list and ``{"from", "to"}`` connections.

        Raises:
            InvalidWorkflowStructureError: inputs are not non-empty lists, a node
                is malformed, or a connection references an unknown node
            NoStartNodeError: every node has an incoming connection
        """
        if not isinstance(nodes, list) or not isinstance(connections, list):
            raise InvalidWorkflowStructureError("Workflow must have nodes and connections arrays.")
        if not nodes or not connections:
            raise InvalidWorkflowStructureError(
                "Workflow nodes and connections must not be empty.",
                {"nodes": len(nodes), "connections": len(connections)},
            )

        node_map: dict[str, TaskNode] = {}
        for index, raw in enumerate(nodes):
            node = self._parse_workflow_node(raw, index)
            if node.id in node_map:
                raise InvalidWorkflowStructureError(
                    f"Duplicate node id '{node.id}'", {"node_id": node.id}
                )
            node_map[node.id] = node

        for node in node_map.values():
            if node.branch is None:
                continue
            targets = [t for route in node.branch.routes for t in route.targets]
            targets.extend(node.branch.default or [])
            unknown = [t for t in targets if t not in node_map]
            if unknown:
                raise InvalidWorkflowStructureError(
                    f"Node '{node.id}' branches to unknown nodes: {unknown}",
                    {"node_id": node.id, "targets": unknown},
                )

        adjacency: dict[str, list[str]] = {node_id: [] for node_id in node_map}
        dependencies: dict[str, list[str]] = {node_id: [] for node_id in node_map}
        for index, conn in enumerate(connections):
            source, target = self._parse_connection(conn, index)
            for ref in (source, target):
                if ref not in node_map:
                    raise InvalidWorkflowStructureError(
                        f"Connection {index} references unknown node '{ref}'",
                        {"connection": index, "node_id": ref},
                    )
            if target not in adjacency[source]:
                adjacency[source].append(target)
            if source not in dependencies[target]:
                dependencies[target].append(source)

        start_nodes = [node_id for node_id, preds in dependencies.items() if not preds]
        if not start_nodes:
            raise NoStartNodeError("No start node found in workflow.")

        return DependencyGraph(
            mode=GraphMode.WORKFLOW,
            nodes=node_map,
            dependencies=dependencies,
            adjacency=adjacency,
            start_nodes=start_nodes,
        )

    def _parse_workflow_node(self, raw: Any, index: int) -> TaskNode:
        if isinstance(raw, TaskNode):
            return raw
        if not isinstance(raw, Mapping):
            raise InvalidWorkflowStructureError(f"Node {index} must be an object", {"node": index})

        node_id = raw.get("id")
        tool = raw.get("tool")
        if not isinstance(node_id, str) or not node_id:
            raise InvalidWorkflowStructureError(f"Node {index} is missing an id", {"node": index})
        if not isinstance(tool, str) or not tool:
            raise InvalidWorkflowStructureError(
                f"Node '{node_id}' is missing a tool", {"node_id": node_id}
            )

        branch_raw = raw.get("branch", raw.get("conditional"))
        try:
            branch = None
            if isinstance(branch_raw, str):
                branch = BranchSelector(strategy=branch_raw)
            elif branch_raw is not None:
                branch = BranchSelector.model_validate(branch_raw)

            return TaskNode(
                id=node_id,
                executor=ExecutorRef(
                    name=tool,
                    action=raw.get("action"),
                    params=dict(raw.get("params") or {}),
                ),
                branch=branch,
                description=raw.get("description", ""),
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise InvalidWorkflowStructureError(
                f"Node '{node_id}' is malformed: {e}", {"node_id": node_id}
            ) from e

    @staticmethod
    def _parse_connection(conn: Any, index: int) -> tuple[str, str]:
        if not isinstance(conn, Mapping):
            raise InvalidWorkflowStructureError(
                f"Connection {index} must be an object", {"connection": index}
            )
        source, target = conn.get("from"), conn.get("to")
        if not isinstance(source, str) or not isinstance(target, str):
            raise InvalidWorkflowStructureError(
                f"Connection {index} needs string 'from' and 'to'", {"connection": index}
            )
        return source, target
