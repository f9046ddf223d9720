"""Graph structures: task nodes, branch selection, catalog and builder."""

from siteflow.graph.branch import BranchOp, BranchRoute, BranchSelector, BranchStrategy
from siteflow.graph.builder import DependencyGraph, GraphBuilder
from siteflow.graph.catalog import ALL_CATALOG_TASKS, SITE_ANALYSIS_CATALOG, CatalogTask
from siteflow.graph.node import ExecutorRef, TaskNode, canonical_json, memo_key

__all__ = [
    # Node
    "TaskNode",
    "ExecutorRef",
    "canonical_json",
    "memo_key",
    # Branching
    "BranchOp",
    "BranchRoute",
    "BranchSelector",
    "BranchStrategy",
    # Catalog
    "CatalogTask",
    "SITE_ANALYSIS_CATALOG",
    "ALL_CATALOG_TASKS",
    # Builder
    "DependencyGraph",
    "GraphBuilder",
]
