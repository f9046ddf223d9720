"""
Node Protocol - Units of work in a task graph.

A TaskNode wraps exactly one named executor invocation. The executor is
looked up by name at run time, so a node can be built before its executor
is registered.
"""

import hashlib
import json
from typing import Any

from pydantic import BaseModel, Field

from siteflow.graph.branch import BranchSelector


class ExecutorRef(BaseModel):
    """Reference to a registered executor plus the static call parameters."""

    name: str = Field(description="Registry key of the executor")
    action: str | None = Field(default=None, description="Action forced into the call input")
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}


class TaskNode(BaseModel):
    """
    Specification for a node in a task graph.

    Examples:
        # Catalog task
        TaskNode(
            id="hierarchy",
            executor=ExecutorRef(name="full_hierarchy", action="map"),
            depends_on=["sitemap"],
        )

        # Workflow node that routes on live context
        TaskNode(
            id="check",
            executor=ExecutorRef(name="site_info", action="get"),
            branch=BranchSelector(
                routes=[BranchRoute(key="plan", op="eq", value="pro", targets=["pro_audit"])],
                default=["basic_audit"],
            ),
        )
    """

    id: str
    executor: ExecutorRef
    depends_on: list[str] = Field(default_factory=list)
    branch: BranchSelector | None = None
    description: str = ""

    model_config = {"extra": "allow"}

    def definition(self) -> dict[str, Any]:
        """Stable, JSON-friendly description used for memo keys."""
        return {
            "id": self.id,
            "executor": self.executor.model_dump(mode="json"),
            "branch": self.branch.model_dump(mode="json") if self.branch else None,
        }


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys and no whitespace so equal values hash equally."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def memo_key(node: TaskNode, context: dict[str, Any]) -> str:
    """Hash of (task definition, context snapshot)."""
    payload = canonical_json({"node": node.definition(), "context": context})
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
