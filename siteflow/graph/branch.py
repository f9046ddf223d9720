"""
Branch Selection - How a node picks its successors from live context.

A selector is data, not code: an ordered list of routes, each a small
predicate over one context key. The first matching route decides the next
node ids; if none matches, ``default`` applies; if ``default`` is unset the
node's static edges are followed.

Route operators:
- eq / ne: equality
- gt / gte / lt / lte: ordering (non-comparable values never match)
- in: context value is a member of ``value``
- contains: ``value`` is a member of the context value
- exists: key is present (value ignored)
- truthy / falsy: Python truthiness of the context value

For logic that does not fit a predicate, ``strategy`` names an injected
BranchStrategy registered with the engine.
"""

import logging
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_MISSING = object()


class BranchOp(StrEnum):
    """Comparison applied by a route."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"
    EXISTS = "exists"
    TRUTHY = "truthy"
    FALSY = "falsy"


@runtime_checkable
class BranchStrategy(Protocol):
    """Injected routing logic. Returns next node ids, or None for static edges."""

    def select(self, context: dict[str, Any]) -> list[str] | None: ...


def resolve_path(context: dict[str, Any], path: str) -> Any:
    """Look up a dotted path (``"sitemap.maxDepth"``); returns _MISSING if absent."""
    current: Any = context
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


class BranchRoute(BaseModel):
    """One predicate and the targets it selects."""

    key: str = Field(description="Dotted path into the live context")
    op: BranchOp = BranchOp.EQ
    value: Any = None
    targets: list[str] = Field(default_factory=list)

    def matches(self, context: dict[str, Any]) -> bool:
        actual = resolve_path(context, self.key)
        if self.op == BranchOp.EXISTS:
            return actual is not _MISSING
        if actual is _MISSING:
            return False

        try:
            if self.op == BranchOp.EQ:
                return actual == self.value
            if self.op == BranchOp.NE:
                return actual != self.value
            if self.op == BranchOp.GT:
                return actual > self.value
            if self.op == BranchOp.GTE:
                return actual >= self.value
            if self.op == BranchOp.LT:
                return actual < self.value
            if self.op == BranchOp.LTE:
                return actual <= self.value
            if self.op == BranchOp.IN:
                return actual in self.value
            if self.op == BranchOp.CONTAINS:
                return self.value in actual
            if self.op == BranchOp.TRUTHY:
                return bool(actual)
            if self.op == BranchOp.FALSY:
                return not actual
        except TypeError as e:
            logger.warning(f"Branch route evaluation failed: {self.key} {self.op} {self.value!r}")
            logger.warning(f"   Error: {e}")
            return False

        return False


class BranchSelector(BaseModel):
    """
    Conditional successor selection for a workflow node.

    Examples:
        BranchSelector(
            routes=[
                BranchRoute(key="page_count", op="gt", value=100, targets=["bulk_audit"]),
                BranchRoute(key="page_count", op="exists", targets=["single_audit"]),
            ],
            default=[],  # nothing matched: stop this path
        )

        BranchSelector(strategy="pick_by_theme")
    """

    routes: list[BranchRoute] = Field(default_factory=list)
    default: list[str] | None = None
    strategy: str | None = Field(default=None, description="Name of an injected BranchStrategy")

    model_config = {"extra": "allow"}

    def select(
        self,
        context: dict[str, Any],
        strategies: dict[str, BranchStrategy] | None = None,
    ) -> list[str] | None:
        """
        Choose next node ids from live context.

        Returns:
            Ordered node ids, or None to keep the node's static edges.
        """
        if self.strategy:
            strategy = (strategies or {}).get(self.strategy)
            if strategy is None:
                logger.warning(f"Branch strategy '{self.strategy}' not registered, using static edges")
                return None
            chosen = strategy.select(context)
            return list(chosen) if chosen is not None else None

        for route in self.routes:
            if route.matches(context):
                return list(route.targets)

        return list(self.default) if self.default is not None else None
