"""
Suggestion Reducer - Turns completed node results into ranked findings.

Rules look at the *shape* of each result rather than at which node produced
it, so a workflow that names its sitemap step ``crawl`` still gets sitemap
findings. Findings with the same message are collapsed into one that lists
every node that raised it.
"""

import itertools
import logging
from collections.abc import Callable, Iterable
from typing import Any

from siteflow.schemas.session import IMPACT_RANK, Confidence, Impact, Suggestion

logger = logging.getLogger(__name__)

MAX_NAVIGATION_DEPTH = 3
MAX_DISTINCT_COLORS = 12
MAX_FONT_FAMILIES = 3

Rule = Callable[[str, dict[str, Any]], Suggestion | None]


def _sized(value: Any) -> int:
    """Length of a list-like value, 0 for anything else."""
    if isinstance(value, list | tuple | set | dict):
        return len(value)
    return 0


def _issue_types(issues: Iterable[Any]) -> str:
    types = []
    for issue in issues:
        kind = issue.get("type") if isinstance(issue, dict) else issue
        if kind is not None and str(kind) not in types:
            types.append(str(kind))
    return ", ".join(types)


# === PER-RESULT RULES ===


def deep_navigation(node_id: str, result: dict[str, Any]) -> Suggestion | None:
    depth = result.get("maxDepth")
    if not isinstance(depth, int | float) or depth <= MAX_NAVIGATION_DEPTH:
        return None
    return Suggestion(
        type="navigation",
        category="structure",
        message="Site navigation is too deep and may confuse users",
        detail=(
            f"Navigation depth of {depth} levels detected. "
            f"Consider flattening to {MAX_NAVIGATION_DEPTH} or fewer levels."
        ),
        confidence=Confidence.HIGH,
        impact=Impact.MEDIUM,
        related_nodes=[node_id],
    )


def orphaned_pages(node_id: str, result: dict[str, Any]) -> Suggestion | None:
    count = _sized(result.get("orphanedPages"))
    if not count:
        return None
    return Suggestion(
        type="navigation",
        category="structure",
        message="Orphaned pages detected with no navigation links",
        detail=f"{count} pages have no incoming links. Consider adding navigation paths.",
        confidence=Confidence.HIGH,
        impact=Impact.MEDIUM,
        related_nodes=[node_id],
    )


def color_sprawl(node_id: str, result: dict[str, Any]) -> Suggestion | None:
    count = _sized(result.get("colors"))
    if count <= MAX_DISTINCT_COLORS:
        return None
    return Suggestion(
        type="design",
        category="consistency",
        message="Too many different colors used throughout the site",
        detail=(
            f"{count} distinct colors detected. "
            "Consider consolidating to a more consistent color palette."
        ),
        confidence=Confidence.MEDIUM,
        impact=Impact.MEDIUM,
        related_nodes=[node_id],
    )


def font_sprawl(node_id: str, result: dict[str, Any]) -> Suggestion | None:
    typography = result.get("typography")
    if not isinstance(typography, dict):
        return None
    count = _sized(typography.get("fonts"))
    if count <= MAX_FONT_FAMILIES:
        return None
    return Suggestion(
        type="design",
        category="consistency",
        message="Too many different fonts used throughout the site",
        detail=f"{count} different fonts detected. Consider using 2-3 fonts maximum.",
        confidence=Confidence.MEDIUM,
        impact=Impact.MEDIUM,
        related_nodes=[node_id],
    )


def _issue_rule(
    key: str,
    type: str,
    category: str,
    message: str,
    label: str,
    confidence: Confidence,
) -> Rule:
    """Rule firing when ``result[key]`` is a non-empty list of issues."""

    def rule(node_id: str, result: dict[str, Any]) -> Suggestion | None:
        issues = result.get(key)
        if not isinstance(issues, list) or not issues:
            return None
        detail = f"{len(issues)} {label} found"
        kinds = _issue_types(issues)
        if kinds:
            detail += f" including {kinds}"
        return Suggestion(
            type=type,
            category=category,
            message=message,
            detail=f"{detail}.",
            confidence=confidence,
            impact=Impact.HIGH,
            related_nodes=[node_id],
        )

    rule.__name__ = f"{key}_rule"
    return rule


quality_issues = _issue_rule(
    "qualityIssues",
    type="content",
    category="quality",
    message="Content quality issues detected on multiple pages",
    label="content quality issues",
    confidence=Confidence.MEDIUM,
)
seo_issues = _issue_rule(
    "seoIssues",
    type="content",
    category="seo",
    message="SEO issues detected on multiple pages",
    label="SEO issues",
    confidence=Confidence.HIGH,
)
accessibility_issues = _issue_rule(
    "accessibilityIssues",
    type="forms",
    category="accessibility",
    message="Form accessibility issues detected",
    label="form accessibility issues",
    confidence=Confidence.HIGH,
)

DEFAULT_RULES: tuple[Rule, ...] = (
    deep_navigation,
    orphaned_pages,
    color_sprawl,
    font_sprawl,
    quality_issues,
    seo_issues,
    accessibility_issues,
)


# === CROSS-NODE RULES ===


def _categories(result: dict[str, Any]) -> set[str] | None:
    structure = result.get("structure")
    if not isinstance(structure, list):
        return None
    return {
        str(item["category"])
        for item in structure
        if isinstance(item, dict) and item.get("category")
    }


def structure_alignment(
    left_id: str,
    left: dict[str, Any],
    right_id: str,
    right: dict[str, Any],
) -> Suggestion | None:
    """Flag two results whose ``structure`` lists use different categories."""
    left_categories = _categories(left)
    right_categories = _categories(right)
    if left_categories is None or right_categories is None:
        return None
    misaligned = left_categories ^ right_categories
    if not misaligned:
        return None
    return Suggestion(
        type="structure",
        category="alignment",
        message="Navigation structure and content categorization are misaligned",
        detail=(
            f"{len(misaligned)} categories don't align between {left_id} and {right_id}. "
            "Consider reorganizing."
        ),
        confidence=Confidence.MEDIUM,
        impact=Impact.MEDIUM,
        related_nodes=[left_id, right_id],
    )


class SuggestionReducer:
    """
    Pure function over a session's results.

    Example:
        reducer = SuggestionReducer()
        suggestions = reducer.reduce(session.results)
    """

    def __init__(self, rules: Iterable[Rule] | None = None):
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)

    def reduce(self, results: dict[str, Any]) -> list[Suggestion]:
        if len(results) < 2:
            return [
                Suggestion(
                    type="info",
                    message="Not enough analysis data to generate comprehensive suggestions",
                    confidence=Confidence.LOW,
                    impact=Impact.LOW,
                    related_nodes=list(results),
                )
            ]

        shaped = {node_id: data for node_id, data in results.items() if isinstance(data, dict)}

        found: list[Suggestion] = []
        for node_id, data in shaped.items():
            for rule in self.rules:
                suggestion = rule(node_id, data)
                if suggestion is not None:
                    found.append(suggestion)

        for (left_id, left), (right_id, right) in itertools.combinations(shaped.items(), 2):
            suggestion = structure_alignment(left_id, left, right_id, right)
            if suggestion is not None:
                found.append(suggestion)

        unique = self._dedupe(found)
        unique.sort(key=lambda s: IMPACT_RANK[s.impact])
        logger.debug(f"Reduced {len(found)} findings to {len(unique)} suggestions")
        return unique

    @staticmethod
    def _dedupe(suggestions: list[Suggestion]) -> list[Suggestion]:
        """Keep the first suggestion per message, unioning related nodes into it."""
        by_message: dict[str, Suggestion] = {}
        for suggestion in suggestions:
            kept = by_message.get(suggestion.message)
            if kept is None:
                by_message[suggestion.message] = suggestion
                continue
            for node_id in suggestion.related_nodes:
                if node_id not in kept.related_nodes:
                    kept.related_nodes.append(node_id)
        return list(by_message.values())
