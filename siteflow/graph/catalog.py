"""
Site-analysis catalog - the fixed set of analysis tasks and their ordering.

Dependencies are advisory ordering within a selection: when a caller picks a
subset, edges pointing outside the subset are dropped rather than pulling
the missing task in.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class CatalogTask:
    """One entry of the analysis catalog."""

    name: str
    executor: str
    action: str
    depends_on: tuple[str, ...] = ()
    params: dict[str, Any] = field(default_factory=dict)
    site_scoped: bool = True  # Pass site_id through as a static parameter


SITE_ANALYSIS_CATALOG: dict[str, CatalogTask] = {
    task.name: task
    for task in (
        CatalogTask("sitemap", executor="sitemap", action="generate"),
        CatalogTask("wireframe", executor="wireframe", action="generate", depends_on=("sitemap",)),
        CatalogTask("design_tokens", executor="design_tokens", action="extract"),
        CatalogTask(
            "hierarchy",
            executor="full_hierarchy",
            action="map",
            depends_on=("sitemap",),
            params={
                "data": {
                    "contentTypes": ["all"],
                    "includeTemplates": True,
                    "includeBlocks": True,
                }
            },
            site_scoped=False,
        ),
        CatalogTask("design", executor="design_analyzer", action="analyze", depends_on=("design_tokens",)),
        CatalogTask("content", executor="content_audit", action="audit", depends_on=("sitemap", "hierarchy")),
        CatalogTask(
            "navigation",
            executor="navigation_optimizer",
            action="analyze",
            depends_on=("sitemap", "hierarchy"),
        ),
        CatalogTask("forms", executor="form_analysis", action="analyze", depends_on=("hierarchy",)),
    )
}

ALL_CATALOG_TASKS: tuple[str, ...] = tuple(SITE_ANALYSIS_CATALOG)
