"""Post-run analysis of node results."""

from siteflow.analysis.suggestions import DEFAULT_RULES, SuggestionReducer

__all__ = ["DEFAULT_RULES", "SuggestionReducer"]
