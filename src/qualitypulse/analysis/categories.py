"""Keyword-based grouping of tests by title."""

from __future__ import annotations

DEFAULT_CATEGORY = "other"

# Checked in order; the first category with a keyword found in the title wins.
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("authentication", ("auth", "login", "logout", "register", "signup", "sign up", "password")),
    ("performance", ("performance", "perf", "load time", "lighthouse")),
    ("visual", ("visual", "screenshot", "snapshot", "layout")),
    ("accessibility", ("accessibility", "a11y", "aria", "keyboard")),
    ("error-handling", ("error", "exception", "failure", "fallback")),
    ("boundary", ("boundary", "edge", "limit", "overflow", "empty")),
    ("integration", ("integration", "e2e", "end-to-end", "workflow", "journey")),
    ("api", ("api", "endpoint", "request", "graphql")),
    ("forms", ("form", "input", "validation", "upload")),
    ("search", ("search", "filter", "sort")),
    ("navigation", ("navigation", "navigate", "route", "menu", "link")),
)


def categorize_test(title: str, keywords: tuple[tuple[str, tuple[str, ...]], ...] = CATEGORY_KEYWORDS) -> str:
    """Infer a test's category from keywords in its title."""
    lowered = title.lower()
    for category, words in keywords:
        if any(word in lowered for word in words):
            return category
    return DEFAULT_CATEGORY


def suite_name(title: str) -> str:
    """Suite label of a test: the first word of its title."""
    parts = title.split()
    return parts[0] if parts else "unknown"
