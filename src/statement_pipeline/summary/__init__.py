"""
Spending summary: totals, top categories, period and insights.
"""

from .builder import (
    build_insights,
    build_summary,
    category_spending,
    compute_totals,
    period_label,
    top_categories,
)

__all__ = [
    "build_insights",
    "build_summary",
    "category_spending",
    "compute_totals",
    "period_label",
    "top_categories",
]
