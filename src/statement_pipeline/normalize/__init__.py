"""
Normalization and categorization.

Turns raw extraction rows into canonical transactions and assigns
categories through an ordered, data-driven rule table.
"""

from .normalizer import (
    NormalizationResult,
    TransactionNormalizer,
    normalize,
    normalize_merchant,
    parse_date,
)
from .rules import (
    CASH_MOVEMENT_CATEGORIES,
    CATEGORY_RULES,
    DEFAULT_CATEGORY,
    CategoryRule,
    categorize,
    is_cash_movement,
)

__all__ = [
    "CASH_MOVEMENT_CATEGORIES",
    "CATEGORY_RULES",
    "DEFAULT_CATEGORY",
    "CategoryRule",
    "NormalizationResult",
    "TransactionNormalizer",
    "categorize",
    "is_cash_movement",
    "normalize",
    "normalize_merchant",
    "parse_date",
]
