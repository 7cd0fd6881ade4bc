"""
Ordered category rules.

Rules are evaluated top to bottom against the uppercased description; the
first match wins and anything unmatched is "Other". Order matters: card
settlements must be caught before generic merchant keywords, and FAST is
matched as a whole word so "BREAKFAST" stays a dining charge.
"""

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_CATEGORY = "Other"


@dataclass(frozen=True)
class CategoryRule:
    """One pattern -> category mapping."""

    pattern: re.Pattern
    category: str

    @classmethod
    def of(cls, pattern: str, category: str) -> "CategoryRule":
        return cls(re.compile(pattern, re.IGNORECASE), category)

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule.of(r"\bPAYNOW\b", "Transfers (PayNow)"),
    CategoryRule.of(r"\bFAST\b", "Transfers (FAST)"),
    CategoryRule.of(r"\bGIRO\b", "GIRO / Bills"),
    CategoryRule.of(r"\bATM\b|CASH\s+WITHDRAW", "Cash Withdrawal"),
    CategoryRule.of(r"\bINTEREST\b", "Interest"),
    CategoryRule.of(r"\bFEES?\b|\bCHARGES?\b|\bCOMMISSION\b", "Bank Fees"),
    CategoryRule.of(r"\b(?:UOB\s+CARDS|CARD\s+PAYMENT|CREDIT\s+CARD)\b", "Credit Card Payment"),
    CategoryRule.of(r"\b(?:SALARY|PAYROLL)\b", "Salary"),
    CategoryRule.of(r"\b(?:GRAB|GOJEK|TADA|RYDE|UBER|COMFORTDELGRO)\b", "Transport"),
    CategoryRule.of(
        r"FAIRPRICE|\bNTUC\b|COLD\s+STORAGE|SHENG\s+SIONG|\bGIANT\b|DON\s+DON\s+DONKI",
        "Groceries",
    ),
    CategoryRule.of(r"AGODA|BOOKING\.COM|TRIP\.COM|EXPEDIA|AIRBNB", "Travel"),
    CategoryRule.of(
        r"STARBUCKS|MCDONALD|\bKFC\b|SUBWAY|PIZZA|\bCAFE\b|COFFEE|RESTAURANT|BREAKFAST",
        "Dining",
    ),
    CategoryRule.of(
        r"NETFLIX|SPOTIFY|APPLE\.COM|GOOGLE|YOUTUBE|DISNEY|ADOBE|CHATGPT|OPENAI",
        "Subscriptions",
    ),
    CategoryRule.of(r"\b(?:SP\s+SERVICES|SINGTEL|STARHUB|M1\s+LIMITED)\b", "Utilities"),
    CategoryRule.of(r"SHOPEE|LAZADA|AMAZON|UNIQLO|IKEA", "Shopping"),
)

# Moving money between own accounts or settling a card is not spending
CASH_MOVEMENT_CATEGORIES = frozenset(
    {
        "Transfers (PayNow)",
        "Transfers (FAST)",
        "Transfer",
        "Credit Card Payment",
        "Cash Withdrawal",
    }
)

# Categories the extraction model may suggest, mapped onto ours
MODEL_CATEGORY_MAP = {
    "food": "Dining",
    "transport": "Transport",
    "utilities": "Utilities",
    "subscription": "Subscriptions",
    "shopping": "Shopping",
    "income": "Income",
    "transfer": "Transfer",
}


def categorize(
    description: str,
    model_hint: Optional[str] = None,
    rules: tuple[CategoryRule, ...] = CATEGORY_RULES,
) -> str:
    """
    Assign a category to a transaction description.

    Rules win over the model's hint; the hint only fills in for
    descriptions no rule recognizes.
    """
    text = description or ""
    for rule in rules:
        if rule.matches(text):
            return rule.category
    if model_hint:
        mapped = MODEL_CATEGORY_MAP.get(model_hint.strip().lower())
        if mapped:
            return mapped
    return DEFAULT_CATEGORY


def is_cash_movement(category: str) -> bool:
    """True for transfers and card settlements (excluded from spending)."""
    return category in CASH_MOVEMENT_CATEGORIES
