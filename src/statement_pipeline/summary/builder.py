"""
Summary builder.

Totals, top spending categories, period label and insights. Insights are
built only from numbers computed here; nothing is inferred beyond them.
"""

from collections import defaultdict
from typing import Optional

from ..normalize import is_cash_movement
from ..schemas import (
    CategoryTotal,
    Interval,
    SubscriptionCandidate,
    Summary,
    Totals,
    Transaction,
    format_minor,
)

TOP_CATEGORY_COUNT = 3
MAX_INSIGHTS = 3
# Monthly subscription spend (minor units) above which an insight is raised
HIGH_SUBSCRIPTION_SPEND_MINOR = 20_000


def compute_totals(transactions: list[Transaction]) -> Totals:
    inflow = sum(tx.amount_minor for tx in transactions if tx.amount_minor > 0)
    outflow = sum(-tx.amount_minor for tx in transactions if tx.amount_minor < 0)
    return Totals(inflow_minor=inflow, outflow_minor=outflow)


def category_spending(transactions: list[Transaction]) -> dict[str, int]:
    """Outflow per category, cash movement excluded."""
    totals: dict[str, int] = defaultdict(int)
    for tx in transactions:
        if tx.amount_minor < 0 and not is_cash_movement(tx.category):
            totals[tx.category] += -tx.amount_minor
    return dict(totals)


def top_categories(
    transactions: list[Transaction], limit: int = TOP_CATEGORY_COUNT
) -> list[CategoryTotal]:
    spending = category_spending(transactions)
    ranked = sorted(spending.items(), key=lambda item: (-item[1], item[0]))
    return [CategoryTotal(category=name, amount_minor=amount) for name, amount in ranked[:limit]]


def period_label(transactions: list[Transaction]) -> str:
    """'March 2024' for one month, '01 Mar 2024 to 15 Apr 2024' otherwise."""
    if not transactions:
        return "Unknown period"
    first = min(tx.date for tx in transactions)
    last = max(tx.date for tx in transactions)
    if (first.year, first.month) == (last.year, last.month):
        return first.strftime("%B %Y")
    return f"{first.strftime('%d %b %Y')} to {last.strftime('%d %b %Y')}"


def _percent(part: int, whole: int) -> int:
    return round(part * 100 / whole) if whole else 0


def build_insights(
    totals: Totals,
    categories: list[CategoryTotal],
    subscriptions: Optional[list[SubscriptionCandidate]] = None,
) -> list[str]:
    insights: list[str] = []

    net = totals.net_minor
    if net >= 0:
        insights.append(f"Your net cashflow is positive ({format_minor(net)})")
        if totals.inflow_minor:
            insights.append(
                f"You kept {_percent(net, totals.inflow_minor)}% of the money that came in"
            )
    else:
        insights.append(f"Your spending exceeded income by {format_minor(-net)}")
        if totals.inflow_minor:
            insights.append(
                f"You spent {_percent(-net, totals.inflow_minor)}% more than came in"
            )

    if categories:
        top = categories[0]
        insights.append(
            f"Top spending category: {top.category} ({format_minor(top.amount_minor)})"
        )

    monthly_subs = sum(
        s.amount_minor for s in (subscriptions or []) if s.interval == Interval.MONTHLY
    )
    if monthly_subs > HIGH_SUBSCRIPTION_SPEND_MINOR:
        insights.insert(
            0, f"Recurring subscriptions total {format_minor(monthly_subs)} a month"
        )

    return insights[:MAX_INSIGHTS]


def build_summary(
    transactions: list[Transaction],
    subscriptions: Optional[list[SubscriptionCandidate]] = None,
) -> Summary:
    """Compute the full spending summary."""
    totals = compute_totals(transactions)
    categories = top_categories(transactions)
    return Summary(
        period=period_label(transactions),
        totals=totals,
        top_categories=categories,
        insights=build_insights(totals, categories, subscriptions),
    )
