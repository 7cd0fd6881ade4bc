"""
Tests for the spending summary.
"""

from datetime import date

from statement_pipeline.schemas import Totals
from statement_pipeline.subscriptions import detect
from statement_pipeline.summary import (
    build_insights,
    build_summary,
    category_spending,
    compute_totals,
    period_label,
    top_categories,
)

from conftest import make_transaction


def march_transactions():
    return [
        make_transaction(date(2024, 3, 1), "SALARY ACME", "3000.00", "Salary"),
        make_transaction(date(2024, 3, 2), "FAIRPRICE", "-120.40", "Groceries"),
        make_transaction(date(2024, 3, 3), "STARBUCKS", "-8.50", "Dining"),
        make_transaction(date(2024, 3, 9), "KFC", "-15.00", "Dining"),
        make_transaction(date(2024, 3, 12), "PAYNOW TO J", "-900.00", "Transfers (PayNow)"),
        make_transaction(date(2024, 3, 20), "SHOPEE", "-60.10", "Shopping"),
        make_transaction(date(2024, 3, 28), "GRAB", "-30.00", "Transport"),
    ]


class TestTotals:
    """Tests for totals and categories."""

    def test_compute_totals(self):
        totals = compute_totals(march_transactions())

        assert totals.inflow_minor == 300000
        assert totals.outflow_minor == 113400
        assert totals.net_minor == 186600

    def test_rounded_and_exact_display(self):
        data = Totals(inflow_minor=300049, outflow_minor=113450).to_dict()

        assert data["inflow"] == 3000
        assert data["outflow"] == 1135
        assert data["net_cashflow_exact"] == "1865.99"

    def test_cash_movement_excluded_from_spending(self):
        spending = category_spending(march_transactions())

        assert "Transfers (PayNow)" not in spending
        assert spending["Dining"] == 2350

    def test_top_three(self):
        top = top_categories(march_transactions())

        assert [c.category for c in top] == ["Groceries", "Shopping", "Transport"]


class TestPeriodLabel:
    """Tests for the period label."""

    def test_single_month(self):
        assert period_label(march_transactions()) == "March 2024"

    def test_range(self):
        transactions = [
            make_transaction(date(2024, 3, 1), "A", "-1.00"),
            make_transaction(date(2024, 4, 15), "B", "-1.00"),
        ]
        assert period_label(transactions) == "01 Mar 2024 to 15 Apr 2024"

    def test_empty(self):
        assert period_label([]) == "Unknown period"


class TestInsights:
    """Tests for insights built from computed numbers."""

    def test_positive_cashflow(self):
        summary = build_summary(march_transactions())

        assert summary.period == "March 2024"
        assert summary.insights[0] == "Your net cashflow is positive (1,866.00)"
        assert summary.insights[1] == "You kept 62% of the money that came in"
        assert summary.insights[2] == "Top spending category: Groceries (120.40)"

    def test_overspending(self):
        totals = Totals(inflow_minor=100000, outflow_minor=150000)

        insights = build_insights(totals, [])

        assert insights == [
            "Your spending exceeded income by 500.00",
            "You spent 50% more than came in",
        ]

    def test_subscription_spend_leads_when_high(self):
        transactions = []
        for month in (1, 2, 3):
            transactions.append(
                make_transaction(date(2024, month, 10), "ADOBE CREATIVE", "-250.00", "Subscriptions")
            )
        subscriptions = detect(transactions)

        insights = build_insights(compute_totals(transactions), [], subscriptions)

        assert insights[0] == "Recurring subscriptions total 250.00 a month"
        assert len(insights) <= 3

    def test_empty_statement(self):
        summary = build_summary([])

        assert summary.period == "Unknown period"
        assert summary.top_categories == []
        assert summary.insights == ["Your net cashflow is positive (0.00)"]
