"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from statement_pipeline.confidence import ConfidenceScorer
from statement_pipeline.normalize import normalize_merchant
from statement_pipeline.reconciliation import reconcile
from statement_pipeline.schemas import (
    ExtractionStats,
    ExtractionStrategy,
    RawTransaction,
    StatementExtract,
    Transaction,
    to_minor,
)
from statement_pipeline.state_store import StateStore
from statement_pipeline.subscriptions import detect
from statement_pipeline.summary import build_summary

# Native text of a one-page savings account statement
SAMPLE_STATEMENT_TEXT = """
ACME BANK SAVINGS ACCOUNT STATEMENT
Statement period: 01 Mar 2024 to 31 Mar 2024

Date        Description                          Withdrawal   Deposit    Balance
01 Mar      BALANCE B/F                                                  1,000.00
02 Mar      NETS STARBUCKS 0231                    12.50                   987.50
05 Mar      NETFLIX.COM REF 88231                  15.99                   971.51
15 Mar      SALARY ACME PTE LTD                               3,000.00   3,971.51
20 Mar      PAYNOW TRANSFER TO J TAN              500.00                 3,471.51
31 Mar      BALANCE C/F                                                  3,471.51
"""


def make_transaction(
    day: date,
    description: str,
    amount: str,
    category: str = "Other",
    balance: str | None = None,
    currency: str = "SGD",
) -> Transaction:
    """Build a normalized transaction from display values."""
    return Transaction(
        date=day,
        merchant=description,
        normalized_merchant=normalize_merchant(description),
        category=category,
        amount_minor=to_minor(Decimal(amount)),
        currency=currency,
        description=description,
        running_balance_minor=to_minor(Decimal(balance)) if balance is not None else None,
    )


def make_extract(upload_id: str, transactions: list[Transaction]) -> StatementExtract:
    """Run the post-extraction stages over ready transactions."""
    subscriptions = detect(transactions)
    reconciliation = reconcile(transactions)
    stats = ExtractionStats(
        strategy=ExtractionStrategy.TEXT,
        raw_count=len(transactions),
        transaction_count=len(transactions),
    )
    return StatementExtract(
        upload_id=upload_id,
        summary=build_summary(transactions, subscriptions),
        confidence=ConfidenceScorer().score(stats, reconciliation, subscriptions),
        reconciliation=reconciliation,
        subscriptions=subscriptions,
        stats=stats,
        currency="SGD",
    )


@pytest.fixture
def sample_statement_text() -> str:
    """Native text of a small statement with B/F and C/F lines."""
    return SAMPLE_STATEMENT_TEXT


@pytest.fixture
def sample_payload() -> dict:
    """Extraction-service payload matching SAMPLE_STATEMENT_TEXT."""
    return {
        "opening_balance": 1000.00,
        "closing_balance": 3471.51,
        "transactions": [
            {
                "date": "2024-03-02",
                "description": "NETS STARBUCKS 0231",
                "amount": -12.50,
                "currency": "SGD",
                "category": "Food",
                "balance": 987.50,
            },
            {
                "date": "2024-03-05",
                "description": "NETFLIX.COM REF 88231",
                "amount": -15.99,
                "currency": "SGD",
                "category": "Subscription",
                "balance": 971.51,
            },
            {
                "date": "2024-03-15",
                "description": "SALARY ACME PTE LTD",
                "amount": 3000.00,
                "currency": "SGD",
                "category": "Income",
                "balance": 3971.51,
            },
            {
                "date": "2024-03-20",
                "description": "PAYNOW TRANSFER TO J TAN",
                "amount": -500.00,
                "currency": "SGD",
                "category": "Transfer",
                "balance": 3471.51,
            },
        ],
    }


@pytest.fixture
def sample_raw_rows() -> list[RawTransaction]:
    """Raw rows as the extraction router returns them."""
    return [
        RawTransaction(
            date="2024-03-02",
            description="  NETS   STARBUCKS 0231 ",
            amount=Decimal("-12.50"),
            currency="SGD",
            category="Food",
        ),
        RawTransaction(
            date="05/03/2024",
            description="NETFLIX.COM REF 88231",
            amount=Decimal("-15.99"),
            currency="sgd",
            category="Subscription",
        ),
        RawTransaction(
            date="15 Mar 2024",
            description="SALARY ACME PTE LTD",
            amount=Decimal("3000"),
            currency="SGD",
            category="Income",
        ),
        RawTransaction(
            date="sometime in March",
            description="UNREADABLE ROW",
            amount=Decimal("-1.00"),
            currency="SGD",
        ),
    ]


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Path to a fresh SQLite database."""
    return tmp_path / "state.db"


@pytest.fixture
def store(temp_db: Path) -> StateStore:
    """Fresh state store with migrations applied."""
    return StateStore(temp_db, run_migrations=True)
