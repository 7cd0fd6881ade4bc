"""
Validation of extraction-service payloads.

Accepts ``{"transactions": [...], "opening_balance": ..., "closing_balance": ...}``
or a bare array of rows. Balance keys may be snake_case or camelCase.
Any row violating the schema rejects the whole payload: nothing partial is
ever passed downstream.
"""

from decimal import Decimal
from typing import Any, Optional

from ..errors import SchemaValidationError
from ..schemas import BalanceEvidence, RawTransaction, parse_amount

OPENING_KEYS = ("opening_balance", "openingBalance")
CLOSING_KEYS = ("closing_balance", "closingBalance")


def _amount(value: Any, path: str, required: bool) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise SchemaValidationError("amount is required", path)
        return None
    try:
        return parse_amount(value)
    except ValueError as e:
        raise SchemaValidationError(str(e), path) from e


def _first_key(data: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def parse_row(row: Any, path: str, default_currency: str) -> RawTransaction:
    """Validate one transaction row."""
    if not isinstance(row, dict):
        raise SchemaValidationError(f"expected object, got {type(row).__name__}", path)

    date = row.get("date")
    if not isinstance(date, str) or not date.strip():
        raise SchemaValidationError("date must be a non-empty string", f"{path}.date")

    description = row.get("description", "")
    if description is None:
        description = ""
    if not isinstance(description, str):
        raise SchemaValidationError("description must be a string", f"{path}.description")

    currency = row.get("currency") or default_currency
    if not isinstance(currency, str):
        raise SchemaValidationError("currency must be a string", f"{path}.currency")

    category = row.get("category")
    if category is not None and not isinstance(category, str):
        raise SchemaValidationError("category must be a string", f"{path}.category")

    return RawTransaction(
        date=date.strip(),
        description=description.strip(),
        amount=_amount(row.get("amount"), f"{path}.amount", required=True),
        currency=currency.strip().upper() or default_currency,
        category=category,
        balance=_amount(row.get("balance"), f"{path}.balance", required=False),
    )


def parse_payload(data: Any, default_currency: str) -> tuple[list[RawTransaction], BalanceEvidence]:
    """
    Validate a decoded payload.

    Returns:
        Tuple of (raw transactions in statement order, balance evidence)

    Raises:
        SchemaValidationError: On any structural violation
    """
    if isinstance(data, list):
        rows, top = data, {}
    elif isinstance(data, dict):
        rows, top = data.get("transactions"), data
        if rows is None:
            raise SchemaValidationError("missing 'transactions'")
        if not isinstance(rows, list):
            raise SchemaValidationError("'transactions' must be an array")
    else:
        raise SchemaValidationError(f"expected object or array, got {type(data).__name__}")

    transactions = [
        parse_row(row, f"transactions[{i}]", default_currency) for i, row in enumerate(rows)
    ]
    balances = BalanceEvidence(
        opening=_amount(_first_key(top, OPENING_KEYS), "opening_balance", required=False),
        closing=_amount(_first_key(top, CLOSING_KEYS), "closing_balance", required=False),
        source="extraction",
    )
    return transactions, balances
