"""
Balance anchors from statement text.

Most statements print the balance brought forward and carried forward
("Balance B/F", "Opening Balance", ...). When the model omits them, these
lines are the next best reconciliation evidence.
"""

import re
from decimal import Decimal
from typing import Optional

from ..schemas import BalanceEvidence, parse_amount

_AMOUNT = r"(\(?-?[\d,]+\.\d{2}\)?-?)"

OPENING_RE = re.compile(
    r"(?i)\b(?:balance\s*b\s*/\s*f|balance\s+brought\s+forward|opening\s+balance"
    r"|previous\s+balance|beginning\s+balance)\b[^\n]*?" + _AMOUNT
)
CLOSING_RE = re.compile(
    r"(?i)\b(?:balance\s*c\s*/\s*f|balance\s+carried\s+forward|closing\s+balance"
    r"|new\s+balance|ending\s+balance)\b[^\n]*?" + _AMOUNT
)


def _match_amount(match: Optional[re.Match]) -> Optional[Decimal]:
    if match is None:
        return None
    try:
        return parse_amount(match.group(1))
    except ValueError:
        return None


def find_balance_anchors(text: str) -> Optional[BalanceEvidence]:
    """
    Find opening and closing balances in statement text.

    The first opening anchor and the last closing anchor win, so multi-page
    statements that repeat "Balance C/F" at each page break resolve to the
    final balance.

    Returns:
        BalanceEvidence with source "statement_text", or None if neither is found
    """
    if not text:
        return None

    opening = _match_amount(OPENING_RE.search(text))
    closings = list(CLOSING_RE.finditer(text))
    closing = _match_amount(closings[-1]) if closings else None

    if opening is None and closing is None:
        return None
    return BalanceEvidence(opening=opening, closing=closing, source="statement_text")
