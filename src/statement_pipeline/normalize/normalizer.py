"""
Transaction normalizer.

Pure and deterministic: raw extraction rows in, canonical transactions
out. Amounts become integer minor units here and stay that way.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from ..schemas import RawTransaction, Transaction, to_minor
from .rules import CATEGORY_RULES, CategoryRule, categorize

logger = logging.getLogger(__name__)

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d-%b-%Y",
)

_WHITESPACE_RE = re.compile(r"\s+")
_REF_SUFFIX_RE = re.compile(r"\s+(?:REF(?:ERENCE)?|TXN|TRN)\b.*$")
_RAIL_PREFIX_RE = re.compile(
    r"^(?:POS|NETS|EFTPOS|VISA|MASTERCARD|MCARD|DEBIT CARD|CARD|PURCHASE|PAYMENT TO)\s+"
)
_PUNCT_RE = re.compile(r"[^\w\s]|_")
# Trailing tokens with digits: card suffixes, terminal ids, reference numbers
_TRAILING_REF_RE = re.compile(r"(?:\s+(?=[A-Z]*\d)[A-Z0-9]{3,})+$")
_TRAILING_NUMBER_RE = re.compile(r"(?:\s+\d+)+$")


def clean_description(text: str) -> str:
    """Collapse whitespace and strip."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def normalize_merchant(text: str) -> str:
    """
    Derive a stable merchant identity for grouping.

    Uppercases, drops "REF ..." suffixes and card-rail prefixes, strips
    punctuation and trailing reference numbers:
    "Netflix.com REF 88231" -> "NETFLIX COM".
    """
    value = clean_description(text).upper()
    value = _REF_SUFFIX_RE.sub("", value)
    value = _PUNCT_RE.sub(" ", value)
    value = clean_description(value)
    # Prefixes can stack: "POS VISA NETFLIX"
    previous = None
    while previous != value:
        previous = value
        value = _RAIL_PREFIX_RE.sub("", value)
    stripped = _TRAILING_NUMBER_RE.sub("", _TRAILING_REF_RE.sub("", value))
    # Never strip a merchant down to nothing
    return clean_description(stripped) or value or "UNKNOWN"


def parse_date(value: str) -> Optional[date]:
    """Parse a statement date; ISO first, then common bank formats."""
    text = clean_description(value)
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


@dataclass
class NormalizationResult:
    """Normalized rows plus the rows that could not be interpreted."""

    transactions: list[Transaction] = field(default_factory=list)
    dropped: list[tuple[int, str]] = field(default_factory=list)  # (row index, reason)

    @property
    def dropped_count(self) -> int:
        return len(self.dropped)


class TransactionNormalizer:
    """
    Maps raw rows onto canonical transactions.

    Sign is taken as delivered by extraction (debits negative); it is never
    flipped here.
    """

    def __init__(
        self,
        default_currency: str = "SGD",
        rules: tuple[CategoryRule, ...] = CATEGORY_RULES,
    ):
        self.default_currency = default_currency
        self.rules = rules

    def normalize(self, raw: list[RawTransaction]) -> NormalizationResult:
        result = NormalizationResult()
        for index, row in enumerate(raw):
            tx_date = parse_date(row.date)
            if tx_date is None:
                result.dropped.append((index, f"unparseable date {row.date!r}"))
                continue

            description = clean_description(row.description)
            merchant = description or "Unknown"
            result.transactions.append(
                Transaction(
                    date=tx_date,
                    merchant=merchant,
                    normalized_merchant=normalize_merchant(merchant),
                    category=categorize(description, row.category, self.rules),
                    amount_minor=to_minor(row.amount),
                    currency=(row.currency or self.default_currency).upper(),
                    description=description,
                    running_balance_minor=(
                        to_minor(row.balance) if row.balance is not None else None
                    ),
                )
            )

        if result.dropped:
            logger.warning(
                f"Dropped {result.dropped_count} of {len(raw)} rows: "
                + "; ".join(f"#{i} {reason}" for i, reason in result.dropped[:5])
            )
        return result


def normalize(raw: list[RawTransaction], default_currency: str = "SGD") -> list[Transaction]:
    """Normalize rows with the default rule table."""
    return TransactionNormalizer(default_currency).normalize(raw).transactions
