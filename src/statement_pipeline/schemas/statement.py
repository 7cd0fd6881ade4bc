"""
Canonical statement objects (SSOT).

Every stage of the pipeline reads and writes these types. Amounts are kept
in integer minor units; ``to_dict`` converts to display strings at the
boundary.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .money import from_minor, round_to_units


class UploadStatus(str, Enum):
    """Lifecycle of an upload."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class JobStatus(str, Enum):
    """Lifecycle of a processing job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class Interval(str, Enum):
    """Billing interval of a recurring charge."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    UNKNOWN = "unknown"


class Grade(str, Enum):
    """Coarse confidence grade."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ReconciliationMethod(str, Enum):
    """Which balance evidence produced the reconciliation."""

    RUNNING_BALANCE = "running_balance"
    STATEMENT_ANCHOR = "statement_anchor"
    NONE = "none"


class ExtractionStrategy(str, Enum):
    """How the document was sent to the extraction service."""

    TEXT = "text"
    VISION = "vision"


@dataclass
class RawTransaction:
    """One row as returned by the extraction service (validated, not normalized)."""

    date: str  # ISO-8601
    description: str
    amount: Decimal  # signed: debits negative
    currency: Optional[str] = None
    category: Optional[str] = None
    balance: Optional[Decimal] = None


@dataclass
class BalanceEvidence:
    """Explicit opening/closing balances, if the statement provides them."""

    opening: Optional[Decimal] = None
    closing: Optional[Decimal] = None
    source: str = "extraction"  # extraction, statement_text, or both joined by "+"

    @property
    def is_complete(self) -> bool:
        return self.opening is not None and self.closing is not None


@dataclass
class ExtractionStats:
    """Counters describing one extraction run, used for confidence scoring."""

    strategy: ExtractionStrategy
    document_count: int = 1
    page_count: int = 0
    text_chars: int = 0
    raw_count: int = 0
    transaction_count: int = 0
    dropped_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "document_count": self.document_count,
            "page_count": self.page_count,
            "text_chars": self.text_chars,
            "raw_count": self.raw_count,
            "transaction_count": self.transaction_count,
            "dropped_count": self.dropped_count,
        }


@dataclass
class ExtractionResult:
    """Output of the extraction router."""

    transactions: list[RawTransaction]
    balances: BalanceEvidence
    stats: ExtractionStats


@dataclass
class Transaction:
    """Normalized transaction row."""

    date: date
    merchant: str
    normalized_merchant: str
    category: str
    amount_minor: int  # signed
    currency: str
    description: str
    running_balance_minor: Optional[int] = None

    @property
    def amount(self) -> Decimal:
        return from_minor(self.amount_minor)

    @property
    def is_debit(self) -> bool:
        return self.amount_minor < 0


@dataclass
class Reconciliation:
    """Outcome of cross-checking transactions against balances.

    All values are minor units. ``ok`` is None when no balance evidence was
    available (inconclusive, not a failure).
    """

    opening_minor: Optional[int]
    closing_minor: Optional[int]
    expected_closing_minor: Optional[int]
    delta_minor: Optional[int]
    ok: Optional[bool]
    method: ReconciliationMethod

    @classmethod
    def inconclusive(cls) -> "Reconciliation":
        return cls(None, None, None, None, None, ReconciliationMethod.NONE)

    def to_dict(self) -> dict[str, Any]:
        def _fmt(value: Optional[int]) -> Optional[str]:
            return str(from_minor(value)) if value is not None else None

        return {
            "opening": _fmt(self.opening_minor),
            "closing": _fmt(self.closing_minor),
            "expected_closing": _fmt(self.expected_closing_minor),
            "delta": _fmt(self.delta_minor),
            "ok": self.ok,
            "method": self.method.value,
        }


@dataclass
class SubscriptionEvidence:
    """Statistics backing a subscription candidate."""

    amount_std_dev: Decimal
    interval_days_avg: Optional[float] = None
    interval_days_std_dev: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount_std_dev": str(self.amount_std_dev),
            "interval_days_avg": self.interval_days_avg,
            "interval_days_std_dev": self.interval_days_std_dev,
        }


@dataclass
class SubscriptionCandidate:
    """An inferred recurring charge."""

    merchant: str
    normalized_merchant: str
    amount_minor: int  # representative charge, positive
    currency: str
    interval: Interval
    occurrences: int
    last_seen_date: date
    next_expected_date: Optional[date]
    confidence: float
    evidence: SubscriptionEvidence

    @property
    def amount(self) -> Decimal:
        return from_minor(self.amount_minor)

    def to_dict(self) -> dict[str, Any]:
        return {
            "merchant": self.merchant,
            "normalized_merchant": self.normalized_merchant,
            "amount": str(self.amount),
            "currency": self.currency,
            "interval": self.interval.value,
            "occurrences": self.occurrences,
            "last_seen_date": self.last_seen_date.isoformat(),
            "next_expected_date": (
                self.next_expected_date.isoformat() if self.next_expected_date else None
            ),
            "confidence": round(self.confidence, 3),
            "evidence": self.evidence.to_dict(),
        }


@dataclass
class ConfidenceResult:
    """Explainable trust score for one extract."""

    score: float
    grade: Grade
    reasons: list[str] = field(default_factory=list)
    components: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": round(self.score, 3),
            "grade": self.grade.value,
            "reasons": list(self.reasons),
            "components": {k: round(v, 3) for k, v in self.components.items()},
        }


@dataclass
class Totals:
    """Cashflow totals in minor units."""

    inflow_minor: int = 0
    outflow_minor: int = 0  # positive magnitude

    @property
    def net_minor(self) -> int:
        return self.inflow_minor - self.outflow_minor

    def to_dict(self) -> dict[str, Any]:
        return {
            "inflow": round_to_units(self.inflow_minor),
            "outflow": round_to_units(self.outflow_minor),
            "net_cashflow": round_to_units(self.net_minor),
            "inflow_exact": str(from_minor(self.inflow_minor)),
            "outflow_exact": str(from_minor(self.outflow_minor)),
            "net_cashflow_exact": str(from_minor(self.net_minor)),
        }


@dataclass
class CategoryTotal:
    """Spending in one category (positive magnitude)."""

    category: str
    amount_minor: int

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category, "amount": round_to_units(self.amount_minor)}


@dataclass
class Summary:
    """Spending summary derived from normalized transactions."""

    period: str
    totals: Totals
    top_categories: list[CategoryTotal] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)


@dataclass
class StatementExtract:
    """Aggregated result of one successful run."""

    upload_id: str
    summary: Summary
    confidence: ConfidenceResult
    reconciliation: Reconciliation
    subscriptions: list[SubscriptionCandidate]
    stats: ExtractionStats
    currency: str

    @property
    def period(self) -> str:
        return self.summary.period

    def to_dict(self) -> dict[str, Any]:
        return {
            "upload_id": self.upload_id,
            "period": self.summary.period,
            "currency": self.currency,
            "totals": self.summary.totals.to_dict(),
            "top_categories": [c.to_dict() for c in self.summary.top_categories],
            "insights": list(self.summary.insights),
            "confidence": self.confidence.to_dict(),
            "reconciliation": self.reconciliation.to_dict(),
            "subscriptions": [s.to_dict() for s in self.subscriptions],
            "extraction": self.stats.to_dict(),
        }
