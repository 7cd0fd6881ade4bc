"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical types are the ONLY models passed between stages.
"""

from .money import format_minor, from_minor, parse_amount, round_to_units, to_minor
from .statement import (
    BalanceEvidence,
    CategoryTotal,
    ConfidenceResult,
    ExtractionResult,
    ExtractionStats,
    ExtractionStrategy,
    Grade,
    Interval,
    JobStatus,
    RawTransaction,
    Reconciliation,
    ReconciliationMethod,
    StatementExtract,
    SubscriptionCandidate,
    SubscriptionEvidence,
    Summary,
    Totals,
    Transaction,
    UploadStatus,
)

__all__ = [
    # Money
    "format_minor",
    "from_minor",
    "parse_amount",
    "round_to_units",
    "to_minor",
    # Statement objects
    "BalanceEvidence",
    "CategoryTotal",
    "ConfidenceResult",
    "ExtractionResult",
    "ExtractionStats",
    "ExtractionStrategy",
    "Grade",
    "Interval",
    "JobStatus",
    "RawTransaction",
    "Reconciliation",
    "ReconciliationMethod",
    "StatementExtract",
    "SubscriptionCandidate",
    "SubscriptionEvidence",
    "Summary",
    "Totals",
    "Transaction",
    "UploadStatus",
]
