"""
Confidence scoring implementation.
"""

from dataclasses import dataclass
from typing import Optional

from ..schemas import (
    ConfidenceResult,
    ExtractionStats,
    Grade,
    Reconciliation,
    SubscriptionCandidate,
    format_minor,
)


@dataclass
class ConfidenceThresholds:
    """Configurable thresholds for grade determination."""

    high_threshold: float = 0.75  # Above this: HIGH
    medium_threshold: float = 0.55  # Above this: MEDIUM, below: LOW

    # Fewer transactions than this earns a "very few" reason
    few_transactions: int = 5


@dataclass
class ConfidenceWeights:
    """Weights of the three sub-scores (sum to 1)."""

    reconciliation: float = 0.45
    completeness: float = 0.35
    subscriptions: float = 0.20


class ConfidenceScorer:
    """
    Combines extraction completeness, reconciliation and subscription
    quality into one explainable score.

    Sub-scores (each in [0, 1]):
    1. Reconciliation: 0.95 when balances reconcile, 0.4 when inconclusive,
       and a value that shrinks as |delta| grows when they do not
    2. Completeness: observed vs expected transaction count, discounted by
       rows that had to be dropped
    3. Subscription quality: mean candidate confidence, 0.5 when none
    """

    RECONCILED_CONFIDENCE = 0.95
    INCONCLUSIVE_CONFIDENCE = 0.4
    # Ceiling for a mismatch; decays towards MISMATCH_FLOOR as |delta| grows
    MISMATCH_CEILING = 0.7
    MISMATCH_FLOOR = 0.05
    # |delta| (minor units) at which a mismatch has lost half its ceiling
    MISMATCH_HALF_LIFE_MINOR = 1000
    NEUTRAL_SUBSCRIPTION_QUALITY = 0.5
    MIN_COMPLETENESS = 0.1

    def __init__(
        self,
        expected_transactions: int = 15,
        thresholds: Optional[ConfidenceThresholds] = None,
        weights: Optional[ConfidenceWeights] = None,
    ):
        """Initialize scorer with thresholds and weights."""
        self.expected_transactions = max(1, expected_transactions)
        self.thresholds = thresholds or ConfidenceThresholds()
        self.weights = weights or ConfidenceWeights()

    def reconciliation_confidence(self, reconciliation: Reconciliation) -> float:
        """Sub-score for the reconciliation outcome (monotone in |delta|)."""
        if reconciliation.ok is None:
            return self.INCONCLUSIVE_CONFIDENCE
        if reconciliation.ok:
            return self.RECONCILED_CONFIDENCE
        delta = abs(reconciliation.delta_minor or 0)
        decayed = self.MISMATCH_CEILING * self.MISMATCH_HALF_LIFE_MINOR / (
            self.MISMATCH_HALF_LIFE_MINOR + delta
        )
        return max(self.MISMATCH_FLOOR, decayed)

    def extraction_completeness(self, stats: ExtractionStats) -> float:
        """Sub-score for how complete the extracted transaction list looks."""
        if stats.transaction_count <= 0:
            return 0.0
        ratio = stats.transaction_count / self.expected_transactions
        ratio = max(self.MIN_COMPLETENESS, min(1.0, ratio))
        if stats.raw_count > 0 and stats.dropped_count > 0:
            ratio *= 1.0 - stats.dropped_count / stats.raw_count
        return max(0.0, min(1.0, ratio))

    def subscription_quality(self, subscriptions: list[SubscriptionCandidate]) -> float:
        """Sub-score for subscription detection."""
        if not subscriptions:
            return self.NEUTRAL_SUBSCRIPTION_QUALITY
        return sum(s.confidence for s in subscriptions) / len(subscriptions)

    def grade(self, score: float) -> Grade:
        """
        Map a score onto a grade.

        Rules:
        - HIGH: score >= high_threshold
        - MEDIUM: score >= medium_threshold
        - LOW: Otherwise
        """
        if score >= self.thresholds.high_threshold:
            return Grade.HIGH
        elif score >= self.thresholds.medium_threshold:
            return Grade.MEDIUM
        else:
            return Grade.LOW

    def score(
        self,
        stats: ExtractionStats,
        reconciliation: Reconciliation,
        subscriptions: list[SubscriptionCandidate],
    ) -> ConfidenceResult:
        """Compute the weighted score, grade and ordered reasons."""
        recon = self.reconciliation_confidence(reconciliation)
        completeness = self.extraction_completeness(stats)
        subs = self.subscription_quality(subscriptions)

        total = (
            self.weights.reconciliation * recon
            + self.weights.completeness * completeness
            + self.weights.subscriptions * subs
        )
        total = max(0.0, min(1.0, total))

        return ConfidenceResult(
            score=total,
            grade=self.grade(total),
            reasons=self._reasons(stats, reconciliation, subscriptions),
            components={
                "reconciliation": recon,
                "completeness": completeness,
                "subscriptions": subs,
            },
        )

    def _reasons(
        self,
        stats: ExtractionStats,
        reconciliation: Reconciliation,
        subscriptions: list[SubscriptionCandidate],
    ) -> list[str]:
        reasons = []

        count = stats.transaction_count
        if count == 0:
            reasons.append("No transactions were extracted")
        elif count < self.thresholds.few_transactions:
            reasons.append(f"Only {count} transactions extracted")
        else:
            reasons.append(f"Extracted {count} transactions")
        if stats.dropped_count:
            reasons.append(f"{stats.dropped_count} rows could not be read and were skipped")

        if reconciliation.ok is None:
            reasons.append("Opening/closing balances not found; reconciliation inconclusive")
        elif reconciliation.ok:
            reasons.append(
                f"Balances reconcile (difference {format_minor(reconciliation.delta_minor)})"
            )
        else:
            reasons.append(
                f"Balances differ by {format_minor(abs(reconciliation.delta_minor))} "
                f"from the sum of transactions"
            )

        if subscriptions:
            reasons.append(f"Detected {len(subscriptions)} recurring charges")
        else:
            reasons.append("No recurring charges detected")

        return reasons
