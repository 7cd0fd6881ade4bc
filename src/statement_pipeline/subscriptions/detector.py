"""
Subscription detector.

Groups debits by normalized merchant and infers recurring charges from the
regularity of amounts and day gaps. Pure and deterministic.
"""

import calendar
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from ..normalize import is_cash_movement
from ..schemas import (
    Interval,
    SubscriptionCandidate,
    SubscriptionEvidence,
    Transaction,
    from_minor,
)

logger = logging.getLogger(__name__)

# Brands that bill on a schedule; one charge is enough to flag them
KNOWN_SUBSCRIPTION_BRANDS = (
    "NETFLIX",
    "SPOTIFY",
    "ADOBE",
    "APPLE COM",
    "GOOGLE STORAGE",
    "GOOGLE ONE",
    "YOUTUBE",
    "DISNEY",
    "LINKEDIN",
    "CHATGPT",
    "OPENAI",
    "AWS",
    "AMAZON WEB SERVICES",
    "HEROKU",
    "AMAZON PRIME",
)

# (interval, min gap days, max gap days)
INTERVAL_BANDS = (
    (Interval.WEEKLY, 6.0, 8.0),
    (Interval.MONTHLY, 25.0, 35.0),
    (Interval.QUARTERLY, 85.0, 95.0),
    (Interval.ANNUAL, 350.0, 380.0),
)


@dataclass
class DetectorWeights:
    """Additive confidence components."""

    base: float = 0.3
    many_occurrences: float = 0.15  # >= 3 charges
    known_interval: float = 0.25
    consistent_amount: float = 0.2
    known_brand: float = 0.1


def classify_interval(mean_gap_days: Optional[float]) -> Interval:
    """Map a mean day gap onto a billing interval."""
    if mean_gap_days is None:
        return Interval.UNKNOWN
    for interval, low, high in INTERVAL_BANDS:
        if low <= mean_gap_days <= high:
            return interval
    return Interval.UNKNOWN


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def next_expected(last_seen: date, interval: Interval) -> Optional[date]:
    """Add one billing interval to the last charge date."""
    if interval == Interval.WEEKLY:
        return last_seen + timedelta(days=7)
    if interval == Interval.MONTHLY:
        return _add_months(last_seen, 1)
    if interval == Interval.QUARTERLY:
        return _add_months(last_seen, 3)
    if interval == Interval.ANNUAL:
        return _add_months(last_seen, 12)
    return None


def is_known_brand(normalized_merchant: str) -> bool:
    """Whole-word brand match; single-word brands may prefix a token (NETFLIXCOM)."""
    padded = f" {normalized_merchant} "
    tokens = normalized_merchant.split()
    for brand in KNOWN_SUBSCRIPTION_BRANDS:
        if f" {brand} " in padded:
            return True
        if " " not in brand and any(token.startswith(brand) for token in tokens):
            return True
    return False


class SubscriptionDetector:
    """
    Detects recurring charges.

    A group qualifies with two or more charges, or with a single charge from
    a known subscription brand. Amounts are consistent when every charge is
    within max(relative tolerance * mean, absolute floor) of the mean.
    """

    def __init__(
        self,
        weights: Optional[DetectorWeights] = None,
        relative_tolerance: Decimal = Decimal("0.02"),
        absolute_floor_minor: int = 50,
        min_amount_minor: int = 200,
    ):
        self.weights = weights or DetectorWeights()
        self.relative_tolerance = relative_tolerance
        self.absolute_floor_minor = absolute_floor_minor
        # Charges below this (e.g. card verification holds) are ignored
        self.min_amount_minor = min_amount_minor

    def detect(self, transactions: list[Transaction]) -> list[SubscriptionCandidate]:
        groups: dict[str, list[Transaction]] = defaultdict(list)
        for tx in transactions:
            if tx.amount_minor >= 0 or is_cash_movement(tx.category):
                continue
            if -tx.amount_minor < self.min_amount_minor:
                continue
            groups[tx.normalized_merchant].append(tx)

        candidates = []
        for merchant_key, charges in groups.items():
            known = is_known_brand(merchant_key)
            if len(charges) < 2 and not known:
                continue
            candidates.append(self._evaluate(merchant_key, charges, known))

        candidates.sort(key=lambda c: (-c.confidence, c.normalized_merchant))
        logger.info(
            f"Detected {len(candidates)} subscription candidates from {len(groups)} merchants"
        )
        return candidates

    def _amounts_consistent(self, amounts: list[int], mean: float) -> bool:
        tolerance = max(float(self.relative_tolerance) * mean, float(self.absolute_floor_minor))
        return all(abs(a - mean) <= tolerance for a in amounts)

    def _evaluate(
        self, merchant_key: str, charges: list[Transaction], known: bool
    ) -> SubscriptionCandidate:
        charges = sorted(charges, key=lambda tx: tx.date)
        amounts = [-tx.amount_minor for tx in charges]
        mean_amount = statistics.fmean(amounts)
        amount_std = statistics.pstdev(amounts) if len(amounts) > 1 else 0.0

        gaps = [(b.date - a.date).days for a, b in zip(charges, charges[1:])]
        mean_gap = statistics.fmean(gaps) if gaps else None
        gap_std = statistics.pstdev(gaps) if len(gaps) > 1 else (0.0 if gaps else None)

        interval = classify_interval(mean_gap)
        consistent = len(amounts) > 1 and self._amounts_consistent(amounts, mean_amount)

        w = self.weights
        confidence = w.base
        if len(charges) >= 3:
            confidence += w.many_occurrences
        if interval != Interval.UNKNOWN:
            confidence += w.known_interval
        if consistent:
            confidence += w.consistent_amount
        if known:
            confidence += w.known_brand
        confidence = max(0.0, min(1.0, confidence))

        last = charges[-1]
        return SubscriptionCandidate(
            merchant=last.merchant,
            normalized_merchant=merchant_key,
            amount_minor=int(statistics.median_low(amounts)),
            currency=last.currency,
            interval=interval,
            occurrences=len(charges),
            last_seen_date=last.date,
            next_expected_date=next_expected(last.date, interval),
            confidence=confidence,
            evidence=SubscriptionEvidence(
                amount_std_dev=from_minor(round(amount_std)),
                interval_days_avg=round(mean_gap, 2) if mean_gap is not None else None,
                interval_days_std_dev=round(gap_std, 2) if gap_std is not None else None,
            ),
        )


def detect(transactions: list[Transaction]) -> list[SubscriptionCandidate]:
    """Detect subscriptions with default weights."""
    return SubscriptionDetector().detect(transactions)
