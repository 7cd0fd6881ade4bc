"""
Subscription detection.

Infers recurring charges from merchant, amount and timing regularity.
"""

from .detector import (
    KNOWN_SUBSCRIPTION_BRANDS,
    DetectorWeights,
    SubscriptionDetector,
    classify_interval,
    detect,
    is_known_brand,
    next_expected,
)

__all__ = [
    "KNOWN_SUBSCRIPTION_BRANDS",
    "DetectorWeights",
    "SubscriptionDetector",
    "classify_interval",
    "detect",
    "is_known_brand",
    "next_expected",
]
