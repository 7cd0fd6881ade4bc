"""
Confidence scoring module.

Combines reconciliation, completeness and subscription quality into one
score with a grade and human-readable reasons.
"""

from .scorer import ConfidenceScorer, ConfidenceThresholds, ConfidenceWeights

__all__ = [
    "ConfidenceScorer",
    "ConfidenceThresholds",
    "ConfidenceWeights",
]
