"""
Reconciliation module.

Checks extracted transactions against opening/closing balances.
"""

from .engine import DEFAULT_TOLERANCE_MINOR, ReconciliationEngine, reconcile

__all__ = [
    "DEFAULT_TOLERANCE_MINOR",
    "ReconciliationEngine",
    "reconcile",
]
