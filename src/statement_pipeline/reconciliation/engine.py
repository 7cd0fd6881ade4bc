"""
Reconciliation engine.

Cross-checks the extracted transaction sum against balance evidence:

    expected_closing = opening + sum(amounts)
    delta            = closing - expected_closing
    ok               = |delta| <= tolerance

Methods, in priority order:
1. Running balance: at least two rows print a balance. Opening is the
   first printed balance minus the amount on that same row; closing is the
   last printed balance. Rows before the first printed balance still enter
   the sum.
2. Statement anchor: explicit opening/closing balances from extraction
   (or the statement text).
Without either, the result is inconclusive (ok is None), not a failure.

Everything is integer minor units; Decimal only appears in ``to_dict``.
"""

import logging
from typing import Optional

from ..schemas import BalanceEvidence, Reconciliation, ReconciliationMethod, Transaction, to_minor

logger = logging.getLogger(__name__)

# 0.05 in display units
DEFAULT_TOLERANCE_MINOR = 5


class ReconciliationEngine:
    """Chooses a reconciliation method from the available evidence."""

    def __init__(self, tolerance_minor: int = DEFAULT_TOLERANCE_MINOR):
        self.tolerance_minor = tolerance_minor

    def reconcile(
        self,
        transactions: list[Transaction],
        evidence: Optional[BalanceEvidence] = None,
    ) -> Reconciliation:
        result = self._running_balance(transactions)
        if result is None and evidence is not None and evidence.is_complete:
            result = self._statement_anchor(transactions, evidence)
        if result is None:
            logger.info("Reconciliation inconclusive: no usable balance evidence")
            return Reconciliation.inconclusive()

        logger.info(
            f"Reconciliation via {result.method.value}: delta={result.delta_minor} minor units, "
            f"ok={result.ok}"
        )
        return result

    def _running_balance(self, transactions: list[Transaction]) -> Optional[Reconciliation]:
        with_balance = [
            i for i, tx in enumerate(transactions) if tx.running_balance_minor is not None
        ]
        if len(with_balance) < 2:
            return None

        first, last = with_balance[0], with_balance[-1]
        opening = transactions[first].running_balance_minor - transactions[first].amount_minor
        closing = transactions[last].running_balance_minor
        return self._build(transactions, opening, closing, ReconciliationMethod.RUNNING_BALANCE)

    def _statement_anchor(
        self, transactions: list[Transaction], evidence: BalanceEvidence
    ) -> Reconciliation:
        return self._build(
            transactions,
            to_minor(evidence.opening),
            to_minor(evidence.closing),
            ReconciliationMethod.STATEMENT_ANCHOR,
        )

    def _build(
        self,
        transactions: list[Transaction],
        opening: int,
        closing: int,
        method: ReconciliationMethod,
    ) -> Reconciliation:
        expected = opening + sum(tx.amount_minor for tx in transactions)
        delta = closing - expected
        return Reconciliation(
            opening_minor=opening,
            closing_minor=closing,
            expected_closing_minor=expected,
            delta_minor=delta,
            ok=abs(delta) <= self.tolerance_minor,
            method=method,
        )


def reconcile(
    transactions: list[Transaction], evidence: Optional[BalanceEvidence] = None
) -> Reconciliation:
    """Reconcile with the default 0.05 tolerance."""
    return ReconciliationEngine().reconcile(transactions, evidence)
