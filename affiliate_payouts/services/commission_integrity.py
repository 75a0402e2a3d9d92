"""Commission integrity checks.

Recomputes a commission from the order and affiliate it points at and reports
every field that no longer matches. Protects against manual edits of
commission amounts or rates, commissions re-pointed at another affiliate, and
commissions fabricated for orders that were never attributed.
"""

import logging
from decimal import Decimal
from typing import List

from affiliate_payouts.schemas.payout import IntegrityResult
from affiliate_payouts.services.ledger import CommissionLedger

logger = logging.getLogger(__name__)

# Tolerance for rounding differences, in currency units
EPSILON = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(value if value is not None else 0)


class CommissionIntegrityValidator:
    """Read-only validator; never writes to the ledger."""

    def __init__(self, ledger: CommissionLedger):
        self.ledger = ledger

    async def validate(self, commission_id: str) -> IntegrityResult:
        """Return the first violated invariant, or ``valid=True``."""
        violations = await self.find_violations(commission_id, stop_at_first=True)
        if violations:
            return IntegrityResult(valid=False, reason=violations[0])
        logger.info(f"Commission {commission_id} passed integrity check")
        return IntegrityResult(valid=True)

    async def find_violations(self, commission_id: str, stop_at_first: bool = False) -> List[str]:
        """
        Evaluate the integrity invariants in order.

        1. The commission's affiliate is the order's attributed affiliate.
        2. The order total snapshot matches the order.
        3. The rate snapshot matches the affiliate's current rate.
        4. The amount matches order total x affiliate rate / 100.

        Args:
            commission_id: Commission to check
            stop_at_first: Return as soon as one invariant fails

        Returns:
            Human-readable reasons, empty when the commission is intact
        """
        commission = await self.ledger.get_commission(commission_id)
        if not commission:
            return [f"Commission {commission_id} not found"]

        order = await self.ledger.get_order(commission.order_id)
        if not order:
            return [f"Order {commission.order_id} for commission {commission_id} not found"]

        affiliate = await self.ledger.get_affiliate(commission.affiliate_id)
        if not affiliate:
            return [f"Affiliate {commission.affiliate_id} for commission {commission_id} not found"]

        violations: List[str] = []

        if order.affiliate_id != commission.affiliate_id:
            violations.append(
                f"Affiliate mismatch: order {order.id} is attributed to "
                f"{order.affiliate_id or 'no affiliate'}, commission names {commission.affiliate_id}"
            )
            if stop_at_first:
                return self._log(commission_id, violations)

        order_total = _money(order.total)
        snapshot_total = _money(commission.order_total)
        if abs(order_total - snapshot_total) > EPSILON:
            violations.append(
                f"Order total mismatch: order has {order_total}, commission recorded {snapshot_total}"
            )
            if stop_at_first:
                return self._log(commission_id, violations)

        expected_rate = _money(affiliate.commission_rate)
        snapshot_rate = _money(commission.commission_rate)
        if abs(expected_rate - snapshot_rate) > EPSILON:
            violations.append(
                f"Commission rate mismatch: expected {expected_rate}%, commission recorded {snapshot_rate}%"
            )
            if stop_at_first:
                return self._log(commission_id, violations)

        expected_amount = order_total * expected_rate / 100
        snapshot_amount = _money(commission.commission_amount)
        if abs(expected_amount - snapshot_amount) > EPSILON:
            violations.append(
                f"Commission amount mismatch: expected {expected_amount:.2f} {commission.currency}, "
                f"commission recorded {snapshot_amount:.2f} {commission.currency}"
            )

        return self._log(commission_id, violations)

    @staticmethod
    def _log(commission_id: str, violations: List[str]) -> List[str]:
        for reason in violations:
            logger.error(f"Integrity violation on commission {commission_id}: {reason}")
        return violations
