"""Pre-payment safety gate: integrity check plus duplicate-payment check."""

import logging

from affiliate_payouts.models.commission import CommissionStatus
from affiliate_payouts.schemas.payout import SafetyCheck
from affiliate_payouts.services.commission_integrity import CommissionIntegrityValidator
from affiliate_payouts.services.ledger import CommissionLedger

logger = logging.getLogger(__name__)

ALREADY_PAID_REASON = "Commission was already paid"


class PayoutSafetyGate:
    def __init__(self, ledger: CommissionLedger, validator: CommissionIntegrityValidator):
        self.ledger = ledger
        self.validator = validator

    async def check_safe(self, commission_id: str) -> SafetyCheck:
        """
        Decide whether a transfer may be issued for a commission right now.

        Integrity violations are terminal and are returned in full. A commission
        that is paid, or carries a transfer id from any rail, is reported with
        ``already_processed`` set.
        """
        violations = await self.validator.find_violations(commission_id)
        if violations:
            return SafetyCheck(safe=False, reasons=violations)

        # Re-read: a concurrent run may have written any one of these fields
        commission = await self.ledger.get_commission(commission_id)
        if not commission:
            return SafetyCheck(safe=False, reasons=[f"Commission {commission_id} not found"])

        if commission.status == CommissionStatus.PAID or commission.transfer_id or commission.external_transfer_id:
            logger.info(
                f"Commission {commission_id} already paid "
                f"(status={commission.status.value}, transfer={commission.transfer_id or commission.external_transfer_id})"
            )
            return SafetyCheck(safe=False, reasons=[ALREADY_PAID_REASON], already_processed=True)

        return SafetyCheck(safe=True)
