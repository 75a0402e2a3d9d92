"""Single pass over commissions waiting for an automatic payout retry.

The scheduler that calls this lives outside the package. Each commission goes
through the normal orchestrator, so the idempotency and safety guarantees are
the same as for webhook-triggered payouts.
"""

import logging
from typing import Optional

from affiliate_payouts.schemas.payout import SweepError, SweepSummary
from affiliate_payouts.services.payout_orchestrator import PayoutOrchestrator

logger = logging.getLogger(__name__)


class PayoutSweepService:
    def __init__(self, orchestrator: PayoutOrchestrator):
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings

    async def run(self, limit: Optional[int] = None) -> SweepSummary:
        candidates = await self.orchestrator.ledger.list_retry_candidates(
            limit=limit or self.settings.payout_sweep_batch_size,
            max_attempts=self.settings.payout_max_sweep_attempts,
        )
        logger.info(f"Payout sweep found {len(candidates)} commissions to retry")

        # Ids are captured up front; payout() repopulates the ORM objects as it goes
        pending = [(c.id, c.order_id) for c in candidates]

        summary = SweepSummary()
        for commission_id, order_id in pending:
            result = await self.orchestrator.payout(commission_id, order_id)
            summary.processed += 1

            if result.success:
                summary.succeeded += 1
            elif result.needs_channel_onboarding:
                summary.needs_onboarding += 1
            else:
                summary.failed += 1
                summary.errors.append(SweepError(commission_id=commission_id, error=result.error or result.outcome))
            if result.requires_manual_review:
                summary.manual_review += 1

        logger.info(
            f"Payout sweep done: {summary.succeeded} paid, {summary.failed} failed, "
            f"{summary.needs_onboarding} waiting for onboarding"
        )
        return summary
