"""
Entry points for webhook and route handlers.

Each call opens its own database session and wires the production
collaborators (Stripe Connect, SMTP, Slack). Callers should acknowledge the
triggering event whatever the payout outcome; a failed payout is safe to
re-submit later.
"""

from affiliate_payouts.core.config import get_settings
from affiliate_payouts.core.db import get_session_factory
from affiliate_payouts.schemas.payout import IntegrityResult, PayoutResult, SweepSummary
from affiliate_payouts.services.notifications import EmailSender, SlackSender
from affiliate_payouts.services.payment_processor import StripePaymentProcessor
from affiliate_payouts.services.payout_orchestrator import PayoutOrchestrator
from affiliate_payouts.services.payout_sweep import PayoutSweepService


def _build_orchestrator(session) -> PayoutOrchestrator:
    settings = get_settings()
    return PayoutOrchestrator(
        session,
        payment_processor=StripePaymentProcessor(settings),
        email_sender=EmailSender(settings),
        slack_sender=SlackSender(settings),
        settings=settings,
    )


async def validate(commission_id: str) -> IntegrityResult:
    async with get_session_factory()() as session:
        return await _build_orchestrator(session).validate(commission_id)


async def payout(commission_id: str, order_id: str) -> PayoutResult:
    async with get_session_factory()() as session:
        orchestrator = _build_orchestrator(session)
        result = await orchestrator.payout(commission_id, order_id)
        await orchestrator.wait_for_notifications()
        return result


async def sweep() -> SweepSummary:
    async with get_session_factory()() as session:
        orchestrator = _build_orchestrator(session)
        summary = await PayoutSweepService(orchestrator).run()
        await orchestrator.wait_for_notifications()
        return summary
