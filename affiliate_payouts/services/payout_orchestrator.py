"""
Automatic affiliate payouts via Stripe Connect.

Called by payment-confirmation webhooks once an order is paid. Deliveries are
at-least-once and may race, so every run must be safe to repeat:

- a paid commission (or one carrying any transfer id) short-circuits to success
- the safety gate re-checks integrity and duplicate payment before each attempt
- the transfer idempotency key is derived from the commission id
- balance and attempt counters change through relative UPDATEs only

Every classified failure comes back as a ``PayoutResult``; only database errors
propagate to the caller.
"""

import asyncio
import enum
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_payouts.core.config import Settings, get_settings
from affiliate_payouts.core.exceptions import ProviderError
from affiliate_payouts.models.affiliate import Affiliate
from affiliate_payouts.models.commission import Commission, CommissionStatus, TransferStatus
from affiliate_payouts.schemas.payout import IntegrityResult, PayoutResult, TransferRequest
from affiliate_payouts.services.commission_integrity import CommissionIntegrityValidator
from affiliate_payouts.services.ledger import CommissionLedger
from affiliate_payouts.services.notifications import EmailSenderProtocol, SlackSender
from affiliate_payouts.services.payment_processor import PaymentProcessor
from affiliate_payouts.services.payout_emails import build_payout_confirmation
from affiliate_payouts.services.payout_safety import PayoutSafetyGate
from affiliate_payouts.services.security_alerts import SecurityAlertService

logger = logging.getLogger(__name__)


class PayoutOutcome(str, enum.Enum):
    PAID = "paid"
    ALREADY_PAID = "already_paid"                 # Idempotency hit, reported as success
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    BLOCKED_FRAUD = "blocked_fraud"               # Manual review
    BLOCKED_ONBOARDING = "blocked_onboarding"     # Steady state until onboarding completes
    MISSING_ATTRIBUTION = "missing_attribution"   # Manual review
    BELOW_MINIMUM = "below_minimum"
    FAILED_RETRYABLE = "failed_retryable"         # Steady state until the next scheduled retry
    FAILED_TERMINAL = "failed_terminal"           # Manual review


# Currencies Stripe expects in major units
ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount to the provider's integer unit, rounding half up."""
    amount = Decimal(amount)
    if currency.lower() not in ZERO_DECIMAL_CURRENCIES:
        amount = amount * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayoutOrchestrator:
    """Drives one commission from approved to paid."""

    def __init__(
        self,
        db: AsyncSession,
        payment_processor: PaymentProcessor,
        email_sender: EmailSenderProtocol,
        slack_sender: Optional[SlackSender] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.ledger = CommissionLedger(db)
        self.validator = CommissionIntegrityValidator(self.ledger)
        self.safety_gate = PayoutSafetyGate(self.ledger, self.validator)
        self.alerts = SecurityAlertService(email_sender, slack_sender, self.settings)
        self.payment_processor = payment_processor
        self.email_sender = email_sender
        self._notification_tasks: Set[asyncio.Task] = set()

    async def validate(self, commission_id: str) -> IntegrityResult:
        return await self.validator.validate(commission_id)

    async def payout(self, commission_id: str, order_id: str) -> PayoutResult:
        """
        Transfer a commission to the affiliate's connected account.

        Args:
            commission_id: Commission created for the paid order
            order_id: Order that triggered the payout (logs and metadata)

        Returns:
            PayoutResult describing the outcome; never raised
        """
        logger.info(f"Processing payout for commission {commission_id} (order {order_id})")

        commission = await self.ledger.get_commission(commission_id)
        if not commission:
            logger.error(f"Commission {commission_id} not found")
            return PayoutResult(success=False, outcome=PayoutOutcome.NOT_FOUND, error="not found")

        if commission.status == CommissionStatus.PAID or commission.has_transfer:
            return self._already_paid(commission)

        if commission.status == CommissionStatus.CANCELLED:
            logger.info(f"Commission {commission_id} is cancelled; nothing to pay")
            return PayoutResult(success=False, outcome=PayoutOutcome.CANCELLED, error="cancelled")

        if order_id != commission.order_id:
            logger.warning(
                f"Payout for commission {commission_id} requested with order {order_id}, "
                f"commission belongs to order {commission.order_id}; using the commission's order"
            )

        affiliate = await self.ledger.get_affiliate(commission.affiliate_id)
        if not affiliate:
            logger.error(f"Affiliate {commission.affiliate_id} for commission {commission_id} not found")
            return PayoutResult(
                success=False,
                outcome=PayoutOutcome.NOT_FOUND,
                error="affiliate not found",
                requires_manual_review=True,
            )

        safety = await self.safety_gate.check_safe(commission_id)
        if safety.already_processed:
            # A concurrent run recorded the transfer between our read and the gate
            return self._already_paid(await self.ledger.get_commission(commission_id) or commission)
        if not safety.safe:
            return await self._block_for_review(affiliate, commission, safety.reasons)

        if not await self._payout_channel_ready(affiliate):
            reason = (
                "Affiliate has not completed payout onboarding"
                if not affiliate.payout_account_id
                else "Payout account does not have payouts enabled yet"
            )
            logger.info(f"{affiliate.name}: {reason}. Commission {commission_id} stays approved.")
            await self.ledger.mark_awaiting_onboarding(commission_id, reason)
            return PayoutResult(
                success=False,
                outcome=PayoutOutcome.BLOCKED_ONBOARDING,
                error=reason,
                needs_channel_onboarding=True,
            )

        source_charge_id = await self._resolve_source_charge(commission.order_id)
        if not source_charge_id:
            error = f"No source charge found for order {commission.order_id}"
            logger.error(f"{error}; refusing to issue an unattributed transfer")
            await self.ledger.record_transfer_failure(commission_id, error, TransferStatus.FAILED_TERMINAL)
            return PayoutResult(
                success=False,
                outcome=PayoutOutcome.MISSING_ATTRIBUTION,
                error=error,
                requires_manual_review=True,
            )

        currency = (commission.currency or self.settings.default_currency).lower()
        amount = Decimal(commission.commission_amount)
        amount_minor = to_minor_units(amount, currency)
        if amount_minor < self.settings.payout_min_transfer_units:
            logger.info(f"Commission {commission_id} amount {amount_minor} is below the minimum transfer")
            await self.ledger.mark_below_minimum(
                commission_id,
                f"Amount {amount_minor} {currency} is below the minimum transfer "
                f"of {self.settings.payout_min_transfer_units}",
            )
            return PayoutResult(
                success=False,
                outcome=PayoutOutcome.BELOW_MINIMUM,
                amount=amount,
                error="below minimum transfer amount",
            )

        request = TransferRequest(
            amount_minor_units=amount_minor,
            currency=currency,
            destination_account_id=affiliate.payout_account_id,
            source_charge_id=source_charge_id,
            idempotency_key=f"{self.settings.payout_idempotency_key_prefix}{commission_id}",
            description=f"Commission for order #{commission.order_id[:8]} - {affiliate.name}",
            transfer_group=f"order_{commission.order_id}",
            metadata={
                "commission_id": commission.id,
                "order_id": commission.order_id,
                "affiliate_id": affiliate.id,
                "affiliate_code": affiliate.code,
            },
        )
        logger.info(
            f"Creating transfer: {amount_minor} {currency} -> {affiliate.payout_account_id} "
            f"({affiliate.name}) [source: {source_charge_id}]"
        )

        try:
            transfer = await self.payment_processor.create_transfer(request)
        except ProviderError as e:
            return await self._record_provider_failure(commission, e)
        except Exception as e:
            logger.exception(f"Unexpected error creating transfer for commission {commission_id}")
            return await self._record_provider_failure(commission, ProviderError(str(e), code="unknown"))

        recorded = await self.ledger.mark_paid(commission_id, transfer.id, self.settings.payout_payment_method)
        if not recorded:
            return await self._recorded_elsewhere(commission, transfer.id)

        self._warn_on_balance_drift(affiliate, amount)
        await self.ledger.apply_payout_to_balances(affiliate.id, amount)

        self._notify_in_background(affiliate, amount, transfer.id, currency)

        logger.info(f"Payout complete: {amount} {currency.upper()} -> {affiliate.name} ({transfer.id})")
        return PayoutResult(
            success=True,
            outcome=PayoutOutcome.PAID,
            transfer_id=transfer.id,
            amount=amount,
        )

    async def wait_for_notifications(self) -> None:
        """Wait for confirmation emails started by earlier payouts."""
        if self._notification_tasks:
            await asyncio.gather(*list(self._notification_tasks), return_exceptions=True)

    # =========================================================================
    # Steps
    # =========================================================================

    def _already_paid(self, commission: Commission) -> PayoutResult:
        transfer_id = commission.transfer_id or commission.external_transfer_id or "already-paid"
        logger.info(f"Commission {commission.id} already paid ({transfer_id})")
        return PayoutResult(
            success=True,
            outcome=PayoutOutcome.ALREADY_PAID,
            transfer_id=transfer_id,
            amount=Decimal(commission.commission_amount),
        )

    async def _recorded_elsewhere(self, commission: Commission, transfer_id: str) -> PayoutResult:
        """
        Another writer recorded a payment between the safety gate and ``mark_paid``.

        A concurrent run reuses the idempotency key, so it records the same
        transfer and nothing is left to do. A payment recorded on another rail
        means our transfer moved money twice and needs reconciling by hand.
        """
        current = await self.ledger.get_commission(commission.id) or commission
        result = self._already_paid(current)
        if current.transfer_id == transfer_id:
            logger.info(f"Commission {commission.id} was recorded as paid by a concurrent run")
            return result

        recorded = current.transfer_id or current.external_transfer_id
        logger.error(
            f"Transfer {transfer_id} created for commission {commission.id}, "
            f"which was already paid via {recorded}; reconcile manually"
        )
        result.requires_manual_review = True
        result.error = f"Transfer {transfer_id} duplicates recorded payment {recorded}"
        return result

    async def _block_for_review(
        self,
        affiliate: Affiliate,
        commission: Commission,
        reasons: List[str],
    ) -> PayoutResult:
        logger.error(f"Payout blocked for commission {commission.id}: {'; '.join(reasons)}")
        await self.ledger.hold_for_review(commission.id, reasons)
        await self.alerts.send_blocked_payout_alert(affiliate, commission, reasons)
        return PayoutResult(
            success=False,
            outcome=PayoutOutcome.BLOCKED_FRAUD,
            error="blocked",
            requires_manual_review=True,
        )

    async def _payout_channel_ready(self, affiliate: Affiliate) -> bool:
        """
        Trust the cached flag when it says ready. Otherwise ask the processor once,
        since capability updates arrive through a separate, possibly late, event.
        """
        if affiliate.payouts_enabled and affiliate.payout_account_id:
            return True
        if not affiliate.payout_account_id:
            return False

        logger.info(f"Cached payouts_enabled=false for {affiliate.payout_account_id}; checking live")
        try:
            capabilities = await self.payment_processor.get_account_capabilities(affiliate.payout_account_id)
        except Exception as e:
            logger.error(f"Capability lookup failed for {affiliate.payout_account_id}: {e}")
            return False

        if not capabilities.ready:
            logger.info(
                f"Account {affiliate.payout_account_id} not ready: "
                f"charges={capabilities.charges_enabled}, payouts={capabilities.payouts_enabled}"
            )
            return False

        await self.ledger.update_capabilities(affiliate, capabilities)
        return True

    async def _resolve_source_charge(self, order_id: str) -> Optional[str]:
        order = await self.ledger.get_order(order_id)
        if not order or not order.payment_intent_id:
            logger.warning(f"Order {order_id} has no payment intent to attribute the transfer to")
            return None

        try:
            charge_id = await self.payment_processor.resolve_charge_for_payment_intent(order.payment_intent_id)
        except Exception as e:
            logger.error(f"Could not resolve charge for payment intent {order.payment_intent_id}: {e}")
            return None

        logger.info(f"Resolved charge {charge_id} for order {order_id}")
        return charge_id

    async def _record_provider_failure(self, commission: Commission, error: ProviderError) -> PayoutResult:
        """
        Apply the retry budget.

        Terminal errors always need a person. Retryable errors stay with the
        scheduler until the attempts made before this one reach the budget.
        """
        prior_attempts = commission.transfer_attempt_count or 0
        escalate = not error.retryable or prior_attempts >= self.settings.payout_manual_review_after_attempts
        status = TransferStatus.FAILED_TERMINAL if escalate else TransferStatus.FAILED_RETRYABLE

        logger.error(
            f"Transfer failed for commission {commission.id}: [{error.code}] {error.message} "
            f"(attempt {prior_attempts + 1}, {'manual review' if escalate else 'will retry'})"
        )
        await self.ledger.record_transfer_failure(
            commission.id,
            f"Stripe [{error.code}]: {error.message}",
            status,
        )
        return PayoutResult(
            success=False,
            outcome=PayoutOutcome.FAILED_TERMINAL if escalate else PayoutOutcome.FAILED_RETRYABLE,
            error=error.message,
            requires_manual_review=escalate,
        )

    def _warn_on_balance_drift(self, affiliate: Affiliate, amount: Decimal) -> None:
        pending = Decimal(affiliate.pending_commission or 0)
        if pending < amount:
            logger.warning(
                f"Affiliate {affiliate.id} pending balance {pending} is below payout {amount}; "
                "flooring pending balance at zero"
            )

    # =========================================================================
    # Notifications
    # =========================================================================

    def _notify_in_background(self, affiliate: Affiliate, amount: Decimal, transfer_id: str, currency: str) -> None:
        task = asyncio.create_task(
            self._send_payout_confirmation(affiliate.email, affiliate.name, amount, transfer_id, currency)
        )
        self._notification_tasks.add(task)
        task.add_done_callback(self._notification_tasks.discard)

    async def _send_payout_confirmation(
        self,
        email: str,
        name: str,
        amount: Decimal,
        transfer_id: str,
        currency: str,
    ) -> None:
        try:
            subject, html_content = build_payout_confirmation(name, amount, transfer_id, currency)
            result = await self.email_sender.send_email(email, subject, html_content)
            if result.success:
                logger.info(f"Payout confirmation sent to {email}")
            else:
                logger.warning(f"Payout confirmation to {email} not sent: {result.detail}")
        except Exception:
            logger.exception("Payout confirmation email failed", extra={"transfer_id": transfer_id})
