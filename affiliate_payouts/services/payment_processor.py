"""
Payment processor collaborator for connected-account payouts.

The payout flow depends only on the ``PaymentProcessor`` protocol; the Stripe
Connect implementation below translates Stripe SDK objects and exceptions into
the schemas in ``affiliate_payouts.schemas.payout`` and ``ProviderError``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Protocol

import stripe

from affiliate_payouts.core.config import Settings, get_settings
from affiliate_payouts.core.exceptions import AttributionError, ProviderError
from affiliate_payouts.schemas.payout import AccountCapabilities, Transfer, TransferRequest

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):
    async def get_account_capabilities(self, account_id: str) -> AccountCapabilities:
        ...

    async def resolve_charge_for_payment_intent(self, intent_id: str) -> str:
        ...

    async def create_transfer(self, request: TransferRequest) -> Transfer:
        ...


class StripePaymentProcessor:
    """Stripe Connect adapter. Blocking SDK calls run in a worker thread."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.api_key = settings.get_stripe_secret_key()
        self.retryable_codes = set(settings.payout_retryable_error_codes)
        stripe.max_network_retries = settings.stripe_max_network_retries

        if not self.api_key:
            logger.warning("Stripe secret key not configured; payout API calls will fail")

    async def get_account_capabilities(self, account_id: str) -> AccountCapabilities:
        account = await self._call(stripe.Account.retrieve, account_id, api_key=self.api_key)
        return AccountCapabilities(
            charges_enabled=bool(getattr(account, "charges_enabled", False)),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
            details_submitted=bool(getattr(account, "details_submitted", False)),
        )

    async def resolve_charge_for_payment_intent(self, intent_id: str) -> str:
        """Return the charge that funded a PaymentIntent (``latest_charge``)."""
        intent = await self._call(stripe.PaymentIntent.retrieve, intent_id, api_key=self.api_key)
        latest_charge = getattr(intent, "latest_charge", None)

        # Expanded responses carry the Charge object instead of its id
        if latest_charge is not None and not isinstance(latest_charge, str):
            latest_charge = getattr(latest_charge, "id", None)

        if not latest_charge:
            raise AttributionError(f"PaymentIntent {intent_id} has no charge", code="no_charge")
        return latest_charge

    async def create_transfer(self, request: TransferRequest) -> Transfer:
        params = {
            "amount": request.amount_minor_units,
            "currency": request.currency.lower(),
            "destination": request.destination_account_id,
            "source_transaction": request.source_charge_id,
            "metadata": request.metadata,
        }
        if request.description:
            params["description"] = request.description
        if request.transfer_group:
            params["transfer_group"] = request.transfer_group

        transfer = await self._call(
            stripe.Transfer.create,
            api_key=self.api_key,
            idempotency_key=request.idempotency_key,
            **params,
        )
        return Transfer(
            id=transfer.id,
            amount_minor_units=getattr(transfer, "amount", None),
            currency=getattr(transfer, "currency", None),
        )

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            raise self._to_provider_error(e) from e

    def _to_provider_error(self, error: stripe.StripeError) -> ProviderError:
        code = getattr(error, "code", None)
        if not code and isinstance(error, stripe.RateLimitError):
            code = "rate_limit"
        message = getattr(error, "user_message", None) or str(error) or type(error).__name__
        return ProviderError(message, code=code, retryable=is_retryable(code, self.retryable_codes))


def is_retryable(code: Optional[str], retryable_codes: Iterable[str]) -> bool:
    """Insufficient platform balance and rate limiting clear up on their own."""
    return code in set(retryable_codes)
