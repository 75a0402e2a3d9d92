"""Tests for the Stripe Connect adapter, with the SDK calls monkeypatched."""

import pytest
import stripe

from affiliate_payouts.core.exceptions import AttributionError, ProviderError
from affiliate_payouts.schemas.payout import TransferRequest
from affiliate_payouts.services.payment_processor import StripePaymentProcessor, is_retryable


@pytest.fixture
def stripe_processor(settings):
    settings.stripe_test_secret_key = "sk_test_123"
    return StripePaymentProcessor(settings)


def _stripe_object(values):
    """Build an SDK response object the way the Stripe client does."""
    return stripe.StripeObject.construct_from(values, "sk_test_123")


def _request(**overrides):
    fields = dict(
        amount_minor_units=2500,
        currency="BRL",
        destination_account_id="acct_1",
        source_charge_id="ch_1",
        idempotency_key="commission_payout_com_1",
        description="Commission for order #ord_1 - Maria Souza",
        transfer_group="order_ord_1",
        metadata={"commission_id": "com_1"},
    )
    fields.update(overrides)
    return TransferRequest(**fields)


@pytest.mark.asyncio
async def test_create_transfer_passes_idempotency_key_and_source(monkeypatch, stripe_processor):
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return _stripe_object({"id": "tr_123", "amount": kwargs["amount"], "currency": kwargs["currency"]})

    monkeypatch.setattr(stripe.Transfer, "create", fake_create)

    transfer = await stripe_processor.create_transfer(_request())

    assert transfer.id == "tr_123"
    assert transfer.amount_minor_units == 2500
    params = calls[0]
    assert params["idempotency_key"] == "commission_payout_com_1"
    assert params["source_transaction"] == "ch_1"
    assert params["destination"] == "acct_1"
    assert params["currency"] == "brl"
    assert params["transfer_group"] == "order_ord_1"
    assert params["api_key"] == "sk_test_123"


@pytest.mark.asyncio
async def test_insufficient_balance_is_retryable(monkeypatch, stripe_processor):
    def fake_create(**kwargs):
        raise stripe.InvalidRequestError(
            "Insufficient funds in Stripe account", None, code="balance_insufficient"
        )

    monkeypatch.setattr(stripe.Transfer, "create", fake_create)

    with pytest.raises(ProviderError) as exc_info:
        await stripe_processor.create_transfer(_request())

    assert exc_info.value.code == "balance_insufficient"
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_rate_limit_without_code_is_retryable(monkeypatch, stripe_processor):
    def fake_create(**kwargs):
        raise stripe.RateLimitError("Too many requests")

    monkeypatch.setattr(stripe.Transfer, "create", fake_create)

    with pytest.raises(ProviderError) as exc_info:
        await stripe_processor.create_transfer(_request())

    assert exc_info.value.code == "rate_limit"
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_missing_destination_is_terminal(monkeypatch, stripe_processor):
    def fake_create(**kwargs):
        raise stripe.InvalidRequestError("No such destination: acct_1", "destination", code="resource_missing")

    monkeypatch.setattr(stripe.Transfer, "create", fake_create)

    with pytest.raises(ProviderError) as exc_info:
        await stripe_processor.create_transfer(_request())

    assert exc_info.value.code == "resource_missing"
    assert exc_info.value.retryable is False


def _intent_with_charge(latest_charge):
    def fake_retrieve(intent_id, **kwargs):
        return _stripe_object({"id": intent_id, "object": "payment_intent", "latest_charge": latest_charge})

    return fake_retrieve


@pytest.mark.asyncio
async def test_resolve_charge_from_latest_charge_id(monkeypatch, stripe_processor):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", _intent_with_charge("ch_9"))

    assert await stripe_processor.resolve_charge_for_payment_intent("pi_9") == "ch_9"


@pytest.mark.asyncio
async def test_resolve_charge_from_expanded_latest_charge(monkeypatch, stripe_processor):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", _intent_with_charge({"id": "ch_9", "amount": 25000}))

    assert await stripe_processor.resolve_charge_for_payment_intent("pi_9") == "ch_9"


@pytest.mark.asyncio
async def test_intent_without_charge_raises_attribution_error(monkeypatch, stripe_processor):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", _intent_with_charge(None))

    with pytest.raises(AttributionError):
        await stripe_processor.resolve_charge_for_payment_intent("pi_9")


@pytest.mark.asyncio
async def test_account_capabilities(monkeypatch, stripe_processor):
    def fake_retrieve(account_id, **kwargs):
        return _stripe_object(
            {"id": account_id, "charges_enabled": True, "payouts_enabled": True, "details_submitted": True}
        )

    monkeypatch.setattr(stripe.Account, "retrieve", fake_retrieve)

    capabilities = await stripe_processor.get_account_capabilities("acct_1")

    assert capabilities.ready is True


@pytest.mark.asyncio
async def test_account_capabilities_missing_from_response_default_to_disabled(monkeypatch, stripe_processor):
    monkeypatch.setattr(stripe.Account, "retrieve", lambda account_id, **kwargs: _stripe_object({"id": account_id}))

    capabilities = await stripe_processor.get_account_capabilities("acct_1")

    assert capabilities.ready is False
    assert capabilities.details_submitted is False


def test_is_retryable():
    codes = ["balance_insufficient", "rate_limit"]
    assert is_retryable("balance_insufficient", codes)
    assert not is_retryable("resource_missing", codes)
    assert not is_retryable(None, codes)
