"""Tests for PayoutSweepService."""

import pytest

from affiliate_payouts.models import CommissionStatus, TransferStatus
from affiliate_payouts.services.payout_sweep import PayoutSweepService

from conftest import retryable_error, seed_affiliate, seed_commission


@pytest.fixture
def sweep(orchestrator):
    return PayoutSweepService(orchestrator)


@pytest.mark.asyncio
async def test_sweep_pays_approved_commissions(db, sweep, ledger, processor):
    await seed_affiliate(db, pending_commission="50.00")
    await seed_commission(db, "com_1", "ord_1")
    await seed_commission(db, "com_2", "ord_2", payment_intent_id="pi_2")
    processor.charges["pi_2"] = "ch_2"

    summary = await sweep.run()

    assert summary.processed == 2
    assert summary.succeeded == 2
    assert summary.failed == 0
    assert summary.errors == []
    for commission_id in ("com_1", "com_2"):
        commission = await ledger.get_commission(commission_id)
        assert commission.status == CommissionStatus.PAID


@pytest.mark.asyncio
async def test_sweep_skips_commissions_outside_retry_states(db, sweep, processor):
    await seed_affiliate(db)
    await seed_commission(db, "com_paid", "ord_1", status=CommissionStatus.PAID, transfer_id="tr_old")
    await seed_commission(db, "com_pending", "ord_2", status=CommissionStatus.PENDING)
    await seed_commission(db, "com_fraud", "ord_3", transfer_status=TransferStatus.BLOCKED_FRAUD)
    await seed_commission(db, "com_terminal", "ord_4", transfer_status=TransferStatus.FAILED_TERMINAL)
    await seed_commission(db, "com_small", "ord_6", order_total="0.04", commission_amount="0.00",
                          transfer_status=TransferStatus.BELOW_MINIMUM)
    await seed_commission(db, "com_exhausted", "ord_5",
                          transfer_status=TransferStatus.FAILED_RETRYABLE, transfer_attempt_count=5)

    summary = await sweep.run()

    assert summary.processed == 0
    assert processor.transfer_requests == []


@pytest.mark.asyncio
async def test_sweep_retries_retryable_failures_and_onboarding_waits(db, sweep, ledger):
    await seed_affiliate(db, pending_commission="50.00")
    await seed_commission(db, "com_1", "ord_1", transfer_status=TransferStatus.FAILED_RETRYABLE,
                          transfer_attempt_count=1)
    await seed_commission(db, "com_2", "ord_2", payment_intent_id="pi_1",
                          transfer_status=TransferStatus.BLOCKED_ONBOARDING)

    summary = await sweep.run()

    assert summary.processed == 2
    assert summary.succeeded == 2


@pytest.mark.asyncio
async def test_sweep_counts_outcomes(db, sweep, processor):
    await seed_affiliate(db, "aff_1")
    await seed_affiliate(db, "aff_2", payout_account_id=None, payouts_enabled=False)
    await seed_commission(db, "com_retry", "ord_1")
    await seed_commission(db, "com_onboard", "ord_2", affiliate_id="aff_2")
    processor.transfer_errors.append(retryable_error())

    summary = await sweep.run()

    assert summary.processed == 2
    assert summary.succeeded == 0
    assert summary.needs_onboarding == 1
    assert summary.failed == 1
    assert summary.manual_review == 0
    assert summary.errors[0].commission_id == "com_retry"


@pytest.mark.asyncio
async def test_sweep_respects_limit(db, sweep, processor):
    await seed_affiliate(db, pending_commission="75.00")
    for n in range(3):
        await seed_commission(db, f"com_{n}", f"ord_{n}")

    summary = await sweep.run(limit=2)

    assert summary.processed == 2
    assert len(processor.transfer_requests) == 2
