"""Tests for PayoutSafetyGate: integrity plus duplicate-payment checks."""

import pytest

from affiliate_payouts.models import CommissionStatus
from affiliate_payouts.services.commission_integrity import CommissionIntegrityValidator
from affiliate_payouts.services.payout_safety import ALREADY_PAID_REASON, PayoutSafetyGate

from conftest import seed_commission


@pytest.fixture
def gate(ledger):
    return PayoutSafetyGate(ledger, CommissionIntegrityValidator(ledger))


@pytest.mark.asyncio
async def test_intact_unpaid_commission_is_safe(db, gate):
    await seed_commission(db)

    check = await gate.check_safe("com_1")

    assert check.safe is True
    assert check.reasons == []
    assert check.already_processed is False


@pytest.mark.asyncio
async def test_integrity_violation_is_surfaced_verbatim(db, gate):
    await seed_commission(db, commission_amount="26.00")

    check = await gate.check_safe("com_1")

    assert check.safe is False
    assert check.already_processed is False
    assert len(check.reasons) == 1
    assert check.reasons[0].startswith("Commission amount mismatch")


@pytest.mark.parametrize(
    "fields",
    [
        {"status": CommissionStatus.PAID},
        {"transfer_id": "tr_existing"},
        {"external_transfer_id": "pix_e2e_123"},
    ],
    ids=["status-paid", "transfer-id", "external-transfer-id"],
)
@pytest.mark.asyncio
async def test_any_proof_of_payment_blocks(db, gate, fields):
    await seed_commission(db, **fields)

    check = await gate.check_safe("com_1")

    assert check.safe is False
    assert check.already_processed is True
    assert check.reasons == [ALREADY_PAID_REASON]


@pytest.mark.asyncio
async def test_integrity_is_checked_before_payment_state(db, gate):
    await seed_commission(db, commission_amount="30.00", transfer_id="tr_existing")

    check = await gate.check_safe("com_1")

    assert check.already_processed is False
    assert check.reasons[0].startswith("Commission amount mismatch")
