"""
Payout Pydantic schemas
Results returned to webhook/route handlers and payloads exchanged with the payment processor
"""
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class IntegrityResult(BaseModel):
    """Outcome of recomputing a commission from the ledger"""
    valid: bool
    reason: Optional[str] = None


class SafetyCheck(BaseModel):
    """Outcome of the pre-payment safety gate"""
    safe: bool
    reasons: List[str] = Field(default_factory=list)
    # True when the commission was already paid; callers treat this as success
    already_processed: bool = False


class AccountCapabilities(BaseModel):
    """Connected account capability flags reported by the payment processor"""
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False

    @property
    def ready(self) -> bool:
        return self.charges_enabled and self.payouts_enabled


class TransferRequest(BaseModel):
    """Connected-account transfer request"""
    amount_minor_units: int
    currency: str
    destination_account_id: str
    source_charge_id: str
    idempotency_key: str
    description: Optional[str] = None
    transfer_group: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class Transfer(BaseModel):
    """Transfer created by the payment processor"""
    id: str
    amount_minor_units: Optional[int] = None
    currency: Optional[str] = None


class PayoutResult(BaseModel):
    """Structured result of one payout run; never raised, always returned"""
    success: bool
    outcome: str
    transfer_id: Optional[str] = None
    amount: Optional[Decimal] = None
    error: Optional[str] = None
    requires_manual_review: bool = False
    needs_channel_onboarding: bool = False


class SweepError(BaseModel):
    commission_id: str
    error: str


class SweepSummary(BaseModel):
    """Totals for one pass of the retry sweep"""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    needs_onboarding: int = 0
    manual_review: int = 0
    errors: List[SweepError] = Field(default_factory=list)
