"""SQLAlchemy models for the affiliate commission ledger."""

from affiliate_payouts.models.base import Base  # noqa: F401
from affiliate_payouts.models.affiliate import Affiliate, OnboardingStatus  # noqa: F401
from affiliate_payouts.models.order import Order  # noqa: F401
from affiliate_payouts.models.commission import (  # noqa: F401
    Commission,
    CommissionStatus,
    TransferStatus,
)
