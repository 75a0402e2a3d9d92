"""Affiliate model with Stripe Connect payout capability and running balances."""

from sqlalchemy import Boolean, Column, DateTime, Enum, Numeric, String, func
from sqlalchemy.orm import relationship
import enum

from affiliate_payouts.models.base import Base


class OnboardingStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"        # Account created, details or capabilities missing
    COMPLETED = "completed"    # Charges and payouts enabled


class Affiliate(Base):
    """
    Third party that earns a commission on attributed sales.
    Balances are only ever changed through relative UPDATE statements.
    """

    __tablename__ = "affiliate"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    code = Column(String, nullable=False, unique=True)

    # Percentage, e.g. 10.00 for 10%
    commission_rate = Column(Numeric(5, 2), nullable=False)

    # Payout channel (Stripe Connect)
    payout_account_id = Column(String, nullable=True)
    charges_enabled = Column(Boolean, nullable=False, default=False)
    payouts_enabled = Column(Boolean, nullable=False, default=False)
    details_submitted = Column(Boolean, nullable=False, default=False)
    onboarding_status = Column(
        Enum(OnboardingStatus, values_callable=lambda enum_class: [e.value for e in enum_class]),
        nullable=False,
        default=OnboardingStatus.NOT_STARTED
    )
    onboarded_at = Column(DateTime, nullable=True)

    # Running balances
    pending_commission = Column(Numeric(12, 2), nullable=False, default=0)
    paid_commission = Column(Numeric(12, 2), nullable=False, default=0)
    total_paid_out = Column(Numeric(12, 2), nullable=False, default=0)
    last_payout_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    commissions = relationship("Commission", back_populates="affiliate")
