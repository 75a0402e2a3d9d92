"""Commission model: snapshot of what an affiliate is owed for one order."""

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import relationship
import enum

from affiliate_payouts.models.base import Base


class CommissionStatus(str, enum.Enum):
    PENDING = "pending"      # Created, waiting for approval or held for review
    APPROVED = "approved"    # Eligible for payout
    PAID = "paid"            # Transfer issued
    CANCELLED = "cancelled"  # Order refunded or commission voided


class TransferStatus(str, enum.Enum):
    PROCESSING = "processing"                  # Transfer created, provider settles later
    BLOCKED_FRAUD = "blocked_fraud"            # Integrity check failed, manual review
    BLOCKED_ONBOARDING = "blocked_onboarding"  # Payout account not ready yet
    FAILED_RETRYABLE = "failed_retryable"      # Waiting for a scheduled retry
    FAILED_TERMINAL = "failed_terminal"        # Manual review
    BELOW_MINIMUM = "below_minimum"            # Amount rounds below the smallest transfer


class Commission(Base):
    """
    Commission earned per attributed order.
    Snapshot fields are written once at creation and never recomputed in place.
    Rows are never deleted; cancellation is a status change.
    """

    __tablename__ = "affiliate_commission"
    __table_args__ = (
        Index("ix_affiliate_commission_status_created_at", "status", "created_at"),
    )

    id = Column(String, primary_key=True)

    # Links
    order_id = Column(String, ForeignKey("affiliate_order.id"), nullable=False, index=True)
    affiliate_id = Column(String, ForeignKey("affiliate.id"), nullable=False, index=True)

    # Snapshot at creation time
    order_total = Column(Numeric(12, 2), nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="BRL")

    status = Column(
        Enum(CommissionStatus, values_callable=lambda enum_class: [e.value for e in enum_class]),
        nullable=False,
        default=CommissionStatus.PENDING
    )

    # Transfer sub-state
    transfer_id = Column(String, nullable=True, unique=True)  # Stripe Connect transfer
    external_transfer_id = Column(String, nullable=True)  # Manual / PIX payout reference
    transfer_status = Column(
        Enum(TransferStatus, values_callable=lambda enum_class: [e.value for e in enum_class]),
        nullable=True
    )
    transfer_error = Column(Text, nullable=True)
    transfer_attempt_count = Column(Integer, nullable=False, default=0)
    last_transfer_attempt_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    payment_method = Column(String, nullable=True)  # stripe_connect, pix, manual

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    order = relationship("Order", foreign_keys=[order_id])
    affiliate = relationship("Affiliate", back_populates="commissions")

    @property
    def has_transfer(self) -> bool:
        """True once any rail has recorded a transfer for this commission."""
        return bool(self.transfer_id or self.external_transfer_id)
