"""Order model: the authoritative sale a commission is derived from."""

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import relationship

from affiliate_payouts.models.base import Base


class Order(Base):
    """
    Paid order created by the checkout pipeline.
    Immutable once paid; commissions are checked against it.
    """

    __tablename__ = "affiliate_order"

    id = Column(String, primary_key=True)

    total = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="BRL")

    # Attribution
    affiliate_id = Column(String, ForeignKey("affiliate.id"), nullable=True, index=True)
    payment_intent_id = Column(String, nullable=True)  # Originating payment transaction

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    affiliate = relationship("Affiliate", foreign_keys=[affiliate_id])
