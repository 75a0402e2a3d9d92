"""Commission ledger: reads and writes for orders, affiliates and commissions.

Every write that touches a counter or a balance is a relative UPDATE evaluated
by the database. Reads always repopulate identity-map objects so callers see
the committed state written by concurrent payout runs.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Numeric, and_, case, func, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_payouts.models.affiliate import Affiliate, OnboardingStatus
from affiliate_payouts.models.commission import Commission, CommissionStatus, TransferStatus
from affiliate_payouts.models.order import Order
from affiliate_payouts.schemas.payout import AccountCapabilities

logger = logging.getLogger(__name__)

_MONEY = Numeric(12, 2)


def _utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CommissionLedger:
    """Data access for the payout flow."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_commission(self, commission_id: str) -> Optional[Commission]:
        result = await self.db.execute(
            select(Commission)
            .where(Commission.id == commission_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order(self, order_id: str) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_affiliate(self, affiliate_id: str) -> Optional[Affiliate]:
        result = await self.db.execute(
            select(Affiliate)
            .where(Affiliate.id == affiliate_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_retry_candidates(self, limit: int, max_attempts: int) -> List[Commission]:
        """Approved, unpaid commissions parked in a steady state an external retry may re-enter."""
        result = await self.db.execute(
            select(Commission)
            .where(
                and_(
                    Commission.status == CommissionStatus.APPROVED,
                    Commission.transfer_id.is_(None),
                    Commission.external_transfer_id.is_(None),
                    or_(
                        Commission.transfer_status.is_(None),
                        Commission.transfer_status.in_([
                            TransferStatus.BLOCKED_ONBOARDING,
                            TransferStatus.FAILED_RETRYABLE,
                        ]),
                    ),
                    Commission.transfer_attempt_count < max_attempts,
                )
            )
            .order_by(Commission.created_at.asc(), Commission.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Commission writes
    # =========================================================================

    async def hold_for_review(self, commission_id: str, reasons: List[str]) -> None:
        """Put a commission that failed the integrity check back to pending."""
        await self._update_commission(
            commission_id,
            status=CommissionStatus.PENDING,
            transfer_status=TransferStatus.BLOCKED_FRAUD,
            transfer_error=f"Possible fraud: {'; '.join(reasons)}",
        )

    async def mark_awaiting_onboarding(self, commission_id: str, reason: str) -> None:
        await self._update_commission(
            commission_id,
            transfer_status=TransferStatus.BLOCKED_ONBOARDING,
            transfer_error=reason,
        )

    async def mark_below_minimum(self, commission_id: str, reason: str) -> None:
        """Park a commission too small to transfer; the retry sweep skips it."""
        await self._update_commission(
            commission_id,
            transfer_status=TransferStatus.BELOW_MINIMUM,
            transfer_error=reason,
        )

    async def record_transfer_failure(
        self,
        commission_id: str,
        error: str,
        transfer_status: TransferStatus,
    ) -> None:
        """Persist a failed attempt and bump the attempt counter in place."""
        await self._update_commission(
            commission_id,
            transfer_error=error,
            transfer_status=transfer_status,
            transfer_attempt_count=Commission.transfer_attempt_count + 1,
            last_transfer_attempt_at=_utcnow(),
        )

    async def mark_paid(self, commission_id: str, transfer_id: str, payment_method: str) -> bool:
        """
        Record a successful transfer.

        Returns False when another run already recorded a transfer for this
        commission on any rail. The caller must not touch balances again in that case.
        """
        now = _utcnow()
        stmt = (
            update(Commission)
            .where(
                and_(
                    Commission.id == commission_id,
                    Commission.status != CommissionStatus.PAID,
                    Commission.transfer_id.is_(None),
                    Commission.external_transfer_id.is_(None),
                )
            )
            .values(
                status=CommissionStatus.PAID,
                paid_at=now,
                transfer_id=transfer_id,
                transfer_status=TransferStatus.PROCESSING,
                payment_method=payment_method,
                transfer_error=None,
                transfer_attempt_count=Commission.transfer_attempt_count + 1,
                last_transfer_attempt_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    async def _update_commission(self, commission_id: str, **values) -> None:
        values["updated_at"] = _utcnow()
        stmt = (
            update(Commission)
            .where(Commission.id == commission_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        await self.db.commit()

    # =========================================================================
    # Affiliate writes
    # =========================================================================

    async def apply_payout_to_balances(self, affiliate_id: str, amount: Decimal) -> None:
        """Move ``amount`` from pending to paid as a single relative UPDATE."""
        now = _utcnow()
        delta = literal(amount, _MONEY)
        remaining = func.coalesce(Affiliate.pending_commission, 0) - delta

        stmt = (
            update(Affiliate)
            .where(Affiliate.id == affiliate_id)
            .values(
                paid_commission=func.coalesce(Affiliate.paid_commission, 0) + delta,
                pending_commission=case((remaining > 0, remaining), else_=literal(Decimal("0"), _MONEY)),
                total_paid_out=func.coalesce(Affiliate.total_paid_out, 0) + delta,
                last_payout_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def update_capabilities(
        self,
        affiliate: Affiliate,
        capabilities: AccountCapabilities,
    ) -> None:
        """Persist capability flags confirmed live by the payment processor."""
        values = {
            "charges_enabled": capabilities.charges_enabled,
            "payouts_enabled": capabilities.payouts_enabled,
            "details_submitted": capabilities.details_submitted,
            "updated_at": _utcnow(),
        }
        if capabilities.ready:
            values["onboarding_status"] = OnboardingStatus.COMPLETED
            if affiliate.onboarding_status != OnboardingStatus.COMPLETED:
                values["onboarded_at"] = _utcnow()
        elif capabilities.details_submitted:
            values["onboarding_status"] = OnboardingStatus.PENDING

        stmt = (
            update(Affiliate)
            .where(Affiliate.id == affiliate.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        await self.db.commit()
        logger.info(
            f"Updated payout capabilities for affiliate {affiliate.id}: "
            f"charges={capabilities.charges_enabled}, payouts={capabilities.payouts_enabled}"
        )
