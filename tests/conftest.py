"""Shared fixtures: in-memory ledger, fake payment processor and email sender."""

from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from affiliate_payouts.core.config import Settings
from affiliate_payouts.core.exceptions import AttributionError, ProviderError
from affiliate_payouts.models import (
    Affiliate,
    Base,
    Commission,
    CommissionStatus,
    OnboardingStatus,
    Order,
)
from affiliate_payouts.schemas.payout import AccountCapabilities, Transfer, TransferRequest
from affiliate_payouts.services.ledger import CommissionLedger
from affiliate_payouts.services.notifications import NotificationResult
from affiliate_payouts.services.payout_orchestrator import PayoutOrchestrator


class FakePaymentProcessor:
    """Records calls; dedupes transfers by idempotency key like Stripe does."""

    def __init__(self):
        self.capabilities: Dict[str, AccountCapabilities] = {}
        self.charges: Dict[str, str] = {"pi_1": "ch_1"}
        self.transfer_errors: List[Exception] = []
        self.transfer_requests: List[TransferRequest] = []
        self.capability_calls: List[str] = []
        # Awaited inside create_transfer, before the provider answers
        self.before_transfer: Optional[Callable[[TransferRequest], Awaitable[None]]] = None
        self._transfers: Dict[str, Transfer] = {}

    async def get_account_capabilities(self, account_id: str) -> AccountCapabilities:
        self.capability_calls.append(account_id)
        return self.capabilities.get(account_id, AccountCapabilities())

    async def resolve_charge_for_payment_intent(self, intent_id: str) -> str:
        if intent_id not in self.charges:
            raise AttributionError(f"PaymentIntent {intent_id} has no charge", code="no_charge")
        return self.charges[intent_id]

    async def create_transfer(self, request: TransferRequest) -> Transfer:
        self.transfer_requests.append(request)
        if self.before_transfer:
            await self.before_transfer(request)
        if self.transfer_errors:
            raise self.transfer_errors.pop(0)
        if request.idempotency_key not in self._transfers:
            self._transfers[request.idempotency_key] = Transfer(
                id=f"tr_{len(self._transfers) + 1}",
                amount_minor_units=request.amount_minor_units,
                currency=request.currency,
            )
        return self._transfers[request.idempotency_key]

    @property
    def transfers_created(self) -> int:
        return len(self._transfers)


class FakeEmailSender:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    async def send_email(self, to: str, subject: str, html: str) -> NotificationResult:
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return NotificationResult(True, "recorded")


def retryable_error(code: str = "balance_insufficient") -> ProviderError:
    return ProviderError("Insufficient funds in platform balance", code=code, retryable=True)


def terminal_error() -> ProviderError:
    return ProviderError("No such destination: acct_1", code="resource_missing", retryable=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        security_alert_email="security@example.com",
        admin_dashboard_url="https://admin.example.com/commissions",
    )


@pytest_asyncio.fixture
async def db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def ledger(db) -> CommissionLedger:
    return CommissionLedger(db)


@pytest.fixture
def processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def orchestrator(db, processor, email_sender, settings) -> PayoutOrchestrator:
    return PayoutOrchestrator(db, payment_processor=processor, email_sender=email_sender, settings=settings)


async def seed_commission(
    db,
    commission_id: str = "com_1",
    order_id: str = "ord_1",
    affiliate_id: str = "aff_1",
    order_total: str = "250.00",
    commission_rate: str = "10.00",
    commission_amount: str = "25.00",
    status: CommissionStatus = CommissionStatus.APPROVED,
    order_affiliate_id: Optional[str] = None,
    payment_intent_id: Optional[str] = "pi_1",
    **commission_fields,
) -> Commission:
    """Insert an order and its commission, creating the affiliate on first use."""
    if await db.get(Affiliate, affiliate_id) is None:
        await seed_affiliate(db, affiliate_id)

    db.add(Order(
        id=order_id,
        total=Decimal(order_total),
        currency="BRL",
        affiliate_id=order_affiliate_id or affiliate_id,
        payment_intent_id=payment_intent_id,
    ))
    commission = Commission(
        id=commission_id,
        order_id=order_id,
        affiliate_id=affiliate_id,
        order_total=Decimal(order_total),
        commission_rate=Decimal(commission_rate),
        commission_amount=Decimal(commission_amount),
        currency="BRL",
        status=status,
        **commission_fields,
    )
    db.add(commission)
    await db.commit()
    return commission


async def seed_affiliate(
    db,
    affiliate_id: str = "aff_1",
    commission_rate: str = "10.00",
    payout_account_id: Optional[str] = "acct_1",
    payouts_enabled: bool = True,
    pending_commission: str = "25.00",
) -> Affiliate:
    affiliate = Affiliate(
        id=affiliate_id,
        name="Maria Souza",
        email=f"{affiliate_id}@example.com",
        code=f"CODE-{affiliate_id}",
        commission_rate=Decimal(commission_rate),
        payout_account_id=payout_account_id,
        charges_enabled=payouts_enabled,
        payouts_enabled=payouts_enabled,
        details_submitted=payouts_enabled,
        onboarding_status=OnboardingStatus.COMPLETED if payouts_enabled else OnboardingStatus.PENDING,
        pending_commission=Decimal(pending_commission),
        paid_commission=Decimal("0"),
        total_paid_out=Decimal("0"),
    )
    db.add(affiliate)
    await db.commit()
    return affiliate
