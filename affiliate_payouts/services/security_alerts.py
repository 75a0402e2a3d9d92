"""
Operator alerts for payouts held by the integrity check.

One alert lists every violated invariant so the reviewer has the full picture
without re-running the check. Sending is best effort: the payout is already
blocked when an alert is composed, and a failed send does not change that.
"""

import html
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from affiliate_payouts.core.config import Settings, get_settings
from affiliate_payouts.models.affiliate import Affiliate
from affiliate_payouts.models.commission import Commission
from affiliate_payouts.services.notifications import EmailSenderProtocol, SlackSender

logger = logging.getLogger(__name__)


def format_amount(amount: Decimal, currency: str) -> str:
    currency = (currency or "").upper()
    if currency == "BRL":
        return f"R$ {Decimal(amount):.2f}"
    return f"{currency} {Decimal(amount):.2f}"


@dataclass
class SecurityAlert:
    """Structured content of a blocked-payout alert."""
    affiliate_id: str
    affiliate_name: str
    affiliate_email: str
    commission_id: str
    order_id: str
    amount: Decimal
    currency: str
    reasons: List[str] = field(default_factory=list)
    review_url: Optional[str] = None

    @property
    def subject(self) -> str:
        return f"Payout held for security review - {self.affiliate_name}"

    def to_text(self) -> str:
        lines = [
            "An automatic affiliate payout was held for manual review.",
            f"Affiliate: {self.affiliate_name} ({self.affiliate_email}) [{self.affiliate_id}]",
            f"Commission: {self.commission_id} (order {self.order_id})",
            f"Amount: {format_amount(self.amount, self.currency)}",
            "Violations:",
        ]
        lines.extend(f"- {reason}" for reason in self.reasons)
        if self.review_url:
            lines.append(f"Review: {self.review_url}")
        return "\n".join(lines)

    def to_html(self) -> str:
        items = "".join(f"<li>{html.escape(reason)}</li>" for reason in self.reasons)
        review = ""
        if self.review_url:
            review = f'<p><a href="{html.escape(self.review_url)}">Open the commission in the admin panel</a></p>'
        return f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background: #dc2626; color: white; padding: 20px; border-radius: 8px 8px 0 0;">
            <h1 style="margin: 0;">Security Alert</h1>
        </div>
        <div style="background: #fff; padding: 20px; border: 1px solid #e0e0e0; border-top: none;">
            <p>An automatic payout was held for manual review.</p>
            <div style="background: #fee2e2; padding: 15px; border-radius: 4px; margin: 20px 0;">
                <p><strong>Affiliate:</strong> {html.escape(self.affiliate_name)} ({html.escape(self.affiliate_email)})</p>
                <p><strong>Commission:</strong> {html.escape(self.commission_id)} (order {html.escape(self.order_id)})</p>
                <p><strong>Amount:</strong> {format_amount(self.amount, self.currency)}</p>
                <p><strong>Status:</strong> Waiting for manual review</p>
            </div>
            <p><strong>Violations:</strong></p>
            <ul>{items}</ul>
            {review}
        </div>
    </div>
</body>
</html>
"""


class SecurityAlertService:
    def __init__(
        self,
        email_sender: EmailSenderProtocol,
        slack_sender: Optional[SlackSender] = None,
        settings: Optional[Settings] = None,
    ):
        self.email_sender = email_sender
        self.slack_sender = slack_sender
        self.settings = settings or get_settings()

    def compose(self, affiliate: Affiliate, commission: Commission, reasons: List[str]) -> SecurityAlert:
        return SecurityAlert(
            affiliate_id=affiliate.id,
            affiliate_name=affiliate.name,
            affiliate_email=affiliate.email,
            commission_id=commission.id,
            order_id=commission.order_id,
            amount=commission.commission_amount,
            currency=commission.currency,
            reasons=list(reasons),
            review_url=f"{self.settings.admin_dashboard_url.rstrip('/')}/{commission.id}",
        )

    async def send_blocked_payout_alert(
        self,
        affiliate: Affiliate,
        commission: Commission,
        reasons: List[str],
    ) -> bool:
        """Compose and dispatch the alert. Returns True if any channel accepted it."""
        alert = self.compose(affiliate, commission, reasons)
        logger.warning(f"Blocked payout for commission {commission.id}: {'; '.join(reasons)}")
        delivered = False

        recipient = self.settings.security_alert_email
        if recipient:
            try:
                result = await self.email_sender.send_email(recipient, alert.subject, alert.to_html())
                delivered = delivered or result.success
            except Exception:
                logger.exception("Security alert email failed", extra={"commission_id": commission.id})
        else:
            logger.error("security_alert_email not configured; blocked payout alert not emailed")

        if self.slack_sender:
            try:
                result = await self.slack_sender.send(alert.subject, alert.to_text())
                delivered = delivered or result.success
            except Exception:
                logger.exception("Security alert Slack post failed", extra={"commission_id": commission.id})

        return delivered
