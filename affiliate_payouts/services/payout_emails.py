"""Affiliate-facing payout confirmation email."""

import html
from decimal import Decimal
from typing import Tuple

from affiliate_payouts.services.security_alerts import format_amount


def build_payout_confirmation(name: str, amount: Decimal, transfer_id: str, currency: str) -> Tuple[str, str]:
    """
    Build the confirmation email sent after a transfer is created.

    Args:
        name: Affiliate display name
        amount: Commission amount in major units
        transfer_id: Provider transfer id shown for reference
        currency: ISO currency code

    Returns:
        (subject, html) tuple
    """
    first_name = html.escape((name or "").split(" ")[0] or "there")
    formatted_amount = format_amount(amount, currency)

    subject = f"Commission paid - {formatted_amount}"
    html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background-color: #059669; color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
        .content {{ background: #fff; padding: 30px; border: 1px solid #e0e0e0; border-top: none; }}
        .amount {{ font-size: 36px; font-weight: bold; color: #10b981; margin: 20px 0; text-align: center; }}
        .info-box {{ background: #f0fdf4; padding: 15px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #10b981; }}
        .code {{ background: #f1f5f9; padding: 8px 12px; border-radius: 4px; font-family: monospace; color: #475569; }}
        .footer {{ text-align: center; margin-top: 30px; color: #666; font-size: 14px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1 style="margin: 0;">Automatic Payout</h1>
            <p style="margin: 10px 0 0;">Your commission was transferred to your connected account</p>
        </div>
        <div class="content">
            <p>Hi <strong>{first_name}</strong>,</p>
            <div class="amount">{formatted_amount}</div>
            <div class="info-box">
                <p style="margin: 0;"><strong>Transfer reference</strong></p>
                <p style="margin: 10px 0 0;"><span class="code">{html.escape(transfer_id)}</span></p>
                <p style="margin: 10px 0 0; font-size: 12px; color: #666;">
                    The amount will reach your bank account on your payout schedule.
                </p>
            </div>
        </div>
        <div class="footer">
            <p>Affiliate Program - Automatic Payouts</p>
        </div>
    </div>
</body>
</html>
"""
    return subject, html_content
