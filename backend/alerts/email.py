"""
Email delivery for supplier orders.
"""

import sendgrid
import structlog
from sendgrid.helpers.mail import Mail

from core.config import get_settings

logger = structlog.get_logger()


def render_order_email(reference: str, supplier_name: str, lines: list[dict], total: float) -> str:
    rows = "".join(
        f'<tr><td style="padding: 6px 12px;">{line["name"]}</td>'
        f'<td style="padding: 6px 12px; text-align: right;">{line["quantity"]}</td>'
        f'<td style="padding: 6px 12px; text-align: right;">{line.get("unit_price") or 0:.2f}</td></tr>'
        for line in lines
    )
    return f"""
    <div style="font-family: Inter, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background: #0f172a; color: white; padding: 24px; border-radius: 12px 12px 0 0;">
        <h1 style="margin: 0; font-size: 20px;">Purchase Order {reference}</h1>
      </div>
      <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0;">
        <p style="color: #334155;">Dear {supplier_name},</p>
        <p style="color: #334155;">Please supply the following items:</p>
        <table style="width: 100%; border-collapse: collapse; color: #1e293b;">
          <tr><th align="left">Item</th><th align="right">Qty</th><th align="right">Unit price</th></tr>
          {rows}
        </table>
        <p style="color: #1e293b; font-weight: 600; text-align: right;">Total: {total:.2f}</p>
      </div>
    </div>
    """


async def send_order_email(
    to_email: str,
    reference: str,
    supplier_name: str,
    lines: list[dict],
    total: float,
) -> bool:
    """
    Send a sent order to the supplier via SendGrid.

    Returns True if sent successfully. Never raises.
    """
    settings = get_settings()
    if not settings.notifications_enabled or not settings.sendgrid_api_key or not to_email:
        return False

    try:
        sg = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
        email = Mail(
            from_email=settings.notification_from_email,
            to_emails=to_email,
            subject=f"Purchase Order {reference}",
            html_content=render_order_email(reference, supplier_name, lines, total),
        )
        response = sg.send(email)
        return response.status_code in (200, 201, 202)
    except Exception:
        logger.exception("notifications.order_email_failed", reference=reference)
        return False
