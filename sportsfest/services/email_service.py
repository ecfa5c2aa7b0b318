"""
Purchase notification emails (SendGrid)

Customer confirmation and admin notification after a payment is
confirmed. Sending is best-effort: callers log failures and move on.
When SENDGRID_API_KEY is unset nothing is sent.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.config import settings
from sportsfest.models import Order, OrderItem, Organization, EventYear

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    sent_count: int = 0
    message_id: Optional[str] = None
    error: Optional[str] = None


class SendGridProvider:
    """Thin client for the SendGrid v3 mail/send endpoint."""

    BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(self):
        self.api_key = settings.SENDGRID_API_KEY
        self.from_email = settings.SENDGRID_FROM_EMAIL
        self.from_name = settings.SENDGRID_FROM_NAME
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http_client

    async def close(self):
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send_email(self, to_emails: List[str], subject: str, html: str) -> SendResult:
        if not self.api_key:
            logger.warning(f"SendGrid not configured, skipping email '{subject}'")
            return SendResult(success=False, error="Email not configured")

        if not to_emails:
            return SendResult(success=True, sent_count=0)

        payload = {
            "personalizations": [{"to": [{"email": email} for email in to_emails]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }

        http = await self._get_http_client()
        try:
            resp = await http.post(f"{self.BASE_URL}/mail/send", json=payload)
        except httpx.HTTPError as e:
            return SendResult(success=False, error=str(e))

        if resp.status_code in (200, 202):
            return SendResult(
                success=True,
                sent_count=len(to_emails),
                message_id=resp.headers.get("X-Message-Id"),
            )
        logger.error(f"SendGrid send failed: {resp.status_code} - {resp.text}")
        return SendResult(success=False, error=resp.text)


_email_provider: Optional[SendGridProvider] = None


def get_email_provider() -> SendGridProvider:
    global _email_provider
    if _email_provider is None:
        _email_provider = SendGridProvider()
    return _email_provider


def _render_items(items) -> str:
    rows = "".join(
        f"<tr><td>{item.product_name}</td><td>{item.quantity}</td>"
        f"<td>${Decimal(item.total_price):.2f}</td></tr>"
        for item in items
    )
    return f"<table><tr><th>Item</th><th>Qty</th><th>Total</th></tr>{rows}</table>"


async def send_purchase_notifications(db: AsyncSession, order: Order, amount_paid: Decimal) -> List[SendResult]:
    """Send the customer confirmation and the admin notification for a paid order."""
    organization = await db.get(Organization, order.organization_id)
    event_year = await db.get(EventYear, order.event_year_id)
    items = (
        await db.execute(select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id))
    ).scalars().all()

    org_name = organization.name if organization else f"Organization {order.organization_id}"
    event_name = event_year.name if event_year else ""
    balance = Decimal(order.balance_owed or 0)
    table = _render_items(items)

    provider = get_email_provider()
    results = []

    if order.customer_email:
        html = (
            f"<p>Thank you for registering {org_name} for {event_name}.</p>"
            f"<p>Order {order.order_number}: ${Decimal(amount_paid):.2f} received"
            f"{f', ${balance:.2f} remaining' if balance > 0 else ''}.</p>"
            f"{table}"
            f"<p><a href=\"{settings.APP_URL}/organizations/{organization.slug if organization else ''}\">"
            f"View your registration</a></p>"
        )
        results.append(await provider.send_email(
            [order.customer_email],
            f"{settings.APP_NAME} purchase confirmation - {order.order_number}",
            html,
        ))

    if settings.ADMIN_NOTIFICATION_EMAILS:
        html = (
            f"<p>{org_name} paid ${Decimal(amount_paid):.2f} on order {order.order_number} "
            f"(status {order.status}).</p>{table}"
        )
        results.append(await provider.send_email(
            list(settings.ADMIN_NOTIFICATION_EMAILS),
            f"New purchase: {org_name} - {order.order_number}",
            html,
        ))

    failed = [r for r in results if not r.success]
    if failed:
        logger.warning(f"{len(failed)} purchase email(s) not sent for order {order.id}: {failed[0].error}")
    return results
