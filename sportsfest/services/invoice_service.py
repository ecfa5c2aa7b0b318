"""
Invoice bookkeeping for order payments.

One invoice per order, created on the first payment and updated
additively afterwards. Runs inside the payment confirmation transaction;
nothing here commits.
"""
import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.config import settings
from sportsfest.core.utils import utcnow
from sportsfest.models import Order, OrderInvoice

logger = logging.getLogger(__name__)


class InvoiceStatus:
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"


def generate_invoice_number() -> str:
    """Invoice number in format INV-YYYYMMDD-XXXXXXXX."""
    return f"INV-{utcnow().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


async def record_invoice_payment(db: AsyncSession, order: Order, amount: Decimal) -> OrderInvoice:
    """Create or update the order's invoice for a payment of `amount`."""
    result = await db.execute(select(OrderInvoice).where(OrderInvoice.order_id == order.id))
    invoice = result.scalar_one_or_none()

    total = Decimal(order.total_amount)
    now = utcnow()

    if invoice is None:
        invoice = OrderInvoice(
            order_id=order.id,
            invoice_number=generate_invoice_number(),
            total_amount=total,
            paid_amount=Decimal("0.00"),
            balance_owed=total,
        )
        db.add(invoice)

    paid = Decimal(invoice.paid_amount or 0) + Decimal(amount)
    balance = max(Decimal("0.00"), total - paid)

    invoice.paid_amount = paid
    invoice.balance_owed = balance
    invoice.sent_at = invoice.sent_at or now
    if balance == 0:
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = now
        invoice.due_date = None
    else:
        invoice.status = InvoiceStatus.SENT
        invoice.due_date = now + timedelta(days=settings.INVOICE_DUE_DAYS)

    await db.flush()
    logger.info(
        f"Invoice {invoice.invoice_number} for order {order.id}: paid={paid} balance={balance}"
    )
    return invoice
