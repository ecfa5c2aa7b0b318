"""
PaymentConfirmationService - single path from "Stripe says succeeded" to
a paid order.

Used by both the confirm-payment endpoint and the Stripe webhook so the
two can never drift apart. A payment intent is applied to an order at
most once:

1. If an OrderPayment already exists for the intent, nothing happens.
2. Otherwise the payment row is inserted (unique on the intent id) and the
   order status is moved with an UPDATE guarded on the expected prior
   status, together with the invoice, in one transaction. A unique
   violation or a guard miss means another caller won; roll back and
   report already_processed.
3. Only the winner runs the side effects (inventory confirmation, company
   teams, coupon usage, emails). Each runs in its own try block: a failed
   side effect is logged and never undoes the financial transition.
"""
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import inspect, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.config import settings
from sportsfest.core.exceptions import PaymentMismatchError, PaymentVerificationError
from sportsfest.core.utils import utcnow, cents_to_dollars
from sportsfest.models import (
    Order,
    OrderItem,
    OrderPayment,
    OrderStatus,
    PaymentStatus,
    PaymentType,
    Product,
    PAID_ORDER_STATUSES,
)
from sportsfest.services.coupon_service import increment_coupon_usage
from sportsfest.services.email_service import send_purchase_notifications
from sportsfest.services.inventory import (
    reserve_inventory,
    release_inventory,
    confirm_inventory_sale,
)
from sportsfest.services.invoice_service import record_invoice_payment
from sportsfest.services.team_service import create_company_teams_for_order
from sportsfest.services.tent_quota import confirm_tent_sale

logger = logging.getLogger(__name__)

BALANCE_COMPLETION = "balance_completion"

PROCESSED = "processed"
ALREADY_PROCESSED = "already_processed"
SKIPPED = "skipped"

FIRST_PAYMENT_STATUSES = (OrderStatus.PENDING.value, OrderStatus.PAYMENT_PROCESSING.value)


def _as_dict(obj) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _parse_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class PaymentIntentInfo:
    """The parts of a Stripe PaymentIntent the confirmation flow reads."""
    id: str
    status: str
    amount: int  # cents
    currency: str = "usd"
    metadata: Dict[str, str] = field(default_factory=dict)
    latest_charge: Optional[str] = None
    payment_method_type: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None

    @classmethod
    def from_stripe(cls, intent) -> "PaymentIntentInfo":
        """Build from a stripe.PaymentIntent or a webhook event's data.object."""
        data = _as_dict(intent)
        metadata = {str(k): str(v) for k, v in _as_dict(data.get("metadata")).items()}

        latest_charge = data.get("latest_charge")
        if latest_charge is not None and not isinstance(latest_charge, str):
            latest_charge = _as_dict(latest_charge).get("id")

        method_types = data.get("payment_method_types") or []
        last_error = _as_dict(data.get("last_payment_error"))

        return cls(
            id=data["id"],
            status=data.get("status") or "",
            amount=int(data.get("amount_received") or data.get("amount") or 0),
            currency=(data.get("currency") or settings.STRIPE_CURRENCY).lower(),
            metadata=metadata,
            latest_charge=latest_charge,
            payment_method_type=method_types[0] if method_types else None,
            failure_code=last_error.get("code"),
            failure_message=last_error.get("message"),
        )

    @property
    def order_id(self) -> Optional[int]:
        return _parse_int(self.metadata.get("orderId"))

    @property
    def is_balance_completion(self) -> bool:
        return self.metadata.get("paymentType") == BALANCE_COMPLETION

    @property
    def amount_dollars(self) -> Decimal:
        return cents_to_dollars(self.amount)


@dataclass
class ConfirmationResult:
    status: str
    order_id: Optional[int] = None
    order_status: Optional[str] = None
    payment_id: Optional[int] = None
    reason: Optional[str] = None
    side_effect_errors: List[str] = field(default_factory=list)

    @property
    def processed(self) -> bool:
        return self.status == PROCESSED


class PaymentConfirmationService:
    """Applies Stripe payment outcomes to orders."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_order(self, intent: PaymentIntentInfo, order_id: Optional[int]) -> Tuple[Optional[Order], Optional[str]]:
        if order_id is None:
            order_id = intent.order_id
        elif intent.order_id is not None and intent.order_id != order_id:
            raise PaymentMismatchError(
                "Payment does not belong to this order",
                payment_intent_id=intent.id,
                order_id=order_id,
            )

        if order_id is None:
            logger.warning(f"Payment {intent.id} has no orderId in metadata")
            return None, "missing_order_id"

        order = await self.db.get(Order, order_id, populate_existing=True)
        if order is None:
            logger.warning(f"Payment {intent.id} references unknown order {order_id}")
            return None, "order_not_found"
        return order, None

    async def _order_lines(self, order: Order) -> List[Tuple[OrderItem, Product]]:
        result = await self.db.execute(
            select(OrderItem, Product)
            .join(Product, Product.id == OrderItem.product_id)
            .where(OrderItem.order_id == order.id)
            .order_by(OrderItem.id)
        )
        return list(result.all())

    # ----- Success -----

    async def process_successful_payment(
        self,
        intent: PaymentIntentInfo,
        source: str,
        order_id: Optional[int] = None,
    ) -> ConfirmationResult:
        """
        Apply a succeeded payment intent to its order.

        Args:
            intent: the payment intent as reported by Stripe
            source: "confirm_endpoint" or "webhook", for logs and the payment record
            order_id: order the caller expects the intent to pay for

        Raises:
            PaymentVerificationError: intent has not succeeded
            PaymentMismatchError: intent belongs to a different order
        """
        start_time = time.time()

        if intent.status != "succeeded":
            raise PaymentVerificationError(
                f"Payment not completed. Status: {intent.status}",
                payment_intent_id=intent.id,
                intent_status=intent.status,
            )

        order, reason = await self._get_order(intent, order_id)
        if order is None:
            return ConfirmationResult(status=SKIPPED, order_id=order_id, reason=reason)

        is_balance = intent.is_balance_completion
        if not is_balance and order.stripe_payment_intent_id and order.stripe_payment_intent_id != intent.id:
            raise PaymentMismatchError(
                "Payment intent does not match the order's checkout",
                payment_intent_id=intent.id,
                order_id=order.id,
            )

        existing = await self.db.execute(
            select(OrderPayment.id).where(OrderPayment.stripe_payment_intent_id == intent.id)
        )
        if existing.scalar_one_or_none() is not None:
            logger.info(f"Payment {intent.id} already recorded for order {order.id} ({source})")
            return ConfirmationResult(
                status=ALREADY_PROCESSED, order_id=order.id, order_status=order.status, reason="payment_exists"
            )

        expected = (OrderStatus.DEPOSIT_PAID.value,) if is_balance else FIRST_PAYMENT_STATUSES
        if order.status not in expected:
            status = ALREADY_PROCESSED if order.status in PAID_ORDER_STATUSES else SKIPPED
            logger.info(f"Payment {intent.id} ignored: order {order.id} is {order.status} ({source})")
            return ConfirmationResult(
                status=status, order_id=order.id, order_status=order.status, reason=f"order_{order.status}"
            )

        amount = intent.amount_dollars
        total = Decimal(order.total_amount)
        if is_balance:
            payment_type = PaymentType.BALANCE_PAYMENT.value
            new_balance = max(Decimal("0.00"), Decimal(order.balance_owed or 0) - amount)
            new_status = OrderStatus.FULLY_PAID.value if new_balance == 0 else OrderStatus.DEPOSIT_PAID.value
        elif amount < total:
            payment_type = PaymentType.DEPOSIT_PAYMENT.value
            new_balance = total - amount
            new_status = OrderStatus.DEPOSIT_PAID.value
        else:
            payment_type = PaymentType.PRODUCT_PURCHASE.value
            new_balance = Decimal("0.00")
            new_status = OrderStatus.FULLY_PAID.value

        payment = OrderPayment(
            order_id=order.id,
            type=payment_type,
            status=PaymentStatus.COMPLETED.value,
            amount=amount,
            stripe_payment_intent_id=intent.id,
            stripe_charge_id=intent.latest_charge,
            payment_method_type=intent.payment_method_type,
            processed_at=utcnow(),
            payment_metadata={"source": source, "currency": intent.currency},
        )

        try:
            self.db.add(payment)
            await self.db.flush()

            values = {"status": new_status, "balance_owed": new_balance, "updated_at": utcnow()}
            if not order.stripe_payment_intent_id:
                values["stripe_payment_intent_id"] = intent.id

            guarded = await self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.status.in_(expected))
                .values(**values)
                .returning(Order.id)
                .execution_options(synchronize_session=False)
            )
            if guarded.fetchone() is None:
                await self.db.rollback()
                logger.info(f"Payment {intent.id}: order {order.id} moved concurrently ({source})")
                return ConfirmationResult(status=ALREADY_PROCESSED, order_id=order.id, reason="status_changed")

            await record_invoice_payment(self.db, order, amount)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Payment {intent.id} recorded concurrently for order {order.id} ({source})")
            return ConfirmationResult(status=ALREADY_PROCESSED, order_id=order.id, reason="payment_exists")
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(order)
        result = ConfirmationResult(
            status=PROCESSED, order_id=order.id, order_status=order.status, payment_id=payment.id
        )

        if not is_balance:
            await self._confirm_inventory(order, result)
        await self._create_teams(order, result)
        if not is_balance:
            await self._record_coupon_usage(order, result)
        await self._send_emails(order, amount, result)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"PAYMENT_METRIC: payment_confirmed "
            f"intent_id={intent.id} "
            f"order_id={result.order_id} "
            f"source={source} "
            f"amount_cents={intent.amount} "
            f"status={result.order_status} "
            f"side_effect_errors={len(result.side_effect_errors)} "
            f"duration_ms={duration_ms:.2f}"
        )
        return result

    # ----- Side effects -----

    def _side_effect_failed(self, result: ConfirmationResult, step: str, order_id: int, error: str) -> None:
        result.side_effect_errors.append(f"{step}: {error}")
        logger.error(f"Post-payment step '{step}' failed for order {order_id}: {error}")

    async def _ensure_loaded(self, order: Order) -> None:
        """Reload the order if a rollback expired it."""
        if inspect(order).expired_attributes:
            await self.db.refresh(order)

    async def _confirm_inventory(self, order: Order, result: ConfirmationResult) -> None:
        order_id = order.id
        organization_id, event_year_id = order.organization_id, order.event_year_id
        released = bool((order.order_metadata or {}).get("inventory_released"))

        try:
            lines = [(p.id, p.is_tent, item.quantity) for item, p in await self._order_lines(order)]
        except Exception as e:
            await self.db.rollback()
            self._side_effect_failed(result, "inventory", order_id, str(e))
            return

        for product_id, is_tent, quantity in lines:
            try:
                if released:
                    again = await reserve_inventory(self.db, product_id, quantity)
                    if not again.success:
                        logger.error(
                            f"OVERSELL: order {order_id} paid after its reservation of {quantity} "
                            f"x product {product_id} was released and stock is gone ({again.error})"
                        )

                if is_tent:
                    sale = await confirm_tent_sale(self.db, product_id, organization_id, event_year_id, quantity)
                else:
                    sale = await confirm_inventory_sale(self.db, product_id, quantity)

                if not sale.success:
                    self._side_effect_failed(result, "inventory", order_id, f"product {product_id}: {sale.error}")
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Inventory confirmation crashed for order {order_id}: {e}", exc_info=True)
                self._side_effect_failed(result, "inventory", order_id, str(e))

        if released:
            try:
                await self._ensure_loaded(order)
                metadata = dict(order.order_metadata or {})
                metadata["inventory_released"] = False
                metadata["inventory_rereserved_at"] = utcnow().isoformat()
                order.order_metadata = metadata
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                self._side_effect_failed(result, "inventory", order_id, str(e))

    async def _create_teams(self, order: Order, result: ConfirmationResult) -> None:
        order_id = result.order_id
        try:
            await self._ensure_loaded(order)
            if order.status not in PAID_ORDER_STATUSES:
                return
            await create_company_teams_for_order(self.db, order)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Company team creation failed for order {order_id}: {e}", exc_info=True)
            self._side_effect_failed(result, "teams", order_id, str(e))

    async def _record_coupon_usage(self, order: Order, result: ConfirmationResult) -> None:
        order_id = result.order_id
        try:
            await self._ensure_loaded(order)
            coupon_id = ((order.order_metadata or {}).get("applied_coupon") or {}).get("id")
            if not coupon_id:
                return
            await increment_coupon_usage(self.db, coupon_id)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Coupon usage update failed for order {order_id}: {e}", exc_info=True)
            self._side_effect_failed(result, "coupon", order_id, str(e))

    async def _send_emails(self, order: Order, amount: Decimal, result: ConfirmationResult) -> None:
        try:
            await self._ensure_loaded(order)
            await send_purchase_notifications(self.db, order, amount)
        except Exception as e:
            logger.warning(f"Purchase emails failed for order {result.order_id}: {e}", exc_info=True)
            result.side_effect_errors.append(f"email: {e}")

    # ----- Processing / failure -----

    async def handle_payment_processing(self, intent: PaymentIntentInfo) -> ConfirmationResult:
        """Delayed payment methods (ACH): pending -> payment_processing."""
        order, reason = await self._get_order(intent, None)
        if order is None:
            return ConfirmationResult(status=SKIPPED, reason=reason)

        try:
            moved = await self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.status == OrderStatus.PENDING.value)
                .values(status=OrderStatus.PAYMENT_PROCESSING.value, updated_at=utcnow())
                .returning(Order.id)
                .execution_options(synchronize_session=False)
            )
            row = moved.fetchone()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if row is None:
            return ConfirmationResult(status=SKIPPED, order_id=order.id, order_status=order.status, reason=f"order_{order.status}")

        logger.info(f"Order {order.id} payment processing ({intent.id})")
        return ConfirmationResult(
            status=PROCESSED, order_id=order.id, order_status=OrderStatus.PAYMENT_PROCESSING.value
        )

    async def handle_payment_failed(self, intent: PaymentIntentInfo) -> ConfirmationResult:
        """
        Revert an unpaid order to pending and record the failure. With
        RELEASE_INVENTORY_ON_PAYMENT_FAILURE the order's reserved stock is
        released; a later success re-reserves it before confirming.
        """
        order, reason = await self._get_order(intent, None)
        if order is None:
            return ConfirmationResult(status=SKIPPED, reason=reason)

        if order.status not in FIRST_PAYMENT_STATUSES:
            logger.info(f"Payment failure {intent.id} ignored: order {order.id} is {order.status}")
            return ConfirmationResult(
                status=SKIPPED, order_id=order.id, order_status=order.status, reason=f"order_{order.status}"
            )

        metadata = dict(order.order_metadata or {})
        metadata["last_payment_failure"] = {
            "payment_intent_id": intent.id,
            "code": intent.failure_code,
            "message": intent.failure_message,
            "failed_at": utcnow().isoformat(),
        }
        should_release = settings.RELEASE_INVENTORY_ON_PAYMENT_FAILURE and not metadata.get("inventory_released")

        try:
            reverted = await self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.status.in_(FIRST_PAYMENT_STATUSES))
                .values(status=OrderStatus.PENDING.value, order_metadata=metadata, updated_at=utcnow())
                .returning(Order.id)
                .execution_options(synchronize_session=False)
            )
            row = reverted.fetchone()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if row is None:
            return ConfirmationResult(status=SKIPPED, order_id=order.id, reason="status_changed")

        await self.db.refresh(order)
        result = ConfirmationResult(status=PROCESSED, order_id=order.id, order_status=order.status)

        if should_release:
            await self._release_order_inventory(order, result)

        logger.warning(
            f"Payment failed for order {result.order_id} ({intent.id}): "
            f"{intent.failure_message or 'no message'}; inventory released={should_release}"
        )
        return result

    async def _release_order_inventory(self, order: Order, result: ConfirmationResult) -> None:
        order_id = order.id
        try:
            lines = [(item.product_id, item.quantity) for item, _product in await self._order_lines(order)]
        except Exception as e:
            await self.db.rollback()
            self._side_effect_failed(result, "release", order_id, str(e))
            return

        for product_id, quantity in lines:
            released = await release_inventory(self.db, product_id, quantity)
            if not released.success:
                self._side_effect_failed(result, "release", order_id, f"product {product_id}: {released.error}")

        try:
            await self._ensure_loaded(order)
            metadata = dict(order.order_metadata or {})
            metadata["inventory_released"] = True
            metadata["inventory_released_at"] = utcnow().isoformat()
            order.order_metadata = metadata
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            self._side_effect_failed(result, "release", order_id, str(e))
