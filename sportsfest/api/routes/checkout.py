"""
Stripe Checkout API Routes

CHECKOUT FLOW:
1. Cart lines hold stock reservations (see cart routes)
2. create-payment-intent: cart -> pending order, Stripe PaymentIntent with orderId metadata
3. confirm-payment: client-side confirmation after Stripe.js reports success
4. stripe-webhook: Stripe's own notification; authoritative if the client never calls back

Steps 3 and 4 both go through PaymentConfirmationService, which applies a
payment intent to its order exactly once whichever arrives first.
"""
import stripe
import logging
import time
from collections import OrderedDict
from fastapi import APIRouter, HTTPException, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.config import settings
from sportsfest.core.database import get_db
from sportsfest.core.exceptions import NotFoundError, SportsFestError
from sportsfest.core.rate_limit import limiter
from sportsfest.core.redis_client import is_webhook_processed, mark_webhook_processed
from sportsfest.api.deps import get_cart_session_id, get_organization_by_slug, resolve_event_year_id
from sportsfest.schemas.checkout import (
    PaymentIntentRequest,
    PaymentIntentResponse,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
)
from sportsfest.services.checkout_service import CheckoutService
from sportsfest.services.payment_confirmation import PaymentConfirmationService, PaymentIntentInfo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["Checkout"])

stripe.api_key = settings.STRIPE_SECRET_KEY
CHECKOUT_CURRENCY = (settings.STRIPE_CURRENCY or "usd").lower()

# Fallback in-memory record when Redis unavailable, oldest first
WEBHOOK_FALLBACK_MAX_EVENTS = 10000
_processed_webhook_events_fallback: "OrderedDict[str, None]" = OrderedDict()


def _remember_webhook_event(event_id: str) -> None:
    """Record an event id, evicting the oldest ids past WEBHOOK_FALLBACK_MAX_EVENTS."""
    _processed_webhook_events_fallback[event_id] = None
    _processed_webhook_events_fallback.move_to_end(event_id)
    while len(_processed_webhook_events_fallback) > WEBHOOK_FALLBACK_MAX_EVENTS:
        _processed_webhook_events_fallback.popitem(last=False)


@router.post("/create-payment-intent", response_model=PaymentIntentResponse)
@limiter.limit(settings.RATE_LIMIT_CHECKOUT)
async def create_payment_intent(
    request: Request,
    payload: PaymentIntentRequest,
    session_id: str = Depends(get_cart_session_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Turn the cart into a pending order and create its PaymentIntent.

    The cart's reservations carry over to the order. If Stripe rejects the
    intent the order is rolled back and the cart is left as it was.
    """
    start_time = time.time()

    if not settings.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=500, detail="Stripe not configured")

    organization = await get_organization_by_slug(db, payload.organization_slug)
    event_year_id = await resolve_event_year_id(db, payload.event_year_id)

    draft = await CheckoutService(db).create_order_from_cart(
        session_id,
        organization.id,
        event_year_id,
        payment_type=payload.payment_type,
        coupon_code=payload.coupon_code,
        customer_email=payload.customer_email,
    )
    order = draft.order

    try:
        intent = stripe.PaymentIntent.create(
            amount=draft.amount_due_cents,
            currency=CHECKOUT_CURRENCY,
            automatic_payment_methods={"enabled": True},
            metadata={
                "orderId": str(order.id),
                "orderNumber": order.order_number,
                "organizationId": str(organization.id),
                "eventYearId": str(event_year_id),
                "paymentType": payload.payment_type,
            },
            idempotency_key=f"order-{order.order_number}",
        )
    except stripe.StripeError as e:
        await db.rollback()
        logger.error(f"Stripe PaymentIntent creation failed for order {order.order_number}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    order.stripe_payment_intent_id = intent.id
    await db.commit()

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        f"CHECKOUT_METRIC: payment_intent_created "
        f"organization_id={organization.id} "
        f"order_id={order.id} "
        f"intent_id={intent.id} "
        f"amount_cents={draft.amount_due_cents} "
        f"duration_ms={duration_ms:.2f}"
    )

    return PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
        order_id=order.id,
        order_number=order.order_number,
        amount=draft.amount_due_cents,
        discount=float(draft.discount),
    )


@router.post("/confirm-payment", response_model=ConfirmPaymentResponse)
async def confirm_payment(
    payload: ConfirmPaymentRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Called by the client after Stripe.js reports success.

    Verifies the intent with Stripe, then applies it to the order. Safe to
    call after the webhook has already done so.
    """
    try:
        intent = stripe.PaymentIntent.retrieve(payload.payment_intent_id)
    except stripe.StripeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = await PaymentConfirmationService(db).process_successful_payment(
        PaymentIntentInfo.from_stripe(intent),
        source="confirm_endpoint",
        order_id=payload.order_id,
    )
    if result.reason == "order_not_found":
        raise NotFoundError("Order not found", entity="order", entity_id=payload.order_id)

    return ConfirmPaymentResponse(
        status=result.status,
        order_id=result.order_id,
        order_status=result.order_status,
        warnings=result.side_effect_errors,
    )


@router.get("/config")
async def get_stripe_config():
    """
    Return publishable key for frontend.
    This is safe to expose - it's meant to be public.
    """
    return {
        "publishable_key": settings.STRIPE_PUBLISHABLE_KEY
    }


@router.post("/stripe-webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Stripe webhook handler with signature verification.

    Event ids are remembered in Redis (in-memory fallback) so redelivered
    events are skipped early; the payment intent guard in
    PaymentConfirmationService is what actually prevents double processing.
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        logger.warning("Stripe webhook missing signature header")
        raise HTTPException(status_code=400, detail="Missing signature")

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except ValueError as e:
        logger.warning(f"Stripe webhook invalid payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_id = event["id"]

    if await is_webhook_processed(event_id):
        logger.info(f"Stripe webhook event {event_id} already processed (Redis), skipping")
        return {"status": "already_processed"}

    if event_id in _processed_webhook_events_fallback:
        logger.info(f"Stripe webhook event {event_id} already processed (fallback), skipping")
        return {"status": "already_processed"}

    event_type = event["type"]
    logger.info(f"Stripe webhook received: {event_type} (event_id={event_id})")

    service = PaymentConfirmationService(db)
    try:
        if event_type == "payment_intent.succeeded":
            intent = PaymentIntentInfo.from_stripe(event["data"]["object"])
            result = await service.process_successful_payment(intent, source="webhook")
        elif event_type == "payment_intent.processing":
            intent = PaymentIntentInfo.from_stripe(event["data"]["object"])
            result = await service.handle_payment_processing(intent)
        elif event_type == "payment_intent.payment_failed":
            intent = PaymentIntentInfo.from_stripe(event["data"]["object"])
            result = await service.handle_payment_failed(intent)
        else:
            result = None
            logger.info(f"Unhandled webhook event type: {event_type}")

        if result is not None:
            logger.info(
                f"Webhook {event_id} {event_type}: {result.status} "
                f"order={result.order_id} reason={result.reason}"
            )
    except SportsFestError as e:
        # Permanent rejection; retrying the event will not change the outcome
        logger.warning(f"Webhook {event_id} {event_type} rejected: {e!r}")
    except Exception as e:
        logger.error(f"Webhook {event_id} {event_type} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    redis_marked = await mark_webhook_processed(event_id)

    # Always remembered locally for single-instance safety
    _remember_webhook_event(event_id)

    if redis_marked:
        logger.debug(f"Webhook {event_id} marked processed in Redis")
    else:
        logger.warning(f"Webhook {event_id} marked in fallback only (Redis unavailable)")

    return {"status": "success"}
