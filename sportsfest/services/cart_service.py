"""
CartService - reserve-then-claim cart mutations

Every unit in a cart holds a live reservation on the product's stock. A
mutation first reserves the added quantity through the inventory ledger
(tents through the tent quota), then checks the organization's purchase
limit for the product. If the limit check fails, the just-reserved
quantity is released before the error is returned, so a rejected add
never leaves stock held.

Reservations are released when lines are removed or the cart is cleared.
When team registrations leave the cart, tent lines the remaining teams no
longer cover are trimmed back to the quota and the excess is released.
checkout_cart hands the lines to an order without releasing: the order
carries the reservations until payment confirms them.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.config import settings
from sportsfest.core.exceptions import CartError
from sportsfest.core.utils import utcnow
from sportsfest.models import CartSession, CartItem, Product, ProductStatus, ProductType
from sportsfest.services.inventory import reserve_inventory, release_inventory, InventoryResult
from sportsfest.services.purchases import (
    compute_team_count,
    compute_tent_quota,
    get_company_team_count,
    get_purchased_quantity,
)
from sportsfest.services.tent_quota import reserve_tent_inventory

logger = logging.getLogger(__name__)

PRODUCT_NOT_AVAILABLE = "Product not found or not available"
ITEM_NOT_IN_CART = "Item not in cart"
CART_WRITE_FAILED = "Could not update cart. Please try again."


@dataclass
class CartMutationResult:
    success: bool
    product_id: Optional[int] = None
    quantity: int = 0
    error: Optional[str] = None
    trimmed_product_ids: List[int] = field(default_factory=list)


@dataclass
class CartLine:
    product_id: int
    name: str
    product_type: str
    quantity: int
    use_deposit: bool
    unit_price: Decimal
    full_unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def full_line_total(self) -> Decimal:
        return self.full_unit_price * self.quantity


@dataclass
class CartView:
    session_id: str
    organization_id: Optional[int]
    event_year_id: Optional[int]
    items: List[CartLine] = field(default_factory=list)

    @property
    def teams_in_cart(self) -> int:
        return sum(
            line.quantity for line in self.items
            if line.product_type == ProductType.TEAM_REGISTRATION.value
        )

    @property
    def subtotal(self) -> Decimal:
        return sum((line.full_line_total for line in self.items), Decimal("0.00"))

    @property
    def amount_due_now(self) -> Decimal:
        return sum((line.line_total for line in self.items), Decimal("0.00"))

    @property
    def deposit_total(self) -> Decimal:
        return sum(
            (line.line_total for line in self.items if line.use_deposit),
            Decimal("0.00"),
        )

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)


def cart_unit_price(product: Product, use_deposit: bool) -> Decimal:
    if use_deposit and product.requires_deposit and product.deposit_amount is not None:
        return Decimal(product.deposit_amount)
    return Decimal(product.base_price)


class CartService:
    """Cart mutations for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ----- Session handling -----

    async def _find_session(self, session_id: str) -> Tuple[Optional[CartSession], bool]:
        """Return (cart session, is_live)."""
        result = await self.db.execute(
            select(CartSession, CartSession.expires_at > utcnow()).where(
                CartSession.session_id == session_id
            )
        )
        row = result.first()
        if row is None:
            return None, False
        return row[0], bool(row[1])

    async def _get_or_create_session(
        self,
        session_id: str,
        organization_id: int,
        event_year_id: int,
    ) -> CartSession:
        cart, live = await self._find_session(session_id)
        expires_at = utcnow() + timedelta(hours=settings.CART_SESSION_TTL_HOURS)

        if cart is None:
            cart = CartSession(
                session_id=session_id,
                organization_id=organization_id,
                event_year_id=event_year_id,
                expires_at=expires_at,
            )
            self.db.add(cart)
            await self.db.commit()
            return cart

        if cart.organization_id != organization_id or cart.event_year_id != event_year_id:
            raise CartError(
                "Cart session belongs to a different organization or event year",
                details={"session_id": session_id},
            )

        if not live:
            logger.info(f"[CART] Session {session_id} expired, releasing held stock")
            await self._release_lines(cart)
            await self.db.execute(delete(CartItem).where(CartItem.cart_session_id == cart.id))

        cart.expires_at = expires_at
        await self.db.commit()
        return cart

    async def _lines(self, cart: CartSession) -> List[Tuple[CartItem, Product]]:
        result = await self.db.execute(
            select(CartItem, Product)
            .join(Product, Product.id == CartItem.product_id)
            .where(CartItem.cart_session_id == cart.id)
            .order_by(CartItem.id)
        )
        return list(result.all())

    async def _release_lines(self, cart: CartSession) -> None:
        for item, _product in await self._lines(cart):
            released = await release_inventory(self.db, item.product_id, item.quantity)
            if not released.success:
                logger.error(
                    f"[CART] Failed to release {item.quantity} of product {item.product_id} "
                    f"from cart {cart.session_id}: {released.error}"
                )

    # ----- Reservation helpers -----

    async def _get_product(self, product_id: int, event_year_id: int) -> Optional[Product]:
        result = await self.db.execute(
            select(Product).where(
                Product.id == product_id,
                Product.event_year_id == event_year_id,
                Product.status == ProductStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    def _teams_in_cart(self, lines: List[Tuple[CartItem, Product]]) -> int:
        return sum(
            item.quantity for item, product in lines
            if product.type == ProductType.TEAM_REGISTRATION.value
        )

    async def _reserve(
        self,
        cart: CartSession,
        product: Product,
        quantity: int,
        in_cart: int,
        teams_in_cart: int,
    ) -> InventoryResult:
        if product.is_tent:
            tent = await reserve_tent_inventory(
                self.db,
                product.id,
                cart.organization_id,
                cart.event_year_id,
                quantity,
                teams_in_cart=teams_in_cart,
                tents_in_cart=in_cart,
            )
            return InventoryResult(success=tent.success, error=tent.error)
        return await reserve_inventory(self.db, product.id, quantity)

    async def _tent_allowance(self, cart: CartSession, product: Product, teams_in_cart: int) -> int:
        """Tents of `product` the cart may still hold for its organization."""
        persisted = await get_company_team_count(self.db, cart.organization_id, cart.event_year_id)
        max_quantity = compute_tent_quota(compute_team_count(persisted, teams_in_cart))
        purchased = await get_purchased_quantity(
            self.db, cart.organization_id, cart.event_year_id, product.id
        )
        return max(0, max_quantity - purchased)

    async def _trim_tent_lines(self, cart: CartSession) -> List[int]:
        """
        Cut tent lines down to what the cart's teams still allow, releasing
        the excess. Returns the ids of the products that were trimmed.
        """
        lines = await self._lines(cart)
        teams_in_cart = self._teams_in_cart(lines)
        trimmed = []

        for item, product in lines:
            if not product.is_tent:
                continue
            allowed = await self._tent_allowance(cart, product, teams_in_cart)
            excess = item.quantity - allowed
            if excess <= 0:
                continue

            released = await release_inventory(self.db, product.id, excess)
            if not released.success:
                logger.error(
                    f"[CART] Could not release {excess} excess tent(s) of product {product.id} "
                    f"from cart {cart.session_id}: {released.error}"
                )
                continue

            try:
                if allowed == 0:
                    await self.db.delete(item)
                else:
                    item.quantity = allowed
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(f"[CART] Failed to trim tent line {product.id}: {e}", exc_info=True)
                await reserve_inventory(self.db, product.id, excess)
                continue

            logger.info(
                f"[CART] Trimmed {excess} tent(s) of product {product.id} from cart {cart.session_id}, "
                f"{allowed} left for {teams_in_cart} team(s) in cart"
            )
            trimmed.append(product.id)
        return trimmed

    async def _is_team_registration(self, product_id: int) -> bool:
        product = await self.db.get(Product, product_id)
        return product is not None and product.type == ProductType.TEAM_REGISTRATION.value

    async def _check_org_limit(
        self,
        cart: CartSession,
        product: Product,
        cart_quantity: int,
        teams_in_cart: int,
    ) -> Optional[str]:
        """Error message if the cart would exceed the organization's limit for the product."""
        if product.is_tent:
            persisted = await get_company_team_count(self.db, cart.organization_id, cart.event_year_id)
            max_quantity = compute_tent_quota(compute_team_count(persisted, teams_in_cart))
        else:
            max_quantity = product.max_quantity_per_org
            if max_quantity is None:
                return None

        purchased = await get_purchased_quantity(
            self.db, cart.organization_id, cart.event_year_id, product.id
        )
        remaining = max(0, max_quantity - purchased)
        if cart_quantity > remaining:
            return (
                f"Maximum quantity for {product.name} is {max_quantity} per organization "
                f"({purchased} already purchased, {remaining} remaining)"
            )
        return None

    async def _reserve_and_check(
        self,
        cart: CartSession,
        product: Product,
        delta: int,
        in_cart: int,
    ) -> Optional[str]:
        """Reserve `delta` more units for the cart. Returns an error message on failure."""
        lines = await self._lines(cart)
        teams_in_cart = self._teams_in_cart(lines)
        if product.type == ProductType.TEAM_REGISTRATION.value:
            teams_in_cart += delta

        reservation = await self._reserve(cart, product, delta, in_cart, teams_in_cart)
        if not reservation.success:
            return reservation.error

        try:
            limit_error = await self._check_org_limit(cart, product, in_cart + delta, teams_in_cart)
        except Exception as e:
            logger.error(f"[CART] Limit check failed for product {product.id}: {e}", exc_info=True)
            limit_error = CART_WRITE_FAILED

        if limit_error:
            await self._compensate(product.id, delta)
            return limit_error
        return None

    async def _compensate(self, product_id: int, quantity: int) -> None:
        released = await release_inventory(self.db, product_id, quantity)
        if not released.success:
            logger.error(
                f"[CART] Compensating release of {quantity} for product {product_id} failed: "
                f"{released.error}"
            )

    async def _find_item(self, cart: CartSession, product_id: int) -> Optional[CartItem]:
        result = await self.db.execute(
            select(CartItem).where(
                CartItem.cart_session_id == cart.id,
                CartItem.product_id == product_id,
            )
        )
        return result.scalar_one_or_none()

    # ----- Public operations -----

    async def get_cart(self, session_id: str) -> CartView:
        cart, live = await self._find_session(session_id)
        if cart is None:
            return CartView(session_id=session_id, organization_id=None, event_year_id=None)

        view = CartView(
            session_id=session_id,
            organization_id=cart.organization_id,
            event_year_id=cart.event_year_id,
        )
        if not live:
            return view

        for item, product in await self._lines(cart):
            view.items.append(CartLine(
                product_id=product.id,
                name=product.name,
                product_type=product.type,
                quantity=item.quantity,
                use_deposit=item.use_deposit,
                unit_price=Decimal(item.unit_price),
                full_unit_price=Decimal(product.base_price),
            ))
        return view

    async def add_item(
        self,
        session_id: str,
        organization_id: int,
        event_year_id: int,
        product_id: int,
        quantity: int = 1,
        use_deposit: bool = False,
    ) -> CartMutationResult:
        """Add `quantity` units of a product, reserving them first."""
        if quantity <= 0:
            return CartMutationResult(success=False, product_id=product_id, error="Quantity must be at least 1")

        cart = await self._get_or_create_session(session_id, organization_id, event_year_id)
        product = await self._get_product(product_id, event_year_id)
        if product is None:
            return CartMutationResult(success=False, product_id=product_id, error=PRODUCT_NOT_AVAILABLE)

        existing = await self._find_item(cart, product_id)
        in_cart = existing.quantity if existing else 0

        error = await self._reserve_and_check(cart, product, quantity, in_cart)
        if error:
            return CartMutationResult(success=False, product_id=product_id, quantity=in_cart, error=error)

        try:
            if existing:
                existing.quantity = in_cart + quantity
                existing.use_deposit = use_deposit
                existing.unit_price = cart_unit_price(product, use_deposit)
            else:
                self.db.add(CartItem(
                    cart_session_id=cart.id,
                    product_id=product.id,
                    quantity=quantity,
                    use_deposit=use_deposit,
                    unit_price=cart_unit_price(product, use_deposit),
                ))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"[CART] Failed to write cart line for product {product_id}: {e}", exc_info=True)
            await self._compensate(product_id, quantity)
            return CartMutationResult(success=False, product_id=product_id, quantity=in_cart, error=CART_WRITE_FAILED)

        logger.info(f"[CART] Added {quantity} of product {product_id} to cart {session_id}")
        return CartMutationResult(success=True, product_id=product_id, quantity=in_cart + quantity)

    async def update_quantity(
        self,
        session_id: str,
        organization_id: int,
        event_year_id: int,
        product_id: int,
        quantity: int,
    ) -> CartMutationResult:
        """Set a line's quantity. Only the positive delta is reserved; quantity <= 0 removes the line."""
        if quantity <= 0:
            return await self.remove_item(session_id, organization_id, event_year_id, product_id)

        cart = await self._get_or_create_session(session_id, organization_id, event_year_id)
        existing = await self._find_item(cart, product_id)
        if existing is None:
            return CartMutationResult(success=False, product_id=product_id, error=ITEM_NOT_IN_CART)

        delta = quantity - existing.quantity
        if delta == 0:
            return CartMutationResult(success=True, product_id=product_id, quantity=quantity)

        if delta > 0:
            product = await self._get_product(product_id, event_year_id)
            if product is None:
                return CartMutationResult(
                    success=False, product_id=product_id, quantity=existing.quantity, error=PRODUCT_NOT_AVAILABLE
                )
            error = await self._reserve_and_check(cart, product, delta, existing.quantity)
            if error:
                return CartMutationResult(
                    success=False, product_id=product_id, quantity=existing.quantity, error=error
                )
        else:
            released = await release_inventory(self.db, product_id, -delta)
            if not released.success:
                return CartMutationResult(
                    success=False, product_id=product_id, quantity=existing.quantity, error=released.error
                )

        previous = existing.quantity
        try:
            existing.quantity = quantity
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"[CART] Failed to update cart line for product {product_id}: {e}", exc_info=True)
            if delta > 0:
                await self._compensate(product_id, delta)
            else:
                # Put back what was released so the line stays covered
                await reserve_inventory(self.db, product_id, -delta)
            return CartMutationResult(success=False, product_id=product_id, quantity=previous, error=CART_WRITE_FAILED)

        trimmed = []
        if delta < 0 and await self._is_team_registration(product_id):
            trimmed = await self._trim_tent_lines(cart)
        return CartMutationResult(
            success=True, product_id=product_id, quantity=quantity, trimmed_product_ids=trimmed
        )

    async def remove_item(
        self,
        session_id: str,
        organization_id: int,
        event_year_id: int,
        product_id: int,
    ) -> CartMutationResult:
        cart = await self._get_or_create_session(session_id, organization_id, event_year_id)
        existing = await self._find_item(cart, product_id)
        if existing is None:
            return CartMutationResult(success=False, product_id=product_id, error=ITEM_NOT_IN_CART)

        released = await release_inventory(self.db, product_id, existing.quantity)
        if not released.success:
            return CartMutationResult(
                success=False, product_id=product_id, quantity=existing.quantity, error=released.error
            )

        await self.db.delete(existing)
        await self.db.commit()
        logger.info(f"[CART] Removed product {product_id} from cart {session_id}")

        trimmed = []
        if await self._is_team_registration(product_id):
            trimmed = await self._trim_tent_lines(cart)
        return CartMutationResult(success=True, product_id=product_id, quantity=0, trimmed_product_ids=trimmed)

    async def clear_cart(self, session_id: str, organization_id: int, event_year_id: int) -> int:
        """Release and delete every line. Returns the number of lines removed."""
        cart, _live = await self._find_session(session_id)
        if cart is None:
            return 0
        if cart.organization_id != organization_id or cart.event_year_id != event_year_id:
            raise CartError(
                "Cart session belongs to a different organization or event year",
                details={"session_id": session_id},
            )

        lines = await self._lines(cart)
        await self._release_lines(cart)
        await self.db.execute(delete(CartItem).where(CartItem.cart_session_id == cart.id))
        await self.db.commit()
        return len(lines)

    async def checkout_cart(
        self,
        session_id: str,
        organization_id: int,
        event_year_id: int,
    ) -> List[Tuple[CartItem, Product]]:
        """
        Detach the cart's lines for order creation.

        Tent lines are rechecked against the quota first; a cart holding more
        tents than its teams allow is refused with CartError.

        The lines are deleted in the caller's transaction without releasing
        their reservations; nothing is committed here.
        """
        cart, live = await self._find_session(session_id)
        if cart is None or not live:
            raise CartError("Cart is empty or has expired", details={"session_id": session_id})
        if cart.organization_id != organization_id or cart.event_year_id != event_year_id:
            raise CartError(
                "Cart session belongs to a different organization or event year",
                details={"session_id": session_id},
            )

        lines = await self._lines(cart)
        if not lines:
            raise CartError("Cart is empty", details={"session_id": session_id})

        teams_in_cart = self._teams_in_cart(lines)
        for item, product in lines:
            if not product.is_tent:
                continue
            allowed = await self._tent_allowance(cart, product, teams_in_cart)
            if item.quantity > allowed:
                raise CartError(
                    f"Cart holds {item.quantity} x {product.name} but the organization's "
                    f"teams allow {allowed}. Register a team or remove tents.",
                    details={"session_id": session_id, "product_id": product.id, "allowed": allowed},
                )

        await self.db.execute(delete(CartItem).where(CartItem.cart_session_id == cart.id))
        return lines
