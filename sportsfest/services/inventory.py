"""
Inventory ledger

Three-counter stock model per product: total_inventory (NULL = unlimited),
sold_count and reserved_count. Every mutation is a single conditional
UPDATE ... RETURNING, so concurrent callers never observe or produce a
state where sold_count + reserved_count exceeds total_inventory.

The primitives are fail-soft: ordinary admission failures and store errors
come back as an InventoryResult with success=False, never as exceptions.
Each primitive commits its own statement.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update, or_, case
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.utils import utcnow
from sportsfest.models import Product

logger = logging.getLogger(__name__)

INSUFFICIENT_INVENTORY = "Insufficient inventory or product not found"
RESERVE_DB_ERROR = "Database error while reserving inventory"
RELEASE_DB_ERROR = "Database error while releasing inventory"
CONFIRM_DB_ERROR = "Database error while confirming sale"
INVALID_QUANTITY = "Quantity must be a positive integer"


@dataclass
class InventoryResult:
    """Outcome of a ledger operation. available_inventory is None for unlimited stock."""
    success: bool
    available_inventory: Optional[int] = None
    error: Optional[str] = None


@dataclass
class InventoryStatus:
    product_id: int
    name: str
    total_inventory: Optional[int]
    sold_count: int
    reserved_count: int
    available_inventory: Optional[int]


def _available_expr():
    return Product.total_inventory - Product.sold_count - Product.reserved_count


def _floored_decrement(column, quantity: int):
    """column - quantity, clamped at zero."""
    return case((column - quantity < 0, 0), else_=column - quantity)


def _available_from_row(row) -> Optional[int]:
    total, sold, reserved = row
    if total is None:
        return None
    return total - sold - reserved


def _valid_quantity(quantity) -> bool:
    return isinstance(quantity, int) and not isinstance(quantity, bool) and quantity > 0


async def reserve_inventory(db: AsyncSession, product_id: int, quantity: int) -> InventoryResult:
    """
    Atomically hold `quantity` units of a product.

    Succeeds only if the product exists and either has unlimited inventory
    or enough unreserved, unsold stock at the moment of the update.
    """
    if not _valid_quantity(quantity):
        return InventoryResult(success=False, error=INVALID_QUANTITY)

    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            or_(Product.total_inventory.is_(None), _available_expr() >= quantity),
        )
        .values(
            reserved_count=Product.reserved_count + quantity,
            updated_at=utcnow(),
        )
        .returning(Product.total_inventory, Product.sold_count, Product.reserved_count)
        .execution_options(synchronize_session=False)
    )

    try:
        result = await db.execute(stmt)
        row = result.fetchone()
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Error reserving {quantity} of product {product_id}: {e}", exc_info=True)
        return InventoryResult(success=False, error=RESERVE_DB_ERROR)

    if row is None:
        logger.info(f"[INVENTORY] Reservation rejected: product={product_id} quantity={quantity}")
        return InventoryResult(success=False, error=INSUFFICIENT_INVENTORY)

    available = _available_from_row(row)
    logger.debug(f"[INVENTORY] Reserved {quantity} of product {product_id}, available={available}")
    return InventoryResult(success=True, available_inventory=available)


async def release_inventory(db: AsyncSession, product_id: int, quantity: int) -> InventoryResult:
    """
    Return `quantity` held units to available stock.

    reserved_count is floored at zero, so over-releasing is harmless. A
    missing product is reported as success with zero available.
    """
    if not _valid_quantity(quantity):
        return InventoryResult(success=False, error=INVALID_QUANTITY)

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(
            reserved_count=_floored_decrement(Product.reserved_count, quantity),
            updated_at=utcnow(),
        )
        .returning(Product.total_inventory, Product.sold_count, Product.reserved_count)
        .execution_options(synchronize_session=False)
    )

    try:
        result = await db.execute(stmt)
        row = result.fetchone()
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Error releasing {quantity} of product {product_id}: {e}", exc_info=True)
        return InventoryResult(success=False, error=RELEASE_DB_ERROR)

    if row is None:
        logger.warning(f"[INVENTORY] Release for unknown product {product_id}")
        return InventoryResult(success=True, available_inventory=0)

    return InventoryResult(success=True, available_inventory=_available_from_row(row))


async def confirm_inventory_sale(db: AsyncSession, product_id: int, quantity: int) -> InventoryResult:
    """
    Convert `quantity` held units into sold units.

    Not idempotent: calling twice for the same sale counts it twice.
    Callers go through PaymentConfirmationService, which guarantees a
    single call per payment.
    """
    if not _valid_quantity(quantity):
        return InventoryResult(success=False, error=INVALID_QUANTITY)

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(
            reserved_count=_floored_decrement(Product.reserved_count, quantity),
            sold_count=Product.sold_count + quantity,
            updated_at=utcnow(),
        )
        .returning(Product.total_inventory, Product.sold_count, Product.reserved_count)
        .execution_options(synchronize_session=False)
    )

    try:
        result = await db.execute(stmt)
        row = result.fetchone()
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Error confirming sale of {quantity} for product {product_id}: {e}", exc_info=True)
        return InventoryResult(success=False, error=CONFIRM_DB_ERROR)

    if row is None:
        logger.warning(f"[INVENTORY] Sale confirmed for unknown product {product_id}")
        return InventoryResult(success=True, available_inventory=0)

    logger.info(f"[INVENTORY] Sold {quantity} of product {product_id}")
    return InventoryResult(success=True, available_inventory=_available_from_row(row))


async def get_inventory_status(db: AsyncSession, product_id: int) -> Optional[InventoryStatus]:
    """Read a product's counters. Returns None if the product is missing or the read fails."""
    try:
        result = await db.execute(
            select(
                Product.id,
                Product.name,
                Product.total_inventory,
                Product.sold_count,
                Product.reserved_count,
            ).where(Product.id == product_id)
        )
        row = result.first()
    except Exception as e:
        logger.error(f"Error reading inventory for product {product_id}: {e}", exc_info=True)
        return None

    if row is None:
        return None

    return InventoryStatus(
        product_id=row.id,
        name=row.name,
        total_inventory=row.total_inventory,
        sold_count=row.sold_count,
        reserved_count=row.reserved_count,
        available_inventory=_available_from_row(
            (row.total_inventory, row.sold_count, row.reserved_count)
        ),
    )
