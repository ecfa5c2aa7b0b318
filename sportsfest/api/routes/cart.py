"""
Cart routes

Every line in the cart holds a reservation on the product's stock. Add and
update reserve first and only then write the line; a rejected request
leaves no stock held.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.config import settings
from sportsfest.core.database import get_db
from sportsfest.core.rate_limit import limiter
from sportsfest.api.deps import get_organization, get_event_year_id, get_cart_session_id
from sportsfest.models import Organization
from sportsfest.schemas.cart import CartItemCreate, CartItemUpdate, CartResponse, CartMutationResponse
from sportsfest.services.cart_service import CartService, ITEM_NOT_IN_CART

router = APIRouter(prefix="/organizations/{slug}/cart", tags=["Cart"])


def _mutation_response(result) -> CartMutationResponse:
    if not result.success:
        code = status.HTTP_404_NOT_FOUND if result.error == ITEM_NOT_IN_CART else status.HTTP_409_CONFLICT
        raise HTTPException(status_code=code, detail=result.error)
    return CartMutationResponse(
        success=True,
        product_id=result.product_id,
        quantity=result.quantity,
        trimmed_product_ids=result.trimmed_product_ids,
    )


@router.get("", response_model=CartResponse)
async def get_cart(
    organization: Organization = Depends(get_organization),
    session_id: str = Depends(get_cart_session_id),
    db: AsyncSession = Depends(get_db),
):
    """Current cart contents with team count and totals."""
    view = await CartService(db).get_cart(session_id)
    if view.organization_id is not None and view.organization_id != organization.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cart not found")
    return CartResponse.model_validate(view)


@router.post("/items", response_model=CartMutationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_CART)
async def add_to_cart(
    request: Request,
    item_data: CartItemCreate,
    organization: Organization = Depends(get_organization),
    event_year_id: int = Depends(get_event_year_id),
    session_id: str = Depends(get_cart_session_id),
    db: AsyncSession = Depends(get_db),
):
    """Reserve stock and add it to the cart."""
    result = await CartService(db).add_item(
        session_id,
        organization.id,
        event_year_id,
        item_data.product_id,
        item_data.quantity,
        use_deposit=item_data.use_deposit,
    )
    return _mutation_response(result)


@router.patch("/items/{product_id}", response_model=CartMutationResponse)
@limiter.limit(settings.RATE_LIMIT_CART)
async def update_cart_item(
    request: Request,
    product_id: int,
    update_data: CartItemUpdate,
    organization: Organization = Depends(get_organization),
    event_year_id: int = Depends(get_event_year_id),
    session_id: str = Depends(get_cart_session_id),
    db: AsyncSession = Depends(get_db),
):
    """Change a line's quantity; 0 removes it."""
    result = await CartService(db).update_quantity(
        session_id, organization.id, event_year_id, product_id, update_data.quantity
    )
    return _mutation_response(result)


@router.delete("/items/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_cart_item(
    product_id: int,
    organization: Organization = Depends(get_organization),
    event_year_id: int = Depends(get_event_year_id),
    session_id: str = Depends(get_cart_session_id),
    db: AsyncSession = Depends(get_db),
):
    result = await CartService(db).remove_item(session_id, organization.id, event_year_id, product_id)
    _mutation_response(result)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(
    organization: Organization = Depends(get_organization),
    event_year_id: int = Depends(get_event_year_id),
    session_id: str = Depends(get_cart_session_id),
    db: AsyncSession = Depends(get_db),
):
    """Release everything the cart holds."""
    await CartService(db).clear_cart(session_id, organization.id, event_year_id)
