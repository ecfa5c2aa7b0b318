from sportsfest.models.organization import Organization, EventYear
from sportsfest.models.product import Product, ProductType, ProductStatus
from sportsfest.models.order import (
    Order,
    OrderItem,
    OrderPayment,
    OrderInvoice,
    OrderStatus,
    PaymentStatus,
    PaymentType,
    PAID_ORDER_STATUSES,
)
from sportsfest.models.company_team import CompanyTeam
from sportsfest.models.tent_tracking import TentPurchaseTracking
from sportsfest.models.coupon import Coupon, DiscountType
from sportsfest.models.cart import CartSession, CartItem

__all__ = [
    "Organization",
    "EventYear",
    "Product",
    "ProductType",
    "ProductStatus",
    "Order",
    "OrderItem",
    "OrderPayment",
    "OrderInvoice",
    "OrderStatus",
    "PaymentStatus",
    "PaymentType",
    "PAID_ORDER_STATUSES",
    "CompanyTeam",
    "TentPurchaseTracking",
    "Coupon",
    "DiscountType",
    "CartSession",
    "CartItem",
]
