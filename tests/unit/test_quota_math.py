"""
Tests for team/tent quota arithmetic and cart pricing.
"""
from decimal import Decimal

from sportsfest.models import Product, ProductType
from sportsfest.services.purchases import compute_team_count, compute_tent_quota
from sportsfest.services.cart_service import CartLine, CartView, cart_unit_price


class TestTeamCount:
    """Test compute_team_count."""

    def test_sums_persisted_and_cart(self):
        assert compute_team_count(3, 2) == 5

    def test_defaults_cart_to_zero(self):
        assert compute_team_count(4) == 4

    def test_negative_and_none_inputs_are_clamped(self):
        assert compute_team_count(None, -2) == 0
        assert compute_team_count(-1, 1) == 1


class TestTentQuota:
    """Test compute_tent_quota."""

    def test_two_tents_per_team(self):
        assert compute_tent_quota(4) == 8

    def test_no_teams_no_tents(self):
        assert compute_tent_quota(0) == 0

    def test_explicit_tents_per_team(self):
        assert compute_tent_quota(3, tents_per_team=1) == 3

    def test_negative_team_count(self):
        assert compute_tent_quota(-5) == 0


class TestCartPricing:
    """Test unit prices and cart totals."""

    def _product(self, **kwargs):
        defaults = dict(
            name="Team Registration",
            type=ProductType.TEAM_REGISTRATION.value,
            base_price=Decimal("500.00"),
            requires_deposit=True,
            deposit_amount=Decimal("100.00"),
        )
        defaults.update(kwargs)
        return Product(**defaults)

    def test_deposit_price_when_requested(self):
        assert cart_unit_price(self._product(), use_deposit=True) == Decimal("100.00")

    def test_full_price_without_deposit_flag(self):
        assert cart_unit_price(self._product(), use_deposit=False) == Decimal("500.00")

    def test_full_price_when_product_has_no_deposit(self):
        product = self._product(requires_deposit=False, deposit_amount=None)
        assert cart_unit_price(product, use_deposit=True) == Decimal("500.00")

    def test_cart_view_totals(self):
        view = CartView(session_id="sess-123456", organization_id=1, event_year_id=1, items=[
            CartLine(
                product_id=1, name="Team Registration",
                product_type=ProductType.TEAM_REGISTRATION.value,
                quantity=2, use_deposit=True,
                unit_price=Decimal("100.00"), full_unit_price=Decimal("500.00"),
            ),
            CartLine(
                product_id=2, name="10x10 Tent",
                product_type=ProductType.TENT_RENTAL.value,
                quantity=3, use_deposit=False,
                unit_price=Decimal("300.00"), full_unit_price=Decimal("300.00"),
            ),
        ])

        assert view.teams_in_cart == 2
        assert view.item_count == 5
        assert view.subtotal == Decimal("1900.00")
        assert view.amount_due_now == Decimal("1100.00")
        assert view.deposit_total == Decimal("200.00")

    def test_empty_cart_view(self):
        view = CartView(session_id="sess-123456", organization_id=None, event_year_id=None)
        assert view.teams_in_cart == 0
        assert view.subtotal == Decimal("0.00")
