"""
Pytest configuration and fixtures for SportsFest tests.

Store-backed tests run against a temporary SQLite file through aiosqlite,
so conditional UPDATEs and concurrent sessions behave like the real store.
"""
import os
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_PUBLISHABLE_KEY"] = "pk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["SENDGRID_API_KEY"] = ""
os.environ["TENTS_PER_TEAM"] = "2"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from sportsfest.core.database import Base, get_db
from sportsfest.main import app
from sportsfest.core.utils import utcnow
from sportsfest.models import (
    CompanyTeam,
    Coupon,
    EventYear,
    Order,
    OrderItem,
    OrderPayment,
    OrderStatus,
    Organization,
    PaymentStatus,
    PaymentType,
    Product,
    ProductType,
)


@pytest.fixture
def mock_db() -> AsyncMock:
    """Create mock async database session."""
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    return db


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Async engine on a throwaway SQLite file; one connection per session."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sportsfest_test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


class Seeder:
    """Creates committed fixture rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def organization(self, slug: str = "acme", name: Optional[str] = None) -> Organization:
        return await self._save(Organization(slug=slug, name=name or slug.title()))

    async def event_year(self, year: int = 2026, is_active: bool = True) -> EventYear:
        return await self._save(EventYear(year=year, name=f"SportsFest {year}", is_active=is_active))

    async def product(
        self,
        event_year: EventYear,
        name: str = "T-Shirt",
        type: ProductType = ProductType.MERCHANDISE,
        total_inventory: Optional[int] = 100,
        sold_count: int = 0,
        reserved_count: int = 0,
        max_quantity_per_org: Optional[int] = None,
        base_price: str = "25.00",
        requires_deposit: bool = False,
        deposit_amount: Optional[str] = None,
        status: str = "active",
    ) -> Product:
        return await self._save(Product(
            event_year_id=event_year.id,
            name=name,
            type=type.value,
            status=status,
            total_inventory=total_inventory,
            sold_count=sold_count,
            reserved_count=reserved_count,
            max_quantity_per_org=max_quantity_per_org,
            base_price=Decimal(base_price),
            requires_deposit=requires_deposit,
            deposit_amount=Decimal(deposit_amount) if deposit_amount else None,
        ))

    async def tent(self, event_year: EventYear, total_inventory: Optional[int] = 50, **kwargs) -> Product:
        kwargs.setdefault("base_price", "300.00")
        return await self.product(
            event_year, name="10x10 Tent", type=ProductType.TENT_RENTAL,
            total_inventory=total_inventory, **kwargs
        )

    async def team_registration(self, event_year: EventYear, **kwargs) -> Product:
        kwargs.setdefault("base_price", "500.00")
        kwargs.setdefault("total_inventory", None)
        return await self.product(event_year, name="Team Registration", type=ProductType.TEAM_REGISTRATION, **kwargs)

    async def teams(self, organization: Organization, event_year: EventYear, count: int):
        teams = []
        for number in range(1, count + 1):
            teams.append(await self._save(CompanyTeam(
                organization_id=organization.id,
                event_year_id=event_year.id,
                team_number=number,
                name=f"Team {number}",
                is_paid=True,
            )))
        return teams

    async def order(
        self,
        organization: Organization,
        event_year: EventYear,
        items,
        status: OrderStatus = OrderStatus.PENDING,
        completed_payment: bool = False,
        payment_intent_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Order:
        """items: list of (product, quantity)."""
        total = sum((Decimal(p.base_price) * q for p, q in items), Decimal("0.00"))
        order = Order(
            organization_id=organization.id,
            event_year_id=event_year.id,
            order_number=f"SF-TEST-{uuid.uuid4().hex[:8].upper()}",
            status=status.value,
            total_amount=total,
            balance_owed=total,
            stripe_payment_intent_id=payment_intent_id,
            order_metadata=metadata or {},
            items=[
                OrderItem(
                    product_id=p.id,
                    product_name=p.name,
                    quantity=q,
                    unit_price=Decimal(p.base_price),
                    total_price=Decimal(p.base_price) * q,
                )
                for p, q in items
            ],
        )
        self.db.add(order)
        await self.db.flush()
        if completed_payment:
            self.db.add(OrderPayment(
                order_id=order.id,
                type=PaymentType.PRODUCT_PURCHASE.value,
                status=PaymentStatus.COMPLETED.value,
                amount=total,
                stripe_payment_intent_id=f"pi_seed_{uuid.uuid4().hex[:12]}",
                processed_at=utcnow(),
            ))
        await self.db.commit()
        return order

    async def coupon(
        self,
        code: str = "EARLYBIRD",
        discount_type: str = "percentage",
        discount_value: str = "10",
        max_uses: Optional[int] = None,
        current_uses: int = 0,
        expired: bool = False,
    ) -> Coupon:
        return await self._save(Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            max_uses=max_uses,
            current_uses=current_uses,
            expires_at=utcnow() - timedelta(days=1) if expired else None,
        ))


@pytest.fixture
def seed(db) -> Seeder:
    return Seeder(db)



@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client against the app, with get_db bound to the test store."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
