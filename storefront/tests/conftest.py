"""
Test fixtures for storefront backend tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with proper session management
- Test data factories for creating test entities
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

# DB settings required by Settings validation (tests use SQLite in-memory, these are not actually used)
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# Development mode for tests (disables ALLOWED_ORIGINS requirement)
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEFAULT_STORE_ID", "1")
os.environ.setdefault("PRIMARY_CURRENCY_CODE", "EUR")

import pytest
from decimal import Decimal
from typing import AsyncGenerator

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from storefront.app.core.base import Base
from storefront.app.core.money import Currency
from storefront.app.main import app
from storefront.app.api.deps import get_session, get_cache
from storefront.app.models.attributes import (
    CheckoutAttributeValue,
    ProductVariantAttribute,
    ProductVariantAttributeValue,
)
from storefront.app.models.cart import ShoppingCartItem  # noqa: F401 - register with Base.metadata
from storefront.app.models.category import Category, ProductCategory
from storefront.app.models.customer import Address, Customer, CustomerRole, CustomerRoleMapping
from storefront.app.models.discount import Discount, DiscountAppliedToCategory, DiscountAppliedToProduct
from storefront.app.models.order import Order, OrderItem  # noqa: F401
from storefront.app.models.product import Product, ProductBundleItem, TierPrice
from storefront.app.models.recurring import RecurringPayment  # noqa: F401
from storefront.app.models.settings import GlobalSettings  # noqa: F401
from storefront.app.models.shipping import ShippingByWeightRecord, ShippingMethod


# Test database URL - SQLite in-memory
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class MockCacheService:
    """Mock Redis cache for testing without actual Redis."""

    def __init__(self):
        self._cache = {}

    async def get(self, key: str):
        return self._cache.get(key)

    async def set(self, key: str, value, ttl: int = 300):
        self._cache[key] = value

    async def delete(self, key: str):
        self._cache.pop(key, None)

    async def get_shipping_methods(self, store_id: int):
        return self._cache.get(f"shipping:methods:store:{store_id}")

    async def set_shipping_methods(self, store_id: int, methods):
        self._cache[f"shipping:methods:store:{store_id}"] = methods

    async def invalidate_shipping_methods(self):
        for k in [k for k in self._cache if k.startswith("shipping:methods:")]:
            self._cache.pop(k, None)

    async def get_category_tree(self, include_hidden: bool):
        return self._cache.get(f"catalog:categories:tree:{include_hidden}")

    async def set_category_tree(self, include_hidden: bool, tree):
        self._cache[f"catalog:categories:tree:{include_hidden}"] = tree

    async def invalidate_category_tree(self):
        for k in [k for k in self._cache if k.startswith("catalog:categories:tree:")]:
            self._cache.pop(k, None)

    async def ping(self):
        return True


@pytest.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """
    Fresh in-memory database per test.
    The engine lives inside the test's event loop.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
async def test_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def mock_cache() -> MockCacheService:
    """Provide mock cache service for testing."""
    return MockCacheService()


@pytest.fixture
async def client(
    session_factory: async_sessionmaker,
    test_session: AsyncSession,
    mock_cache: MockCacheService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Overrides database and cache dependencies.

    Each API call gets its own session so it does not share a transaction
    with the test_session used for fixtures.
    """
    async def override_get_session():
        async with session_factory() as session:
            yield session

    async def override_get_cache():
        yield mock_cache

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_cache] = override_get_cache

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def currency() -> Currency:
    return Currency(code="EUR", rounding_enabled=True, round_num_decimals=2)


# --- Test Data Factories ---

async def make_customer(session: AsyncSession, roles=(), **fields) -> Customer:
    fields.setdefault("username", "jdoe")
    fields.setdefault("email", "jdoe@example.com")
    customer = Customer(**fields)
    session.add(customer)
    await session.flush()
    for role in roles:
        session.add(CustomerRoleMapping(customer_id=customer.id, customer_role_id=role.id))
    await session.commit()
    return customer


async def make_role(session: AsyncSession, system_name: str, active: bool = True) -> CustomerRole:
    role = CustomerRole(name=system_name, system_name=system_name, active=active)
    session.add(role)
    await session.commit()
    return role


async def make_product(session: AsyncSession, **fields) -> Product:
    fields.setdefault("name", "Test Product")
    fields.setdefault("price", Decimal("100.00"))
    product = Product(**fields)
    session.add(product)
    await session.commit()
    return product


async def make_tier_price(session: AsyncSession, product: Product, quantity: int, price, **fields) -> TierPrice:
    tier = TierPrice(product_id=product.id, quantity=quantity, price=Decimal(str(price)), **fields)
    product.has_tier_prices = True
    session.add(tier)
    await session.commit()
    return tier


async def make_discount(session: AsyncSession, **fields) -> Discount:
    fields.setdefault("name", "Test Discount")
    fields.setdefault("discount_type", "assigned_to_skus")
    discount = Discount(**fields)
    session.add(discount)
    await session.commit()
    return discount


async def assign_discount_to_product(session: AsyncSession, discount: Discount, product: Product) -> None:
    session.add(DiscountAppliedToProduct(discount_id=discount.id, product_id=product.id))
    product.has_discounts_applied = True
    await session.commit()


async def assign_discount_to_category(session: AsyncSession, discount: Discount, category: Category) -> None:
    session.add(DiscountAppliedToCategory(discount_id=discount.id, category_id=category.id))
    category.has_discounts_applied = True
    await session.commit()


async def make_category(session: AsyncSession, name: str, parent: Category = None, **fields) -> Category:
    category = Category(name=name, parent_category_id=parent.id if parent else None, **fields)
    session.add(category)
    await session.commit()
    return category


async def add_product_to_category(session: AsyncSession, product: Product, category: Category) -> None:
    session.add(ProductCategory(product_id=product.id, category_id=category.id))
    await session.commit()


async def make_attribute(
    session: AsyncSession, product: Product, name: str = "Color", values=()
) -> tuple:
    """Create an attribute with values; `values` are dicts of value fields."""
    attribute = ProductVariantAttribute(product_id=product.id, name=name)
    session.add(attribute)
    await session.flush()
    created = []
    for i, value_fields in enumerate(values):
        value_fields = dict(value_fields)
        value_fields.setdefault("name", f"Value {i}")
        value_fields.setdefault("display_order", i)
        value = ProductVariantAttributeValue(product_variant_attribute_id=attribute.id, **value_fields)
        session.add(value)
        created.append(value)
    await session.commit()
    return attribute, created


async def make_checkout_attribute_value(session: AsyncSession, **fields) -> CheckoutAttributeValue:
    fields.setdefault("attribute_name", "Gift wrapping")
    fields.setdefault("name", "Yes")
    value = CheckoutAttributeValue(**fields)
    session.add(value)
    await session.commit()
    return value


async def make_bundle_item(session: AsyncSession, bundle: Product, product: Product, **fields) -> ProductBundleItem:
    item = ProductBundleItem(bundle_product_id=bundle.id, product_id=product.id, **fields)
    session.add(item)
    await session.commit()
    return item


async def make_shipping_method(session: AsyncSession, name: str, **fields) -> ShippingMethod:
    method = ShippingMethod(name=name, **fields)
    session.add(method)
    await session.commit()
    return method


async def make_weight_record(session: AsyncSession, method: ShippingMethod, **fields) -> ShippingByWeightRecord:
    record = ShippingByWeightRecord(shipping_method_id=method.id, **fields)
    session.add(record)
    await session.commit()
    return record


async def make_address(session: AsyncSession, customer: Customer = None, **fields) -> Address:
    address = Address(customer_id=customer.id if customer else None, **fields)
    session.add(address)
    await session.commit()
    return address


@pytest.fixture
async def test_customer(test_session: AsyncSession) -> Customer:
    """Registered customer without roles."""
    return await make_customer(test_session, first_name="John", last_name="Doe")


@pytest.fixture
async def test_product(test_session: AsyncSession) -> Product:
    return await make_product(test_session, name="Widget", price=Decimal("100.00"), weight=Decimal("2"))
