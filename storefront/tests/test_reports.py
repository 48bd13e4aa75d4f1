"""
Tests for the bestsellers report.

Tests cover:
- Grouping and every sorting
- Order filters (status, store, dates, billing country)
- Product filters (hidden, system products, explicit ids)
- Limit and invalid sorting
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.app.core.base import utcnow
from storefront.app.models.order import Order, OrderItem
from storefront.app.services.reports import (
    InvalidReportSortingError,
    InvalidReportStatusError,
    ReportService,
    SORT_BY_AMOUNT_ASC,
    SORT_BY_AMOUNT_DESC,
    SORT_BY_QUANTITY_ASC,
)
from storefront.tests.conftest import make_address, make_product


async def make_order(session, customer, items, **fields) -> Order:
    """Create an order with (product, quantity, price) items."""
    order = Order(customer_id=customer.id, **fields)
    session.add(order)
    await session.flush()
    for product, quantity, price in items:
        session.add(OrderItem(
            order_id=order.id,
            product_id=product.id,
            quantity=quantity,
            price_excl_tax=Decimal(str(price)),
        ))
    await session.commit()
    return order


@pytest.fixture
async def products(test_session):
    return [
        await make_product(test_session, name="Mug"),
        await make_product(test_session, name="Shirt"),
        await make_product(test_session, name="Poster"),
    ]


@pytest.fixture
async def orders(test_session, test_customer, products):
    mug, shirt, poster = products
    await make_order(test_session, test_customer, [(mug, 5, 50), (shirt, 1, 30)], order_status="complete")
    await make_order(test_session, test_customer, [(mug, 1, 10), (poster, 2, 100)], order_status="pending")
    await make_order(test_session, test_customer, [(shirt, 2, 60)], order_status="cancelled")


def _summary(lines):
    return [(line.product_id, line.total_quantity, line.total_amount) for line in lines]


# ============================================
# SORTING
# ============================================

@pytest.mark.asyncio
async def test_bestsellers_by_quantity(test_session, products, orders):
    mug, shirt, poster = products

    lines = await ReportService(test_session).get_bestsellers()
    assert _summary(lines) == [
        (mug.id, 6, Decimal("60")),
        (shirt.id, 3, Decimal("90")),
        (poster.id, 2, Decimal("100")),
    ]


@pytest.mark.asyncio
async def test_bestsellers_other_sortings(test_session, products, orders):
    mug, shirt, poster = products
    service = ReportService(test_session)

    lines = await service.get_bestsellers(sorting=SORT_BY_QUANTITY_ASC)
    assert [line.product_id for line in lines] == [poster.id, shirt.id, mug.id]

    lines = await service.get_bestsellers(sorting=SORT_BY_AMOUNT_DESC)
    assert [line.product_id for line in lines] == [poster.id, shirt.id, mug.id]

    lines = await service.get_bestsellers(sorting=SORT_BY_AMOUNT_ASC)
    assert [line.product_id for line in lines] == [mug.id, shirt.id, poster.id]


@pytest.mark.asyncio
async def test_bestsellers_invalid_sorting(test_session):
    with pytest.raises(InvalidReportSortingError) as exc_info:
        await ReportService(test_session).get_bestsellers(sorting="name")
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_bestsellers_unknown_status(test_session):
    with pytest.raises(InvalidReportStatusError) as exc_info:
        await ReportService(test_session).get_bestsellers(payment_statuses=["paid", "lost"])
    assert exc_info.value.status_code == 400
    assert "lost" in exc_info.value.message


@pytest.mark.asyncio
async def test_bestsellers_limit(test_session, products, orders):
    lines = await ReportService(test_session).get_bestsellers(limit=1)
    assert [line.product_id for line in lines] == [products[0].id]


# ============================================
# ORDER FILTERS
# ============================================

@pytest.mark.asyncio
async def test_bestsellers_order_status_filter(test_session, products, orders):
    mug, shirt, poster = products
    service = ReportService(test_session)

    lines = await service.get_bestsellers(order_statuses=["complete", "pending"])
    assert _summary(lines) == [
        (mug.id, 6, Decimal("60")),
        (poster.id, 2, Decimal("100")),
        (shirt.id, 1, Decimal("30")),
    ]

    # An empty status list matches nothing
    assert await service.get_bestsellers(order_statuses=[]) == []


@pytest.mark.asyncio
async def test_bestsellers_store_and_date_filters(test_session, test_customer, products):
    mug, shirt, _ = products
    now = utcnow()
    await make_order(test_session, test_customer, [(mug, 1, 10)], store_id=1, created_at=now - timedelta(days=10))
    await make_order(test_session, test_customer, [(shirt, 1, 30)], store_id=2, created_at=now)
    service = ReportService(test_session)

    assert [line.product_id for line in await service.get_bestsellers(store_id=2)] == [shirt.id]
    lines = await service.get_bestsellers(from_utc=now - timedelta(days=1))
    assert [line.product_id for line in lines] == [shirt.id]
    lines = await service.get_bestsellers(to_utc=now - timedelta(days=1))
    assert [line.product_id for line in lines] == [mug.id]


@pytest.mark.asyncio
async def test_bestsellers_billing_country_filter(test_session, test_customer, products):
    mug, shirt, _ = products
    germany = await make_address(test_session, test_customer, country_id=49)
    france = await make_address(test_session, test_customer, country_id=33)
    await make_order(test_session, test_customer, [(mug, 1, 10)], billing_address_id=germany.id)
    await make_order(test_session, test_customer, [(shirt, 1, 30)], billing_address_id=france.id)

    lines = await ReportService(test_session).get_bestsellers(billing_country_id=49)
    assert [line.product_id for line in lines] == [mug.id]


# ============================================
# PRODUCT FILTERS
# ============================================

@pytest.mark.asyncio
async def test_bestsellers_hidden_and_system_products(test_session, test_customer):
    visible = await make_product(test_session, name="Visible")
    hidden = await make_product(test_session, name="Hidden", published=False)
    system = await make_product(test_session, name="Gift card fee", is_system_product=True)
    await make_order(test_session, test_customer, [(visible, 1, 10), (hidden, 3, 30), (system, 5, 5)])
    service = ReportService(test_session)

    assert [line.product_id for line in await service.get_bestsellers()] == [visible.id]
    lines = await service.get_bestsellers(include_hidden=True)
    assert [line.product_id for line in lines] == [hidden.id, visible.id]


@pytest.mark.asyncio
async def test_bestsellers_product_ids_filter(test_session, products, orders):
    mug, shirt, poster = products
    service = ReportService(test_session)

    lines = await service.get_bestsellers(product_ids=[shirt.id, poster.id])
    assert [line.product_id for line in lines] == [shirt.id, poster.id]
    # An empty list does not restrict
    assert len(await service.get_bestsellers(product_ids=[])) == 3
