# storefront/app/services/reports.py
"""
Order item report queries.

The apply_* helpers take and return a `Select` over OrderItem so filters can be
combined freely before the query is turned into report lines.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.constants import ORDER_STATUSES, PAYMENT_STATUSES, SHIPPING_STATUSES
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.money import to_decimal
from storefront.app.models.customer import Address
from storefront.app.models.order import Order, OrderItem
from storefront.app.models.product import Product

SORT_BY_QUANTITY_DESC = "quantity_desc"
SORT_BY_QUANTITY_ASC = "quantity_asc"
SORT_BY_AMOUNT_DESC = "amount_desc"
SORT_BY_AMOUNT_ASC = "amount_asc"
REPORT_SORTINGS = (SORT_BY_QUANTITY_DESC, SORT_BY_QUANTITY_ASC, SORT_BY_AMOUNT_DESC, SORT_BY_AMOUNT_ASC)


class ReportServiceError(ServiceError):
    pass


class InvalidReportSortingError(ReportServiceError):
    def __init__(self, sorting: str):
        super().__init__(f"Invalid sorting '{sorting}'. Allowed: {', '.join(REPORT_SORTINGS)}", 400)


class InvalidReportStatusError(ReportServiceError):
    def __init__(self, kind: str, status: str, allowed: Sequence[str]):
        super().__init__(f"Unknown {kind} status '{status}'. Allowed: {', '.join(allowed)}", 400)


def _check_statuses(kind: str, statuses: Optional[Sequence[str]], allowed: Sequence[str]) -> None:
    for status in statuses or ():
        if status not in allowed:
            raise InvalidReportStatusError(kind, status, allowed)


@dataclass
class BestsellersReportLine:
    product_id: int
    total_amount: Decimal
    total_quantity: int


def order_items_query() -> Select:
    return select(OrderItem)


def apply_standard_filter(query: Select, order_id: Optional[int] = None, customer_id: Optional[int] = None) -> Select:
    if order_id is not None:
        query = query.where(OrderItem.order_id == order_id)
    if customer_id is not None:
        query = query.where(
            OrderItem.order_id.in_(select(Order.id).where(Order.customer_id == customer_id))
        )
    return query


def apply_order_filter(
    query: Select,
    store_id: int = 0,
    from_utc: Optional[datetime] = None,
    to_utc: Optional[datetime] = None,
    order_statuses: Optional[Sequence[str]] = None,
    payment_statuses: Optional[Sequence[str]] = None,
    shipping_statuses: Optional[Sequence[str]] = None,
    billing_country_id: Optional[int] = None,
) -> Select:
    """Filter order items by properties of their orders. None means no restriction."""
    orders = select(Order.id)
    if store_id:
        orders = orders.where(Order.store_id == store_id)
    if from_utc is not None:
        orders = orders.where(Order.created_at >= from_utc)
    if to_utc is not None:
        orders = orders.where(Order.created_at <= to_utc)
    if order_statuses is not None:
        orders = orders.where(Order.order_status.in_(list(order_statuses)))
    if payment_statuses is not None:
        orders = orders.where(Order.payment_status.in_(list(payment_statuses)))
    if shipping_statuses is not None:
        orders = orders.where(Order.shipping_status.in_(list(shipping_statuses)))
    if billing_country_id is not None:
        orders = orders.join(Address, Address.id == Order.billing_address_id).where(
            Address.country_id == billing_country_id
        )
    return query.where(OrderItem.order_id.in_(orders))


def apply_product_filter(
    query: Select,
    product_ids: Optional[Sequence[int]] = None,
    include_hidden: bool = False,
) -> Select:
    """
    Filter order items by their products. System products are always
    excluded; unpublished ones only show with `include_hidden`. An empty or
    missing `product_ids` does not restrict the products.
    """
    products = select(Product.id).where(Product.is_system_product.is_(False))
    if not include_hidden:
        products = products.where(Product.published.is_(True))
    if product_ids:
        products = products.where(Product.id.in_(list(product_ids)))
    return query.where(OrderItem.product_id.in_(products))


def select_as_bestsellers_report_line(query: Select, sorting: str = SORT_BY_QUANTITY_DESC) -> Select:
    if sorting not in REPORT_SORTINGS:
        raise InvalidReportSortingError(sorting)

    total_amount = func.sum(OrderItem.price_excl_tax).label("total_amount")
    total_quantity = func.sum(OrderItem.quantity).label("total_quantity")
    query = query.with_only_columns(OrderItem.product_id, total_amount, total_quantity).group_by(OrderItem.product_id)

    if sorting == SORT_BY_AMOUNT_ASC:
        return query.order_by(total_amount.asc())
    if sorting == SORT_BY_AMOUNT_DESC:
        return query.order_by(total_amount.desc())
    if sorting == SORT_BY_QUANTITY_ASC:
        return query.order_by(total_quantity.asc(), total_amount.desc())
    return query.order_by(total_quantity.desc(), total_amount.desc())


class ReportService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_bestsellers(
        self,
        store_id: int = 0,
        from_utc: Optional[datetime] = None,
        to_utc: Optional[datetime] = None,
        order_statuses: Optional[Sequence[str]] = None,
        payment_statuses: Optional[Sequence[str]] = None,
        shipping_statuses: Optional[Sequence[str]] = None,
        billing_country_id: Optional[int] = None,
        product_ids: Optional[Sequence[int]] = None,
        include_hidden: bool = False,
        sorting: str = SORT_BY_QUANTITY_DESC,
        limit: Optional[int] = None,
    ) -> List[BestsellersReportLine]:
        _check_statuses("order", order_statuses, ORDER_STATUSES)
        _check_statuses("payment", payment_statuses, PAYMENT_STATUSES)
        _check_statuses("shipping", shipping_statuses, SHIPPING_STATUSES)

        query = apply_order_filter(
            order_items_query(),
            store_id=store_id,
            from_utc=from_utc,
            to_utc=to_utc,
            order_statuses=order_statuses,
            payment_statuses=payment_statuses,
            shipping_statuses=shipping_statuses,
            billing_country_id=billing_country_id,
        )
        query = apply_product_filter(query, product_ids=product_ids, include_hidden=include_hidden)
        query = select_as_bestsellers_report_line(query, sorting)
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return [
            BestsellersReportLine(
                product_id=row.product_id,
                total_amount=to_decimal(row.total_amount),
                total_quantity=int(row.total_quantity or 0),
            )
            for row in result.all()
        ]
