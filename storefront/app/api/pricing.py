"""
Pricing API: product prices and cart totals.
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.api.deps import get_session
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.logging import get_logger
from storefront.app.core.metrics import price_calculations_total
from storefront.app.core.constants import PRODUCT_TYPE_GROUPED, ZERO
from storefront.app.models.customer import Customer
from storefront.app.schemas import (
    BasePriceInfoResponse,
    CartLineTotals,
    CartTotalsResponse,
    FinalPriceResponse,
    LowestPriceResponse,
)
from storefront.app.services.cart import CartService
from storefront.app.services.customers import CustomerService
from storefront.app.services.pricing import PriceCalculationContext, PriceCalculationService
from storefront.app.services.shipping import ShippingService

router = APIRouter()
logger = get_logger(__name__)


def _handle_service_error(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


async def _get_customer(session: AsyncSession, customer_id: Optional[int]) -> Optional[Customer]:
    if customer_id is None:
        return None
    return await CustomerService(session).get_customer(customer_id)


@router.get("/products/{product_id}/final-price", response_model=FinalPriceResponse)
async def get_final_price(
    product_id: int,
    quantity: int = Query(1, ge=1),
    customer_id: Optional[int] = None,
    include_discounts: bool = True,
    session: AsyncSession = Depends(get_session),
):
    service = PriceCalculationService(session)
    try:
        product = await service.get_product(product_id)
        customer = await _get_customer(session, customer_id)
        details = await service.get_final_price_details(
            product, None, customer, include_discounts, quantity, context=PriceCalculationContext()
        )
    except ServiceError as e:
        _handle_service_error(e)

    price_calculations_total.labels(operation="final_price").inc()
    currency = service.currency
    applied = details.applied_discount
    return FinalPriceResponse(
        product_id=product_id,
        quantity=quantity,
        include_discounts=include_discounts,
        price=currency.round_if_enabled(details.price),
        discount_amount=currency.round_if_enabled(details.discount_amount),
        applied_discount_id=applied.id if applied is not None else None,
        formatted=currency.format(details.price),
    )


@router.get("/products/{product_id}/lowest-price", response_model=LowestPriceResponse)
async def get_lowest_price(
    product_id: int,
    customer_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
):
    """Lowest price of a product; grouped products answer with their cheapest associated product."""
    service = PriceCalculationService(session)
    try:
        product = await service.get_product(product_id)
        customer = await _get_customer(session, customer_id)
        if product.product_type == PRODUCT_TYPE_GROUPED:
            lowest, lowest_product = await service.get_lowest_price_of_grouped(product, customer)
            return LowestPriceResponse(
                product_id=product_id,
                lowest_price=service.currency.round_if_enabled(lowest) if lowest is not None else None,
                display_from_message=lowest is not None,
                lowest_price_product_id=lowest_product.id if lowest_product is not None else None,
                formatted=service.currency.format(lowest) if lowest is not None else None,
            )
        lowest, display_from = await service.get_lowest_price(product, customer)
    except ServiceError as e:
        _handle_service_error(e)

    return LowestPriceResponse(
        product_id=product_id,
        lowest_price=service.currency.round_if_enabled(lowest),
        display_from_message=display_from,
        formatted=service.currency.format(lowest),
    )


@router.get("/products/{product_id}/base-price-info", response_model=BasePriceInfoResponse)
async def get_base_price_info(
    product_id: int,
    customer_id: Optional[int] = None,
    price_adjustment: Optional[Decimal] = None,
    session: AsyncSession = Depends(get_session),
):
    service = PriceCalculationService(session)
    try:
        product = await service.get_product(product_id)
        customer = await _get_customer(session, customer_id)
        info = await service.get_base_price_info_for(product, customer, price_adjustment=price_adjustment)
    except ServiceError as e:
        _handle_service_error(e)
    return BasePriceInfoResponse(product_id=product_id, info=info)


@router.get("/cart/{customer_id}/totals", response_model=CartTotalsResponse)
async def get_cart_totals(
    customer_id: int,
    store_id: int = 0,
    session: AsyncSession = Depends(get_session),
):
    """Unit prices, subtotals, discounts and weights of every cart line."""
    pricing = PriceCalculationService(session)
    shipping = ShippingService(session, currency=pricing.currency)
    try:
        await CustomerService(session).get_customer(customer_id)
        cart = await CartService(session).get_cart(customer_id, store_id)

        lines = []
        for cart_item in cart:
            unit_price = await pricing.get_unit_price(cart_item, include_discounts=True)
            unit_price = pricing.currency.round_if_enabled(unit_price)
            discount_amount, applied = await pricing.get_cart_item_discount_amount(cart_item)
            lines.append(CartLineTotals(
                cart_item_id=cart_item.item.id,
                product_id=cart_item.product.id,
                quantity=cart_item.quantity,
                unit_price=unit_price,
                sub_total=unit_price * cart_item.quantity,
                discount_amount=discount_amount,
                applied_discount_id=applied.id if applied is not None else None,
                weight=await shipping.get_cart_item_weight(cart_item),
            ))
        total_weight = await shipping.get_cart_total_weight(cart)
    except ServiceError as e:
        _handle_service_error(e)

    logger.info("Cart totals calculated", customer_id=customer_id, lines=len(lines))
    return CartTotalsResponse(
        customer_id=customer_id,
        items=lines,
        sub_total=sum((line.sub_total for line in lines), ZERO),
        discount_total=sum((line.discount_amount for line in lines), ZERO),
        total_weight=total_weight,
    )
