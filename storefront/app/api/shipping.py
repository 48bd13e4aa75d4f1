"""
Shipping API: shipping methods, cart weight and shipping options.

- Shipping method lists are cached in Redis per store
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.api.deps import get_cache, get_session
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.logging import get_logger
from storefront.app.models.customer import Address
from storefront.app.schemas import (
    CartWeightResponse,
    ShippingMethodCreate,
    ShippingMethodResponse,
    ShippingOptionResponse,
    ShippingOptionsRequest,
    ShippingOptionsResponse,
)
from storefront.app.services.cache import CacheService
from storefront.app.services.cart import CartService
from storefront.app.services.customers import CustomerService
from storefront.app.services.shipping import ShippingService

router = APIRouter()
logger = get_logger(__name__)


def _handle_service_error(e: ServiceError):
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/methods", response_model=List[ShippingMethodResponse])
async def get_shipping_methods(
    store_id: int = 0,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    cached = await cache.get_shipping_methods(store_id)
    if cached:
        return [ShippingMethodResponse(**m) for m in cached]

    methods = await ShippingService(session).get_all_shipping_methods(store_id)
    data = [ShippingMethodResponse.model_validate(m) for m in methods]
    await cache.set_shipping_methods(store_id, [m.model_dump(mode="json") for m in data])
    return data


@router.post("/methods", response_model=ShippingMethodResponse, status_code=201)
async def create_shipping_method(
    data: ShippingMethodCreate,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = ShippingService(session)
    method = await service.create_shipping_method(**data.model_dump())
    await session.commit()
    await cache.invalidate_shipping_methods()
    logger.info("Shipping method created", shipping_method_id=method.id, name=method.name)
    return method


@router.get("/providers", response_model=List[str])
async def get_active_providers(store_id: int = 0, session: AsyncSession = Depends(get_session)):
    """System names of the active rate computation providers."""
    try:
        providers = await ShippingService(session).load_active_shipping_rate_computation_methods(store_id)
        # A fallback provider may have been activated
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return [p.system_name for p in providers]


@router.get("/cart/{customer_id}/weight", response_model=CartWeightResponse)
async def get_cart_weight(
    customer_id: int,
    store_id: int = 0,
    include_free_shipping_products: bool = True,
    session: AsyncSession = Depends(get_session),
):
    service = ShippingService(session)
    try:
        await CustomerService(session).get_customer(customer_id)
        cart = await CartService(session).get_cart(customer_id, store_id)
        total_weight = await service.get_cart_total_weight(cart, include_free_shipping_products)
        free_shipping = await service.get_free_shipping_applies(cart)
    except ServiceError as e:
        _handle_service_error(e)
    return CartWeightResponse(customer_id=customer_id, total_weight=total_weight, free_shipping=free_shipping)


@router.post("/cart/{customer_id}/options", response_model=ShippingOptionsResponse)
async def get_shipping_options(
    customer_id: int,
    data: ShippingOptionsRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Shipping options for the customer's cart.

    Without an address in the body the customer's stored shipping address is used.
    """
    service = ShippingService(session)
    try:
        customer = await CustomerService(session).get_customer(customer_id)
        cart = await CartService(session).get_cart(customer_id, data.store_id)

        if data.shipping_address is not None:
            address = Address(**data.shipping_address.model_dump())
        elif customer.shipping_address_id:
            address = await session.get(Address, customer.shipping_address_id)
        else:
            address = None

        response = await service.get_shipping_options(
            cart,
            address,
            computation_method_system_name=data.computation_method_system_name,
            store_id=data.store_id,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Shipping options failed", customer_id=customer_id, error=e.message)
        _handle_service_error(e)

    return ShippingOptionsResponse(
        success=response.success,
        shipping_options=[
            ShippingOptionResponse(
                name=o.name,
                description=o.description,
                rate=o.rate,
                shipping_method_id=o.shipping_method_id,
                shipping_rate_computation_method_system_name=o.shipping_rate_computation_method_system_name,
            )
            for o in response.shipping_options
        ],
        errors=response.errors,
    )
