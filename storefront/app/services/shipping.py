# storefront/app/services/shipping.py
"""
Shipping service: cart weights, active rate providers and shipping options.
"""
from decimal import Decimal
from typing import List, Optional, Sequence, Type

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.constants import ATTRIBUTE_VALUE_PRODUCT_LINKAGE, ZERO
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.logging import get_logger
from storefront.app.core.metrics import shipping_option_requests_total
from storefront.app.core.money import Currency, to_decimal
from storefront.app.core.settings import get_settings
from storefront.app.models.customer import Address, Customer
from storefront.app.models.product import Product
from storefront.app.models.settings import GlobalSettings
from storefront.app.models.shipping import ShippingMethod
from storefront.app.services.attributes import AttributeService
from storefront.app.services.cart import OrganizedCartItem
from storefront.app.services.pricing import PriceCalculationService
from storefront.app.services.settings import get_global_settings, set_active_shipping_methods
from storefront.app.services.shipping_rates import (
    SHIPPING_PROVIDERS,
    ShippingOptionRequest,
    ShippingOptionResponse,
    ShippingRateComputationMethod,
)

logger = get_logger(__name__)

SHIPPING_OPTION_NOT_LOADED = "Shipping option could not be loaded"


class ShippingServiceError(ServiceError):
    pass


class NoShippingProviderError(ShippingServiceError):
    def __init__(self):
        super().__init__("At least one shipping rate computation method provider is required", 409)


class ShippingMethodNotLoadedError(ShippingServiceError):
    def __init__(self, system_name: Optional[str] = None):
        message = "Could not load shipping rate computation method"
        if system_name:
            message = f"{message} {system_name}"
        super().__init__(message, 404)


class ShippingService:
    def __init__(
        self,
        session: AsyncSession,
        providers: Optional[Sequence[Type[ShippingRateComputationMethod]]] = None,
        shipping_settings: Optional[GlobalSettings] = None,
        currency: Optional[Currency] = None,
    ):
        self.session = session
        self.provider_types = list(SHIPPING_PROVIDERS if providers is None else providers)
        self._settings = shipping_settings
        self.currency = currency or Currency.from_settings(get_settings())
        self.attributes = AttributeService(session)

    async def _get_settings(self) -> GlobalSettings:
        if self._settings is None:
            self._settings = await get_global_settings(self.session)
        return self._settings

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    async def get_cart_item_attributes_weight(
        self, cart_item: OrganizedCartItem, multiplied_by_quantity: bool = True
    ) -> Decimal:
        """
        Weight added by the selected attribute values of one cart line.

        Plain values add their weight adjustment; product linkage values add
        the weight of the linked product when it ships. `multiplied_by_quantity`
        refers to the value quantity, not the cart quantity.
        """
        weight = ZERO
        values = await self.attributes.materialize_values(cart_item.selection, cart_item.product.id)
        for value in values:
            value_quantity = value.quantity if multiplied_by_quantity else 1
            if value.value_type != ATTRIBUTE_VALUE_PRODUCT_LINKAGE:
                weight += to_decimal(value.weight_adjustment) * value_quantity
            elif value.linked_product_id is not None:
                linked = await self.session.get(Product, value.linked_product_id)
                if linked is not None and linked.is_shipping_enabled:
                    weight += to_decimal(linked.weight) * value.quantity
        return weight

    async def get_cart_item_weight(
        self, cart_item: OrganizedCartItem, multiplied_by_quantity: bool = True
    ) -> Decimal:
        if cart_item.product is None:
            return ZERO

        attributes_weight = ZERO
        if cart_item.selection.has_attributes:
            attributes_weight = await self.get_cart_item_attributes_weight(cart_item, multiplied_by_quantity=False)

        weight = to_decimal(cart_item.product.weight) + attributes_weight
        if multiplied_by_quantity:
            return weight * cart_item.quantity
        return weight

    async def get_cart_total_weight(
        self, cart: Sequence[OrganizedCartItem], include_free_shipping_products: bool = True
    ) -> Decimal:
        """
        Weight of the whole cart plus the customer's checkout attributes.

        Unlike a single line weight, attribute weight adjustments count once
        per unit of the attribute value quantity.
        """
        total = ZERO
        customer: Optional[Customer] = None
        for cart_item in cart:
            customer = customer or cart_item.customer
            if cart_item.product is None:
                continue
            if not include_free_shipping_products and cart_item.product.is_free_shipping:
                continue
            weight = to_decimal(cart_item.product.weight)
            if cart_item.selection.has_attributes:
                weight += await self.get_cart_item_attributes_weight(cart_item)
            total += weight * cart_item.quantity

        if customer is not None and customer.checkout_attribute_value_ids:
            values = await self.attributes.materialize_checkout_attribute_values(
                customer.checkout_attribute_value_ids
            )
            total += sum((to_decimal(v.weight_adjustment) for v in values), ZERO)

        return total

    async def get_cart_sub_total(self, cart: Sequence[OrganizedCartItem]) -> Decimal:
        """Subtotal of the shipped lines, discounts included."""
        pricing = PriceCalculationService(self.session, currency=self.currency)
        total = ZERO
        for cart_item in cart:
            total += await pricing.get_sub_total(cart_item, include_discounts=True)
        return total

    async def get_free_shipping_applies(self, cart: Sequence[OrganizedCartItem]) -> bool:
        """True when no shipped line is charged or the subtotal reaches the free shipping threshold."""
        shipped = [i for i in cart if i.product.is_shipping_enabled]
        if all(i.product.is_free_shipping for i in shipped):
            return True

        settings = await self._get_settings()
        if settings.free_shipping_over_amount is None:
            return False
        subtotal = await self.get_cart_sub_total(shipped)
        return subtotal >= to_decimal(settings.free_shipping_over_amount)

    # ------------------------------------------------------------------
    # Providers and methods
    # ------------------------------------------------------------------

    async def load_active_shipping_rate_computation_methods(
        self, store_id: int = 0, system_name: Optional[str] = None
    ) -> List[ShippingRateComputationMethod]:
        """
        Providers that are switched on in the settings, optionally only the
        one named `system_name`.

        When none is switched on, the first active provider (or the first one
        at all) becomes the active one and the settings are saved. The name
        filter applies to the result, so looking up a provider that is not
        active returns an empty list and leaves the settings alone.
        """
        active = await self._load_active_providers(store_id)
        if system_name:
            return [p for p in active if p.system_name.casefold() == system_name.casefold()]
        return active

    async def _load_active_providers(self, store_id: int) -> List[ShippingRateComputationMethod]:
        settings = await self._get_settings()
        all_providers = [p(self) for p in self.provider_types]

        active_names = {n.casefold() for n in (settings.active_shipping_rate_computation_methods or [])}
        active = [p for p in all_providers if p.is_active and p.system_name.casefold() in active_names]
        if active:
            return active

        fallback = next((p for p in all_providers if p.is_active), None)
        if fallback is None and all_providers:
            fallback = all_providers[0]
        if fallback is not None:
            await set_active_shipping_methods(self.session, [fallback.system_name], settings)
            logger.info(
                "Activated fallback shipping rate computation method",
                system_name=fallback.system_name,
                store_id=store_id,
            )
            return [fallback]

        raise NoShippingProviderError()

    async def get_all_shipping_methods(self, store_id: int = 0) -> List[ShippingMethod]:
        result = await self.session.execute(
            select(ShippingMethod).order_by(ShippingMethod.display_order, ShippingMethod.id)
        )
        methods = result.scalars().all()
        return [m for m in methods if m.is_available_in_store(store_id)]

    async def create_shipping_method(self, name: str, **fields) -> ShippingMethod:
        method = ShippingMethod(name=name, **fields)
        self.session.add(method)
        await self.session.flush()
        return method

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    async def get_shipping_options(
        self,
        cart: Sequence[OrganizedCartItem],
        shipping_address: Optional[Address],
        computation_method_system_name: str = "",
        store_id: int = 0,
    ) -> ShippingOptionResponse:
        """
        Collect the shipping options of every active provider.

        Provider errors are reported unless other providers returned valid
        options and the store is configured to prefer those.
        """
        providers = [
            p for p in await self.load_active_shipping_rate_computation_methods(store_id)
            if not computation_method_system_name or p.system_name == computation_method_system_name
        ]
        if not providers:
            shipping_option_requests_total.labels(result="no_provider").inc()
            raise ShippingMethodNotLoadedError(computation_method_system_name)

        customer = next((i.customer for i in cart if i.customer is not None), None)
        request = ShippingOptionRequest(
            items=[i for i in cart if i.product.is_shipping_enabled],
            shipping_address=shipping_address,
            customer=customer,
            store_id=store_id,
        )

        result = ShippingOptionResponse()
        for provider in providers:
            response = await provider.get_shipping_options(request)
            for option in response.shipping_options:
                option.shipping_rate_computation_method_system_name = provider.system_name
                option.rate = self.currency.round_if_enabled(option.rate)
                result.shipping_options.append(option)

            if not response.success:
                for error in response.errors:
                    result.add_error(error)
                    if request.items:
                        logger.warning(
                            "Shipping provider error",
                            system_name=provider.system_name,
                            error=error,
                        )

        settings = await self._get_settings()
        if settings.return_valid_options_if_there_are_any and result.shipping_options and result.errors:
            result.errors.clear()

        if not result.shipping_options and not result.errors:
            result.add_error(SHIPPING_OPTION_NOT_LOADED)

        shipping_option_requests_total.labels(result="success" if result.success else "error").inc()
        return result
