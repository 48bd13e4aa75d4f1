# storefront/app/services/shipping_rates.py
"""
Shipping rate computation providers and the request/response types they share.

Providers are registered by system name in SHIPPING_PROVIDERS; the shipping
service instantiates the active ones per request.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional, Type

from sqlalchemy import or_, select

from storefront.app.core.constants import PERCENT_BASE, SHIPPING_BY_WEIGHT, SHIPPING_FIXED_RATE, ZERO
from storefront.app.core.money import to_decimal
from storefront.app.models.customer import Address, Customer
from storefront.app.models.shipping import ShippingByWeightRecord
from storefront.app.services.cart import OrganizedCartItem

if TYPE_CHECKING:
    from storefront.app.services.shipping import ShippingService


@dataclass
class ShippingOptionRequest:
    items: List[OrganizedCartItem] = field(default_factory=list)
    shipping_address: Optional[Address] = None
    customer: Optional[Customer] = None
    store_id: int = 0


@dataclass
class ShippingOption:
    name: str
    rate: Decimal = ZERO
    description: Optional[str] = None
    shipping_method_id: Optional[int] = None
    shipping_rate_computation_method_system_name: Optional[str] = None


@dataclass
class ShippingOptionResponse:
    shipping_options: List[ShippingOption] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def add_error(self, error: str) -> None:
        self.errors.append(error)


class ShippingRateComputationMethod:
    """Base class of shipping rate providers."""

    system_name: str = ""
    friendly_name: str = ""
    is_active: bool = True

    def __init__(self, shipping_service: "ShippingService"):
        self.shipping = shipping_service
        self.session = shipping_service.session

    async def get_shipping_options(self, request: ShippingOptionRequest) -> ShippingOptionResponse:
        raise NotImplementedError

    async def get_fixed_rate(self, request: ShippingOptionRequest) -> Optional[Decimal]:
        """Rate known without looking at the cart, or None."""
        return None


class FixedRateShippingProvider(ShippingRateComputationMethod):
    """One option per shipping method, priced with the method's fixed rate."""

    system_name = SHIPPING_FIXED_RATE
    friendly_name = "Fixed rate shipping"

    async def get_shipping_options(self, request: ShippingOptionRequest) -> ShippingOptionResponse:
        response = ShippingOptionResponse()
        if not request.items:
            response.add_error("No shipment items")
            return response

        for method in await self.shipping.get_all_shipping_methods(request.store_id):
            response.shipping_options.append(ShippingOption(
                name=method.name,
                description=method.description,
                rate=to_decimal(method.fixed_rate),
                shipping_method_id=method.id,
            ))
        return response

    async def get_fixed_rate(self, request: ShippingOptionRequest) -> Optional[Decimal]:
        methods = await self.shipping.get_all_shipping_methods(request.store_id)
        rates = {to_decimal(m.fixed_rate) for m in methods}
        # Only unambiguous when every method charges the same
        if len(rates) == 1:
            return rates.pop()
        return None


class ByWeightShippingProvider(ShippingRateComputationMethod):
    """
    Rates from weight ranges per shipping method, store and country.

    The charge is either a percentage of the cart subtotal or a fixed amount,
    plus the additional shipping charge of the shipped products.
    """

    system_name = SHIPPING_BY_WEIGHT
    friendly_name = "Shipping by weight"

    async def _find_record(
        self,
        shipping_method_id: int,
        store_id: int,
        country_id: Optional[int],
        weight: Decimal,
    ) -> Optional[ShippingByWeightRecord]:
        query = (
            select(ShippingByWeightRecord)
            .where(
                ShippingByWeightRecord.shipping_method_id == shipping_method_id,
                ShippingByWeightRecord.from_weight <= weight,
                ShippingByWeightRecord.to_weight >= weight,
                or_(ShippingByWeightRecord.store_id == 0, ShippingByWeightRecord.store_id == store_id),
            )
            # Specific store/country rows win over the "all" rows
            .order_by(
                ShippingByWeightRecord.store_id.desc(),
                ShippingByWeightRecord.country_id.desc().nulls_last(),
                ShippingByWeightRecord.from_weight,
            )
        )
        if country_id is None:
            query = query.where(ShippingByWeightRecord.country_id.is_(None))
        else:
            query = query.where(or_(
                ShippingByWeightRecord.country_id.is_(None),
                ShippingByWeightRecord.country_id == country_id,
            ))
        result = await self.session.execute(query)
        return result.scalars().first()

    @staticmethod
    def _additional_charge(items: List[OrganizedCartItem]) -> Decimal:
        total = ZERO
        for item in items:
            if item.product.is_free_shipping:
                continue
            total += to_decimal(item.product.additional_shipping_charge) * item.quantity
        return total

    def _get_rate(self, record: ShippingByWeightRecord, subtotal: Decimal, additional_charge: Decimal) -> Decimal:
        if record.use_percentage:
            rate = subtotal * to_decimal(record.shipping_charge_percentage) / PERCENT_BASE
        else:
            rate = to_decimal(record.shipping_charge_amount)
        rate += additional_charge
        return max(rate, ZERO)

    async def get_shipping_options(self, request: ShippingOptionRequest) -> ShippingOptionResponse:
        response = ShippingOptionResponse()
        if not request.items:
            response.add_error("No shipment items")
            return response
        if request.shipping_address is None:
            response.add_error("Shipping address is not set")
            return response

        weight = await self.shipping.get_cart_total_weight(request.items, include_free_shipping_products=False)
        subtotal = await self.shipping.get_cart_sub_total(request.items)
        additional_charge = self._additional_charge(request.items)
        country_id = request.shipping_address.country_id

        for method in await self.shipping.get_all_shipping_methods(request.store_id):
            record = await self._find_record(method.id, request.store_id, country_id, weight)
            if record is None:
                continue
            response.shipping_options.append(ShippingOption(
                name=method.name,
                description=method.description,
                rate=self._get_rate(record, subtotal, additional_charge),
                shipping_method_id=method.id,
            ))

        if not response.shipping_options:
            response.add_error("No shipping rate is configured for the cart weight and destination")
        return response


SHIPPING_PROVIDERS: List[Type[ShippingRateComputationMethod]] = [
    FixedRateShippingProvider,
    ByWeightShippingProvider,
]
