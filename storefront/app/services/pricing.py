# storefront/app/services/pricing.py
"""
Price calculation: special and tier prices, discounts, bundles, attribute
adjustments, base price info and cart line prices.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.base import utcnow
from storefront.app.core.constants import (
    ATTRIBUTE_VALUE_PRODUCT_LINKAGE,
    ATTRIBUTE_VALUE_SIMPLE,
    MAX_QUANTITY,
    PERCENT_BASE,
    PRODUCT_TYPE_BUNDLE,
    PRODUCT_TYPE_GROUPED,
    PRODUCT_TYPE_SIMPLE,
    TIER_PRICE_FIXED,
    TIER_PRICE_PERCENTAL,
    ZERO,
)
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.metrics import price_calculations_total
from storefront.app.core.money import Currency, to_decimal
from storefront.app.core.settings import get_settings
from storefront.app.models.customer import Customer
from storefront.app.models.discount import Discount
from storefront.app.models.product import Product, ProductBundleItem, TierPrice
from storefront.app.models.attributes import ProductVariantAttributeValue
from storefront.app.models.settings import GlobalSettings
from storefront.app.services.attributes import AttributeSelection, AttributeService
from storefront.app.services.cart import BundleItemData, OrganizedCartItem
from storefront.app.services.customers import CustomerService
from storefront.app.services.discounts import (
    DiscountService,
    get_discount_amount as discount_amount_of,
    get_preferred_discount,
)
from storefront.app.services.settings import get_global_settings

BASE_PRICE_INFO_TEMPLATE = "Contents: {amount} {unit} ({price} / {base_amount} {unit})"


class PricingServiceError(ServiceError):
    pass


class GroupedProductPriceError(PricingServiceError):
    def __init__(self, product_id: int):
        super().__init__(
            f"Product {product_id} is a grouped product; use the lowest price of its associated products",
            400,
        )


class ProductNotFoundError(PricingServiceError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", 404)


@dataclass
class PriceCalculationContext:
    """
    Per-request lookup cache for price calculations.

    Listing many products repeats the same tier price, attribute and discount
    queries; a shared context runs each of them once.
    """
    products: Dict[int, Optional[Product]] = field(default_factory=dict)
    tier_prices: Dict[int, List[TierPrice]] = field(default_factory=dict)
    attribute_values: Dict[int, List[ProductVariantAttributeValue]] = field(default_factory=dict)
    bundle_items: Dict[int, List[ProductBundleItem]] = field(default_factory=dict)
    role_ids: Dict[int, List[int]] = field(default_factory=dict)
    allowed_discounts: Dict[Tuple[int, Optional[int]], List[Discount]] = field(default_factory=dict)


@dataclass
class FinalPrice:
    """Unit price plus the discount actually subtracted from it."""
    price: Decimal
    discount_amount: Decimal = ZERO
    applied_discount: Optional[Discount] = None


def remove_duplicated_quantities(tier_prices: Iterable[TierPrice]) -> List[TierPrice]:
    """Keep the cheapest tier per quantity, ordered by quantity."""
    by_quantity: Dict[int, TierPrice] = {}
    for tier in tier_prices:
        current = by_quantity.get(tier.quantity)
        if current is None or to_decimal(tier.price) < to_decimal(current.price):
            by_quantity[tier.quantity] = tier
    return [by_quantity[q] for q in sorted(by_quantity)]


def format_decimal(value) -> str:
    """Render a decimal without trailing zeros (500.0000 -> 500)."""
    value = to_decimal(value)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value.normalize(), "f")


class PriceCalculationService:
    def __init__(
        self,
        session: AsyncSession,
        catalog_settings: Optional[GlobalSettings] = None,
        currency: Optional[Currency] = None,
        store_id: Optional[int] = None,
    ):
        self.session = session
        self._settings = catalog_settings
        self.currency = currency or Currency.from_settings(get_settings())
        self.store_id = get_settings().DEFAULT_STORE_ID if store_id is None else store_id
        self.discounts = DiscountService(session, catalog_settings)
        self.attributes = AttributeService(session)

    async def _get_settings(self) -> GlobalSettings:
        if self._settings is None:
            self._settings = await get_global_settings(self.session)
            self.discounts._settings = self._settings
        return self._settings

    async def get_product(self, product_id: int) -> Product:
        product = await self.session.get(Product, product_id)
        if product is None or product.deleted:
            raise ProductNotFoundError(product_id)
        return product

    # ------------------------------------------------------------------
    # Cached lookups
    # ------------------------------------------------------------------

    async def _get_product(self, product_id: int, context: PriceCalculationContext) -> Optional[Product]:
        if product_id not in context.products:
            context.products[product_id] = await self.session.get(Product, product_id)
        return context.products[product_id]

    async def _get_role_ids(self, customer: Optional[Customer], context: PriceCalculationContext) -> List[int]:
        if customer is None:
            return []
        if customer.id not in context.role_ids:
            context.role_ids[customer.id] = await CustomerService(self.session).get_role_ids(customer.id)
        return context.role_ids[customer.id]

    async def _get_attribute_values(
        self, product_id: int, context: PriceCalculationContext
    ) -> List[ProductVariantAttributeValue]:
        if product_id not in context.attribute_values:
            context.attribute_values[product_id] = await self.attributes.get_attribute_values(product_id)
        return context.attribute_values[product_id]

    async def _get_bundle_items(self, product: Product, context: PriceCalculationContext) -> List[BundleItemData]:
        if product.id not in context.bundle_items:
            result = await self.session.execute(
                select(ProductBundleItem)
                .where(
                    ProductBundleItem.bundle_product_id == product.id,
                    ProductBundleItem.published.is_(True),
                )
                .order_by(ProductBundleItem.display_order, ProductBundleItem.id)
            )
            context.bundle_items[product.id] = list(result.scalars().all())

        items = []
        for bundle_item in context.bundle_items[product.id]:
            item_product = await self._get_product(bundle_item.product_id, context)
            if item_product is None or item_product.deleted:
                continue
            items.append(BundleItemData(item=bundle_item, product=item_product, bundle_product=product))
        return items

    async def _get_tier_prices(
        self, product: Product, customer: Optional[Customer], context: PriceCalculationContext
    ) -> List[TierPrice]:
        """Tier prices for the current store and the customer's roles."""
        settings = await self._get_settings()
        if not product.has_tier_prices or settings.ignore_tier_prices:
            return []

        if product.id not in context.tier_prices:
            result = await self.session.execute(
                select(TierPrice).where(TierPrice.product_id == product.id).order_by(TierPrice.quantity, TierPrice.id)
            )
            context.tier_prices[product.id] = list(result.scalars().all())

        role_ids = await self._get_role_ids(customer, context)
        applicable = [
            t for t in context.tier_prices[product.id]
            if (t.store_id == 0 or t.store_id == self.store_id)
            and (t.customer_role_id is None or t.customer_role_id in role_ids)
        ]
        return remove_duplicated_quantities(applicable)

    async def _get_allowed_discounts(
        self, product: Product, customer: Optional[Customer], context: PriceCalculationContext
    ) -> List[Discount]:
        key = (product.id, customer.id if customer else None)
        if key not in context.allowed_discounts:
            await self._get_settings()
            role_ids = await self._get_role_ids(customer, context)
            context.allowed_discounts[key] = await self.discounts.get_allowed_discounts(
                product, customer, role_ids=role_ids
            )
        return context.allowed_discounts[key]

    # ------------------------------------------------------------------
    # Tier prices
    # ------------------------------------------------------------------

    async def _get_minimum_tier_price(
        self,
        product: Product,
        customer: Optional[Customer],
        quantity: int,
        context: PriceCalculationContext,
    ) -> Optional[Decimal]:
        price = None
        base_price = to_decimal(product.price)
        for tier in await self._get_tier_prices(product, customer, context):
            if quantity < tier.quantity:
                continue
            tier_price = to_decimal(tier.price)
            if tier.calculation_method == TIER_PRICE_FIXED:
                price = tier_price
            elif tier.calculation_method == TIER_PRICE_PERCENTAL:
                price = base_price - (base_price / PERCENT_BASE * tier_price)
            else:
                price = base_price - tier_price
        return price

    async def _get_tier_price_attribute_adjustment(
        self,
        product: Product,
        customer: Optional[Customer],
        quantity: int,
        context: PriceCalculationContext,
        adjustment: Decimal,
    ) -> Decimal:
        """Reduction of an attribute price adjustment by the applicable percental tier."""
        reduction = ZERO
        for tier in await self._get_tier_prices(product, customer, context):
            if quantity < tier.quantity:
                continue
            if tier.calculation_method == TIER_PRICE_PERCENTAL:
                reduction = adjustment / PERCENT_BASE * to_decimal(tier.price)
            else:
                reduction = ZERO
        return reduction

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def get_special_price(self, product: Product, now: Optional[datetime] = None) -> Optional[Decimal]:
        """Special price of the product, or None when unset or outside its date window."""
        if product.special_price is None:
            return None
        now = now or utcnow()
        if product.special_price_start_utc is not None and product.special_price_start_utc > now:
            return None
        if product.special_price_end_utc is not None and product.special_price_end_utc < now:
            return None
        return to_decimal(product.special_price)

    async def get_product_cost(self, product: Product, selection: Optional[AttributeSelection] = None) -> Decimal:
        """Product cost plus the cost of products linked through selected attribute values."""
        result = to_decimal(product.product_cost)
        if selection is None or not selection.has_attributes:
            return result

        values = await self.attributes.materialize_values(selection, product.id)
        for value in values:
            if value.value_type != ATTRIBUTE_VALUE_PRODUCT_LINKAGE or value.linked_product_id is None:
                continue
            linked = await self.session.get(Product, value.linked_product_id)
            if linked is not None:
                result += to_decimal(linked.product_cost) * value.quantity
        return result

    async def get_final_price(
        self,
        product: Product,
        additional_charge=None,
        customer: Optional[Customer] = None,
        include_discounts: bool = True,
        quantity: int = 1,
        bundle_item: Optional[BundleItemData] = None,
        context: Optional[PriceCalculationContext] = None,
        is_tier_price: bool = False,
    ) -> Decimal:
        """Final price of one unit, see `get_final_price_details`."""
        details = await self.get_final_price_details(
            product, additional_charge, customer, include_discounts, quantity, bundle_item, context, is_tier_price
        )
        return details.price

    async def get_final_price_details(
        self,
        product: Product,
        additional_charge=None,
        customer: Optional[Customer] = None,
        include_discounts: bool = True,
        quantity: int = 1,
        bundle_item: Optional[BundleItemData] = None,
        context: Optional[PriceCalculationContext] = None,
        is_tier_price: bool = False,
    ) -> FinalPrice:
        """
        Final price of one unit and the discount that went into it.

        Special price wins over the regular price. A tier price applies when
        discounts are included (never for bundle items) and is lower than the
        current price; whether a discount may still apply on top of it depends
        on `apply_percentage_discount_on_tier_price`. The additional charge is
        added before the discount is subtracted. Never negative.
        """
        context = context or PriceCalculationContext()
        settings = await self._get_settings()

        special_price = self.get_special_price(product)
        result = special_price if special_price is not None else to_decimal(product.price)

        if is_tier_price:
            include_discounts = True

        if product.has_tier_prices and include_discounts and bundle_item is None:
            tier_price = await self._get_minimum_tier_price(product, customer, quantity, context)
            if tier_price is not None:
                if settings.apply_percentage_discount_on_tier_price and not is_tier_price:
                    discount_test, _ = await self.get_discount_amount(
                        product, additional_charge, customer, quantity, bundle_item, context
                    )
                    if tier_price < result - discount_test:
                        include_discounts = False
                        result = min(result, tier_price)
                else:
                    include_discounts = False
                    result = min(result, tier_price)

        if additional_charge is not None:
            result += to_decimal(additional_charge)

        discount, applied = ZERO, None
        if include_discounts:
            discount, applied = await self.get_discount_amount(
                product, additional_charge, customer, quantity, bundle_item, context
            )
            result -= discount

        if result < ZERO:
            result = ZERO
        return FinalPrice(price=result, discount_amount=discount, applied_discount=applied if discount else None)

    async def get_final_price_for_bundle(
        self,
        product: Product,
        bundle_items: Optional[Sequence[BundleItemData]] = None,
        additional_charge=None,
        customer: Optional[Customer] = None,
        include_discounts: bool = True,
        quantity: int = 1,
        bundle_item: Optional[BundleItemData] = None,
        context: Optional[PriceCalculationContext] = None,
    ) -> Decimal:
        """Per-item priced bundles sum their items; anything else is a plain final price."""
        context = context or PriceCalculationContext()
        if product.product_type == PRODUCT_TYPE_BUNDLE and product.bundle_per_item_pricing:
            if bundle_items is None:
                bundle_items = await self._get_bundle_items(product, context)
            result = ZERO
            for item_data in bundle_items:
                item_price = await self.get_final_price(
                    item_data.product,
                    item_data.additional_charge,
                    customer,
                    include_discounts,
                    1,
                    item_data,
                    context,
                )
                result += item_price * item_data.quantity
            return max(result, ZERO)

        return await self.get_final_price(
            product, additional_charge, customer, include_discounts, quantity, bundle_item, context
        )

    async def get_discount_amount(
        self,
        product: Product,
        additional_charge=None,
        customer: Optional[Customer] = None,
        quantity: int = 1,
        bundle_item: Optional[BundleItemData] = None,
        context: Optional[PriceCalculationContext] = None,
        final_price=None,
    ) -> Tuple[Decimal, Optional[Discount]]:
        """
        Discount amount for one unit and the discount that produced it.

        `final_price` is the price without discounts; it is computed when
        not given.
        """
        context = context or PriceCalculationContext()
        applied: Optional[Discount] = None
        amount = ZERO

        if bundle_item is not None:
            if bundle_item.has_discount and bundle_item.bundle_product.bundle_per_item_pricing:
                applied = Discount(
                    name=f"Bundle item {bundle_item.item.id}",
                    use_percentage=bundle_item.item.discount_percentage,
                    discount_percentage=to_decimal(bundle_item.item.discount),
                    discount_amount=to_decimal(bundle_item.item.discount),
                )
                if final_price is None:
                    final_price = await self.get_final_price(
                        product, additional_charge, customer, False, quantity, bundle_item, context
                    )
                amount = discount_amount_of(applied, final_price)
        else:
            allowed = await self._get_allowed_discounts(product, customer, context)
            if allowed:
                if final_price is None:
                    final_price = await self.get_final_price(
                        product, additional_charge, customer, False, quantity, bundle_item, context
                    )
                applied = get_preferred_discount(allowed, final_price)
                if applied is not None:
                    amount = discount_amount_of(applied, final_price)

        return amount, applied

    async def get_cart_item_discount_amount(self, cart_item: OrganizedCartItem) -> Tuple[Decimal, Optional[Discount]]:
        """Discount of a whole cart line: per-unit discount with attribute adjustments times quantity."""
        context = PriceCalculationContext()
        product = cart_item.product
        customer = cart_item.customer
        quantity = cart_item.quantity

        attributes_total = ZERO
        for value in await self.attributes.materialize_values(cart_item.selection, product.id):
            attributes_total += await self.get_attribute_value_price_adjustment(
                value, product, customer, context, quantity
            )

        amount, applied = await self.get_discount_amount(product, attributes_total, customer, quantity, None, context)
        price_calculations_total.labels(operation="cart_item_discount").inc()
        return self.currency.round_if_enabled(amount * quantity), applied

    async def get_attribute_value_price_adjustment(
        self,
        value: ProductVariantAttributeValue,
        product: Product,
        customer: Optional[Customer],
        context: Optional[PriceCalculationContext] = None,
        quantity: int = 1,
    ) -> Decimal:
        """
        Price adjustment of one attribute value.

        Simple values use their own adjustment (reduced by a percental tier
        price when more than one unit is bought). Linked products cost their
        final price times the value quantity.
        """
        context = context or PriceCalculationContext()
        result = ZERO

        if value.value_type == ATTRIBUTE_VALUE_SIMPLE:
            adjustment = to_decimal(value.price_adjustment)
            result = adjustment
            if quantity > 1 and adjustment > ZERO:
                reduction = await self._get_tier_price_attribute_adjustment(
                    product, customer, quantity, context, adjustment
                )
                if reduction != ZERO:
                    result = adjustment - reduction
        elif value.value_type == ATTRIBUTE_VALUE_PRODUCT_LINKAGE and value.linked_product_id is not None:
            linked = await self._get_product(value.linked_product_id, context)
            if linked is not None:
                linked_price = await self.get_final_price(linked, None, customer, context=context)
                result = linked_price * value.quantity

        return result

    async def get_preselected_price(
        self,
        product: Product,
        customer: Optional[Customer] = None,
        context: Optional[PriceCalculationContext] = None,
    ) -> Decimal:
        """Initial price with preselected attribute values (or bundle items) applied."""
        context = context or PriceCalculationContext()
        return await self._get_preselected_price(product, customer, context)

    async def _get_preselected_price(
        self,
        product: Product,
        customer: Optional[Customer],
        context: PriceCalculationContext,
        bundle_item: Optional[BundleItemData] = None,
    ) -> Decimal:
        if product.product_type == PRODUCT_TYPE_BUNDLE and product.bundle_per_item_pricing:
            result = ZERO
            for item_data in await self._get_bundle_items(product, context):
                if item_data.product.product_type != PRODUCT_TYPE_SIMPLE:
                    continue
                item_price = await self._get_preselected_price(item_data.product, customer, context, item_data)
                result += item_price * item_data.quantity
            return result

        attributes_total = ZERO
        for value in await self._get_attribute_values(product.id, context):
            if value.is_preselected:
                attributes_total += await self.get_attribute_value_price_adjustment(
                    value, product, customer, context, 1
                )

        if bundle_item is not None:
            bundle_item.additional_charge = attributes_total

        return await self.get_final_price(product, attributes_total, customer, True, 1, bundle_item, context)

    async def get_lowest_price(
        self,
        product: Product,
        customer: Optional[Customer] = None,
        context: Optional[PriceCalculationContext] = None,
    ) -> Tuple[Decimal, bool]:
        """
        Lowest possible price of a product and whether to show it as "from".

        Grouped products have no price of their own; see
        `get_lowest_price_of_grouped`.
        """
        if product.product_type == PRODUCT_TYPE_GROUPED:
            raise GroupedProductPriceError(product.id)

        context = context or PriceCalculationContext()
        display_from = False

        lowest = await self.get_final_price(product, None, customer, True, MAX_QUANTITY, None, context)

        combination_price = product.lowest_attribute_combination_price
        if combination_price is not None and to_decimal(combination_price) < lowest:
            lowest = to_decimal(combination_price)
            display_from = True

        if lowest == ZERO and to_decimal(product.price) == ZERO:
            lowest = to_decimal(combination_price)

        if not display_from and product.product_type != PRODUCT_TYPE_BUNDLE:
            values = await self._get_attribute_values(product.id, context)
            display_from = any(to_decimal(v.price_adjustment) != ZERO for v in values)

        if not display_from and product.has_tier_prices and not product.bundle_per_item_pricing:
            tiers = await self._get_tier_prices(product, customer, context)
            display_from = bool(tiers) and not (len(tiers) == 1 and tiers[0].quantity <= 1)

        price_calculations_total.labels(operation="lowest_price").inc()
        return lowest, display_from

    async def get_associated_products(self, product: Product) -> List[Product]:
        result = await self.session.execute(
            select(Product)
            .where(
                Product.parent_grouped_product_id == product.id,
                Product.published.is_(True),
                Product.deleted.is_(False),
            )
            .order_by(Product.display_order, Product.id)
        )
        return list(result.scalars().all())

    async def get_lowest_price_of_grouped(
        self,
        product: Product,
        customer: Optional[Customer] = None,
        context: Optional[PriceCalculationContext] = None,
        associated_products: Optional[Sequence[Product]] = None,
    ) -> Tuple[Optional[Decimal], Optional[Product]]:
        """Lowest price among the products of a grouped product and the product that has it."""
        context = context or PriceCalculationContext()
        if associated_products is None:
            associated_products = await self.get_associated_products(product)

        lowest_price: Optional[Decimal] = None
        lowest_product: Optional[Product] = None
        for associated in associated_products:
            price = await self.get_final_price(associated, None, customer, True, MAX_QUANTITY, None, context)
            combination_price = associated.lowest_attribute_combination_price
            if combination_price is not None and to_decimal(combination_price) < price:
                price = to_decimal(combination_price)
            if lowest_price is None or price < lowest_price:
                lowest_price = price
                lowest_product = associated

        price_calculations_total.labels(operation="lowest_price_grouped").inc()
        return lowest_price, lowest_product

    # ------------------------------------------------------------------
    # Base price
    # ------------------------------------------------------------------

    def get_base_price_info(self, product: Product, product_price, currency: Optional[Currency] = None) -> str:
        """
        "Contents: 500 ml (2.00 EUR / 1000 ml)" style info, or "" when the
        product has no base price.
        """
        if not product.base_price_has_value or to_decimal(product.base_price_amount) == ZERO:
            return ""

        currency = currency or self.currency
        amount = to_decimal(product.base_price_amount)
        value = to_decimal(product_price) / amount * product.base_price_base_amount
        return BASE_PRICE_INFO_TEMPLATE.format(
            amount=format_decimal(amount),
            unit=product.base_price_measure_unit or "",
            price=currency.format(value),
            base_amount=product.base_price_base_amount,
        )

    async def get_base_price_info_for(
        self,
        product: Product,
        customer: Optional[Customer] = None,
        currency: Optional[Currency] = None,
        price_adjustment=None,
    ) -> str:
        if not product.base_price_has_value or to_decimal(product.base_price_amount) == ZERO:
            return ""

        price = await self.get_final_price(product, None, customer, True)
        if price_adjustment is not None:
            price += to_decimal(price_adjustment)

        price_calculations_total.labels(operation="base_price_info").inc()
        return self.get_base_price_info(product, price, currency)

    # ------------------------------------------------------------------
    # Cart lines
    # ------------------------------------------------------------------

    async def _attributes_total(
        self, cart_item: OrganizedCartItem, context: PriceCalculationContext
    ) -> Decimal:
        total = ZERO
        for value in await self.attributes.materialize_values(cart_item.selection, cart_item.product.id):
            total += await self.get_attribute_value_price_adjustment(
                value, cart_item.product, cart_item.customer, context, cart_item.quantity
            )
        return total

    async def get_unit_price(self, cart_item: OrganizedCartItem, include_discounts: bool = True) -> Decimal:
        """Unit price of a cart line, rounded for the working currency."""
        product = cart_item.product
        customer = cart_item.customer
        context = PriceCalculationContext()

        if product.customer_enters_price:
            result = to_decimal(cart_item.item.customer_entered_price)
        elif product.product_type == PRODUCT_TYPE_BUNDLE and product.bundle_per_item_pricing:
            bundle_items = []
            for child in cart_item.child_items:
                if child.bundle_item is None:
                    continue
                child.bundle_item.additional_charge = await self._attributes_total(child, context)
                bundle_items.append(child.bundle_item)
            result = await self.get_final_price_for_bundle(
                product, bundle_items, None, customer, include_discounts, cart_item.quantity, None, context
            )
        else:
            attributes_total = await self._attributes_total(cart_item, context)
            result = await self.get_final_price(
                product, attributes_total, customer, include_discounts, cart_item.quantity, cart_item.bundle_item, context
            )

        price_calculations_total.labels(operation="unit_price").inc()
        return self.currency.round_if_enabled(result)

    async def get_sub_total(self, cart_item: OrganizedCartItem, include_discounts: bool = True) -> Decimal:
        unit_price = await self.get_unit_price(cart_item, include_discounts)
        return unit_price * cart_item.quantity
