"""
Tests for PriceCalculationService.

Tests cover:
- Special prices and their date window
- Tier prices (fixed, percental, per role, per store)
- Product and category discounts on top of tier prices
- Per-item priced bundles and bundle item discounts
- Lowest price and "from" flag, grouped products
- Attribute price adjustments, preselected price, product cost
- Cart line unit prices, subtotals and discounts
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.app.core.base import utcnow
from storefront.app.services.attributes import AttributeSelection
from storefront.app.services.cart import CartService
from storefront.app.services.pricing import GroupedProductPriceError, PriceCalculationService
from storefront.app.services.settings import get_global_settings
from storefront.tests.conftest import (
    add_product_to_category,
    assign_discount_to_category,
    assign_discount_to_product,
    make_attribute,
    make_bundle_item,
    make_category,
    make_customer,
    make_discount,
    make_product,
    make_role,
    make_tier_price,
)


@pytest.fixture
def pricing(test_session, currency) -> PriceCalculationService:
    return PriceCalculationService(test_session, currency=currency, store_id=1)


# ============================================
# SPECIAL AND TIER PRICES
# ============================================

@pytest.mark.asyncio
async def test_final_price_is_product_price(pricing, test_product):
    assert await pricing.get_final_price(test_product) == Decimal("100")


@pytest.mark.asyncio
async def test_special_price_inside_window(pricing, test_session):
    now = utcnow()
    product = await make_product(
        test_session,
        special_price=Decimal("80"),
        special_price_start_utc=now - timedelta(days=1),
        special_price_end_utc=now + timedelta(days=1),
    )
    assert pricing.get_special_price(product) == Decimal("80")
    assert await pricing.get_final_price(product) == Decimal("80")


@pytest.mark.asyncio
async def test_special_price_outside_window_is_ignored(pricing, test_session):
    now = utcnow()
    product = await make_product(
        test_session,
        special_price=Decimal("80"),
        special_price_start_utc=now + timedelta(days=1),
    )
    assert pricing.get_special_price(product) is None
    assert await pricing.get_final_price(product) == Decimal("100")

    expired = await make_product(
        test_session,
        special_price=Decimal("80"),
        special_price_end_utc=now - timedelta(days=1),
    )
    assert pricing.get_special_price(expired) is None


@pytest.mark.asyncio
async def test_fixed_tier_prices_by_quantity(pricing, test_session, test_product):
    await make_tier_price(test_session, test_product, 5, "90")
    await make_tier_price(test_session, test_product, 10, "80")

    assert await pricing.get_final_price(test_product, quantity=1) == Decimal("100")
    assert await pricing.get_final_price(test_product, quantity=5) == Decimal("90")
    assert await pricing.get_final_price(test_product, quantity=12) == Decimal("80")


@pytest.mark.asyncio
async def test_percental_and_adjustment_tier_prices(pricing, test_session):
    percental = await make_product(test_session)
    await make_tier_price(test_session, percental, 2, "10", calculation_method="percental")
    assert await pricing.get_final_price(percental, quantity=2) == Decimal("90")

    adjusted = await make_product(test_session)
    await make_tier_price(test_session, adjusted, 2, "15", calculation_method="adjustment")
    assert await pricing.get_final_price(adjusted, quantity=2) == Decimal("85")


@pytest.mark.asyncio
async def test_duplicated_tier_quantity_keeps_lowest_price(pricing, test_session, test_product):
    await make_tier_price(test_session, test_product, 3, "95")
    await make_tier_price(test_session, test_product, 3, "92")
    assert await pricing.get_final_price(test_product, quantity=3) == Decimal("92")


@pytest.mark.asyncio
async def test_tier_price_limited_to_role(pricing, test_session, test_product):
    wholesale = await make_role(test_session, "Wholesale")
    await make_tier_price(test_session, test_product, 1, "70", customer_role_id=wholesale.id)

    retail_customer = await make_customer(test_session, username="retail", email="retail@example.com")
    wholesale_customer = await make_customer(
        test_session, roles=[wholesale], username="wholesale", email="wholesale@example.com"
    )

    assert await pricing.get_final_price(test_product, customer=retail_customer) == Decimal("100")
    assert await pricing.get_final_price(test_product, customer=wholesale_customer) == Decimal("70")


@pytest.mark.asyncio
async def test_tier_price_limited_to_other_store(pricing, test_session, test_product):
    await make_tier_price(test_session, test_product, 1, "70", store_id=2)
    assert await pricing.get_final_price(test_product) == Decimal("100")


@pytest.mark.asyncio
async def test_tier_prices_ignored_by_settings(pricing, test_session, test_product):
    await make_tier_price(test_session, test_product, 1, "70")
    settings = await get_global_settings(test_session)
    settings.ignore_tier_prices = True
    await test_session.commit()

    assert await pricing.get_final_price(test_product) == Decimal("100")


# ============================================
# DISCOUNTS
# ============================================

@pytest.mark.asyncio
async def test_product_discount_applied(pricing, test_session, test_product):
    discount = await make_discount(test_session, use_percentage=True, discount_percentage=Decimal("10"))
    await assign_discount_to_product(test_session, discount, test_product)

    amount, applied = await pricing.get_discount_amount(test_product)
    assert amount == Decimal("10")
    assert applied.id == discount.id
    assert await pricing.get_final_price(test_product) == Decimal("90")
    assert await pricing.get_final_price(test_product, include_discounts=False) == Decimal("100")


@pytest.mark.asyncio
async def test_final_price_details_drop_discount_under_tier_price(pricing, test_session, test_product):
    discount = await make_discount(test_session, use_percentage=True, discount_percentage=Decimal("10"))
    await assign_discount_to_product(test_session, discount, test_product)

    details = await pricing.get_final_price_details(test_product)
    assert details.price == Decimal("90")
    assert details.discount_amount == Decimal("10")
    assert details.applied_discount.id == discount.id

    await make_tier_price(test_session, test_product, 1, "85")
    details = await pricing.get_final_price_details(test_product)
    assert details.price == Decimal("85")
    assert details.discount_amount == Decimal("0")
    assert details.applied_discount is None


@pytest.mark.asyncio
async def test_category_discount_applied(pricing, test_session, test_product):
    category = await make_category(test_session, "Sale")
    await add_product_to_category(test_session, test_product, category)
    discount = await make_discount(
        test_session, discount_type="assigned_to_categories", discount_amount=Decimal("15")
    )
    await assign_discount_to_category(test_session, discount, category)

    assert await pricing.get_final_price(test_product) == Decimal("85")


@pytest.mark.asyncio
async def test_largest_discount_is_preferred(pricing, test_session, test_product):
    small = await make_discount(test_session, name="Small", discount_amount=Decimal("5"))
    large = await make_discount(test_session, name="Large", use_percentage=True, discount_percentage=Decimal("20"))
    await assign_discount_to_product(test_session, small, test_product)
    await assign_discount_to_product(test_session, large, test_product)

    amount, applied = await pricing.get_discount_amount(test_product)
    assert applied.id == large.id
    assert amount == Decimal("20")


@pytest.mark.asyncio
async def test_discount_is_taken_from_price_with_additional_charge(pricing, test_session, test_product):
    discount = await make_discount(test_session, use_percentage=True, discount_percentage=Decimal("10"))
    await assign_discount_to_product(test_session, discount, test_product)

    # (100 + 20) - 10% of 120
    assert await pricing.get_final_price(test_product, Decimal("20")) == Decimal("108")


@pytest.mark.asyncio
async def test_final_price_never_negative(pricing, test_session, test_product):
    discount = await make_discount(test_session, discount_amount=Decimal("150"))
    await assign_discount_to_product(test_session, discount, test_product)

    assert await pricing.get_final_price(test_product) == Decimal("0")


@pytest.mark.asyncio
async def test_discounts_ignored_by_settings(pricing, test_session, test_product):
    discount = await make_discount(test_session, discount_amount=Decimal("10"))
    await assign_discount_to_product(test_session, discount, test_product)
    settings = await get_global_settings(test_session)
    settings.ignore_discounts = True
    await test_session.commit()

    assert await pricing.get_final_price(test_product) == Decimal("100")


@pytest.mark.asyncio
async def test_lower_tier_price_replaces_discount(pricing, test_session, test_product):
    discount = await make_discount(test_session, use_percentage=True, discount_percentage=Decimal("10"))
    await assign_discount_to_product(test_session, discount, test_product)
    await make_tier_price(test_session, test_product, 1, "85")

    # Tier price 85 beats 100 - 10% = 90, no discount on top
    assert await pricing.get_final_price(test_product) == Decimal("85")


@pytest.mark.asyncio
async def test_discount_kept_when_tier_price_is_higher(pricing, test_session, test_product):
    discount = await make_discount(test_session, use_percentage=True, discount_percentage=Decimal("10"))
    await assign_discount_to_product(test_session, discount, test_product)
    await make_tier_price(test_session, test_product, 1, "95")

    assert await pricing.get_final_price(test_product) == Decimal("90")


@pytest.mark.asyncio
async def test_tier_price_without_percentage_discount_rule(pricing, test_session, test_product):
    discount = await make_discount(test_session, use_percentage=True, discount_percentage=Decimal("10"))
    await assign_discount_to_product(test_session, discount, test_product)
    await make_tier_price(test_session, test_product, 1, "95")
    settings = await get_global_settings(test_session)
    settings.apply_percentage_discount_on_tier_price = False
    await test_session.commit()

    # The tier price switches discounts off
    assert await pricing.get_final_price(test_product) == Decimal("95")


# ============================================
# BUNDLES
# ============================================

async def _make_per_item_bundle(session):
    bundle = await make_product(
        session, name="Bundle", price=Decimal("0"), product_type="bundle", bundle_per_item_pricing=True
    )
    part_a = await make_product(session, name="Part A", price=Decimal("10"), weight=Decimal("1"))
    part_b = await make_product(session, name="Part B", price=Decimal("20"), weight=Decimal("2"))
    await make_bundle_item(session, bundle, part_a, quantity=2)
    await make_bundle_item(session, bundle, part_b, quantity=1, discount=Decimal("10"), discount_percentage=True)
    return bundle, part_a, part_b


@pytest.mark.asyncio
async def test_per_item_bundle_sums_items(pricing, test_session):
    bundle, _, _ = await _make_per_item_bundle(test_session)

    # 2 x 10 + 1 x (20 - 10%)
    assert await pricing.get_final_price_for_bundle(bundle) == Decimal("38")


@pytest.mark.asyncio
async def test_bundle_without_per_item_pricing_uses_own_price(pricing, test_session):
    bundle = await make_product(test_session, price=Decimal("49"), product_type="bundle")
    part = await make_product(test_session, price=Decimal("10"))
    await make_bundle_item(test_session, bundle, part, quantity=3)

    assert await pricing.get_final_price_for_bundle(bundle) == Decimal("49")


@pytest.mark.asyncio
async def test_unpublished_bundle_item_is_skipped(pricing, test_session):
    bundle, part_a, _ = await _make_per_item_bundle(test_session)
    hidden = await make_product(test_session, price=Decimal("1000"))
    await make_bundle_item(test_session, bundle, hidden, published=False)

    assert await pricing.get_final_price_for_bundle(bundle) == Decimal("38")


# ============================================
# LOWEST PRICE
# ============================================

@pytest.mark.asyncio
async def test_lowest_price_plain_product(pricing, test_product):
    lowest, display_from = await pricing.get_lowest_price(test_product)
    assert lowest == Decimal("100")
    assert display_from is False


@pytest.mark.asyncio
async def test_lowest_price_uses_highest_tier(pricing, test_session, test_product):
    await make_tier_price(test_session, test_product, 10, "80")
    await make_tier_price(test_session, test_product, 50, "70")

    lowest, display_from = await pricing.get_lowest_price(test_product)
    assert lowest == Decimal("70")
    assert display_from is True


@pytest.mark.asyncio
async def test_lowest_price_single_quantity_one_tier_is_not_from(pricing, test_session, test_product):
    await make_tier_price(test_session, test_product, 1, "95")

    lowest, display_from = await pricing.get_lowest_price(test_product)
    assert lowest == Decimal("95")
    assert display_from is False


@pytest.mark.asyncio
async def test_lowest_price_attribute_combination(pricing, test_session):
    product = await make_product(test_session, lowest_attribute_combination_price=Decimal("70"))

    lowest, display_from = await pricing.get_lowest_price(product)
    assert lowest == Decimal("70")
    assert display_from is True


@pytest.mark.asyncio
async def test_lowest_price_from_flag_for_priced_attributes(pricing, test_session, test_product):
    await make_attribute(test_session, test_product, values=[{"price_adjustment": Decimal("5")}])

    lowest, display_from = await pricing.get_lowest_price(test_product)
    assert lowest == Decimal("100")
    assert display_from is True


@pytest.mark.asyncio
async def test_lowest_price_of_grouped_product_raises(pricing, test_session):
    grouped = await make_product(test_session, product_type="grouped", price=Decimal("0"))

    with pytest.raises(GroupedProductPriceError) as exc_info:
        await pricing.get_lowest_price(grouped)
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_lowest_price_of_grouped(pricing, test_session):
    grouped = await make_product(test_session, product_type="grouped", price=Decimal("0"))
    await make_product(test_session, name="Big", price=Decimal("50"), parent_grouped_product_id=grouped.id)
    small = await make_product(test_session, name="Small", price=Decimal("30"), parent_grouped_product_id=grouped.id)
    await make_product(
        test_session, name="Hidden", price=Decimal("5"), parent_grouped_product_id=grouped.id, published=False
    )

    lowest, product = await pricing.get_lowest_price_of_grouped(grouped)
    assert lowest == Decimal("30")
    assert product.id == small.id


@pytest.mark.asyncio
async def test_lowest_price_of_empty_grouped(pricing, test_session):
    grouped = await make_product(test_session, product_type="grouped", price=Decimal("0"))

    assert await pricing.get_lowest_price_of_grouped(grouped) == (None, None)


# ============================================
# ATTRIBUTES AND PRODUCT COST
# ============================================

@pytest.mark.asyncio
async def test_preselected_price_adds_preselected_values(pricing, test_session, test_product):
    await make_attribute(test_session, test_product, values=[
        {"name": "Red", "price_adjustment": Decimal("10"), "is_preselected": True},
        {"name": "Blue", "price_adjustment": Decimal("5")},
    ])

    assert await pricing.get_preselected_price(test_product) == Decimal("110")


@pytest.mark.asyncio
async def test_preselected_price_with_linked_product(pricing, test_session, test_product):
    add_on = await make_product(test_session, name="Add-on", price=Decimal("25"))
    await make_attribute(test_session, test_product, name="Extras", values=[{
        "name": "Two add-ons",
        "value_type": "product_linkage",
        "linked_product_id": add_on.id,
        "quantity": 2,
        "is_preselected": True,
    }])

    assert await pricing.get_preselected_price(test_product) == Decimal("150")


@pytest.mark.asyncio
async def test_preselected_price_of_per_item_bundle(pricing, test_session):
    bundle, part_a, _ = await _make_per_item_bundle(test_session)
    await make_attribute(test_session, part_a, values=[
        {"price_adjustment": Decimal("1"), "is_preselected": True},
    ])

    # 2 x (10 + 1) + (20 - 10%)
    assert await pricing.get_preselected_price(bundle) == Decimal("40")


@pytest.mark.asyncio
async def test_product_cost_includes_linked_products(pricing, test_session):
    product = await make_product(test_session, product_cost=Decimal("40"))
    part = await make_product(test_session, name="Part", product_cost=Decimal("5"))
    attribute, (value,) = await make_attribute(test_session, product, values=[{
        "value_type": "product_linkage",
        "linked_product_id": part.id,
        "quantity": 3,
    }])

    selection = AttributeSelection({str(attribute.id): [value.id]})
    assert await pricing.get_product_cost(product, selection) == Decimal("55")
    assert await pricing.get_product_cost(product) == Decimal("40")


@pytest.mark.asyncio
async def test_attribute_adjustment_reduced_by_percental_tier(pricing, test_session, test_product):
    await make_tier_price(test_session, test_product, 2, "10", calculation_method="percental")
    _, (value,) = await make_attribute(test_session, test_product, values=[{"price_adjustment": Decimal("10")}])

    assert await pricing.get_attribute_value_price_adjustment(value, test_product, None, quantity=1) == Decimal("10")
    assert await pricing.get_attribute_value_price_adjustment(value, test_product, None, quantity=2) == Decimal("9")


# ============================================
# BASE PRICE INFO
# ============================================

@pytest.mark.asyncio
async def test_base_price_info_for_product(pricing, test_session):
    product = await make_product(
        test_session,
        price=Decimal("1.00"),
        base_price_enabled=True,
        base_price_measure_unit="ml",
        base_price_amount=Decimal("500"),
        base_price_base_amount=1000,
    )

    info = await pricing.get_base_price_info_for(product)
    assert info == "Contents: 500 ml (2.00 EUR / 1000 ml)"


@pytest.mark.asyncio
async def test_base_price_info_disabled(pricing, test_product):
    assert await pricing.get_base_price_info_for(test_product) == ""


# ============================================
# CART LINES
# ============================================

@pytest.mark.asyncio
async def test_unit_price_and_sub_total_with_attributes(pricing, test_session, test_customer, test_product):
    attribute, (value,) = await make_attribute(
        test_session, test_product, values=[{"price_adjustment": Decimal("10")}]
    )
    cart = CartService(test_session)
    await cart.add_item(test_customer.id, test_product.id, quantity=3, attribute_selection={attribute.id: [value.id]})
    await test_session.commit()

    (line,) = await cart.get_cart(test_customer.id)
    assert await pricing.get_unit_price(line) == Decimal("110")
    assert await pricing.get_sub_total(line) == Decimal("330")


@pytest.mark.asyncio
async def test_unit_price_with_percental_tier_and_attribute(pricing, test_session, test_customer, test_product):
    await make_tier_price(test_session, test_product, 2, "10", calculation_method="percental")
    attribute, (value,) = await make_attribute(
        test_session, test_product, values=[{"price_adjustment": Decimal("10")}]
    )
    cart = CartService(test_session)
    await cart.add_item(test_customer.id, test_product.id, quantity=2, attribute_selection={attribute.id: [value.id]})
    await test_session.commit()

    (line,) = await cart.get_cart(test_customer.id)
    # Tier price 90 plus the attribute adjustment reduced by 10%
    assert await pricing.get_unit_price(line) == Decimal("99")


@pytest.mark.asyncio
async def test_unit_price_customer_enters_price(pricing, test_session, test_customer):
    donation = await make_product(test_session, name="Donation", customer_enters_price=True)
    cart = CartService(test_session)
    await cart.add_item(test_customer.id, donation.id, customer_entered_price=Decimal("42"))
    await test_session.commit()

    (line,) = await cart.get_cart(test_customer.id)
    assert await pricing.get_unit_price(line) == Decimal("42")


@pytest.mark.asyncio
async def test_unit_price_of_per_item_bundle_in_cart(pricing, test_session, test_customer):
    bundle, _, _ = await _make_per_item_bundle(test_session)
    cart = CartService(test_session)
    await cart.add_item(test_customer.id, bundle.id)
    await test_session.commit()

    (line,) = await cart.get_cart(test_customer.id)
    assert len(line.child_items) == 2
    assert await pricing.get_unit_price(line) == Decimal("38")


@pytest.mark.asyncio
async def test_unit_price_is_rounded(pricing, test_session, test_customer):
    product = await make_product(test_session, price=Decimal("10.005"))
    cart = CartService(test_session)
    await cart.add_item(test_customer.id, product.id)
    await test_session.commit()

    (line,) = await cart.get_cart(test_customer.id)
    assert await pricing.get_unit_price(line) == Decimal("10.01")


@pytest.mark.asyncio
async def test_cart_item_discount_amount(pricing, test_session, test_customer, test_product):
    discount = await make_discount(test_session, use_percentage=True, discount_percentage=Decimal("10"))
    await assign_discount_to_product(test_session, discount, test_product)
    cart = CartService(test_session)
    await cart.add_item(test_customer.id, test_product.id, quantity=3)
    await test_session.commit()

    (line,) = await cart.get_cart(test_customer.id)
    amount, applied = await pricing.get_cart_item_discount_amount(line)
    assert amount == Decimal("30")
    assert applied.id == discount.id
