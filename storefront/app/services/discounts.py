# storefront/app/services/discounts.py
"""
Discount resolution: amounts, validity checks and product/category assignment.
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Union

from sqlalchemy import delete as sa_delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.base import utcnow
from storefront.app.core.constants import (
    DISCOUNT_ASSIGNED_TO_CATEGORIES,
    DISCOUNT_ASSIGNED_TO_SKUS,
    DISCOUNT_LIMITATION_N_TIMES_ONLY,
    DISCOUNT_LIMITATION_N_TIMES_PER_CUSTOMER,
    PERCENT_BASE,
    ZERO,
)
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.logging import get_logger
from storefront.app.core.money import to_decimal
from storefront.app.models.category import Category, ProductCategory
from storefront.app.models.customer import Customer
from storefront.app.models.discount import (
    Discount,
    DiscountAppliedToCategory,
    DiscountAppliedToProduct,
    DiscountUsageHistory,
)
from storefront.app.models.product import Product
from storefront.app.models.settings import GlobalSettings
from storefront.app.services.customers import CustomerService
from storefront.app.services.settings import get_global_settings

logger = get_logger(__name__)


class DiscountServiceError(ServiceError):
    pass


class DiscountNotFoundError(DiscountServiceError):
    def __init__(self, discount_id: int):
        super().__init__(f"Discount {discount_id} not found", 404)


class DiscountTypeMismatchError(DiscountServiceError):
    def __init__(self, discount_id: int, expected_type: str):
        super().__init__(f"Discount {discount_id} is not of type {expected_type}", 400)


def get_discount_amount(discount: Discount, amount) -> Decimal:
    """
    Amount taken off `amount` by `discount`.

    Percentage discounts are capped by `maximum_discount_amount` when set.
    The result is never negative and never larger than `amount` itself.
    """
    amount = to_decimal(amount)
    if discount.use_percentage:
        result = amount * to_decimal(discount.discount_percentage) / PERCENT_BASE
        maximum = discount.maximum_discount_amount
        if maximum is not None and to_decimal(maximum) > ZERO:
            result = min(result, to_decimal(maximum))
    else:
        result = to_decimal(discount.discount_amount)

    if result > amount:
        result = amount
    if result < ZERO:
        result = ZERO
    return result


def get_preferred_discount(discounts: Iterable[Discount], amount) -> Optional[Discount]:
    """The discount with the largest amount off `amount`; first one wins ties."""
    preferred = None
    max_amount = ZERO
    for discount in discounts:
        current = get_discount_amount(discount, amount)
        if preferred is None or current > max_amount:
            preferred = discount
            max_amount = current
    return preferred


class DiscountService:
    def __init__(self, session: AsyncSession, catalog_settings: Optional[GlobalSettings] = None):
        self.session = session
        self._settings = catalog_settings

    async def _get_settings(self) -> GlobalSettings:
        if self._settings is None:
            self._settings = await get_global_settings(self.session)
        return self._settings

    async def get_discount(self, discount_id: int) -> Discount:
        discount = await self.session.get(Discount, discount_id)
        if discount is None:
            raise DiscountNotFoundError(discount_id)
        return discount

    async def get_usage_count(self, discount_id: int, customer_id: Optional[int] = None) -> int:
        query = select(func.count(DiscountUsageHistory.id)).where(
            DiscountUsageHistory.discount_id == discount_id
        )
        if customer_id is not None:
            query = query.where(DiscountUsageHistory.customer_id == customer_id)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def is_discount_valid(
        self,
        discount: Discount,
        customer: Optional[Customer],
        role_ids: Optional[Sequence[int]] = None,
        coupon_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Check date window, coupon code, required role and usage limitation."""
        now = now or utcnow()
        if discount.start_date_utc is not None and discount.start_date_utc > now:
            return False
        if discount.end_date_utc is not None and discount.end_date_utc < now:
            return False

        if discount.requires_coupon_code:
            entered = coupon_code
            if entered is None and customer is not None:
                entered = customer.discount_coupon_code
            if not entered or not discount.coupon_code:
                return False
            if entered.strip().casefold() != discount.coupon_code.strip().casefold():
                return False

        if discount.required_customer_role_id is not None:
            if customer is None:
                return False
            if role_ids is None:
                role_ids = await CustomerService(self.session).get_role_ids(customer.id)
            if discount.required_customer_role_id not in role_ids:
                return False

        if discount.limitation == DISCOUNT_LIMITATION_N_TIMES_ONLY:
            used = await self.get_usage_count(discount.id)
            if used >= discount.limitation_times:
                return False
        elif discount.limitation == DISCOUNT_LIMITATION_N_TIMES_PER_CUSTOMER:
            if customer is None:
                return False
            used = await self.get_usage_count(discount.id, customer.id)
            if used >= discount.limitation_times:
                return False

        return True

    async def _get_product_discounts(self, product_id: int) -> List[Discount]:
        result = await self.session.execute(
            select(Discount)
            .join(DiscountAppliedToProduct, DiscountAppliedToProduct.discount_id == Discount.id)
            .where(
                DiscountAppliedToProduct.product_id == product_id,
                Discount.discount_type == DISCOUNT_ASSIGNED_TO_SKUS,
            )
            .order_by(Discount.id)
        )
        return list(result.scalars().all())

    async def _get_category_discounts(self, product_id: int) -> List[Discount]:
        result = await self.session.execute(
            select(Discount)
            .join(DiscountAppliedToCategory, DiscountAppliedToCategory.discount_id == Discount.id)
            .join(Category, Category.id == DiscountAppliedToCategory.category_id)
            .join(ProductCategory, ProductCategory.category_id == Category.id)
            .where(
                ProductCategory.product_id == product_id,
                Category.has_discounts_applied.is_(True),
                Category.deleted.is_(False),
                Discount.discount_type == DISCOUNT_ASSIGNED_TO_CATEGORIES,
            )
            .order_by(Discount.id)
        )
        return list(result.scalars().all())

    async def get_allowed_discounts(
        self,
        product: Product,
        customer: Optional[Customer],
        role_ids: Optional[Sequence[int]] = None,
    ) -> List[Discount]:
        """Valid product and category discounts for `product`, distinct by id."""
        settings = await self._get_settings()
        if settings.ignore_discounts:
            return []

        candidates: List[Discount] = []
        if product.has_discounts_applied:
            candidates.extend(await self._get_product_discounts(product.id))
        candidates.extend(await self._get_category_discounts(product.id))

        if candidates and role_ids is None and customer is not None:
            role_ids = await CustomerService(self.session).get_role_ids(customer.id)

        allowed: List[Discount] = []
        seen = set()
        for discount in candidates:
            if discount.id in seen:
                continue
            seen.add(discount.id)
            if await self.is_discount_valid(discount, customer, role_ids=role_ids):
                allowed.append(discount)
        return allowed

    async def apply_discounts(
        self,
        entity: Union[Product, Category],
        discount_ids: Iterable[int],
    ) -> List[Discount]:
        """
        Replace the discounts assigned to a product or category.

        Only discounts of the matching type are accepted. Refreshes the
        entity's `has_discounts_applied` flag.
        """
        if isinstance(entity, Product):
            mapping, fk_name, expected_type = DiscountAppliedToProduct, "product_id", DISCOUNT_ASSIGNED_TO_SKUS
        elif isinstance(entity, Category):
            mapping, fk_name, expected_type = DiscountAppliedToCategory, "category_id", DISCOUNT_ASSIGNED_TO_CATEGORIES
        else:
            raise DiscountServiceError(f"Discounts cannot be applied to {type(entity).__name__}")

        discounts: List[Discount] = []
        for discount_id in dict.fromkeys(discount_ids):
            discount = await self.get_discount(discount_id)
            if discount.discount_type != expected_type:
                raise DiscountTypeMismatchError(discount_id, expected_type)
            discounts.append(discount)

        fk_column = getattr(mapping, fk_name)
        await self.session.execute(sa_delete(mapping).where(fk_column == entity.id))
        for discount in discounts:
            self.session.add(mapping(discount_id=discount.id, **{fk_name: entity.id}))

        entity.has_discounts_applied = bool(discounts)
        await self.session.flush()

        logger.info(
            "Discounts applied",
            entity=type(entity).__name__,
            entity_id=entity.id,
            discount_ids=[d.id for d in discounts],
        )
        return discounts

    async def record_usage(
        self,
        discount_id: int,
        customer_id: Optional[int] = None,
        order_id: Optional[int] = None,
    ) -> DiscountUsageHistory:
        await self.get_discount(discount_id)
        entry = DiscountUsageHistory(discount_id=discount_id, customer_id=customer_id, order_id=order_id)
        self.session.add(entry)
        await self.session.flush()
        return entry
