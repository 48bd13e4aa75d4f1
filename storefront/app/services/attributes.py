# storefront/app/services/attributes.py
"""Parsing and materializing product variant / checkout attribute selections."""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.models.attributes import (
    CheckoutAttributeValue,
    ProductVariantAttribute,
    ProductVariantAttributeValue,
)


class AttributeSelection:
    """
    Attribute choices of a cart line: {attribute_id: [value_id, ...]}.

    Accepts the JSON form stored on the cart item (string keys, scalar or
    list values) and ignores anything that is not an integer id.
    """

    def __init__(self, raw: Optional[Dict[Any, Any]] = None):
        self.attributes_map: Dict[int, List[int]] = {}
        for key, values in (raw or {}).items():
            attribute_id = _as_int(key)
            if attribute_id is None:
                continue
            if not isinstance(values, (list, tuple, set)):
                values = [values]
            ids = [v for v in (_as_int(x) for x in values) if v is not None]
            if ids:
                self.attributes_map.setdefault(attribute_id, []).extend(ids)

    @property
    def has_attributes(self) -> bool:
        return bool(self.attributes_map)

    @property
    def value_ids(self) -> List[int]:
        seen: Dict[int, None] = {}
        for ids in self.attributes_map.values():
            for value_id in ids:
                seen.setdefault(value_id, None)
        return list(seen)

    def to_json(self) -> Dict[str, List[int]]:
        return {str(k): list(v) for k, v in self.attributes_map.items()}

    def __bool__(self) -> bool:
        return self.has_attributes


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class AttributeService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def materialize_values(
        self,
        selection: AttributeSelection,
        product_id: Optional[int] = None,
    ) -> List[ProductVariantAttributeValue]:
        """
        Load the selected attribute values.

        A value only counts when it belongs to one of the selected attributes
        (and to `product_id` when given), so stale selections are dropped.
        """
        if not selection.has_attributes:
            return []
        query = (
            select(ProductVariantAttributeValue)
            .join(
                ProductVariantAttribute,
                ProductVariantAttribute.id == ProductVariantAttributeValue.product_variant_attribute_id,
            )
            .where(
                ProductVariantAttributeValue.id.in_(selection.value_ids),
                ProductVariantAttribute.id.in_(list(selection.attributes_map)),
            )
            .order_by(ProductVariantAttribute.display_order, ProductVariantAttributeValue.display_order)
        )
        if product_id is not None:
            query = query.where(ProductVariantAttribute.product_id == product_id)
        result = await self.session.execute(query)
        values = result.scalars().all()
        return [
            v for v in values
            if v.id in selection.attributes_map.get(v.product_variant_attribute_id, ())
        ]

    async def get_attribute_values(self, product_id: int) -> List[ProductVariantAttributeValue]:
        """All attribute values of a product."""
        result = await self.session.execute(
            select(ProductVariantAttributeValue)
            .join(
                ProductVariantAttribute,
                ProductVariantAttribute.id == ProductVariantAttributeValue.product_variant_attribute_id,
            )
            .where(ProductVariantAttribute.product_id == product_id)
            .order_by(ProductVariantAttribute.display_order, ProductVariantAttributeValue.display_order)
        )
        return list(result.scalars().all())

    async def get_preselected_values(self, product_id: int) -> List[ProductVariantAttributeValue]:
        values = await self.get_attribute_values(product_id)
        return [v for v in values if v.is_preselected]

    async def materialize_checkout_attribute_values(
        self, value_ids: Optional[Iterable[int]]
    ) -> List[CheckoutAttributeValue]:
        ids = [i for i in (_as_int(x) for x in (value_ids or [])) if i is not None]
        if not ids:
            return []
        result = await self.session.execute(
            select(CheckoutAttributeValue).where(CheckoutAttributeValue.id.in_(ids))
        )
        return list(result.scalars().all())
