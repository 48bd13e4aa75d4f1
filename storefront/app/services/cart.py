# storefront/app/services/cart.py
"""
Shopping cart service: organized cart lines (bundles with their child items) and line management.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import delete as sa_delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.constants import PRODUCT_TYPE_BUNDLE, PRODUCT_TYPE_GROUPED, ZERO
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.logging import get_logger
from storefront.app.core.money import to_decimal
from storefront.app.models.cart import ShoppingCartItem
from storefront.app.models.customer import Customer
from storefront.app.models.product import Product, ProductBundleItem
from storefront.app.services.attributes import AttributeSelection

logger = get_logger(__name__)


class CartServiceError(ServiceError):
    pass


class CartItemNotFoundError(CartServiceError):
    def __init__(self, item_id: int):
        super().__init__(f"Cart item {item_id} not found", 404)


class ProductNotAvailableError(CartServiceError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} is not available", 409)


class InvalidQuantityError(CartServiceError):
    def __init__(self, quantity: int):
        super().__init__(f"Invalid quantity: {quantity}", 400)


@dataclass
class BundleItemData:
    """A bundle item together with its product and the bundle it belongs to."""
    item: ProductBundleItem
    product: Product
    bundle_product: Product
    additional_charge: Decimal = ZERO

    @property
    def quantity(self) -> int:
        return self.item.quantity

    @property
    def has_discount(self) -> bool:
        return self.item.discount is not None


@dataclass
class OrganizedCartItem:
    """A cart line with its product, customer and (for bundles) child lines."""
    item: ShoppingCartItem
    product: Product
    customer: Optional[Customer] = None
    bundle_item: Optional[BundleItemData] = None
    child_items: List["OrganizedCartItem"] = field(default_factory=list)

    @property
    def quantity(self) -> int:
        return self.item.quantity

    @property
    def selection(self) -> AttributeSelection:
        return AttributeSelection(self.item.attribute_selection)


class CartService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_items(self, customer_id: int, store_id: int = 0) -> List[ShoppingCartItem]:
        query = select(ShoppingCartItem).where(ShoppingCartItem.customer_id == customer_id)
        if store_id:
            query = query.where(ShoppingCartItem.store_id == store_id)
        result = await self.session.execute(query.order_by(ShoppingCartItem.id))
        return list(result.scalars().all())

    async def get_cart(self, customer_id: int, store_id: int = 0) -> List[OrganizedCartItem]:
        """
        Top-level cart lines with bundle child lines attached.

        Lines whose product no longer exists are skipped.
        """
        items = await self._get_items(customer_id, store_id)
        if not items:
            return []

        customer = await self.session.get(Customer, customer_id)

        product_ids = {i.product_id for i in items}
        result = await self.session.execute(select(Product).where(Product.id.in_(product_ids)))
        products: Dict[int, Product] = {p.id: p for p in result.scalars().all()}

        bundle_item_ids = {i.bundle_item_id for i in items if i.bundle_item_id}
        bundle_items: Dict[int, ProductBundleItem] = {}
        if bundle_item_ids:
            result = await self.session.execute(
                select(ProductBundleItem).where(ProductBundleItem.id.in_(bundle_item_ids))
            )
            bundle_items = {b.id: b for b in result.scalars().all()}

        organized: Dict[int, OrganizedCartItem] = {}
        top_level: List[OrganizedCartItem] = []
        for item in items:
            if item.parent_item_id is not None:
                continue
            product = products.get(item.product_id)
            if product is None:
                continue
            line = OrganizedCartItem(item=item, product=product, customer=customer)
            organized[item.id] = line
            top_level.append(line)

        for item in items:
            if item.parent_item_id is None:
                continue
            parent = organized.get(item.parent_item_id)
            product = products.get(item.product_id)
            if parent is None or product is None:
                continue
            child = OrganizedCartItem(item=item, product=product, customer=customer)
            bundle_item = bundle_items.get(item.bundle_item_id) if item.bundle_item_id else None
            if bundle_item is not None:
                child.bundle_item = BundleItemData(item=bundle_item, product=product, bundle_product=parent.product)
            parent.child_items.append(child)

        return top_level

    async def add_item(
        self,
        customer_id: int,
        product_id: int,
        quantity: int = 1,
        store_id: int = 0,
        attribute_selection: Optional[Dict[Any, Any]] = None,
        customer_entered_price=None,
    ) -> ShoppingCartItem:
        """
        Add a product to the cart.

        An identical top-level line (same product, attributes and entered
        price) gets its quantity increased instead. Bundles get one child
        line per published bundle item.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)

        product = await self.session.get(Product, product_id)
        if product is None or product.deleted or not product.published or product.product_type == PRODUCT_TYPE_GROUPED:
            raise ProductNotAvailableError(product_id)

        selection = AttributeSelection(attribute_selection).to_json() or None
        entered_price = to_decimal(customer_entered_price) if product.customer_enters_price else ZERO

        for existing in await self._get_items(customer_id, store_id):
            if (
                existing.parent_item_id is None
                and existing.product_id == product_id
                and existing.store_id == store_id
                and (existing.attribute_selection or None) == selection
                and to_decimal(existing.customer_entered_price) == entered_price
            ):
                existing.quantity += quantity
                await self.session.flush()
                return existing

        item = ShoppingCartItem(
            customer_id=customer_id,
            store_id=store_id,
            product_id=product_id,
            quantity=quantity,
            attribute_selection=selection,
            customer_entered_price=entered_price,
        )
        self.session.add(item)
        await self.session.flush()

        if product.product_type == PRODUCT_TYPE_BUNDLE:
            result = await self.session.execute(
                select(ProductBundleItem)
                .where(
                    ProductBundleItem.bundle_product_id == product_id,
                    ProductBundleItem.published.is_(True),
                )
                .order_by(ProductBundleItem.display_order, ProductBundleItem.id)
            )
            for bundle_item in result.scalars().all():
                self.session.add(ShoppingCartItem(
                    customer_id=customer_id,
                    store_id=store_id,
                    product_id=bundle_item.product_id,
                    quantity=bundle_item.quantity,
                    parent_item_id=item.id,
                    bundle_item_id=bundle_item.id,
                ))
            await self.session.flush()

        logger.info("Cart item added", customer_id=customer_id, product_id=product_id, quantity=quantity)
        return item

    async def _get_item(self, item_id: int) -> ShoppingCartItem:
        item = await self.session.get(ShoppingCartItem, item_id)
        if item is None:
            raise CartItemNotFoundError(item_id)
        return item

    async def update_quantity(self, item_id: int, quantity: int) -> Optional[ShoppingCartItem]:
        """Set the quantity of a line; zero or less removes it."""
        item = await self._get_item(item_id)
        if quantity <= 0:
            await self.remove_item(item_id)
            return None
        item.quantity = quantity
        await self.session.flush()
        return item

    async def remove_item(self, item_id: int) -> None:
        item = await self._get_item(item_id)
        await self.session.execute(
            sa_delete(ShoppingCartItem).where(ShoppingCartItem.parent_item_id == item.id)
        )
        await self.session.delete(item)
        await self.session.flush()

    async def clear(self, customer_id: int, store_id: int = 0) -> int:
        """Remove every line of the customer's cart. Returns the number of removed lines."""
        items = await self._get_items(customer_id, store_id)
        for item in items:
            if item.parent_item_id is not None:
                await self.session.delete(item)
        for item in items:
            if item.parent_item_id is None:
                await self.session.delete(item)
        await self.session.flush()
        return len(items)
