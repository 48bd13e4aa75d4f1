"""Shopping cart model."""
from sqlalchemy import Integer, ForeignKey, DateTime, Numeric, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from storefront.app.core.base import Base, utcnow


class ShoppingCartItem(Base):
    """One cart line. Bundle children point to their bundle line via parent_item_id."""
    __tablename__ = 'shopping_cart_items'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id', ondelete='CASCADE'), nullable=False)
    store_id: Mapped[int] = mapped_column(Integer, default=0)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    # {"<attribute_id>": [<value_id>, ...]}
    attribute_selection: Mapped[Optional[dict]] = mapped_column(JSON(), nullable=True)
    customer_entered_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"))
    parent_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('shopping_cart_items.id', ondelete='CASCADE'), nullable=True
    )
    bundle_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('product_bundle_items.id', ondelete='SET NULL'), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_cart_items_customer_store', 'customer_id', 'store_id'),
        Index('ix_cart_items_parent', 'parent_item_id'),
    )
