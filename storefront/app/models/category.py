from sqlalchemy import String, ForeignKey, Boolean, Integer, Index, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from storefront.app.core.base import Base, utcnow


class Category(Base):
    __tablename__ = 'categories'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(400), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # None = root category. No FK: a dangling parent is treated as root by the tree walkers.
    parent_category_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0, server_default='0')
    published: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    has_discounts_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_categories_parent_id', 'parent_category_id'),
        Index('ix_categories_parent_order', 'parent_category_id', 'display_order'),
    )


class ProductCategory(Base):
    """Product to category assignment."""
    __tablename__ = 'product_categories'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'))
    category_id: Mapped[int] = mapped_column(ForeignKey('categories.id', ondelete='CASCADE'))
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index('ix_product_categories_product_id', 'product_id'),
        Index('ix_product_categories_category_id', 'category_id'),
    )
