from sqlalchemy import String, ForeignKey, Numeric, Text, Boolean, Index, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from storefront.app.core.base import Base, utcnow

MONEY = Numeric(18, 4)


class Product(Base):
    __tablename__ = 'products'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(400))
    sku: Mapped[Optional[str]] = mapped_column(String(400), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product_type: Mapped[str] = mapped_column(String(20), default='simple')  # simple | grouped | bundle
    parent_grouped_product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    published: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_system_product: Mapped[bool] = mapped_column(Boolean, default=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    # Prices
    price: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    old_price: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    product_cost: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    special_price: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    special_price_start_utc: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    special_price_end_utc: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    customer_enters_price: Mapped[bool] = mapped_column(Boolean, default=False)
    has_tier_prices: Mapped[bool] = mapped_column(Boolean, default=False)
    has_discounts_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    lowest_attribute_combination_price: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    bundle_per_item_pricing: Mapped[bool] = mapped_column(Boolean, default=False)

    # Base price ("Contents: 500 ml (2.00 EUR / 1000 ml)")
    base_price_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    base_price_measure_unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    base_price_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    base_price_base_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Shipping
    weight: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    is_shipping_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    is_free_shipping: Mapped[bool] = mapped_column(Boolean, default=False)
    additional_shipping_charge: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_products_published', 'published'),
        Index('ix_products_parent_grouped', 'parent_grouped_product_id'),
        Index('ix_products_type', 'product_type'),
    )

    @property
    def base_price_has_value(self) -> bool:
        return bool(self.base_price_enabled and self.base_price_amount and self.base_price_base_amount)


class TierPrice(Base):
    __tablename__ = 'tier_prices'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'))
    store_id: Mapped[int] = mapped_column(Integer, default=0)  # 0 = all stores
    customer_role_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('customer_roles.id', ondelete='CASCADE'), nullable=True
    )  # None = all customers
    quantity: Mapped[int] = mapped_column(Integer)
    price: Mapped[Decimal] = mapped_column(MONEY)
    calculation_method: Mapped[str] = mapped_column(String(20), default='fixed')  # fixed | percental | adjustment

    __table_args__ = (
        Index('ix_tier_prices_product_id', 'product_id'),
    )


class ProductBundleItem(Base):
    __tablename__ = 'product_bundle_items'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bundle_product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'))
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    discount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    discount_percentage: Mapped[bool] = mapped_column(Boolean, default=True)
    visible: Mapped[bool] = mapped_column(Boolean, default=True)
    published: Mapped[bool] = mapped_column(Boolean, default=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index('ix_bundle_items_bundle_product_id', 'bundle_product_id'),
    )
