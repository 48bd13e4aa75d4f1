from sqlalchemy import String, ForeignKey, Numeric, Boolean, Index, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from storefront.app.core.base import Base, utcnow

MONEY = Numeric(18, 4)


class Discount(Base):
    __tablename__ = 'discounts'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200))
    discount_type: Mapped[str] = mapped_column(String(40))
    use_percentage: Mapped[bool] = mapped_column(Boolean, default=False)
    discount_percentage: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    maximum_discount_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    start_date_utc: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date_utc: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    requires_coupon_code: Mapped[bool] = mapped_column(Boolean, default=False)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    limitation: Mapped[str] = mapped_column(String(30), default='unlimited')
    limitation_times: Mapped[int] = mapped_column(Integer, default=1)
    required_customer_role_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('customer_roles.id', ondelete='SET NULL'), nullable=True
    )

    __table_args__ = (
        Index('ix_discounts_type', 'discount_type'),
    )


class DiscountAppliedToProduct(Base):
    __tablename__ = 'discount_applied_to_products'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    discount_id: Mapped[int] = mapped_column(ForeignKey('discounts.id', ondelete='CASCADE'))
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'))

    __table_args__ = (
        UniqueConstraint('discount_id', 'product_id', name='uq_discount_product'),
        Index('ix_discount_products_product_id', 'product_id'),
    )


class DiscountAppliedToCategory(Base):
    __tablename__ = 'discount_applied_to_categories'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    discount_id: Mapped[int] = mapped_column(ForeignKey('discounts.id', ondelete='CASCADE'))
    category_id: Mapped[int] = mapped_column(ForeignKey('categories.id', ondelete='CASCADE'))

    __table_args__ = (
        UniqueConstraint('discount_id', 'category_id', name='uq_discount_category'),
        Index('ix_discount_categories_category_id', 'category_id'),
    )


class DiscountUsageHistory(Base):
    __tablename__ = 'discount_usage_history'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    discount_id: Mapped[int] = mapped_column(ForeignKey('discounts.id', ondelete='CASCADE'))
    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey('orders.id', ondelete='SET NULL'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_discount_usage_discount_customer', 'discount_id', 'customer_id'),
    )
