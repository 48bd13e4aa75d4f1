"""Product variant attributes (size, color, linked add-ons) and checkout attributes."""
from sqlalchemy import String, ForeignKey, Numeric, Boolean, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column
from decimal import Decimal
from typing import Optional
from storefront.app.core.base import Base

MONEY = Numeric(18, 4)


class ProductVariantAttribute(Base):
    __tablename__ = 'product_variant_attributes'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'))
    name: Mapped[str] = mapped_column(String(255))
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index('ix_variant_attributes_product_id', 'product_id'),
    )


class ProductVariantAttributeValue(Base):
    __tablename__ = 'product_variant_attribute_values'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    product_variant_attribute_id: Mapped[int] = mapped_column(
        ForeignKey('product_variant_attributes.id', ondelete='CASCADE')
    )
    name: Mapped[str] = mapped_column(String(255))
    value_type: Mapped[str] = mapped_column(String(20), default='simple')  # simple | product_linkage
    linked_product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('products.id', ondelete='SET NULL'), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    price_adjustment: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    weight_adjustment: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    is_preselected: Mapped[bool] = mapped_column(Boolean, default=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index('ix_variant_values_attribute_id', 'product_variant_attribute_id'),
    )


class CheckoutAttributeValue(Base):
    """Order-level option (gift wrapping, ...) chosen during checkout."""
    __tablename__ = 'checkout_attribute_values'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    attribute_name: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    price_adjustment: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    weight_adjustment: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    display_order: Mapped[int] = mapped_column(Integer, default=0)
