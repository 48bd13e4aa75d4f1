from sqlalchemy import String, ForeignKey, DateTime, Numeric, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from storefront.app.core.base import Base, utcnow

MONEY = Numeric(18, 4)


class Order(Base):
    __tablename__ = 'orders'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'))
    store_id: Mapped[int] = mapped_column(Integer, default=0)
    order_status: Mapped[str] = mapped_column(String(30), default='pending')
    payment_status: Mapped[str] = mapped_column(String(30), default='pending')
    shipping_status: Mapped[str] = mapped_column(String(30), default='not_yet_shipped')
    billing_address_id: Mapped[Optional[int]] = mapped_column(ForeignKey('addresses.id'), nullable=True)
    shipping_address_id: Mapped[Optional[int]] = mapped_column(ForeignKey('addresses.id'), nullable=True)
    order_subtotal: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    order_shipping: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    order_total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_orders_customer_id', 'customer_id'),
        Index('ix_orders_store_created', 'store_id', 'created_at'),
        Index('ix_orders_status', 'order_status'),
    )


class OrderItem(Base):
    __tablename__ = 'order_items'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price_excl_tax: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    price_excl_tax: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    discount_amount_excl_tax: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    item_weight: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    __table_args__ = (
        Index('ix_order_items_order_id', 'order_id'),
        Index('ix_order_items_product_id', 'product_id'),
    )
