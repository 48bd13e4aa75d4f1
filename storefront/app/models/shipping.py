from sqlalchemy import String, ForeignKey, Numeric, Boolean, Index, Integer, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
from decimal import Decimal
from typing import Optional, List
from storefront.app.core.base import Base

MONEY = Numeric(18, 4)


class ShippingMethod(Base):
    __tablename__ = 'shipping_methods'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(400))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    # Rate used by the fixed-rate provider
    fixed_rate: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    limited_to_stores: Mapped[bool] = mapped_column(Boolean, default=False)
    store_ids: Mapped[Optional[List[int]]] = mapped_column(JSON(), nullable=True)

    def is_available_in_store(self, store_id: int) -> bool:
        if not store_id or not self.limited_to_stores:
            return True
        return store_id in (self.store_ids or [])


class ShippingByWeightRecord(Base):
    """Rate row for the by-weight provider: weight range -> charge."""
    __tablename__ = 'shipping_by_weight'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipping_method_id: Mapped[int] = mapped_column(ForeignKey('shipping_methods.id', ondelete='CASCADE'))
    store_id: Mapped[int] = mapped_column(Integer, default=0)  # 0 = all stores
    country_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # None = all countries
    from_weight: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    to_weight: Mapped[Decimal] = mapped_column(MONEY)
    use_percentage: Mapped[bool] = mapped_column(Boolean, default=False)
    shipping_charge_percentage: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    shipping_charge_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))

    __table_args__ = (
        Index('ix_shipping_by_weight_method', 'shipping_method_id'),
    )
