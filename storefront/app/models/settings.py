from sqlalchemy import Integer, Boolean, Numeric, String, JSON
from sqlalchemy.orm import Mapped, mapped_column
from decimal import Decimal
from typing import Optional, List
from storefront.app.core.base import Base


class GlobalSettings(Base):
    """Store-wide business settings. One row; created with defaults on first read."""
    __tablename__ = 'settings'
    id: Mapped[int] = mapped_column(primary_key=True)

    # Catalog
    ignore_discounts: Mapped[bool] = mapped_column(Boolean, default=False)
    ignore_tier_prices: Mapped[bool] = mapped_column(Boolean, default=False)
    apply_percentage_discount_on_tier_price: Mapped[bool] = mapped_column(Boolean, default=True)

    # Shipping
    active_shipping_rate_computation_methods: Mapped[Optional[List[str]]] = mapped_column(JSON(), nullable=True)
    return_valid_options_if_there_are_any: Mapped[bool] = mapped_column(Boolean, default=True)
    free_shipping_over_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 4), nullable=True)

    # Customers
    customer_name_format: Mapped[str] = mapped_column(String(20), default='full_name')
    customer_name_format_max_length: Mapped[int] = mapped_column(Integer, default=0)
