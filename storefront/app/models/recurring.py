from sqlalchemy import String, ForeignKey, DateTime, Boolean, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from storefront.app.core.base import Base, utcnow


class RecurringPayment(Base):
    __tablename__ = 'recurring_payments'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    cycle_length: Mapped[int] = mapped_column(Integer, default=1)
    cycle_period: Mapped[str] = mapped_column(String(10), default='months')  # days | weeks | months | years
    total_cycles: Mapped[int] = mapped_column(Integer, default=0)
    start_date_utc: Mapped[datetime] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    initial_order_id: Mapped[Optional[int]] = mapped_column(ForeignKey('orders.id', ondelete='SET NULL'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class RecurringPaymentHistory(Base):
    __tablename__ = 'recurring_payment_history'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    recurring_payment_id: Mapped[int] = mapped_column(ForeignKey('recurring_payments.id', ondelete='CASCADE'))
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey('orders.id', ondelete='SET NULL'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_recurring_history_payment_id', 'recurring_payment_id'),
    )
