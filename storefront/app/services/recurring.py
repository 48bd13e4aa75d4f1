# storefront/app/services/recurring.py
"""
Recurring payments: next payment date, remaining cycles and payment history.
"""
from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.constants import (
    CYCLE_PERIOD_DAYS,
    CYCLE_PERIOD_MONTHS,
    CYCLE_PERIOD_WEEKS,
    CYCLE_PERIOD_YEARS,
)
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.logging import get_logger
from storefront.app.models.recurring import RecurringPayment, RecurringPaymentHistory

logger = get_logger(__name__)


class RecurringPaymentError(ServiceError):
    pass


class RecurringPaymentNotFoundError(RecurringPaymentError):
    def __init__(self, payment_id: int):
        super().__init__(f"Recurring payment {payment_id} not found", 404)


class UnsupportedCyclePeriodError(RecurringPaymentError):
    def __init__(self, cycle_period: str):
        super().__init__(f"Not supported cycle period: {cycle_period}", 400)


class RecurringPaymentInactiveError(RecurringPaymentError):
    def __init__(self, payment_id: int):
        super().__init__(f"Recurring payment {payment_id} has no payment due", 409)


def next_payment_date(payment: RecurringPayment, history_count: int) -> Optional[datetime]:
    """
    Date of the next payment, or None when the payment is inactive or all
    cycles are paid. The first payment is due on the start date.
    """
    if not payment.is_active:
        return None
    if history_count >= payment.total_cycles:
        return None

    if history_count > 0:
        start = payment.start_date_utc
        cycles = payment.cycle_length * history_count
        if payment.cycle_period == CYCLE_PERIOD_DAYS:
            return start + timedelta(days=cycles)
        if payment.cycle_period == CYCLE_PERIOD_WEEKS:
            return start + timedelta(days=7 * cycles)
        if payment.cycle_period == CYCLE_PERIOD_MONTHS:
            return start + relativedelta(months=cycles)
        if payment.cycle_period == CYCLE_PERIOD_YEARS:
            return start + relativedelta(years=cycles)
        raise UnsupportedCyclePeriodError(payment.cycle_period)

    if payment.total_cycles > 0:
        return payment.start_date_utc
    return None


def cycles_remaining(payment: RecurringPayment, history_count: int) -> int:
    return max(payment.total_cycles - history_count, 0)


class RecurringPaymentService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_payment(self, payment_id: int) -> RecurringPayment:
        payment = await self.session.get(RecurringPayment, payment_id)
        if payment is None or payment.deleted:
            raise RecurringPaymentNotFoundError(payment_id)
        return payment

    async def get_history_count(self, payment_id: int) -> int:
        result = await self.session.execute(
            select(func.count(RecurringPaymentHistory.id)).where(
                RecurringPaymentHistory.recurring_payment_id == payment_id
            )
        )
        return result.scalar() or 0

    async def get_next_payment_date(self, payment_id: int) -> Optional[datetime]:
        payment = await self.get_payment(payment_id)
        return next_payment_date(payment, await self.get_history_count(payment_id))

    async def get_cycles_remaining(self, payment_id: int) -> int:
        payment = await self.get_payment(payment_id)
        return cycles_remaining(payment, await self.get_history_count(payment_id))

    async def record_payment(self, payment_id: int, order_id: Optional[int] = None) -> RecurringPaymentHistory:
        """Add a history entry for the payment that is due."""
        payment = await self.get_payment(payment_id)
        if next_payment_date(payment, await self.get_history_count(payment_id)) is None:
            raise RecurringPaymentInactiveError(payment_id)

        entry = RecurringPaymentHistory(recurring_payment_id=payment_id, order_id=order_id)
        self.session.add(entry)
        await self.session.flush()
        logger.info("Recurring payment recorded", recurring_payment_id=payment_id, order_id=order_id)
        return entry

    async def cancel(self, payment_id: int) -> RecurringPayment:
        payment = await self.get_payment(payment_id)
        payment.is_active = False
        await self.session.flush()
        logger.info("Recurring payment cancelled", recurring_payment_id=payment_id)
        return payment
