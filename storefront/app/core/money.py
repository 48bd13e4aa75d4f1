"""Decimal money helpers and the working currency."""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

from storefront.app.core.constants import ZERO


def to_decimal(value: Any) -> Decimal:
    """Coerce DB/JSON numbers to Decimal. None becomes 0."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        # str() keeps floats like 0.1 from turning into 0.1000000000000000055...
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a number: {value!r}") from e


def round_amount(value: Any, decimals: int = 2) -> Decimal:
    """Round half-up to `decimals` places."""
    quantum = Decimal(1).scaleb(-decimals)
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Currency:
    """Working currency used for rounding and display."""
    code: str = "EUR"
    rounding_enabled: bool = True
    round_num_decimals: int = 2
    custom_format: Optional[str] = None

    def round_if_enabled(self, amount: Any) -> Decimal:
        amount = to_decimal(amount)
        if not self.rounding_enabled:
            return amount
        return round_amount(amount, self.round_num_decimals)

    def format(self, amount: Any) -> str:
        value = round_amount(amount, self.round_num_decimals)
        text = f"{value:.{self.round_num_decimals}f}"
        if self.custom_format:
            return self.custom_format.format(text)
        return f"{text} {self.code}"

    @classmethod
    def from_settings(cls, settings) -> "Currency":
        return cls(
            code=settings.PRIMARY_CURRENCY_CODE,
            rounding_enabled=settings.CURRENCY_ROUNDING_ENABLED,
            round_num_decimals=settings.CURRENCY_ROUND_DECIMALS,
            custom_format=settings.CURRENCY_CUSTOM_FORMAT,
        )
