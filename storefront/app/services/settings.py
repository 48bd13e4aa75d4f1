"""Access to the store-wide GlobalSettings row."""
from typing import Iterable, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.models.settings import GlobalSettings


async def get_global_settings(session: AsyncSession) -> GlobalSettings:
    """Return the settings row, creating it with defaults if the table is empty."""
    result = await session.execute(select(GlobalSettings).order_by(GlobalSettings.id).limit(1))
    settings = result.scalar_one_or_none()
    if settings is None:
        settings = GlobalSettings(
            id=1,
            ignore_discounts=False,
            ignore_tier_prices=False,
            apply_percentage_discount_on_tier_price=True,
            active_shipping_rate_computation_methods=[],
            return_valid_options_if_there_are_any=True,
            customer_name_format="full_name",
            customer_name_format_max_length=0,
        )
        session.add(settings)
        await session.flush()
    return settings


async def set_active_shipping_methods(
    session: AsyncSession,
    system_names: Iterable[str],
    settings: Optional[GlobalSettings] = None,
) -> GlobalSettings:
    """Replace the list of active shipping rate computation methods."""
    if settings is None:
        settings = await get_global_settings(session)
    # Reassign (not mutate) so the JSON column is flagged dirty
    settings.active_shipping_rate_computation_methods = list(dict.fromkeys(system_names))
    await session.flush()
    return settings
