"""
Reports API.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.api.deps import get_session
from storefront.app.schemas import BestsellerLine, BestsellersResponse
from storefront.app.services.reports import SORT_BY_QUANTITY_DESC, ReportService, ReportServiceError

router = APIRouter()


@router.get("/bestsellers", response_model=BestsellersResponse)
async def get_bestsellers(
    store_id: int = 0,
    from_utc: Optional[datetime] = None,
    to_utc: Optional[datetime] = None,
    order_status: Optional[List[str]] = Query(None),
    payment_status: Optional[List[str]] = Query(None),
    shipping_status: Optional[List[str]] = Query(None),
    billing_country_id: Optional[int] = None,
    product_id: Optional[List[int]] = Query(None),
    include_hidden: bool = False,
    sorting: str = SORT_BY_QUANTITY_DESC,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
):
    try:
        lines = await ReportService(session).get_bestsellers(
            store_id=store_id,
            from_utc=from_utc,
            to_utc=to_utc,
            order_statuses=order_status,
            payment_statuses=payment_status,
            shipping_statuses=shipping_status,
            billing_country_id=billing_country_id,
            product_ids=product_id,
            include_hidden=include_hidden,
            sorting=sorting,
            limit=limit,
        )
    except ReportServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return BestsellersResponse(
        sorting=sorting,
        from_utc=from_utc,
        to_utc=to_utc,
        lines=[
            BestsellerLine(product_id=line.product_id, total_amount=line.total_amount, total_quantity=line.total_quantity)
            for line in lines
        ],
    )
