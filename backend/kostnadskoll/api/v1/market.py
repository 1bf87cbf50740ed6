"""Market price comparison endpoint.

POST /market/compare  compare current prices against live or reference market levels
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from kostnadskoll.core.auth import CurrentUser, get_current_user
from kostnadskoll.schemas.market import MarketCompareRequest, MarketCompareResult
from kostnadskoll.services.market.service import get_market_comparator

router = APIRouter()
logger = logging.getLogger(__name__)

COMPARE_UNAVAILABLE = "Extern prisjämförelse är tillfälligt otillgänglig. Försök igen om en stund."


@router.post("/market/compare", response_model=MarketCompareResult)
async def compare_market_prices(
    body: MarketCompareRequest,
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await get_market_comparator().compare(body.items)
    except Exception as e:
        logger.exception("Market comparison failed")
        raise HTTPException(502, COMPARE_UNAVAILABLE) from e
