"""
Catalog and analytics endpoints: market validation, nearby markets, trends, price search.
"""
import asyncio
import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from agriguru.config import settings
from agriguru.di import get_geo, get_matcher, get_store
from agriguru.models import GeoOrigin, MatchOutcome, NearbyMarket, PriceRecord, TrendSummary
from agriguru.services.geo import GeoResolver
from agriguru.services.matcher import FuzzyMarketMatcher
from agriguru.services.store import PriceStore
from agriguru.services.trends import summarize_series
from agriguru.utils.aliases import get_crop_aliases

router = APIRouter(tags=["markets"])


@router.get("/markets/validate", response_model=MatchOutcome)
async def validate_market(market: str = Query(..., description="Market name as the user typed it"),
                          state: Optional[str] = None, district: Optional[str] = None,
                          matcher: FuzzyMarketMatcher = Depends(get_matcher)):
    return await asyncio.to_thread(matcher.validate, market, state, district)


@router.get("/markets/nearby", response_model=List[NearbyMarket])
async def nearby_markets(lat: Optional[float] = None, lon: Optional[float] = None,
                         market: Optional[str] = None, district: Optional[str] = None,
                         state: Optional[str] = None,
                         radius_km: Optional[float] = Query(None, gt=0, le=1000),
                         max_results: Optional[int] = Query(None, ge=1, le=50),
                         geo: GeoResolver = Depends(get_geo)):
    origin = GeoOrigin(latitude=lat, longitude=lon, market=market, district=district, state=state)
    if not origin.has_coordinates and not origin.place_name:
        raise HTTPException(status_code=422, detail="Give lat/lon or a market, district or state")
    return await geo.nearby_markets(origin, radius_km=radius_km, max_results=max_results)


@router.get("/prices/trend", response_model=List[TrendSummary])
async def price_trend(commodity: Optional[str] = None, state: Optional[str] = None,
                      district: Optional[str] = None, market: Optional[str] = None,
                      days: int = Query(settings.TREND_DAYS, ge=2, le=365),
                      store: PriceStore = Depends(get_store)):
    """Daily modal-price trend; one summary per commodity when no commodity is given."""
    for alias in get_crop_aliases(commodity) or [None]:
        series = await asyncio.to_thread(store.get_trend, alias, state, district, market, days)
        if series:
            return [summarize_series(s, days) for s in series]
    return []


@router.get("/prices/search", response_model=List[PriceRecord])
async def search_prices(market: str = Query(..., min_length=2, description="Approximate market name"),
                        commodity: Optional[str] = None,
                        start: Optional[dt.date] = None, end: Optional[dt.date] = None,
                        limit: int = Query(100, ge=1, le=500),
                        store: PriceStore = Depends(get_store)):
    """Stored prices at markets whose name is close to `market`, best match first."""
    return await asyncio.to_thread(store.search_fuzzy, market, commodity, start, end, limit=limit)
