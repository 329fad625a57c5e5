"""
Geo Resolver: which real mandis are near a place or a GPS fix.

Strategies run in order until one produces markets:
  1. haversine over catalog coordinates (origin coords, catalog coords, or a geocoded name)
  2. LLM enumeration, every name verified against the catalog
  3. same-district (then same-state) catalog scan
"""
import asyncio
import logging
import math
from typing import Awaitable, Callable, List, Optional, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError

from agriguru.config import settings
from agriguru.errors import IntentExtractionError
from agriguru.models import GeoOrigin, MarketEntry, MatchKind, NearbyMarket
from agriguru.utils.text import ci_eq, normalize_name

log = logging.getLogger("agriguru.geo")

Geocoder = Callable[[str], Awaitable[Optional[Tuple[float, float]]]]


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Return great-circle distance between two (lat, lon) points in kilometers."""
    lat1, lon1 = a
    lat2, lon2 = b
    R = 6371.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    x = math.sin(dphi/2)**2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda/2)**2
    return 2 * R * math.asin(math.sqrt(x))


def _key(m: MarketEntry) -> tuple:
    return (normalize_name(m.state), normalize_name(m.district), normalize_name(m.market))


class GeoResolver:
    def __init__(self, store, matcher, extractor=None, geocoder: Optional[Geocoder] = None,
                 radius_km: float = None, max_results: int = None, min_coord_hits: int = None):
        self.store = store
        self.matcher = matcher
        self.extractor = extractor
        self.geocoder = geocoder
        self.radius_km = settings.NEARBY_RADIUS_KM if radius_km is None else radius_km
        self.max_results = settings.NEARBY_MAX_RESULTS if max_results is None else max_results
        self.min_coord_hits = settings.NEARBY_MIN_COORD_HITS if min_coord_hits is None else min_coord_hits

    # ---------- strategy 1 ----------

    def by_distance(self, origin: Tuple[float, float], radius_km: float, max_results: int,
                    state: Optional[str] = None, exclude: Optional[MarketEntry] = None) -> List[NearbyMarket]:
        out = []
        for m in self.store.markets_with_coordinates(state=state):
            if exclude is not None and m.same_place(exclude):
                continue
            d = haversine_km(origin, (m.latitude, m.longitude))
            if d <= radius_km:
                out.append(NearbyMarket(market=m, distance_km=round(d, 2), strategy="coordinates"))
        out.sort(key=lambda n: n.distance_km)
        return out[:max_results]

    async def _origin_coords(self, origin: GeoOrigin, entry: Optional[MarketEntry]) -> Optional[Tuple[float, float]]:
        if origin.has_coordinates:
            return (origin.latitude, origin.longitude)
        if entry is not None and entry.has_coordinates:
            return (entry.latitude, entry.longitude)
        if self.geocoder is None or not origin.place_name:
            return None
        query = ", ".join(p for p in (origin.market, origin.district, origin.state, "India") if p)
        try:
            return await self.geocoder(query)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            log.warning("⚠️  geocoding '%s' failed: %s", query, e)
            return None

    # ---------- strategy 2 ----------

    async def from_llm(self, origin: GeoOrigin, max_results: int,
                       exclude: Optional[MarketEntry] = None) -> List[NearbyMarket]:
        if self.extractor is None or not origin.place_name:
            return []
        try:
            suggested = await self.extractor.suggest_nearby_markets(
                origin.place_name, district=origin.district, state=origin.state, max_results=max_results,
            )
        except IntentExtractionError as e:
            log.warning("⚠️  LLM nearby-market lookup failed: %s", e)
            return []

        out: List[NearbyMarket] = []
        seen = {_key(exclude)} if exclude is not None else set()
        for s in suggested:
            name = s.get("market")
            if not name:
                continue
            state = s.get("state") or origin.state
            outcome = await asyncio.to_thread(self.matcher.validate, name, state, s.get("district"))
            # only catalog-verified, same-state markets survive
            if outcome.kind != MatchKind.EXACT or (outcome.score or 0) < self.matcher.auto_accept:
                log.info("🚫 dropping unverified LLM market '%s'", name)
                continue
            m = outcome.market
            if origin.state and not ci_eq(m.state, origin.state):
                log.info("🚫 dropping LLM market '%s' outside %s", m.market, origin.state)
                continue
            if _key(m) in seen:
                continue
            seen.add(_key(m))
            dist = s.get("distance_km")
            out.append(NearbyMarket(
                market=m,
                distance_km=float(dist) if isinstance(dist, (int, float)) else None,
                strategy="llm",
            ))
            if len(out) >= max_results:
                break
        return out

    # ---------- strategy 3 ----------

    def by_locality(self, district: Optional[str], state: Optional[str], max_results: int,
                    exclude: Optional[MarketEntry] = None) -> List[NearbyMarket]:
        out: List[NearbyMarket] = []
        seen = {_key(exclude)} if exclude is not None else set()
        scans = []
        if district:
            scans.append(("district", self.store.find_markets(state=state, district=district)))
        if state:
            scans.append(("state", self.store.find_markets(state=state)))
        for strategy, entries in scans:
            for m in entries:
                if _key(m) in seen:
                    continue
                seen.add(_key(m))
                out.append(NearbyMarket(market=m, distance_km=None, strategy=strategy))
                if len(out) >= max_results:
                    return out
        return out

    # ---------- entry point ----------

    async def nearby_markets(self, origin: GeoOrigin, radius_km: float = None,
                             max_results: int = None) -> List[NearbyMarket]:
        """Nearby catalog markets, closest first. Empty list when nothing is found."""
        radius = radius_km or self.radius_km
        limit = max_results or self.max_results

        entry = None
        if origin.market:
            try:
                entry = await asyncio.to_thread(self.store.get_market, origin.market, origin.state, origin.district)
            except SQLAlchemyError as e:
                log.warning("⚠️  catalog lookup for '%s' failed: %s", origin.market, e)
        district = origin.district or (entry.district if entry else None)
        state = origin.state or (entry.state if entry else None)

        hits: List[NearbyMarket] = []
        coords = await self._origin_coords(origin, entry)
        if coords is not None:
            try:
                # an explicit GPS fix is bounded by radius; a named place also by its state
                hits = await asyncio.to_thread(
                    self.by_distance, coords, radius, limit,
                    None if origin.has_coordinates else state, entry,
                )
            except SQLAlchemyError as e:
                log.warning("⚠️  distance scan failed: %s", e)
            if hits and (origin.has_coordinates or len(hits) >= self.min_coord_hits):
                log.info("📍 %d nearby markets by distance", len(hits))
                return hits

        llm_hits = await self.from_llm(
            GeoOrigin(market=origin.market, district=district, state=state), limit, entry,
        )
        merged = list(hits)
        known = {_key(n.market) for n in merged}
        for n in llm_hits:
            if _key(n.market) not in known:
                known.add(_key(n.market))
                merged.append(n)
        if merged:
            log.info("📍 %d nearby markets (distance + LLM)", len(merged))
            return merged[:limit]

        try:
            local = await asyncio.to_thread(self.by_locality, district, state, limit, entry)
        except SQLAlchemyError as e:
            log.warning("⚠️  locality scan failed: %s", e)
            local = []
        log.info("📍 %d nearby markets by locality", len(local))
        return local
