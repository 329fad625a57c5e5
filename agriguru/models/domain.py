import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------- Price facts & catalog ----------

class PriceRecord(BaseModel):
    """One commodity's price at one market on one date (INR per quintal)."""
    model_config = ConfigDict(from_attributes=True)

    date: dt.date
    state: str
    district: str
    market: str
    commodity: str
    variety: Optional[str] = None
    grade: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    modal_price: Optional[Decimal] = None
    arrival_quantity: Optional[Decimal] = None
    source: Optional[str] = None

    def natural_key(self) -> tuple:
        return (
            self.date,
            self.state.strip().lower(),
            self.district.strip().lower(),
            self.market.strip().lower(),
            self.commodity.strip().lower(),
            (self.variety or "").strip().lower(),
        )


class MarketEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    market: str
    district: str
    state: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_active: bool = True
    last_data_date: Optional[dt.date] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def same_place(self, other: "MarketEntry") -> bool:
        return (
            self.market.lower() == other.market.lower()
            and self.district.lower() == other.district.lower()
            and self.state.lower() == other.state.lower()
        )


class CommodityEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    category: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)


class PriceFilter(BaseModel):
    commodity: Optional[str] = None
    state: Optional[str] = None
    district: Optional[str] = None
    market: Optional[str] = None

    def with_commodity(self, commodity: Optional[str]) -> "PriceFilter":
        return self.model_copy(update={"commodity": commodity})

    @property
    def has_location(self) -> bool:
        return bool(self.state or self.district or self.market)


# ---------- Fuzzy matching ----------

class MatchKind(str, Enum):
    EXACT = "exact"
    SUGGESTIONS = "suggestions"
    NOT_FOUND = "not_found"


class ScoredMarket(BaseModel):
    market: MarketEntry
    score: float


class PlaceSignal(BaseModel):
    """External opinion (usually the LLM's) on whether a name is a real mandi town."""
    is_real_location: bool = False
    has_market: Optional[bool] = None
    confidence: float = 0.0

    def is_strong(self, min_confidence: float = 0.8) -> bool:
        return self.is_real_location and self.has_market is True and self.confidence >= min_confidence


class MatchOutcome(BaseModel):
    kind: MatchKind
    market: Optional[MarketEntry] = None
    score: Optional[float] = None
    auto_corrected: bool = False
    candidates: List[ScoredMarket] = Field(default_factory=list)

    @classmethod
    def not_found(cls) -> "MatchOutcome":
        return cls(kind=MatchKind.NOT_FOUND)


# ---------- Geo ----------

class GeoOrigin(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    market: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def place_name(self) -> Optional[str]:
        return self.market or self.district or self.state


class NearbyMarket(BaseModel):
    market: MarketEntry
    distance_km: Optional[float] = None
    strategy: str = "coordinates"


# ---------- Intent ----------

class QueryType(str, Enum):
    PRICE_INQUIRY = "price_inquiry"
    MARKET_OVERVIEW = "market_overview"
    TREND = "trend"
    NEARBY_MARKETS = "nearby_markets"


class IntentLocation(BaseModel):
    market: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None


def _as_str(v: Any) -> Optional[str]:
    if isinstance(v, str):
        v = v.strip()
        if v and v.lower() not in ("null", "none", "unknown", "n/a"):
            return v
    return None


def _as_bool(v: Any, default: Optional[bool] = False) -> Optional[bool]:
    if isinstance(v, bool):
        return v
    if isinstance(v, str) and v.strip().lower() in ("true", "yes", "1"):
        return True
    if isinstance(v, str) and v.strip().lower() in ("false", "no", "0"):
        return False
    return default


def _as_float(v: Any) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return 0.0
    return min(max(f, 0.0), 1.0)


class QueryIntent(BaseModel):
    commodity: Optional[str] = None
    location: IntentLocation = Field(default_factory=IntentLocation)
    date: Optional[str] = Field(None, description="ISO date, 'YYYY-MM', 'YYYY', or null for latest")
    is_historical_query: bool = False
    query_type: QueryType = QueryType.PRICE_INQUIRY
    confidence: float = 0.0
    is_real_location: bool = False
    has_market: Optional[bool] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_llm(cls, payload: Any) -> "QueryIntent":
        """
        Build an intent from whatever JSON the LLM produced.
        Accepts camelCase or snake_case keys; anything malformed becomes unknown.
        """
        if not isinstance(payload, dict):
            return cls()

        def pick(*keys):
            for k in keys:
                if k in payload:
                    return payload[k]
            return None

        loc = pick("location") or {}
        if isinstance(loc, str):
            loc = {"market": loc}
        if not isinstance(loc, dict):
            loc = {}
        location = IntentLocation(
            market=_as_str(loc.get("market")),
            district=_as_str(loc.get("district")),
            state=_as_str(loc.get("state")),
        )

        raw_type = _as_str(pick("queryType", "query_type"))
        try:
            query_type = QueryType(raw_type) if raw_type else QueryType.PRICE_INQUIRY
        except ValueError:
            query_type = QueryType.PRICE_INQUIRY

        return cls(
            commodity=_as_str(pick("commodity")),
            location=location,
            date=_as_str(pick("date")),
            is_historical_query=bool(_as_bool(pick("isHistoricalQuery", "is_historical_query"))),
            query_type=query_type,
            confidence=_as_float(pick("confidence")),
            is_real_location=bool(_as_bool(pick("isRealLocation", "is_real_location"))),
            has_market=_as_bool(pick("hasMarket", "has_market"), default=None),
        )

    @property
    def has_location(self) -> bool:
        loc = self.location
        return bool(loc.market or loc.district or loc.state) or (
            self.latitude is not None and self.longitude is not None
        )

    def place_signal(self) -> PlaceSignal:
        return PlaceSignal(
            is_real_location=self.is_real_location,
            has_market=self.has_market,
            confidence=self.confidence,
        )


# ---------- Trends ----------

class TrendPoint(BaseModel):
    date: dt.date
    avg_price: Decimal
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    count: int = 0


class TrendSeries(BaseModel):
    commodity: str
    points: List[TrendPoint] = Field(default_factory=list)


class TrendSummary(BaseModel):
    commodity: str
    days: int
    direction: str
    strength: Optional[str] = None
    first_price: Optional[Decimal] = None
    last_price: Optional[Decimal] = None
    change: Optional[Decimal] = None
    change_pct: Optional[float] = None
    volatility: Optional[float] = None
    peak: Optional[TrendPoint] = None
    trough: Optional[TrendPoint] = None
    points: List[TrendPoint] = Field(default_factory=list)


# ---------- Resolution ----------

class SourceTier(str, Enum):
    CACHE = "cache"
    LIVE = "live"
    HISTORICAL_CACHE = "historical-cache"
    HISTORICAL_EXTERNAL = "historical-external"
    NEARBY = "nearby"


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    SUGGESTIONS = "suggestions"
    EMPTY = "empty"
    CANCELLED = "cancelled"


class ResolutionResult(BaseModel):
    status: ResolutionStatus
    records: List[PriceRecord] = Field(default_factory=list)
    source_tier: Optional[SourceTier] = None
    resolved_date: Optional[dt.date] = None
    market: Optional[MarketEntry] = Field(None, description="Canonical market the query resolved to")
    commodity_used: Optional[str] = Field(None, description="Alias that actually produced data")
    suggestions: List[ScoredMarket] = Field(default_factory=list)
    nearby: List[NearbyMarket] = Field(default_factory=list)
    substituted_markets: List[str] = Field(default_factory=list)
    trends: List[TrendSummary] = Field(default_factory=list)
    notes: Dict[str, Any] = Field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.status == ResolutionStatus.RESOLVED and bool(self.records or self.trends)
