from agriguru.models.domain import (
    CommodityEntry,
    GeoOrigin,
    IntentLocation,
    MarketEntry,
    MatchKind,
    MatchOutcome,
    NearbyMarket,
    PlaceSignal,
    PriceFilter,
    PriceRecord,
    QueryIntent,
    QueryType,
    ResolutionResult,
    ResolutionStatus,
    ScoredMarket,
    SourceTier,
    TrendPoint,
    TrendSeries,
    TrendSummary,
)

__all__ = [
    "CommodityEntry",
    "GeoOrigin",
    "IntentLocation",
    "MarketEntry",
    "MatchKind",
    "MatchOutcome",
    "NearbyMarket",
    "PlaceSignal",
    "PriceFilter",
    "PriceRecord",
    "QueryIntent",
    "QueryType",
    "ResolutionResult",
    "ResolutionStatus",
    "ScoredMarket",
    "SourceTier",
    "TrendPoint",
    "TrendSeries",
    "TrendSummary",
]
