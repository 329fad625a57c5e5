"""
End-to-end tests for the resolution pipeline over an in-memory store

Run with:
    pytest tests/test_pipeline.py -v
"""
import asyncio
import datetime as dt
from unittest.mock import AsyncMock

import pytest

from agriguru.errors import ConfigurationError, SourceUnavailable
from agriguru.models import (
    IntentLocation,
    PriceFilter,
    QueryIntent,
    QueryType,
    ResolutionStatus,
    SourceTier,
)
from agriguru.services.geo import GeoResolver
from agriguru.services.matcher import FuzzyMarketMatcher
from agriguru.services.pipeline import ResolutionPipeline

from conftest import TODAY, FakePriceSource, make_record

ADONI = IntentLocation(market="Adoni", district="Kurnool", state="Andhra Pradesh")


def intent(commodity="Cotton", location=ADONI, **kwargs) -> QueryIntent:
    return QueryIntent(commodity=commodity, location=location, **kwargs)


class SlowSource(FakePriceSource):
    async def fetch(self, *args, **kwargs):
        await asyncio.sleep(1)
        return []


class PipelineCase:
    """Wires a pipeline around the catalog store and a fake price API."""

    @pytest.fixture(autouse=True)
    def _wire(self, catalog_store):
        self.store = catalog_store
        self.source = FakePriceSource()
        self.matcher = FuzzyMarketMatcher(catalog_store, auto_accept=0.75, suggest=0.5)
        self.extractor = AsyncMock()
        self.extractor.suggest_nearby_markets.return_value = []

    def pipeline(self, source=None, **kwargs):
        geo = GeoResolver(self.store, self.matcher, extractor=self.extractor,
                          radius_km=100, max_results=10, min_coord_hits=3)
        kwargs.setdefault("day_budget", 14)
        kwargs.setdefault("batch_size", 7)
        kwargs.setdefault("result_cap", 10)
        kwargs.setdefault("deadline", 5)
        kwargs.setdefault("lookback_days", 0)
        kwargs.setdefault("trend_days", 30)
        return ResolutionPipeline(self.store, source or self.source, self.matcher, geo, **kwargs)


class TestTiers(PipelineCase):
    """Cache, live, historical and nearby tiers in order"""

    @pytest.mark.asyncio
    async def test_historical_cache_returns_requested_market_only(self):
        self.store.upsert([
            make_record("Cotton", "Adoni", date=TODAY - dt.timedelta(days=4), modal=7100),
            make_record("Cotton", "Tiruvuru", "Krishna", date=TODAY - dt.timedelta(days=1), modal=6800),
        ])
        result = await self.pipeline().resolve(intent(), today=TODAY)

        assert result.status == ResolutionStatus.RESOLVED
        assert result.source_tier == SourceTier.HISTORICAL_CACHE
        assert result.resolved_date == TODAY - dt.timedelta(days=4)
        assert {r.market for r in result.records} == {"Adoni"}
        assert result.notes["cache_key"] == "c:cotton|s:andhra-pradesh|d:kurnool|m:adoni"
        # live was tried for today before falling back
        assert all(c["date"] == TODAY for c in self.source.fetch_calls)

    @pytest.mark.asyncio
    async def test_live_result_is_cached(self):
        self.source.by_date[TODAY] = [make_record("Cotton", "Adoni", date=TODAY, modal=7200)]
        pipeline = self.pipeline()

        first = await pipeline.resolve(intent(), today=TODAY)
        calls_after_first = len(self.source.fetch_calls)
        second = await pipeline.resolve(intent(), today=TODAY)

        assert first.source_tier == SourceTier.LIVE
        assert second.source_tier == SourceTier.CACHE
        assert len(self.source.fetch_calls) == calls_after_first
        assert second.records[0].modal_price == first.records[0].modal_price

    @pytest.mark.asyncio
    async def test_external_history_for_specific_date(self):
        wanted = TODAY - dt.timedelta(days=10)
        self.source.by_date[wanted - dt.timedelta(days=1)] = [
            make_record("Cotton", "Adoni", date=wanted - dt.timedelta(days=1)),
        ]
        result = await self.pipeline().resolve(intent(date=wanted.isoformat(), is_historical_query=True),
                                               today=TODAY)

        assert result.source_tier == SourceTier.HISTORICAL_EXTERNAL
        assert result.resolved_date == wanted - dt.timedelta(days=1)
        assert self.source.history_calls[0]["dates"][0] == wanted
        # historical intents never ask for today's live prices
        assert self.source.fetch_calls == []
        cached = self.store.get_on_date(PriceFilter(commodity="Cotton", market="Adoni"), result.resolved_date)
        assert len(cached) == 1

    @pytest.mark.asyncio
    async def test_external_history_is_served_from_cache_next_time(self):
        wanted = TODAY - dt.timedelta(days=10)
        self.source.by_date[wanted] = [make_record("Cotton", "Adoni", date=wanted)]
        pipeline = self.pipeline()
        query = intent(date=wanted.isoformat(), is_historical_query=True)

        first = await pipeline.resolve(query, today=TODAY)
        history_calls = len(self.source.history_calls)
        second = await pipeline.resolve(query, today=TODAY)

        assert first.source_tier == SourceTier.HISTORICAL_EXTERNAL
        assert second.source_tier == SourceTier.HISTORICAL_CACHE
        assert second.resolved_date == wanted
        assert len(self.source.history_calls) == history_calls

    @pytest.mark.asyncio
    async def test_alias_first_success(self):
        self.store.upsert([make_record("Maize", "Adoni", modal=2100)])
        result = await self.pipeline().resolve(intent("corn"), today=TODAY)

        assert result.status == ResolutionStatus.RESOLVED
        assert result.commodity_used == "maize"
        assert [r.commodity for r in result.records] == ["Maize"]

    @pytest.mark.asyncio
    async def test_market_overview_one_row_per_commodity(self):
        self.source.by_date[TODAY] = [
            make_record("Cotton", "Adoni", date=TODAY, variety="Bunny"),
            make_record("Cotton", "Adoni", date=TODAY, variety="LRA"),
            make_record("Groundnut", "Adoni", date=TODAY),
        ]
        result = await self.pipeline().resolve(
            intent(None, query_type=QueryType.MARKET_OVERVIEW), today=TODAY)

        assert result.source_tier == SourceTier.LIVE
        assert sorted(r.commodity for r in result.records) == ["Cotton", "Groundnut"]

    @pytest.mark.asyncio
    async def test_market_overview_keeps_each_commodity_latest_date(self):
        self.store.upsert([
            make_record("Cotton", "Adoni", date=TODAY - dt.timedelta(days=1), modal=7100),
            make_record("Groundnut", "Adoni", date=TODAY - dt.timedelta(days=3), modal=5600),
        ])
        result = await self.pipeline().resolve(
            intent(None, query_type=QueryType.MARKET_OVERVIEW), today=TODAY)

        assert result.source_tier == SourceTier.HISTORICAL_CACHE
        assert sorted(r.commodity for r in result.records) == ["Cotton", "Groundnut"]
        assert result.resolved_date == TODAY - dt.timedelta(days=1)

    @pytest.mark.asyncio
    async def test_market_overview_collapses_dates(self):
        self.store.upsert([
            make_record("Onion", "Adoni", date=TODAY - dt.timedelta(days=d), modal=1000 + d)
            for d in (1, 2, 3, 4)
        ])
        result = await self.pipeline().resolve(
            intent(None, query_type=QueryType.MARKET_OVERVIEW), today=TODAY)

        assert len(result.records) == 1
        assert result.records[0].date == TODAY - dt.timedelta(days=1)

    @pytest.mark.asyncio
    async def test_malformed_date_is_treated_as_latest(self):
        self.store.upsert([make_record("Cotton", "Adoni", modal=7100)])
        bad = QueryIntent.from_llm({"commodity": "Cotton", "location": {"market": "Adoni"}, "date": "0000"})
        result = await self.pipeline().resolve(bad, today=TODAY)

        assert result.status == ResolutionStatus.RESOLVED
        assert result.notes["date_plan"] == "latest"
        assert result.resolved_date == TODAY - dt.timedelta(days=1)

    @pytest.mark.asyncio
    async def test_nearby_when_place_has_no_market(self):
        self.store.upsert([make_record("Cotton", "Yemmiganur", modal=6950)])
        village = IntentLocation(market="Chippagiri", district="Kurnool", state="Andhra Pradesh")
        result = await self.pipeline().resolve(
            intent(location=village, is_real_location=True, has_market=False, confidence=0.9), today=TODAY)

        assert result.status == ResolutionStatus.RESOLVED
        assert result.source_tier == SourceTier.NEARBY
        assert result.substituted_markets == ["Yemmiganur"]
        assert all(c["market"] != "Chippagiri" for c in self.source.fetch_calls)

    @pytest.mark.asyncio
    async def test_nearby_after_all_tiers_fail(self):
        self.store.upsert([make_record("Cotton", "Yemmiganur", modal=6950)])
        result = await self.pipeline().resolve(intent(), today=TODAY)

        assert result.source_tier == SourceTier.NEARBY
        assert "Adoni" not in result.substituted_markets
        assert len(self.source.history_calls) == 2  # cotton, kapas

    @pytest.mark.asyncio
    async def test_exhausted(self):
        result = await self.pipeline().resolve(intent(location=IntentLocation(market="Hubli", state="Karnataka")),
                                               today=TODAY)
        assert result.status == ResolutionStatus.EMPTY
        assert result.records == []


class TestValidation(PipelineCase):
    """Location validation happens before any fetch"""

    @pytest.mark.asyncio
    async def test_suggestions_without_fetch(self):
        result = await self.pipeline().resolve(
            intent(location=IntentLocation(market="Bellary")), today=TODAY)

        assert result.status == ResolutionStatus.SUGGESTIONS
        assert [s.market.market for s in result.suggestions] == ["Ballari"]
        assert self.source.fetch_calls == []
        assert self.source.history_calls == []

    @pytest.mark.asyncio
    async def test_auto_correction_is_noted(self):
        self.store.upsert([make_record("Cotton", "Ballari", "Ballari", state="Karnataka")])
        result = await self.pipeline().resolve(
            intent(location=IntentLocation(market="Bellary", state="Karnataka")), today=TODAY)

        assert result.status == ResolutionStatus.RESOLVED
        assert result.market.market == "Ballari"
        assert result.notes["auto_corrected"]["from"] == "Bellary"

    @pytest.mark.asyncio
    async def test_missing_location(self):
        result = await self.pipeline().resolve(intent(location=IntentLocation()), today=TODAY)
        assert result.status == ResolutionStatus.EMPTY
        assert result.notes["missing_location"] is True

    @pytest.mark.asyncio
    async def test_district_only(self):
        self.store.upsert([make_record("Cotton", "Yemmiganur", date=TODAY - dt.timedelta(days=2))])
        result = await self.pipeline().resolve(
            intent(location=IntentLocation(district="Kurnool", state="Andhra Pradesh")), today=TODAY)
        assert result.source_tier == SourceTier.HISTORICAL_CACHE
        assert result.records[0].market == "Yemmiganur"


class TestFailures(PipelineCase):
    """Error handling, cancellation and the deadline"""

    @pytest.mark.asyncio
    async def test_source_unavailable_is_an_empty_tier(self):
        self.store.upsert([make_record("Cotton", "Adoni", date=TODAY - dt.timedelta(days=3))])
        source = FakePriceSource(error=SourceUnavailable("HTTP 503", status_code=503))
        result = await self.pipeline(source=source).resolve(intent(), today=TODAY)

        assert result.source_tier == SourceTier.HISTORICAL_CACHE
        assert "live" in result.notes["errors"]

    @pytest.mark.asyncio
    async def test_configuration_error_propagates(self):
        source = FakePriceSource(error=ConfigurationError("DATA_GOV_IN_API_KEY not set"))
        with pytest.raises(ConfigurationError):
            await self.pipeline(source=source).resolve(intent(), today=TODAY)

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        self.store.upsert([make_record("Cotton", "Adoni")])
        cancel = asyncio.Event()
        cancel.set()
        result = await self.pipeline().resolve(intent(), cancel=cancel, today=TODAY)

        assert result.status == ResolutionStatus.CANCELLED
        assert result.records == []
        assert self.source.fetch_calls == []

    @pytest.mark.asyncio
    async def test_deadline(self):
        result = await self.pipeline(source=SlowSource(), deadline=0.1).resolve(intent(), today=TODAY)
        assert result.status == ResolutionStatus.EMPTY
        assert result.notes["deadline_exceeded"] is True


class TestTrend(PipelineCase):
    @pytest.mark.asyncio
    async def test_trend_query(self):
        self.store.upsert([
            make_record("Tomato", "Adoni", date=TODAY - dt.timedelta(days=d), modal=m)
            for d, m in ((10, 1000), (6, 1100), (2, 1250))
        ])
        result = await self.pipeline().resolve(intent("Tomato", query_type=QueryType.TREND), today=TODAY)

        assert result.status == ResolutionStatus.RESOLVED
        assert result.trends[0].direction == "increasing"
        assert result.resolved_date == TODAY - dt.timedelta(days=2)
        assert self.source.fetch_calls == []

    @pytest.mark.asyncio
    async def test_trend_without_data(self):
        result = await self.pipeline().resolve(intent("Onion", query_type=QueryType.TREND), today=TODAY)
        assert result.status == ResolutionStatus.EMPTY
        assert result.notes["no_trend_data"] is True
