"""
Resolution Pipeline: intent in, price records (or suggestions) out.

Explicit state machine; each handler returns the next state and may set a
terminal result on the run:

  ValidateLocation -> TryCacheToday -> TryLiveToday -> TryCacheHistorical
    -> TryExternalHistorical -> TryNearby -> Exhausted

Every tier call goes through _attempt(): source/DB/LLM/HTTP failures make the
tier empty and the cascade continues. ConfigurationError always propagates.
"""
import asyncio
import datetime as dt
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError

from agriguru.config import settings
from agriguru.errors import IntentExtractionError, SourceUnavailable
from agriguru.models import (
    GeoOrigin,
    MarketEntry,
    MatchKind,
    NearbyMarket,
    PriceFilter,
    PriceRecord,
    QueryIntent,
    QueryType,
    ResolutionResult,
    ResolutionStatus,
    SourceTier,
)
from agriguru.services.store import dedupe_latest, location_matches
from agriguru.services.trends import summarize_series
from agriguru.utils.aliases import get_crop_aliases
from agriguru.utils.dates import DatePlan, plan_dates, today_ist
from agriguru.utils.text import cache_key, normalize_name

log = logging.getLogger("agriguru.pipeline")

def t(): return time.perf_counter()

TIER_ERRORS = (SourceUnavailable, SQLAlchemyError, IntentExtractionError, httpx.HTTPError)


class State(str, Enum):
    VALIDATE_LOCATION = "validate_location"
    TRY_CACHE_TODAY = "try_cache_today"
    TRY_LIVE_TODAY = "try_live_today"
    TRY_CACHE_HISTORICAL = "try_cache_historical"
    TRY_EXTERNAL_HISTORICAL = "try_external_historical"
    TRY_NEARBY = "try_nearby"
    EXHAUSTED = "exhausted"
    DONE = "done"


@dataclass
class _Run:
    intent: QueryIntent
    today: dt.date
    plan: DatePlan
    cancel: Optional[asyncio.Event] = None
    filter: PriceFilter = field(default_factory=PriceFilter)
    market: Optional[MarketEntry] = None
    origin: Optional[GeoOrigin] = None
    aliases: List[Optional[str]] = field(default_factory=list)
    nearby: List[NearbyMarket] = field(default_factory=list)
    notes: Dict[str, Any] = field(default_factory=dict)
    result: Optional[ResolutionResult] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()


class ResolutionPipeline:
    def __init__(self, store, source, matcher, geo, day_budget: int = None, batch_size: int = None,
                 result_cap: int = None, deadline: float = None, lookback_days: int = None,
                 trend_days: int = None):
        self.store = store
        self.source = source
        self.matcher = matcher
        self.geo = geo
        self.day_budget = settings.HISTORY_DAY_BUDGET if day_budget is None else day_budget
        self.batch_size = batch_size or settings.HISTORY_BATCH_SIZE
        self.result_cap = result_cap or settings.NEARBY_RESULT_CAP
        self.deadline = deadline or settings.RESOLVE_DEADLINE_SEC
        self.lookback_days = settings.CACHE_LOOKBACK_DAYS if lookback_days is None else lookback_days
        self.trend_days = trend_days or settings.TREND_DAYS
        self._handlers = {
            State.VALIDATE_LOCATION: self._validate_location,
            State.TRY_CACHE_TODAY: self._try_cache_today,
            State.TRY_LIVE_TODAY: self._try_live_today,
            State.TRY_CACHE_HISTORICAL: self._try_cache_historical,
            State.TRY_EXTERNAL_HISTORICAL: self._try_external_historical,
            State.TRY_NEARBY: self._try_nearby,
            State.EXHAUSTED: self._exhausted,
        }

    # ---------- entry point ----------

    async def resolve(self, intent: QueryIntent, cancel: Optional[asyncio.Event] = None,
                      today: Optional[dt.date] = None) -> ResolutionResult:
        start = t()
        try:
            result = await asyncio.wait_for(self._run(intent, cancel, today), timeout=self.deadline)
        except asyncio.TimeoutError:
            log.warning("⏰ resolution exceeded %.0fs deadline", self.deadline)
            result = ResolutionResult(status=ResolutionStatus.EMPTY, notes={"deadline_exceeded": True})
        if cancel is not None and cancel.is_set():
            result = ResolutionResult(status=ResolutionStatus.CANCELLED, notes=result.notes)
        log.info("⏱️  resolve: %s via %s in %dms", result.status.value,
                 result.source_tier.value if result.source_tier else "-", round((t() - start) * 1000))
        return result

    async def _run(self, intent: QueryIntent, cancel: Optional[asyncio.Event],
                   today: Optional[dt.date]) -> ResolutionResult:
        today = today or today_ist()
        run = _Run(
            intent=intent,
            today=today,
            plan=plan_dates(intent.date, today, self.day_budget, self.lookback_days),
            cancel=cancel,
        )
        run.notes["date_plan"] = run.plan.kind
        state = State.VALIDATE_LOCATION
        while state != State.DONE:
            if run.cancelled:
                return self._cancelled(run)
            log.debug("state -> %s", state.value)
            state = await self._handlers[state](run)
        if run.cancelled:
            return self._cancelled(run)
        return run.result

    # ---------- helpers ----------

    async def _attempt(self, run: _Run, tier: str, call: Awaitable[Any]) -> Any:
        """Await one tier call; recoverable failures become None and a note."""
        try:
            return await call
        except TIER_ERRORS as e:
            log.warning("⚠️  %s failed: %s", tier, e)
            run.notes.setdefault("errors", {})[tier] = str(e)
            return None

    @staticmethod
    def _cancelled(run: _Run) -> ResolutionResult:
        log.info("🛑 resolution cancelled")
        return ResolutionResult(status=ResolutionStatus.CANCELLED, notes=run.notes)

    def _shape(self, run: _Run, records: List[PriceRecord]) -> List[PriceRecord]:
        if run.intent.commodity:
            return records
        # market overview: one row per (commodity, market), latest date wins
        return dedupe_latest(records, key=lambda r: (normalize_name(r.commodity), normalize_name(r.market)))

    def _resolved(self, run: _Run, records: List[PriceRecord], tier: SourceTier,
                  date: Optional[dt.date], alias: Optional[str], **extra) -> State:
        run.result = ResolutionResult(
            status=ResolutionStatus.RESOLVED,
            records=self._shape(run, records),
            source_tier=tier,
            resolved_date=date,
            market=run.market,
            commodity_used=alias,
            nearby=run.nearby,
            notes=run.notes,
            **extra,
        )
        log.info("✅ resolved %d records from %s (commodity=%s, date=%s)", len(records), tier.value, alias, date)
        return State.DONE

    async def _aliases(self, run: _Run) -> List[Optional[str]]:
        commodity = run.intent.commodity
        if not commodity:
            return [None]
        extra = await self._attempt(run, "commodity-aliases",
                                    asyncio.to_thread(self.store.commodity_aliases, commodity))
        return get_crop_aliases(commodity, extra or ())

    def _origin(self, run: _Run) -> GeoOrigin:
        if run.origin is not None:
            return run.origin
        loc = run.intent.location
        m = run.market
        return GeoOrigin(
            latitude=run.intent.latitude,
            longitude=run.intent.longitude,
            market=m.market if m else loc.market,
            district=m.district if m else loc.district,
            state=m.state if m else loc.state,
        )

    def _first_tier(self, run: _Run) -> State:
        return State.TRY_CACHE_TODAY if run.plan.is_latest else State.TRY_CACHE_HISTORICAL

    # ---------- states ----------

    async def _validate_location(self, run: _Run) -> State:
        intent = run.intent
        loc = intent.location
        run.aliases = await self._aliases(run)

        if not intent.has_location:
            run.notes["missing_location"] = True
            run.result = ResolutionResult(status=ResolutionStatus.EMPTY, notes=run.notes)
            return State.DONE

        if intent.is_real_location and intent.has_market is False:
            # real village without a mandi: straight to its neighbours
            run.notes["no_market_at_place"] = loc.market or loc.district
            run.origin = GeoOrigin(latitude=intent.latitude, longitude=intent.longitude,
                                   market=loc.market, district=loc.district, state=loc.state)
            return State.TRY_NEARBY

        if loc.market:
            outcome = await self._attempt(run, "validate", asyncio.to_thread(
                self.matcher.validate, loc.market, loc.state, loc.district, intent.place_signal(),
            ))
            if outcome is None:
                run.result = ResolutionResult(status=ResolutionStatus.EMPTY, notes=run.notes)
                return State.DONE
            if outcome.kind == MatchKind.EXACT:
                m = outcome.market
                run.market = m
                run.filter = PriceFilter(state=m.state, district=m.district, market=m.market)
                if outcome.auto_corrected:
                    run.notes["auto_corrected"] = {"from": loc.market, "to": m.market, "score": outcome.score}
            else:
                nearby = []
                if intent.is_real_location:
                    nearby = await self._attempt(run, "nearby", self.geo.nearby_markets(self._origin(run))) or []
                run.notes["unvalidated_market"] = loc.market
                run.result = ResolutionResult(
                    status=ResolutionStatus.SUGGESTIONS,
                    suggestions=outcome.candidates,
                    nearby=nearby,
                    notes=run.notes,
                )
                return State.DONE
        elif loc.district or loc.state:
            run.filter = PriceFilter(state=loc.state, district=loc.district)
        else:
            # coordinates only: there is no named place to price
            return State.TRY_NEARBY

        f = run.filter
        run.notes["cache_key"] = cache_key(intent.commodity, f.state, f.district, f.market)
        if intent.query_type == QueryType.TREND:
            return await self._trend(run)
        return self._first_tier(run)

    async def _trend(self, run: _Run) -> State:
        f = run.filter
        for alias in run.aliases:
            series = await self._attempt(run, "trend", asyncio.to_thread(
                self.store.get_trend, alias, f.state, f.district, f.market, self.trend_days, run.today,
            ))
            if series:
                run.result = ResolutionResult(
                    status=ResolutionStatus.RESOLVED,
                    source_tier=SourceTier.HISTORICAL_CACHE,
                    resolved_date=max(p.date for s in series for p in s.points),
                    market=run.market,
                    commodity_used=alias,
                    trends=[summarize_series(s, self.trend_days) for s in series],
                    notes=run.notes,
                )
                return State.DONE
        run.notes["no_trend_data"] = True
        run.result = ResolutionResult(status=ResolutionStatus.EMPTY, market=run.market, notes=run.notes)
        return State.DONE

    async def _try_cache_today(self, run: _Run) -> State:
        for alias in run.aliases:
            f = run.filter.with_commodity(alias)
            rows = await self._attempt(run, "cache", asyncio.to_thread(self.store.get_on_date, f, run.today))
            rows = [r for r in rows or [] if location_matches(r, f)]
            if rows:
                return self._resolved(run, rows, SourceTier.CACHE, run.today, alias)
        return State.TRY_LIVE_TODAY

    async def _try_live_today(self, run: _Run) -> State:
        f = run.filter
        for alias in run.aliases:
            rows = await self._attempt(run, "live", self.source.fetch(
                alias, f.state, f.district, f.market, date=run.today,
            ))
            if rows:
                await self._attempt(run, "cache-fill", asyncio.to_thread(self.store.upsert, rows))
                return self._resolved(run, rows, SourceTier.LIVE, run.today, alias)
        return State.TRY_CACHE_HISTORICAL

    async def _try_cache_historical(self, run: _Run) -> State:
        plan = run.plan
        if not run.intent.commodity:
            f = run.filter
            rows = await self._attempt(run, "historical-cache", asyncio.to_thread(
                self.store.get_latest, None, f.state, f.district, f.market,
                on_or_before=plan.cache_on_or_before, not_before=plan.cache_not_before,
            ))
            rows = [r for r in rows or [] if location_matches(r, f)]
            if rows:
                newest = max(r.date for r in rows)
                return self._resolved(run, rows, SourceTier.HISTORICAL_CACHE, newest, None)
            return State.TRY_EXTERNAL_HISTORICAL
        for alias in run.aliases:
            found = await self._attempt(run, "historical-cache", asyncio.to_thread(
                self.store.get_last_available, run.filter.with_commodity(alias),
                plan.cache_on_or_before, plan.cache_not_before, run.today,
            ))
            if found and found[0]:
                rows, date = found
                return self._resolved(run, rows, SourceTier.HISTORICAL_CACHE, date, alias)
        return State.TRY_EXTERNAL_HISTORICAL

    async def _try_external_historical(self, run: _Run) -> State:
        if not run.plan.candidates:
            return State.TRY_NEARBY
        f = run.filter
        for alias in run.aliases:
            if run.cancelled:
                return State.DONE
            found = await self._attempt(run, "historical-external", self.source.fetch_history(
                alias, f.state, f.district, f.market, dates=run.plan.candidates, batch_size=self.batch_size,
            ))
            if found and found[0]:
                rows, date = found
                await self._attempt(run, "cache-fill", asyncio.to_thread(self.store.upsert, rows))
                return self._resolved(run, rows, SourceTier.HISTORICAL_EXTERNAL, date, alias)
        return State.TRY_NEARBY

    async def _prices_at(self, run: _Run, m: MarketEntry) -> Tuple[List[PriceRecord], Optional[str]]:
        """Latest cached rows at one nearby market, else today's live rows."""
        for alias in run.aliases:
            rows = await self._attempt(run, "nearby-cache", asyncio.to_thread(
                self.store.get_latest, alias, m.state, m.district, m.market,
            ))
            if rows:
                return rows, alias
        for alias in run.aliases:
            rows = await self._attempt(run, "nearby-live", self.source.fetch(
                alias, m.state, m.district, m.market, date=run.today,
            ))
            if rows:
                await self._attempt(run, "cache-fill", asyncio.to_thread(self.store.upsert, rows))
                return rows, alias
        return [], None

    async def _try_nearby(self, run: _Run) -> State:
        origin = self._origin(run)
        nearby = await self._attempt(run, "nearby", self.geo.nearby_markets(origin)) or []
        run.nearby = nearby
        collected: List[PriceRecord] = []
        substituted: List[str] = []
        used = None
        for n in nearby:
            if run.cancelled:
                return State.DONE
            rows, alias = await self._prices_at(run, n.market)
            if rows:
                collected.extend(rows)
                substituted.append(n.market.market)
                used = used or alias
            if len(collected) >= self.result_cap:
                break
        if not collected:
            return State.EXHAUSTED
        collected = collected[:self.result_cap]
        return self._resolved(
            run, collected, SourceTier.NEARBY, max(r.date for r in collected), used,
            substituted_markets=substituted,
        )

    async def _exhausted(self, run: _Run) -> State:
        log.info("❌ no data for %s", run.notes.get("cache_key") or run.intent.commodity)
        run.result = ResolutionResult(
            status=ResolutionStatus.EMPTY,
            market=run.market,
            nearby=run.nearby,
            notes=run.notes,
        )
        return State.DONE
